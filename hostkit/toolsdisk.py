"""Bootable ISO partition plus a LUKS-encrypted ext4 tools partition on one disk.

Layout (GPT)::

    1  iso    1MiB .. <iso size + headroom>MiB   raw ISO image
    2  tools  <iso end>MiB .. 100%               LUKS -> ext4
"""

from __future__ import annotations

import os
import time
from typing import Any, Dict

from . import console, devices, luks, safety
from .confirm import Confirmer
from .executil import run
from .model import ToolsDiskConfig
from .pipeline import Pipeline

MIB = 1024 * 1024

REQUIRED_CMDS = ["wipefs", "sgdisk", "parted", "partprobe", "dd", "cryptsetup", "mkfs.ext4", "mount", "umount"]


def iso_partition_mib(iso_bytes: int, headroom_mib: int = 100) -> int:
    return iso_bytes // MIB + headroom_mib


def partition_cmds(device: str, iso_end_mib: int) -> list[list[str]]:
    return [
        ["parted", "-s", device, "mklabel", "gpt"],
        ["parted", "-s", device, "mkpart", "iso", "1MiB", f"{iso_end_mib}MiB"],
        ["parted", "-s", device, "mkpart", "tools", "ext4", f"{iso_end_mib}MiB", "100%"],
    ]


class ToolsDisk:
    def __init__(self, cfg: ToolsDiskConfig, confirmer: Confirmer):
        self.cfg = cfg
        self.confirmer = confirmer
        self.iso_end_mib = 0
        self.iso_part = devices.partition_path(cfg.device, 1)
        self.tools_part = devices.partition_path(cfg.device, 2)

    @property
    def mapper(self) -> str:
        return f"/dev/mapper/{self.cfg.crypt_name}"

    def check(self) -> int:
        safety.require_root()
        safety.require_block_device(self.cfg.device)
        safety.require_file(self.cfg.iso, "ISO file")
        if not self.cfg.dry_run:
            safety.require_commands(REQUIRED_CMDS)
        self.iso_end_mib = iso_partition_mib(os.path.getsize(self.cfg.iso), self.cfg.headroom_mib)
        console.info(f"ISO size: {self.iso_end_mib}MB (with buffer)")
        return self.iso_end_mib

    def confirm(self) -> None:
        console.warn(f"THIS WILL ERASE ALL DATA ON {self.cfg.device}")
        self.confirmer.require_literal("Type YES to continue: ", f"erasing {self.cfg.device}")

    def unmount(self):
        console.info("[1/7] Unmounting existing partitions...")
        return devices.unmount_children(self.cfg.device, dry_run=self.cfg.dry_run)

    def wipe(self) -> None:
        console.info("[2/7] Wiping partition table...")
        run(["wipefs", "-a", self.cfg.device], check=True, dry_run=self.cfg.dry_run)
        run(["sgdisk", "--zap-all", self.cfg.device], check=True, dry_run=self.cfg.dry_run)

    def partition(self) -> Dict[str, str]:
        console.info("[3/7] Creating partition table...")
        for cmd in partition_cmds(self.cfg.device, self.iso_end_mib):
            run(cmd, check=True, dry_run=self.cfg.dry_run)
        devices.partprobe(self.cfg.device, dry_run=self.cfg.dry_run)
        if not self.cfg.dry_run:
            time.sleep(2)
        return {"iso": self.iso_part, "tools": self.tools_part}

    def write_iso(self) -> None:
        console.info("[4/7] Writing ISO to first partition...")
        cmd = ["dd", f"if={self.cfg.iso}", f"of={self.iso_part}", "bs=4M", "status=progress", "oflag=sync"]
        run(cmd, check=True, dry_run=self.cfg.dry_run, timeout=None, capture=False)
        run(["sync"], check=False, dry_run=self.cfg.dry_run, timeout=None)

    def encrypt(self) -> None:
        console.info("[5/7] Setting up LUKS encryption on tools partition...")
        luks.format_luks(self.tools_part, dry_run=self.cfg.dry_run)
        luks.open_luks(self.tools_part, self.cfg.crypt_name, dry_run=self.cfg.dry_run)

    def make_fs(self) -> None:
        console.info("[6/7] Formatting encrypted partition...")
        run(["mkfs.ext4", self.mapper], check=True, dry_run=self.cfg.dry_run, timeout=1800.0)
        if not self.cfg.dry_run:
            os.makedirs(self.cfg.mount_point, exist_ok=True)
        run(["mount", self.mapper, self.cfg.mount_point], check=True, dry_run=self.cfg.dry_run)
        console.step(f"Encrypted tools partition mounted at {self.cfg.mount_point}")

    def cleanup(self) -> None:
        console.info("[7/7] Cleaning up...")
        run(["umount", self.cfg.mount_point], check=False, dry_run=self.cfg.dry_run)
        luks.close_luks(self.cfg.crypt_name, dry_run=self.cfg.dry_run)

    def encrypted_filesystem(self) -> None:
        self.encrypt()
        try:
            self.make_fs()
        finally:
            self.cleanup()

    def pipeline(self) -> Pipeline:
        return (
            Pipeline("tools-disk")
            .add("preconditions", self.check)
            .add("confirm", self.confirm)
            .add("unmount", self.unmount)
            .add("wipe", self.wipe)
            .add("partition", self.partition)
            .add("write_iso", self.write_iso)
            .add("encrypted_filesystem", self.encrypted_filesystem)
        )


def build_tools_disk(cfg: ToolsDiskConfig, confirmer: Confirmer) -> Dict[str, Any]:
    disk = ToolsDisk(cfg, confirmer)
    results = disk.pipeline().run()
    console.ok("DONE.")
    print(f"Bootable ISO written to: {disk.iso_part}")
    print(f"Encrypted tools partition: {disk.tools_part}")
    return {
        "device": cfg.device,
        "iso_partition": disk.iso_part,
        "tools_partition": disk.tools_part,
        "iso_end_mib": disk.iso_end_mib,
        "steps": [r.as_dict() for r in results],
    }
