"""Flash an ISO to a removable USB drive, or securely erase one."""

from __future__ import annotations

from typing import Any, Dict, List

from . import console, devices, safety
from .confirm import Confirmer
from .errors import FailureKind, PreconditionError, StepFailed
from .executil import run
from .model import FlashConfig
from .pipeline import Pipeline

ERASE_METHODS = ("zero", "random", "shred", "discard")
ERASE_LABELS = {
    "zero": "Zero fill (fast)",
    "random": "Random fill (secure, slow)",
    "shred": "Shred (multi-pass + zero pass)",
    "discard": "blkdiscard (instant TRIM if supported)",
}

FILL_METHODS = ("zero", "random")
ENOSPC = "No space left on device"


def select_usb_device(confirmer: Confirmer) -> str:
    console.info("Detecting removable USB drives...")
    disks = devices.usb_disks()
    if not disks:
        raise PreconditionError("no removable USB device found", kind=FailureKind.MISSING_DEVICE)
    print("Available USB drives:")
    for idx, disk in enumerate(disks, 1):
        print(f"  {idx}) {disk.path} {disk.size} {disk.model}".rstrip())
    answer = (confirmer.ask("Select the number of the drive: ") or "").strip()
    if not answer.isdigit() or not 1 <= int(answer) <= len(disks):
        raise PreconditionError(f"invalid selection: {answer!r}", kind=FailureKind.INVALID_INPUT)
    return disks[int(answer) - 1].path


def select_erase_method(confirmer: Confirmer) -> str:
    print("Secure erase methods:")
    for idx, method in enumerate(ERASE_METHODS, 1):
        print(f"  {idx}) {ERASE_LABELS[method]}")
    answer = (confirmer.ask(f"Choose erase method [1-{len(ERASE_METHODS)}]: ") or "").strip()
    if answer.isdigit() and 1 <= int(answer) <= len(ERASE_METHODS):
        return ERASE_METHODS[int(answer) - 1]
    if answer in ERASE_METHODS:
        return answer
    raise PreconditionError(f"invalid erase method: {answer!r}", kind=FailureKind.INVALID_INPUT)


def flash_cmd(iso: str, device: str, block_size: str = "4M") -> List[str]:
    return ["dd", f"if={iso}", f"of={device}", f"bs={block_size}", "conv=fsync,noerror", "status=progress"]


def erase_cmd(method: str, device: str, block_size: str = "4M") -> List[str]:
    if method == "zero":
        return ["dd", "if=/dev/zero", f"of={device}", f"bs={block_size}", "status=progress", "conv=fsync,noerror"]
    if method == "random":
        return ["dd", "if=/dev/urandom", f"of={device}", f"bs={block_size}", "status=progress", "conv=fsync,noerror"]
    if method == "shred":
        return ["shred", "-v", "-n", "3", "-z", device]
    if method == "discard":
        return ["blkdiscard", device]
    raise PreconditionError(f"unknown erase method {method!r}", kind=FailureKind.INVALID_INPUT)


def fill_reached_end(res) -> bool:
    """A ``dd`` fill without ``count`` ends at the device boundary with ENOSPC and rc 1."""

    return res.rc == 0 or (res.rc == 1 and ENOSPC in (res.err or ""))


class _UsbJob:
    def __init__(self, cfg: FlashConfig, confirmer: Confirmer):
        self.cfg = cfg
        self.confirmer = confirmer
        self.device = cfg.device

    def choose_device(self) -> str:
        if not self.device:
            self.device = select_usb_device(self.confirmer)
        safety.require_block_device(self.device, "target")
        return self.device

    def show(self) -> None:
        res = run(["lsblk", self.device], check=False)
        if res.out:
            print(res.out.rstrip())

    def confirm(self, warning: str) -> None:
        console.warn(warning)
        self.confirmer.require_yes("Continue? [y/N]: ", f"writing {self.device}")

    def sync(self) -> None:
        run(["sync"], check=False, dry_run=self.cfg.dry_run, timeout=None)
        console.ok(f"Operation complete on {self.device}")


def flash_iso(cfg: FlashConfig, confirmer: Confirmer) -> Dict[str, Any]:
    job = _UsbJob(cfg, confirmer)

    def check_iso() -> str:
        iso = cfg.iso or (confirmer.ask("Enter full path to ISO image: ") or "").strip()
        safety.require_file(iso, "ISO file")
        cfg.iso = iso
        return iso

    def write() -> None:
        console.info(f"Writing ISO to {job.device}...")
        run(flash_cmd(cfg.iso, job.device, cfg.block_size), check=True, dry_run=cfg.dry_run, timeout=None, capture=False)

    results = (
        Pipeline("flash")
        .add("require_root", safety.require_root)
        .add("select_device", job.choose_device)
        .add("show_device", job.show, best_effort=True)
        .add("check_iso", check_iso)
        .add("confirm", lambda: job.confirm(f"This will erase all data on {job.device}!"))
        .add("unmount_partitions", lambda: devices.unmount_children(job.device, dry_run=cfg.dry_run))
        .add("write", write)
        .add("sync", job.sync)
        .run()
    )
    return {"device": job.device, "iso": cfg.iso, "steps": [r.as_dict() for r in results]}


def erase_device(cfg: FlashConfig, confirmer: Confirmer) -> Dict[str, Any]:
    job = _UsbJob(cfg, confirmer)
    outcome: Dict[str, Any] = {"discard_ok": None}

    def choose_method() -> str:
        method = cfg.method or select_erase_method(confirmer)
        if method not in ERASE_METHODS:
            raise PreconditionError(f"unknown erase method {method!r}", kind=FailureKind.INVALID_INPUT)
        cfg.method = method
        return method

    def erase() -> None:
        cmd = erase_cmd(cfg.method, job.device, cfg.block_size)
        console.info(f"{ERASE_LABELS[cfg.method]} on {job.device}...")
        if cfg.method == "discard":
            res = run(cmd, check=False, dry_run=cfg.dry_run, timeout=None)
            outcome["discard_ok"] = res.rc == 0
            if res.rc != 0:
                console.warn("blkdiscard failed (device may not support TRIM)")
            return
        if cfg.method in FILL_METHODS:
            res = run(cmd, check=False, dry_run=cfg.dry_run, timeout=None)
            if not fill_reached_end(res):
                raise StepFailed(f"dd exited with {res.rc}: {(res.err or '').strip()[-300:]}")
            return
        run(cmd, check=True, dry_run=cfg.dry_run, timeout=None, capture=False)

    results = (
        Pipeline("erase")
        .add("require_root", safety.require_root)
        .add("select_device", job.choose_device)
        .add("show_device", job.show, best_effort=True)
        .add("choose_method", choose_method)
        .add("confirm", lambda: job.confirm(f"This will destroy ALL data on {job.device}!"))
        .add("unmount_partitions", lambda: devices.unmount_children(job.device, dry_run=cfg.dry_run))
        .add("erase", erase)
        .add("sync", job.sync)
        .run()
    )
    return {
        "device": job.device,
        "method": cfg.method,
        "discard_ok": outcome["discard_ok"],
        "steps": [r.as_dict() for r in results],
    }
