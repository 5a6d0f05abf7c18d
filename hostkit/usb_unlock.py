"""USB keyfile unlock for a LUKS volume via an early GRUB snippet.

Generates (or reuses) a local keyfile, enrols it in the LUKS header if it
does not already open the volume, formats the USB partition as FAT with a
label, copies the keyfile to its root and writes a /etc/grub.d script that
searches for the label at boot and tries ``cryptomount`` with the keyfile.
A failed unlock at boot falls back to the normal passphrase prompt.
"""

from __future__ import annotations

import os
import shutil
from typing import Any, Dict

from . import console, distro, grub_snippet, luks, safety
from .confirm import Confirmer
from .devices import uuid_of
from .errors import FailureKind, PreconditionError
from .executil import run
from .model import UsbUnlockConfig
from .pipeline import Pipeline, Skip

REQUIRED_CMDS = ["cryptsetup", "lsblk", "blkid", "grub-mkconfig", "mkfs.vfat", "mount", "umount", "dd", "sync", "grep", "sed"]
REQUIRED_PKGS = ["cryptsetup", "grub-common", "dosfstools"]
USB_MOUNT_ROOT = "/mnt"


def install_missing_packages() -> Skip | list[str]:
    if not distro.is_ubuntu():
        return Skip("not Ubuntu")
    console.info("Detected Ubuntu. Checking required packages...")
    missing = [p for p in REQUIRED_PKGS if not distro.dpkg_installed(p)]
    if not missing:
        return Skip("all packages present")
    console.info(f"Installing missing package(s): {', '.join(missing)}")
    distro.apt_install(missing)
    return missing


def check_luks_device(cfg: UsbUnlockConfig, state: Dict[str, Any]) -> str:
    safety.require_block_device(cfg.luks_device, "LUKS device")
    if not luks.is_luks(cfg.luks_device):
        raise PreconditionError(
            f"device {cfg.luks_device} is not a valid LUKS volume",
            kind=FailureKind.WRONG_DEVICE_TYPE,
        )
    luks_uuid = uuid_of(cfg.luks_device)
    if not luks_uuid:
        raise PreconditionError(f"could not determine UUID of {cfg.luks_device}", kind=FailureKind.WRONG_DEVICE_TYPE)
    state["luks_uuid"] = luks_uuid
    console.info(f"Found LUKS device: {cfg.luks_device} (UUID: {luks_uuid})")
    return luks_uuid


def check_usb_device(cfg: UsbUnlockConfig) -> None:
    safety.require_block_device(cfg.usb_device, "USB device")
    safety.require_not_mounted(cfg.usb_device)


def confirm_format(cfg: UsbUnlockConfig, confirmer: Confirmer) -> None:
    console.warn(f"USB device {cfg.usb_device} will be FORMATTED and ALL DATA LOST!")
    confirmer.require_literal(f"Type 'YES' to confirm formatting {cfg.usb_device}: ", "formatting")


def prepare_keyfile(cfg: UsbUnlockConfig) -> Dict[str, Any]:
    meta = luks.ensure_keyfile(cfg.keyfile_path)
    if meta["created"]:
        console.info(f"Created keyfile {cfg.keyfile_path}")
    else:
        console.info(f"Using existing keyfile {cfg.keyfile_path}")
    return meta


def enroll(cfg: UsbUnlockConfig) -> Dict[str, Any]:
    meta = luks.enroll_keyfile(cfg.luks_device, cfg.keyfile_path, cfg.passphrase_file)
    if meta["already_valid"]:
        console.info("Keyfile is valid for LUKS device.")
    else:
        console.info(f"Keyfile added to LUKS keyslots (slot {meta.get('slot')}).")
    return meta


def format_usb(cfg: UsbUnlockConfig) -> None:
    console.info(f"Formatting {cfg.usb_device} as FAT32 with label {cfg.usb_label} ...")
    run(["mkfs.vfat", "-n", cfg.usb_label, cfg.usb_device], check=True, timeout=600.0)


def copy_keyfile(cfg: UsbUnlockConfig) -> str:
    mountpoint = os.path.join(USB_MOUNT_ROOT, f"usbkey-{os.getpid()}")
    os.makedirs(mountpoint, exist_ok=True)
    console.info(f"Mounting {cfg.usb_device} to {mountpoint} ...")
    run(["mount", cfg.usb_device, mountpoint], check=True)
    try:
        dst = os.path.join(mountpoint, cfg.keyfile_name)
        console.info("Copying keyfile to USB ...")
        shutil.copyfile(cfg.keyfile_path, dst)
        run(["sync"], check=False)
    finally:
        console.info("Unmounting USB ...")
        run(["umount", mountpoint], check=False)
        try:
            os.rmdir(mountpoint)
        except OSError:
            pass
    return cfg.keyfile_name


def enable_cryptodisk(cfg: UsbUnlockConfig) -> bool:
    written = grub_snippet.enable_cryptodisk(cfg.grub_default)
    if written:
        console.info(f"Enabling {grub_snippet.CRYPTODISK_LINE} in {cfg.grub_default}")
    else:
        console.info("GRUB_ENABLE_CRYPTODISK already enabled.")
    return written


def write_grub_script(cfg: UsbUnlockConfig, state: Dict[str, Any]) -> str:
    kind = "debug" if cfg.snippet.debug else "quiet"
    console.info(f"Writing GRUB USB unlock ({kind}) snippet to {cfg.grub_script} ...")
    text = grub_snippet.render_unlock_snippet(state["luks_uuid"], cfg.usb_label, cfg.keyfile_name, cfg.snippet)
    return grub_snippet.write_snippet(cfg.grub_script, text)


def build_pipeline(cfg: UsbUnlockConfig, confirmer: Confirmer, state: Dict[str, Any]) -> Pipeline:
    return (
        Pipeline("usb-unlock")
        .add("require_root", safety.require_root)
        .add("validate_names", lambda: grub_snippet.validate_names(cfg.usb_label, cfg.keyfile_name))
        .add("install_packages", install_missing_packages)
        .add("require_commands", lambda: safety.require_commands(REQUIRED_CMDS))
        .add("check_luks_device", lambda: check_luks_device(cfg, state))
        .add("check_usb_device", lambda: check_usb_device(cfg))
        .add("confirm_format", lambda: confirm_format(cfg, confirmer))
        .add("keyfile", lambda: prepare_keyfile(cfg))
        .add("enroll_keyfile", lambda: enroll(cfg))
        .add("format_usb", lambda: format_usb(cfg))
        .add("copy_keyfile", lambda: copy_keyfile(cfg))
        .add("enable_cryptodisk", lambda: enable_cryptodisk(cfg))
        .add("write_grub_script", lambda: write_grub_script(cfg, state))
    )


def print_notes(cfg: UsbUnlockConfig, luks_uuid: str) -> None:
    print()
    console.ok("Setup complete!")
    print()
    print("Notes:")
    print(f"- The USB key should contain the keyfile {cfg.keyfile_name} at its root and be labeled {cfg.usb_label}.")
    print(f"- On boot, if the USB key is present GRUB will try to unlock UUID {luks_uuid} automatically.")
    print("- If the USB key is not present or cannot unlock, GRUB will fall back to asking for the passphrase.")
    print()
    print("Reminder: keep the USB key and your passphrase safe. Test the keyfile locally before rebooting:")
    print(f"  sudo cryptsetup open --test-passphrase --key-file {cfg.keyfile_path} {cfg.luks_device}")
    print("Regenerate your GRUB config with:")
    print("  sudo grub-mkconfig -o /boot/grub/grub.cfg")


def setup_usb_unlock(cfg: UsbUnlockConfig, confirmer: Confirmer) -> Dict[str, Any]:
    state: Dict[str, Any] = {}
    results = build_pipeline(cfg, confirmer, state).run()
    print_notes(cfg, state["luks_uuid"])
    by_name = {r.name: r for r in results}
    return {
        "luks_device": cfg.luks_device,
        "usb_device": cfg.usb_device,
        "luks_uuid": state["luks_uuid"],
        "keyfile": by_name["keyfile"].data,
        "enroll": by_name["enroll_keyfile"].data,
        "grub_script": cfg.grub_script,
        "cryptodisk_written": by_name["enable_cryptodisk"].data,
        "steps": [r.as_dict() for r in results],
    }
