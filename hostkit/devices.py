"""Block device probing via lsblk/blkid."""
from __future__ import annotations

import json
from dataclasses import dataclass

from .executil import run, trace, udev_settle
from .safety import mountpoints_of


@dataclass
class Disk:
    name: str
    path: str
    size: str = ""
    model: str = ""
    tran: str = ""


def _lsblk_json(args: list[str]) -> list[dict]:
    result = run(["lsblk", "-J", *args], check=False)
    if result.rc != 0:
        return []
    try:
        payload = json.loads(result.out or "{}")
    except json.JSONDecodeError:
        trace("devices.lsblk.parse_error", args=args)
        return []
    return payload.get("blockdevices") or []


def _path_of(node: dict) -> str:
    path = node.get("path") or node.get("name") or ""
    if path and not path.startswith("/"):
        path = f"/dev/{path}"
    return path


def partition_path(device: str, index: int) -> str:
    # nvme0n1 -> nvme0n1p1, sda -> sda1
    base = device.rstrip("/") or device
    suffix = "p" if base[-1:].isdigit() else ""
    return f"{base}{suffix}{index}"


def child_partitions(device: str) -> list[str]:
    nodes = _lsblk_json(["-o", "NAME,PATH,TYPE", device])
    parts: list[str] = []
    for node in nodes:
        for child in node.get("children") or []:
            if child.get("type") == "part":
                parts.append(_path_of(child))
    parts.sort()
    return parts


def unmount_children(device: str, dry_run: bool = False) -> list[str]:
    """Unmount every mounted partition of ``device``; failures are tolerated."""

    unmounted = []
    for part in child_partitions(device):
        if mountpoints_of(part):
            run(["umount", part], check=False, dry_run=dry_run)
            unmounted.append(part)
    trace("devices.unmount_children", device=device, unmounted=unmounted)
    return unmounted


def transport(device: str) -> str:
    r = run(["lsblk", "-no", "TRAN", "-d", device], check=False)
    return (r.out or "").strip()


def uuid_of(path: str) -> str:
    r = run(["blkid", "-s", "UUID", "-o", "value", path], check=False)
    return (r.out or "").strip()


def usb_disks() -> list[Disk]:
    disks = []
    for node in _lsblk_json(["-S", "-o", "NAME,PATH,TRAN,SIZE,MODEL,TYPE"]):
        if (node.get("tran") or "").lower() != "usb":
            continue
        disks.append(
            Disk(
                name=node.get("name") or "",
                path=_path_of(node),
                size=node.get("size") or "",
                model=(node.get("model") or "").strip(),
                tran="usb",
            )
        )
    return disks


def partprobe(device: str, dry_run: bool = False):
    run(["partprobe", device], check=False, dry_run=dry_run)
    udev_settle()
