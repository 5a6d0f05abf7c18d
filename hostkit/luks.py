"""LUKS keyfile and keyslot handling."""

from __future__ import annotations

import json
import os
import re
import stat
from typing import Any, Dict, Iterable

from .errors import StepFailed
from .executil import run, trace, udev_settle

KEYFILE_BYTES = 4096


def is_luks(device: str) -> bool:
    return run(["cryptsetup", "isLuks", device], check=False).rc == 0


def ensure_keyfile(path: str, size: int = KEYFILE_BYTES) -> Dict[str, Any]:
    """Create ``path`` with ``size`` random bytes (mode 0400) unless it exists."""

    created = False
    if not os.path.exists(path):
        os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
        fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o400)
        with os.fdopen(fd, "wb") as fh:
            fh.write(os.urandom(size))
            try:
                fh.flush()
                os.fsync(fh.fileno())
            except OSError:
                pass
        created = True
    os.chmod(path, 0o400)
    st = os.stat(path)
    meta = {
        "path": path,
        "created": created,
        "length": st.st_size,
        "mode": f"0{stat.S_IMODE(st.st_mode):o}",
    }
    trace("luks.ensure_keyfile", **meta)
    return meta


def keyfile_unlocks(luks_device: str, keyfile_path: str) -> bool:
    cmd = ["cryptsetup", "open", "--test-passphrase", "--key-file", keyfile_path, luks_device]
    return run(cmd, check=False, timeout=120.0).rc == 0


_KEY_SLOT_CREATED_RE = re.compile(r"key slot\s+(\d+)\s+created", re.IGNORECASE)


def _parse_slot_from_output(streams: Iterable[str]) -> int | None:
    for text in streams:
        match = _KEY_SLOT_CREATED_RE.search(text or "")
        if match:
            return int(match.group(1))
    return None


def luks_active_slots(luks_device: str) -> set[int]:
    res = run(["cryptsetup", "luksDump", "--dump-json-metadata", luks_device], check=False, timeout=120.0)
    if res.rc != 0:
        raise StepFailed(f"cryptsetup luksDump failed: rc={res.rc}")
    try:
        payload = json.loads(res.out or "{}")
    except json.JSONDecodeError as exc:
        raise StepFailed("failed to parse cryptsetup luksDump output") from exc
    slots: set[int] = set()
    for key in (payload.get("keyslots") or {}):
        try:
            slots.add(int(str(key)))
        except ValueError:
            continue
    return slots


def _slots_or_none(luks_device: str) -> set[int] | None:
    # LUKS1 headers have no JSON dump
    try:
        return luks_active_slots(luks_device)
    except StepFailed:
        return None


def add_keyfile_slot(luks_device: str, keyfile_path: str, passphrase_file: str | None = None) -> int | None:
    cmd = ["cryptsetup", "luksAddKey", luks_device, keyfile_path]
    if passphrase_file:
        res = run(cmd + ["--key-file", passphrase_file], check=False, timeout=120.0)
    else:
        # cryptsetup prompts for an existing passphrase on the terminal
        res = run(cmd, check=False, timeout=None, capture=False)
    if res.rc != 0:
        raise StepFailed(f"cryptsetup luksAddKey failed: rc={res.rc}")
    return _parse_slot_from_output((res.out, res.err))


def enroll_keyfile(luks_device: str, keyfile_path: str, passphrase_file: str | None = None) -> Dict[str, Any]:
    """Register ``keyfile_path`` as an unlock secret unless it already works.

    Existing keyslots are never touched; a slot that disappears across the
    add is reported as a failure.
    """

    if keyfile_unlocks(luks_device, keyfile_path):
        return {"already_valid": True, "slot_added": False, "slot": None}

    before = _slots_or_none(luks_device)
    slot = add_keyfile_slot(luks_device, keyfile_path, passphrase_file)
    after = _slots_or_none(luks_device)
    if before is not None and after is not None:
        lost = sorted(before - after)
        if lost:
            raise StepFailed(f"keyslot(s) {lost} vanished while adding keyfile")
        added = sorted(after - before)
        if slot is None and added:
            slot = added[-1]
    meta = {
        "already_valid": False,
        "slot_added": True,
        "slot": slot,
        "slots_before": sorted(before) if before is not None else None,
        "slots_after": sorted(after) if after is not None else None,
    }
    trace("luks.enroll_keyfile", device=luks_device, **meta)
    return meta


def format_luks(device: str, dry_run: bool = False):
    run(["cryptsetup", "luksFormat", device], check=True, dry_run=dry_run, timeout=None, capture=False)
    udev_settle()


def open_luks(device: str, name: str, dry_run: bool = False):
    run(["cryptsetup", "open", device, name], check=True, dry_run=dry_run, timeout=None, capture=False)
    udev_settle()


def close_luks(name: str, dry_run: bool = False):
    run(["cryptsetup", "close", name], check=False, dry_run=dry_run, timeout=60.0)
