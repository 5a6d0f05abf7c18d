"""Precondition guards run before any mutation."""

from __future__ import annotations

import contextlib
import os
import shutil
import stat
from typing import Iterable

from .errors import FailureKind, PreconditionError
from .executil import trace

MOUNTINFO = "/proc/self/mountinfo"


def require_root() -> None:
    if os.geteuid() != 0:
        raise PreconditionError("this command must be run as root (sudo)", kind=FailureKind.NOT_ROOT)


def missing_commands(commands: Iterable[str]) -> list[str]:
    return [c for c in commands if shutil.which(c) is None]


def require_commands(commands: Iterable[str]) -> None:
    missing = missing_commands(commands)
    if missing:
        raise PreconditionError(
            f"required command(s) not found: {', '.join(missing)}. Please install them.",
            kind=FailureKind.MISSING_BINARY,
        )


def is_block_device(path: str) -> bool:
    try:
        return stat.S_ISBLK(os.stat(path).st_mode)
    except OSError:
        return False


def require_block_device(path: str, what: str = "device") -> None:
    if not os.path.exists(path):
        raise PreconditionError(f"{what} {path} not found", kind=FailureKind.MISSING_DEVICE)
    if not is_block_device(path):
        raise PreconditionError(f"{what} {path} is not a block device", kind=FailureKind.WRONG_DEVICE_TYPE)


def require_file(path: str, what: str = "file") -> None:
    if not os.path.isfile(path):
        raise PreconditionError(f"{what} not found: {path}", kind=FailureKind.MISSING_FILE)


def _realpath(dev: str) -> str:
    try:
        return os.path.realpath(dev)
    except OSError:
        return dev


def mountpoints_of(dev: str) -> list[str]:
    """Return the mount points whose source resolves to ``dev``."""

    mountpoints: list[str] = []
    real = _realpath(dev)
    try:
        with open(MOUNTINFO, "r", encoding="utf-8") as fh:
            for line in fh:
                parts = line.strip().split()
                if not parts:
                    continue
                with contextlib.suppress(ValueError):
                    dash = parts.index("-")
                    source_idx = dash + 2
                    if source_idx >= len(parts):
                        continue
                    if _realpath(parts[source_idx]) == real:
                        mountpoints.append(parts[4].replace("\\040", " "))
    except FileNotFoundError:
        return []
    except OSError as exc:
        trace("safety.mountinfo_error", device=dev, error=str(exc))
    return mountpoints


def require_not_mounted(dev: str) -> None:
    mounts = mountpoints_of(dev)
    if mounts:
        raise PreconditionError(
            f"{dev} is currently mounted at {', '.join(sorted(mounts))}. Please unmount before running.",
            kind=FailureKind.DEVICE_MOUNTED,
        )
