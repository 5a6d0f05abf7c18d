"""Check for (and optionally install) triage and forensic tools on openSUSE."""

from __future__ import annotations

import shutil
from typing import Any, Dict, List

from . import console, safety
from .errors import FailureKind, PreconditionError
from .executil import run, trace
from .model import DepCheckConfig

CHECK = "check"
INSTALL = "install"
MODES = (CHECK, INSTALL)

CORE_PACKAGES = {
    "ps": "procps",
    "ss": "iproute2",
    "lsof": "lsof",
    "tar": "tar",
    "sha256sum": "coreutils",
    "df": "coreutils",
    "mount": "util-linux",
    "lsblk": "util-linux",
    "systemctl": "systemd",
    "journalctl": "systemd",
    "who": "util-linux",
    "w": "procps",
    "last": "util-linux",
    "lastlog": "util-linux",
    "ip": "iproute2",
    "ausearch": "audit",
    "aureport": "audit",
    "auditctl": "audit",
    "aide": "aide",
    "rpm": "rpm",
    "chkrootkit": "chkrootkit",
    "rkhunter": "rkhunter",
    "tcpdump": "tcpdump",
    "jq": "jq",
    "curl": "curl",
    "wget": "wget",
    "python3": "python3",
    "strings": "binutils",
    "netstat": "net-tools",
    "crontab": "cron",
    "logger": "util-linux",
}

FULL_PACKAGES = {
    "nmap": "nmap",
    "iftop": "iftop",
    "nethogs": "nethogs",
    "tripwire": "tripwire",
    "clamdscan": "clamav",
    "gpg": "gpg2",
    "strace": "strace",
    "file": "file",
    "rsyslogd": "rsyslog",
    "syslog-ng": "syslog-ng",
    "logrotate": "logrotate",
}

# always present on any usable system
SKIP_LIST = frozenset(["bash", "awk", "sed", "grep", "cut", "uniq", "sort", "ls", "uname", "free", "find", "stat"])


def commands_for(cfg: DepCheckConfig) -> Dict[str, str | None]:
    """Ordered command -> package map for this run; None means no mapping."""

    table: Dict[str, str | None] = dict(CORE_PACKAGES)
    if cfg.full:
        table.update(FULL_PACKAGES)
    for cmd in cfg.extra_commands:
        table.setdefault(cmd, None)
    return table


def zypper_install(package: str) -> None:
    run(["zypper", "--non-interactive", "install", package], check=True, timeout=1800.0)


def check_dependencies(cfg: DepCheckConfig) -> Dict[str, Any]:
    if cfg.mode not in MODES:
        raise PreconditionError(f"unknown mode {cfg.mode!r}", kind=FailureKind.INVALID_INPUT)
    install = cfg.mode == INSTALL or cfg.full
    if install:
        safety.require_root()
    mode = INSTALL if install else CHECK
    console.info(f"Checking dependencies on openSUSE (mode: {mode}, full={str(cfg.full).lower()})...")

    found: List[str] = []
    skipped: List[str] = []
    missing: Dict[str, str | None] = {}
    unmapped: List[str] = []
    installed: List[str] = []

    for cmd, pkg in commands_for(cfg).items():
        if cmd in SKIP_LIST:
            console.info(f"Skipping built-in: {cmd}")
            skipped.append(cmd)
            continue
        if shutil.which(cmd):
            found.append(cmd)
            continue
        missing[cmd] = pkg
        if not pkg:
            console.warn(f"{cmd} missing but no package mapping for openSUSE, skipping.")
            unmapped.append(cmd)
            continue
        if install:
            console.info(f"[INSTALL] Missing: {cmd} -> installing package: {pkg}")
            zypper_install(pkg)
            installed.append(pkg)
        else:
            print(f"[MISSING] {cmd} -> package: {pkg}")

    report = {
        "mode": mode,
        "full": cfg.full,
        "found": found,
        "skipped": skipped,
        "missing": missing,
        "unmapped": unmapped,
        "installed": installed,
    }
    trace("depcheck.done", **report)
    console.ok("Dependency check complete.")
    return report
