"""Firewall backends (firewalld, ufw, raw iptables) and iptables backups."""

from __future__ import annotations

import glob
import os
import pwd
import shutil
import time
from typing import List

from . import console
from .executil import run, trace

FIREWALLD = "firewalld"
UFW = "ufw"
IPTABLES = "iptables"

BACKUP_PREFIX = "iptables-backup-"
BACKUP_SUFFIX = ".rules"

OWNER_ALLOWED = (("tcp", 80), ("tcp", 443), ("udp", 53), ("tcp", 53))


def _systemctl_ok(*args: str) -> bool:
    return run(["systemctl", *args], check=False).rc == 0


def firewalld_enabled() -> bool:
    if shutil.which("firewall-cmd") is None:
        return False
    return _systemctl_ok("is-active", "--quiet", "firewalld") or _systemctl_ok("is-enabled", "--quiet", "firewalld")


def firewalld_active() -> bool:
    return _systemctl_ok("is-active", "--quiet", "firewalld")


def detect_backend() -> str:
    if firewalld_enabled():
        return FIREWALLD
    if shutil.which("ufw"):
        return UFW
    return IPTABLES


class IptablesBackup:
    """Captures ``iptables-save`` at most once per run."""

    def __init__(self, backup_dir: str, dry_run: bool = False):
        self.backup_dir = backup_dir
        self.dry_run = dry_run
        self.path: str | None = None

    def ensure(self) -> str | None:
        if self.path:
            return self.path
        path = os.path.join(self.backup_dir, f"{BACKUP_PREFIX}{int(time.time())}{BACKUP_SUFFIX}")
        res = run(["iptables-save"], check=False, dry_run=self.dry_run)
        if res.rc != 0:
            console.warn(f"iptables-save failed (rc={res.rc}); no backup written")
            return None
        if not self.dry_run:
            os.makedirs(self.backup_dir, exist_ok=True)
            with open(path, "w", encoding="utf-8") as fh:
                fh.write(res.out)
            os.chmod(path, 0o600)
        self.path = path
        console.step(f"Saved current iptables rules to {path}")
        trace("firewall.backup", path=path, dry_run=self.dry_run)
        return path


def latest_backup(backup_dir: str) -> str | None:
    candidates = glob.glob(os.path.join(backup_dir, f"{BACKUP_PREFIX}*{BACKUP_SUFFIX}"))
    if not candidates:
        return None
    return max(candidates, key=lambda p: (os.path.getmtime(p), p))


def restore_backup(path: str, dry_run: bool = False) -> bool:
    if shutil.which("iptables-restore") is None:
        console.warn("iptables-restore not available; skipping")
        return False
    res = run(["iptables-restore", path], check=False, dry_run=dry_run)
    if res.rc != 0:
        console.warn("iptables-restore failed")
        return False
    console.step(f"iptables restored from {path}")
    return True


def _ipt(args: List[str], dry_run: bool, check: bool = True):
    return run(["iptables", *args], check=check, dry_run=dry_run)


def _flush(dry_run: bool) -> None:
    for flag in ("-F", "-X", "-Z"):
        _ipt([flag], dry_run, check=False)


def deny_inbound(backend: str, backup: IptablesBackup, dry_run: bool = False) -> str:
    """Default-deny inbound traffic using ``backend``; returns the backend used."""

    if backend == FIREWALLD:
        console.step("Using firewalld (starting if needed)")
        run(["systemctl", "start", "firewalld"], check=False, dry_run=dry_run)
        run(["firewall-cmd", "--set-default-zone=drop"], check=False, dry_run=dry_run)
        run(["firewall-cmd", "--reload"], check=False, dry_run=dry_run)
    elif backend == UFW:
        console.step("Using ufw")
        run(["ufw", "--force", "reset"], check=True, dry_run=dry_run)
        run(["ufw", "default", "deny", "incoming"], check=True, dry_run=dry_run)
        run(["ufw", "default", "allow", "outgoing"], check=True, dry_run=dry_run)
        run(["ufw", "allow", "in", "on", "lo"], check=True, dry_run=dry_run)
        run(["ufw", "allow", "out", "on", "lo"], check=True, dry_run=dry_run)
        run(["ufw", "--force", "enable"], check=True, dry_run=dry_run)
    else:
        console.step("No firewalld/ufw found, using iptables")
        backup.ensure()
        _flush(dry_run)
        _ipt(["-P", "INPUT", "DROP"], dry_run)
        _ipt(["-P", "FORWARD", "DROP"], dry_run)
        _ipt(["-P", "OUTPUT", "ACCEPT"], dry_run)
        _ipt(["-A", "INPUT", "-i", "lo", "-j", "ACCEPT"], dry_run)
        _ipt(["-A", "OUTPUT", "-o", "lo", "-j", "ACCEPT"], dry_run)
        _ipt(["-A", "INPUT", "-m", "conntrack", "--ctstate", "RELATED,ESTABLISHED", "-j", "ACCEPT"], dry_run)
    trace("firewall.deny_inbound", backend=backend)
    return backend


def uid_of(user: str) -> int | None:
    try:
        return pwd.getpwnam(user).pw_uid
    except KeyError:
        return None


def restrict_outbound_to_user(user: str, backup: IptablesBackup, dry_run: bool = False) -> int | None:
    """Drop all outbound traffic except web and DNS from ``user``'s processes.

    Returns the uid the owner rules were written for, or None when the user
    does not exist (the drop policies are still in place in that case).
    """

    backup.ensure()
    _flush(dry_run)
    for chain in ("INPUT", "FORWARD", "OUTPUT"):
        _ipt(["-P", chain, "DROP"], dry_run)
    _ipt(["-A", "OUTPUT", "-o", "lo", "-j", "ACCEPT"], dry_run)
    _ipt(["-A", "INPUT", "-i", "lo", "-j", "ACCEPT"], dry_run)
    for chain in ("OUTPUT", "INPUT"):
        _ipt(["-A", chain, "-m", "conntrack", "--ctstate", "RELATED,ESTABLISHED", "-j", "ACCEPT"], dry_run)

    uid = uid_of(user)
    if uid is None:
        console.warn(f"Could not determine UID for user '{user}'. No owner-based rules applied.")
        return None
    for proto, port in OWNER_ALLOWED:
        _ipt(
            ["-A", "OUTPUT", "-m", "owner", "--uid-owner", str(uid), "-p", proto, "--dport", str(port), "-j", "ACCEPT"],
            dry_run,
        )
    console.step(f"Applied owner-based rules for UID {uid} (user {user}).")
    trace("firewall.restrict_outbound", user=user, uid=uid)
    return uid


def restore_defaults(backup_restored: bool, dry_run: bool = False) -> List[str]:
    """Put firewall managers back to their stock policy; returns what was touched."""

    touched = []
    firewalld_on = firewalld_active()
    if firewalld_on:
        console.step("firewalld active: setting default zone to public and reloading")
        run(["firewall-cmd", "--set-default-zone=public"], check=False, dry_run=dry_run)
        run(["firewall-cmd", "--reload"], check=False, dry_run=dry_run)
        touched.append(FIREWALLD)
    has_ufw = shutil.which("ufw") is not None
    if has_ufw:
        console.step("Resetting ufw and allowing common defaults (SSH)")
        run(["ufw", "--force", "reset"], check=False, dry_run=dry_run)
        run(["ufw", "default", "allow", "outgoing"], check=False, dry_run=dry_run)
        run(["ufw", "default", "deny", "incoming"], check=False, dry_run=dry_run)
        if run(["ufw", "allow", "OpenSSH"], check=False, dry_run=dry_run).rc != 0:
            run(["ufw", "allow", "22/tcp"], check=False, dry_run=dry_run)
        run(["ufw", "--force", "enable"], check=False, dry_run=dry_run)
        touched.append(UFW)
    if not firewalld_on and not has_ufw and not backup_restored:
        console.step("No firewall manager detected and no iptables backup; applying permissive policy")
        _ipt(["-P", "OUTPUT", "ACCEPT"], dry_run, check=False)
        _ipt(["-P", "INPUT", "ACCEPT"], dry_run, check=False)
        _ipt(["-F"], dry_run, check=False)
        touched.append(IPTABLES)
    return touched
