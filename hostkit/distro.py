"""Distribution and package-manager detection."""

from __future__ import annotations

import shlex
import shutil
from dataclasses import dataclass

from .executil import run
from .paths import OS_RELEASE

APT = "apt"
ZYPPER = "zypper"


@dataclass
class Distro:
    id: str = "unknown"
    id_like: str = ""
    pkg_manager: str | None = None

    @property
    def label(self) -> str:
        return f"{self.id} (pkg mgr: {self.pkg_manager or 'none'})"


def read_os_release(path: str = OS_RELEASE) -> dict[str, str]:
    values: dict[str, str] = {}
    try:
        with open(path, "r", encoding="utf-8") as fh:
            for line in fh:
                line = line.strip()
                if not line or line.startswith("#") or "=" not in line:
                    continue
                key, _, raw = line.partition("=")
                try:
                    parsed = shlex.split(raw)
                except ValueError:
                    parsed = [raw.strip("\"'")]
                values[key] = parsed[0] if parsed else ""
    except OSError:
        pass
    return values


def detect(path: str = OS_RELEASE) -> Distro:
    rel = read_os_release(path)
    dist_id = rel.get("ID", "unknown") or "unknown"
    like = rel.get("ID_LIKE", "")
    pkg = None
    if shutil.which("apt-get") or dist_id == "ubuntu" or "debian" in like:
        pkg = APT
    elif shutil.which("zypper") or "suse" in dist_id or "opensuse" in dist_id:
        pkg = ZYPPER
    return Distro(id=dist_id, id_like=like, pkg_manager=pkg)


def is_ubuntu(path: str = OS_RELEASE) -> bool:
    rel = read_os_release(path)
    text = " ".join(rel.values()).lower()
    return "ubuntu" in text


def dpkg_installed(package: str) -> bool:
    return run(["dpkg", "-s", package], check=False).rc == 0


def apt_install(packages: list[str], dry_run: bool = False):
    run(["apt-get", "update"], check=True, dry_run=dry_run, timeout=600.0)
    run(["apt-get", "install", "-y", *packages], check=True, dry_run=dry_run, timeout=1800.0)


REMOVABLE_PACKAGES = {
    APT: ["cups", "postfix", "samba", "avahi-daemon", "telnetd", "vsftpd"],
    ZYPPER: ["cups", "postfix", "samba", "samba-client", "avahi", "avahi-utils", "vsftpd", "telnet-server"],
}

REINSTALL_PACKAGES = {
    APT: ["cups", "postfix", "samba", "avahi-daemon", "vsftpd"],
    ZYPPER: ["cups", "postfix", "samba", "avahi"],
}


def remove_network_packages(pkg_manager: str | None, dry_run: bool = False) -> bool:
    """Best-effort removal; returns False when no package manager is known."""

    pkgs = REMOVABLE_PACKAGES.get(pkg_manager or "")
    if not pkgs:
        return False
    if pkg_manager == APT:
        run(["apt-get", "update", "-y"], check=False, dry_run=dry_run, timeout=600.0)
        run(["apt-get", "remove", "-y", "--purge", *pkgs], check=False, dry_run=dry_run, timeout=1800.0)
        run(["apt-get", "autoremove", "-y"], check=False, dry_run=dry_run, timeout=1800.0)
    else:
        run(["zypper", "-n", "rm", "--clean-deps", *pkgs], check=False, dry_run=dry_run, timeout=1800.0)
    return True


def reinstall_network_packages(pkg_manager: str | None, dry_run: bool = False) -> bool:
    pkgs = REINSTALL_PACKAGES.get(pkg_manager or "")
    if not pkgs:
        return False
    if pkg_manager == APT:
        run(["apt-get", "update", "-y"], check=False, dry_run=dry_run, timeout=600.0)
        run(["apt-get", "install", "-y", *pkgs], check=False, dry_run=dry_run, timeout=1800.0)
    else:
        run(["zypper", "-n", "in", *pkgs], check=False, dry_run=dry_run, timeout=1800.0)
    return True
