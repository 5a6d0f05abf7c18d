from __future__ import annotations

import os

DEFAULT_BASE = "/var/lib/hostkit"
DEFAULT_BACKUP_DIR = "/root"
SYSCTL_IPV6_DROPIN = "/etc/sysctl.d/99-disable-ipv6.conf"
YAST_SYSCTL = "/etc/sysctl.d/70-yast.conf"
GRUB_DEFAULT = "/etc/default/grub"
GRUB_SCRIPT = "/etc/grub.d/05_usb_unlock"
OS_RELEASE = "/etc/os-release"


def hostkit_logs_dir() -> str:
    """First-choice trace log directory, ``$HOSTKIT_BASE_PATH/logs``."""

    base = os.environ.get("HOSTKIT_BASE_PATH") or DEFAULT_BASE
    return os.path.join(os.path.abspath(os.path.expanduser(base)), "logs")
