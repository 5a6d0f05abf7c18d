"""Interface state and the IPv6 sysctl drop-in."""

from __future__ import annotations

import os
from typing import List

from . import console
from .executil import run, trace
from .paths import YAST_SYSCTL

IPV6_DROPIN_LINES = [
    "net.ipv6.conf.all.disable_ipv6 = 1",
    "net.ipv6.conf.default.disable_ipv6 = 1",
    "net.ipv6.conf.lo.disable_ipv6 = 1",
]


def parse_link_names(text: str) -> List[str]:
    """Interface names from ``ip -o link show`` output, ``@peer`` stripped."""

    names = []
    for line in text.splitlines():
        parts = line.split(": ", 2)
        if len(parts) < 2:
            continue
        name = parts[1].split("@", 1)[0].strip()
        if name:
            names.append(name)
    return names


def non_loopback_interfaces() -> List[str]:
    res = run(["ip", "-o", "link", "show"], check=False)
    return [n for n in parse_link_names(res.out or "") if n != "lo"]


def set_interfaces(state: str, dry_run: bool = False) -> List[str]:
    """Bring every non-loopback interface ``up`` or ``down``; failures tolerated."""

    changed = []
    for iface in non_loopback_interfaces():
        console.step(f"ip link set {iface} {state}")
        if run(["ip", "link", "set", iface, state], check=False, dry_run=dry_run).rc == 0:
            changed.append(iface)
    trace("network.set_interfaces", state=state, changed=changed)
    return changed


def reload_sysctl(dry_run: bool = False) -> None:
    run(["sysctl", "--system"], check=False, dry_run=dry_run)


def write_ipv6_dropin(path: str, dry_run: bool = False) -> str:
    console.step(f"Writing IPv6 disable config to {path}")
    if not dry_run:
        os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
        with open(path, "w", encoding="utf-8") as fh:
            fh.write("\n".join(IPV6_DROPIN_LINES) + "\n")
    reload_sysctl(dry_run)
    return path


def remove_ipv6_dropin(path: str, dry_run: bool = False) -> bool:
    if not os.path.isfile(path):
        return False
    console.info(f"Removing {path} and reloading sysctl")
    if not dry_run:
        os.remove(path)
    reload_sysctl(dry_run)
    return True


def yast_overrides_ipv6(path: str = YAST_SYSCTL) -> bool:
    try:
        with open(path, "r", encoding="utf-8") as fh:
            return "disable_ipv6 = 0" in fh.read()
    except OSError:
        return False
