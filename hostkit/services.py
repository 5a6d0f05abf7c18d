"""systemd unit helpers and the unit lists used by harden, rollback and prune."""

from __future__ import annotations

from typing import Any, Dict, Iterable, List

from . import console, safety
from .distro import APT, ZYPPER
from .errors import StepFailed
from .executil import run, trace
from .pipeline import Pipeline

UNIT_SUFFIXES = ("", ".service", ".socket", ".path")

REMOTE_ACCESS_COMMON = [
    "ssh",
    "sshd",
    "avahi-daemon",
    "cups",
    "rpcbind",
    "nfs-server",
    "nfs-kernel-server",
    "smbd",
    "nmbd",
    "samba",
    "vsftpd",
    "telnet",
    "telnet.socket",
    "postfix",
]

REMOTE_ACCESS_EXTRA = {
    APT: ["exim4", "openssh-server"],
    # wickedd and NetworkManager stay untouched so the host keeps networking
    ZYPPER: ["sshd", "SuSEfirewall2", "SuSEfirewall2_init", "display-manager"],
}

LINGERING_UNITS = ["avahi-daemon.socket", "cups.socket", "cups.path"]

CLOUD_UNITS = ["cloud-init", "cloud-init-local", "cloud-config", "cloud-final", "snapd"]

UPDATE_UNITS = {
    ZYPPER: ["packagekitd", "zypp-refresh.service", "zypp-refresh.timer"],
}

FINAL_MASK_UNITS = ["cups.socket", "cups.path", "avahi-daemon.socket", "postfix.service"]

# restored on rollback even though hardening never disables it
ROLLBACK_EXTRA = ["NetworkManager"]

PRUNE_GROUPS = {
    "network": ["ModemManager.service", "bluetooth.service", "networkd-dispatcher.service"],
    "cloud": [
        "unattended-upgrades.service",
        "cloud-init-main.service",
        "cloud-init-network.service",
        "snapd.service",
        "snapd.socket",
        "snapd.apparmor.service",
        "snapd.autoimport.service",
        "snapd.core-fixup.service",
        "snapd.recovery-chooser-trigger.service",
        "snapd.seeded.service",
        "snapd.system-shutdown.service",
    ],
    "hardware": [
        "thermald.service",
        "power-profiles-daemon.service",
        "switcheroo-control.service",
        "fwupd.service",
    ],
    "printer": [
        "legacy-printer-app.service",
        "colord.service",
        "udisks2.service",
        "cups.service",
        "cups-browsed.service",
    ],
    "misc": [
        "accounts-daemon.service",
        "rtkit-daemon.service",
        "upower.service",
        "anacron.service",
        "apport.service",
    ],
}

RESOLVER_UNIT = "systemd-resolved.service"


def remote_access_units(pkg_manager: str | None) -> List[str]:
    return REMOTE_ACCESS_COMMON + REMOTE_ACCESS_EXTRA.get(pkg_manager or "", [])


def update_units(pkg_manager: str | None) -> List[str]:
    return list(UPDATE_UNITS.get(pkg_manager or "", []))


def hardening_units(pkg_manager: str | None) -> List[str]:
    """Every unit name a hardening run on ``pkg_manager`` may disable or mask."""

    units = remote_access_units(pkg_manager) + LINGERING_UNITS + CLOUD_UNITS
    units += update_units(pkg_manager) + FINAL_MASK_UNITS
    return _dedupe(units)


def rollback_units() -> List[str]:
    """Union of the hardening lists over every package manager, plus extras."""

    units: List[str] = []
    for pkg in (None, APT, ZYPPER):
        units += hardening_units(pkg)
    return _dedupe(units + ROLLBACK_EXTRA)


def _dedupe(items: Iterable[str]) -> List[str]:
    seen = set()
    out = []
    for item in items:
        if item not in seen:
            seen.add(item)
            out.append(item)
    return out


def unit_variants(name: str) -> List[str]:
    return _dedupe(f"{name}{suffix}" for suffix in UNIT_SUFFIXES)


def list_unit_files() -> set[str]:
    res = run(["systemctl", "list-unit-files", "--no-legend"], check=False)
    names = set()
    for line in (res.out or "").splitlines():
        parts = line.split()
        if parts:
            names.add(parts[0])
    return names


def unit_status_known(unit: str) -> bool:
    return run(["systemctl", "status", unit], check=False).rc == 0


def resolve_unit(name: str, known: set[str] | None = None) -> str | None:
    """Return the first installed variant of ``name``, or None."""

    known = list_unit_files() if known is None else known
    for candidate in unit_variants(name):
        if candidate in known:
            return candidate
    if unit_status_known(name):
        return name
    return None


def disable_unit(unit: str, dry_run: bool = False) -> None:
    console.step(f"Disabling and stopping {unit}")
    run(["systemctl", "disable", "--now", unit], check=False, dry_run=dry_run)
    run(["systemctl", "mask", unit], check=False, dry_run=dry_run)


def enable_unit(unit: str, dry_run: bool = False) -> None:
    console.step(f"Unmasking and enabling {unit}")
    run(["systemctl", "unmask", unit], check=False, dry_run=dry_run)
    run(["systemctl", "enable", "--now", unit], check=False, dry_run=dry_run)


def mask_unit(unit: str, dry_run: bool = False) -> None:
    run(["systemctl", "mask", unit], check=False, dry_run=dry_run)


def disable_units(names: Iterable[str], dry_run: bool = False) -> Dict[str, Any]:
    """Disable and mask every name that resolves to an installed unit.

    Names with no installed variant are reported as skipped, not failed.
    """

    known = list_unit_files()
    disabled, skipped = [], []
    for name in names:
        unit = resolve_unit(name, known)
        if unit is None:
            console.step(f"{name} not found, skipping")
            skipped.append(name)
            continue
        disable_unit(unit, dry_run=dry_run)
        disabled.append(unit)
    trace("services.disable_units", disabled=disabled, skipped=skipped)
    return {"disabled": disabled, "skipped": skipped}


def disable_installed(units: Iterable[str], dry_run: bool = False) -> List[str]:
    """Disable and mask exact unit names that appear in list-unit-files."""

    known = list_unit_files()
    disabled = []
    for unit in units:
        if unit in known:
            disable_unit(unit, dry_run=dry_run)
            disabled.append(unit)
    return disabled


def mask_installed(units: Iterable[str], dry_run: bool = False) -> List[str]:
    known = list_unit_files()
    masked = []
    for unit in units:
        if unit in known:
            mask_unit(unit, dry_run=dry_run)
            masked.append(unit)
    return masked


def disable_update_units(pkg_manager: str | None, dry_run: bool = False) -> List[str]:
    units = update_units(pkg_manager)
    for unit in units:
        disable_unit(unit, dry_run=dry_run)
    return units


def enable_units(names: Iterable[str], dry_run: bool = False) -> Dict[str, Any]:
    """Unmask and enable every installed variant of each name."""

    known = list_unit_files()
    enabled = []
    for name in names:
        for unit in unit_variants(name):
            if unit in known or unit_status_known(unit):
                enable_unit(unit, dry_run=dry_run)
                enabled.append(unit)
    trace("services.enable_units", enabled=enabled)
    return {"enabled": enabled}


def is_enabled(unit: str) -> bool:
    return run(["systemctl", "is-enabled", "--quiet", unit], check=False).rc == 0


def is_active(unit: str) -> bool:
    return run(["systemctl", "is-active", "--quiet", unit], check=False).rc == 0


def prune_group(units: Iterable[str], dry_run: bool = False) -> Dict[str, List[str]]:
    disabled, untouched, failed = [], [], []
    for unit in units:
        if not (is_enabled(unit) or is_active(unit)):
            untouched.append(unit)
            continue
        console.step(f"Disabling {unit}")
        res = run(["systemctl", "disable", "--now", unit], check=False, dry_run=dry_run)
        if res.rc == 0:
            disabled.append(unit)
        else:
            console.step(f"{unit} already disabled or not found")
            failed.append(unit)
    return {"disabled": disabled, "untouched": untouched, "failed": failed}


def ensure_resolver(dry_run: bool = False) -> bool:
    """Make sure the DNS resolver is running; returns True when it was started."""

    if is_active(RESOLVER_UNIT):
        console.step(f"{RESOLVER_UNIT} is already active")
        return False
    console.info(f"Enabling {RESOLVER_UNIT} (required for DNS)...")
    res = run(["systemctl", "enable", "--now", RESOLVER_UNIT], check=False, dry_run=dry_run)
    if res.rc != 0:
        raise StepFailed(f"failed to enable {RESOLVER_UNIT}: {(res.err or '').strip()}")
    return True


def prune_services(dry_run: bool = False, groups: Dict[str, List[str]] | None = None) -> Dict[str, Any]:
    groups = PRUNE_GROUPS if groups is None else groups
    report: Dict[str, Any] = {}

    def group_step(label: str, units: List[str]):
        def action():
            console.info(f"Disabling {label} services...")
            report[label] = prune_group(units, dry_run=dry_run)
            return report[label]

        return action

    pipe = Pipeline("prune-services").add("require_root", safety.require_root)
    for label, units in groups.items():
        pipe.add(f"prune_{label}", group_step(label, units), best_effort=True)
    pipe.add("ensure_resolver", lambda: ensure_resolver(dry_run=dry_run))
    results = pipe.run()
    console.ok("Service pruning complete.")
    return {"groups": report, "resolver_started": results[-1].data, "steps": [r.as_dict() for r in results]}
