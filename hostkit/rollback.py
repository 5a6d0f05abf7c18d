"""Undo a hardening run."""

from __future__ import annotations

from typing import Any, Dict

from . import console, distro, firewall, network, safety, services
from .confirm import Confirmer
from .model import RollbackConfig
from .pipeline import Pipeline, Skip


class Rollback:
    def __init__(self, cfg: RollbackConfig, confirmer: Confirmer):
        self.cfg = cfg
        self.confirmer = confirmer
        self.distro = distro.Distro()
        self.restored_from: str | None = None

    def detect(self) -> str:
        console.info("Detecting distribution and package manager...")
        self.distro = distro.detect()
        console.step(f"Detected: {self.distro.label}")
        return self.distro.label

    def restore_iptables(self):
        console.info("Restoring iptables from latest backup (if any)...")
        path = firewall.latest_backup(self.cfg.backup_dir)
        if not path:
            console.step(f"No iptables backup found in {self.cfg.backup_dir}. Skipping restore.")
            return Skip("no backup")
        console.step(f"Found backup: {path}")
        if firewall.restore_backup(path, dry_run=self.cfg.dry_run):
            self.restored_from = path
        return path

    def reenable_units(self):
        console.info("Re-enabling previously disabled services...")
        return services.enable_units(services.rollback_units(), dry_run=self.cfg.dry_run)

    def ipv6(self):
        if not network.remove_ipv6_dropin(self.cfg.sysctl_dropin, dry_run=self.cfg.dry_run):
            console.info(f"No {self.cfg.sysctl_dropin} found; skipping IPv6 restore step")
            return Skip("no drop-in")
        return self.cfg.sysctl_dropin

    def firewall_defaults(self):
        console.info("Restoring firewall defaults (ufw/firewalld/iptables fallback)...")
        # any backup on disk suppresses the permissive iptables fallback
        had_backup = firewall.latest_backup(self.cfg.backup_dir) is not None
        return firewall.restore_defaults(had_backup, dry_run=self.cfg.dry_run)

    def reinstall_packages(self):
        prompt = (
            "Do you want to reinstall common network packages removed earlier "
            "(cups, postfix, samba, avahi-daemon, vsftpd)? [y/N]: "
        )
        if not self.confirmer.yes_no(prompt):
            console.step("Skipping package reinstall")
            return Skip("declined")
        if not distro.reinstall_network_packages(self.distro.pkg_manager, dry_run=self.cfg.dry_run):
            console.step("No supported package manager detected; please reinstall packages manually.")
            return Skip("no package manager")
        return self.distro.pkg_manager

    def interfaces_up(self):
        if not self.confirmer.yes_no("Bring up non-loopback network interfaces now? [Y/n]: ", default=True):
            console.info("Leaving interfaces as-is")
            return Skip("declined")
        console.info("Bringing up non-loopback interfaces")
        return network.set_interfaces("up", dry_run=self.cfg.dry_run)

    def pipeline(self) -> Pipeline:
        return (
            Pipeline("rollback")
            .add("require_root", safety.require_root)
            .add("detect_distro", self.detect, best_effort=True)
            .add("restore_iptables", self.restore_iptables, best_effort=True)
            .add("reenable_units", self.reenable_units, best_effort=True)
            .add("restore_ipv6", self.ipv6, best_effort=True)
            .add("firewall_defaults", self.firewall_defaults, best_effort=True)
            .add("reinstall_packages", self.reinstall_packages, best_effort=True)
            .add("interfaces_up", self.interfaces_up, best_effort=True)
        )


def rollback(cfg: RollbackConfig, confirmer: Confirmer) -> Dict[str, Any]:
    rb = Rollback(cfg, confirmer)
    results = rb.pipeline().run()
    console.ok("Rollback complete. Manual checks recommended:")
    print("  - Verify services that must run are active (systemctl status <service>)")
    print("  - Verify networking and firewall rules (iptables -L -n, ufw status, firewall-cmd --list-all)")
    return {
        "distro": rb.distro.id,
        "pkg_manager": rb.distro.pkg_manager,
        "iptables_restored_from": rb.restored_from,
        "steps": [r.as_dict() for r in results],
    }
