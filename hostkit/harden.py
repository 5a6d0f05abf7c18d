"""Isolate the host from remote access.

Every step is best-effort except the root check: a service that cannot be
stopped or a firewall tool that misbehaves is reported and the run moves on.
Optional steps ask a y/N question first.
"""

from __future__ import annotations

import os
from typing import Any, Dict

from . import console, distro, firewall, network, safety, services
from .confirm import Confirmer
from .executil import run
from .model import HardenConfig
from .pipeline import Pipeline, Skip


def resolve_target_user(cfg: HardenConfig, confirmer: Confirmer) -> str | None:
    if cfg.target_user:
        return cfg.target_user
    user = os.environ.get("SUDO_USER")
    if user:
        return user
    res = run(["logname"], check=False)
    if res.rc == 0 and (res.out or "").strip():
        return res.out.strip()
    answer = confirmer.ask("Could not detect a local user. Enter username to allow: ")
    return (answer or "").strip() or None


class Hardener:
    def __init__(self, cfg: HardenConfig, confirmer: Confirmer):
        self.cfg = cfg
        self.confirmer = confirmer
        self.distro = distro.Distro()
        self.backup = firewall.IptablesBackup(cfg.backup_dir, dry_run=cfg.dry_run)

    @property
    def pkg(self) -> str | None:
        return self.distro.pkg_manager

    def detect(self) -> str:
        console.info("Detecting distribution and package manager...")
        self.distro = distro.detect()
        console.step(f"Detected: {self.distro.label}")
        return self.distro.label

    def remote_access(self):
        console.info("Disabling remote access services...")
        return services.disable_units(services.remote_access_units(self.pkg), dry_run=self.cfg.dry_run)

    def lingering(self):
        console.info("Disabling lingering socket and path units...")
        return services.disable_installed(services.LINGERING_UNITS, dry_run=self.cfg.dry_run)

    def inbound_firewall(self) -> str:
        console.info("Configuring firewall to block incoming connections...")
        return firewall.deny_inbound(firewall.detect_backend(), self.backup, dry_run=self.cfg.dry_run)

    def ipv6(self):
        console.info("(Optional) Disabling IPv6...")
        if not self.confirmer.yes_no("Do you want to disable IPv6 system-wide? [y/N]: "):
            console.step("Skipping IPv6 disable")
            return Skip("declined")
        network.write_ipv6_dropin(self.cfg.sysctl_dropin, dry_run=self.cfg.dry_run)
        if network.yast_overrides_ipv6():
            console.warn("YaST config may override IPv6 settings: /etc/sysctl.d/70-yast.conf")
            console.step("Consider renaming it: mv /etc/sysctl.d/70-yast.conf /etc/sysctl.d/70-yast.conf.bak")
        return self.cfg.sysctl_dropin

    def cloud_and_updates(self):
        console.info("Disabling cloud-init, snapd (if present)")
        console.step("NetworkManager is preserved for network management")
        report = services.disable_units(services.CLOUD_UNITS, dry_run=self.cfg.dry_run)
        report["updates"] = services.disable_update_units(self.pkg, dry_run=self.cfg.dry_run)
        return report

    def remove_packages(self):
        if not self.confirmer.yes_no(
            "Do you want to remove common network-exposing packages (cups, postfix, samba, avahi)? [y/N]: "
        ):
            console.step("Skipping package removal")
            return Skip("declined")
        if not distro.remove_network_packages(self.pkg, dry_run=self.cfg.dry_run):
            console.step("No known package manager detected; please remove packages manually.")
            return Skip("no package manager")
        return self.pkg

    def interfaces_down(self):
        prompt = (
            "Do you want to bring down all non-loopback network interfaces now? "
            "This will disconnect you immediately if over SSH. [y/N]: "
        )
        if not self.confirmer.yes_no(prompt):
            console.step("Leaving interfaces up")
            return Skip("declined")
        return network.set_interfaces("down", dry_run=self.cfg.dry_run)

    def final_mask(self):
        console.info("Final cleanup: mask any remaining sockets and prevent automatic restarts")
        return services.mask_installed(services.FINAL_MASK_UNITS, dry_run=self.cfg.dry_run)

    def restrict_outbound(self):
        prompt = (
            "Restrict outbound network so only one user's web and DNS traffic is allowed? "
            "This will DROP other outbound traffic and may disconnect remote sessions. [y/N]: "
        )
        if not self.confirmer.yes_no(prompt):
            return Skip("declined")
        user = resolve_target_user(self.cfg, self.confirmer)
        if not user:
            return Skip("no target user")
        console.step(f"Restricting outbound to processes owned by user: {user}")
        return firewall.restrict_outbound_to_user(user, self.backup, dry_run=self.cfg.dry_run)

    def pipeline(self) -> Pipeline:
        return (
            Pipeline("harden")
            .add("require_root", safety.require_root)
            .add("detect_distro", self.detect, best_effort=True)
            .add("disable_remote_access", self.remote_access, best_effort=True)
            .add("disable_lingering_units", self.lingering, best_effort=True)
            .add("deny_inbound", self.inbound_firewall, best_effort=True)
            .add("disable_ipv6", self.ipv6, best_effort=True)
            .add("disable_cloud_and_updates", self.cloud_and_updates, best_effort=True)
            .add("remove_packages", self.remove_packages, best_effort=True)
            .add("interfaces_down", self.interfaces_down, best_effort=True)
            .add("final_mask", self.final_mask, best_effort=True)
            .add("restrict_outbound", self.restrict_outbound, best_effort=True)
        )


def harden(cfg: HardenConfig, confirmer: Confirmer) -> Dict[str, Any]:
    hardener = Hardener(cfg, confirmer)
    results = hardener.pipeline().run()
    console.ok("Isolation complete. System should now be unreachable from remote hosts (unless interfaces were kept up).")
    if hardener.pkg == distro.ZYPPER:
        console.step("[openSUSE] YaST may re-enable some services. Use 'systemctl mask' to prevent this.")
    return {
        "distro": hardener.distro.id,
        "pkg_manager": hardener.pkg,
        "iptables_backup": hardener.backup.path,
        "steps": [r.as_dict() for r in results],
    }
