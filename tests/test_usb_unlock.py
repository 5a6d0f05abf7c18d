from types import SimpleNamespace

import pytest

from hostkit import luks, safety, usb_unlock
from hostkit.confirm import Confirmer
from hostkit.errors import FailureKind, PipelineAborted
from hostkit.model import SnippetOptions, UsbUnlockConfig

UUID = "0f1e2d3c-aaaa-bbbb-cccc-1234567890ab"


class RunRecorder:
    def __init__(self):
        self.calls = []

    def __call__(self, cmd, **_: object):
        self.calls.append(list(cmd))
        return SimpleNamespace(rc=0, out="", err="")

    def ran(self, name):
        return [c for c in self.calls if c and c[0] == name]


@pytest.fixture
def host(tmp_path, monkeypatch):
    recorder = RunRecorder()
    monkeypatch.setattr(usb_unlock, "run", recorder)
    monkeypatch.setattr(usb_unlock, "USB_MOUNT_ROOT", str(tmp_path / "mnt"))
    monkeypatch.setattr(usb_unlock.distro, "is_ubuntu", lambda *a, **k: False)
    monkeypatch.setattr(usb_unlock, "uuid_of", lambda dev: UUID)
    monkeypatch.setattr(safety, "require_root", lambda: None)
    monkeypatch.setattr(safety, "require_commands", lambda cmds: None)
    monkeypatch.setattr(safety, "require_block_device", lambda path, what="device": None)
    monkeypatch.setattr(safety, "require_not_mounted", lambda dev: None)
    monkeypatch.setattr(luks, "is_luks", lambda dev: True)
    enrolled = []
    monkeypatch.setattr(
        luks,
        "enroll_keyfile",
        lambda dev, key, pf=None: enrolled.append((dev, key)) or {"already_valid": False, "slot_added": True, "slot": 1},
    )
    cfg = UsbUnlockConfig(
        luks_device="/dev/nvme0n1p2",
        usb_device="/dev/sdz1",
        keyfile_dir=str(tmp_path / "root"),
        grub_script=str(tmp_path / "grub.d" / "05_usb_unlock"),
        grub_default=str(tmp_path / "default-grub"),
        snippet=SnippetOptions(debug=False),
    )
    return SimpleNamespace(cfg=cfg, run=recorder, enrolled=enrolled, tmp=tmp_path)


def test_full_setup_writes_keyfile_usb_and_snippet(host, capsys):
    summary = usb_unlock.setup_usb_unlock(host.cfg, Confirmer(lambda prompt: "YES"))

    assert summary["luks_uuid"] == UUID
    assert summary["keyfile"]["created"] is True
    assert summary["cryptodisk_written"] is True
    assert host.enrolled == [("/dev/nvme0n1p2", host.cfg.keyfile_path)]
    assert host.run.ran("mkfs.vfat") == [["mkfs.vfat", "-n", "GRUBKEY", "/dev/sdz1"]]
    assert host.run.ran("umount")

    copied = list((host.tmp / "mnt").glob("usbkey-*/grub-luks.key"))
    assert copied and copied[0].read_bytes() == (host.tmp / "root" / "grub-luks.key").read_bytes()

    snippet = (host.tmp / "grub.d" / "05_usb_unlock").read_text(encoding="utf-8")
    assert f"cryptomount -u {UUID} -k (${{usbdev}})/grub-luks.key" in snippet
    assert "GRUB_ENABLE_CRYPTODISK=y" in (host.tmp / "default-grub").read_text(encoding="utf-8")
    assert "grub-mkconfig -o /boot/grub/grub.cfg" in capsys.readouterr().out


def test_lowercase_yes_aborts_before_any_mutation(host):
    with pytest.raises(PipelineAborted) as excinfo:
        usb_unlock.setup_usb_unlock(host.cfg, Confirmer(lambda prompt: "yes"))
    assert excinfo.value.step == "confirm_format"
    assert excinfo.value.kind == FailureKind.DECLINED
    assert excinfo.value.exit_code == 1
    assert host.run.calls == []
    assert not (host.tmp / "root" / "grub-luks.key").exists()
    assert not (host.tmp / "grub.d").exists()


def test_non_luks_device_is_rejected(host, monkeypatch):
    monkeypatch.setattr(luks, "is_luks", lambda dev: False)
    with pytest.raises(PipelineAborted) as excinfo:
        usb_unlock.setup_usb_unlock(host.cfg, Confirmer(lambda prompt: "YES"))
    assert excinfo.value.kind == FailureKind.WRONG_DEVICE_TYPE
    assert excinfo.value.step == "check_luks_device"


def test_unsafe_label_rejected_before_device_checks(host):
    host.cfg.usb_label = "MY KEY"
    with pytest.raises(PipelineAborted) as excinfo:
        usb_unlock.setup_usb_unlock(host.cfg, Confirmer(lambda prompt: "YES"))
    assert excinfo.value.step == "validate_names"
    assert excinfo.value.kind == FailureKind.INVALID_INPUT


def test_missing_packages_installed_on_ubuntu(monkeypatch):
    installed = []
    monkeypatch.setattr(usb_unlock.distro, "is_ubuntu", lambda *a, **k: True)
    monkeypatch.setattr(usb_unlock.distro, "dpkg_installed", lambda pkg: pkg != "dosfstools")
    monkeypatch.setattr(usb_unlock.distro, "apt_install", lambda pkgs, dry_run=False: installed.extend(pkgs))
    assert usb_unlock.install_missing_packages() == ["dosfstools"]
    assert installed == ["dosfstools"]
