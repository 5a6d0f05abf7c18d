import json
from types import SimpleNamespace

from hostkit import devices


class RunRecorder:
    def __init__(self, outputs=None):
        self.outputs = dict(outputs or {})
        self.calls = []

    def __call__(self, cmd, **_: object):
        self.calls.append(list(cmd))
        out = self.outputs.get(tuple(cmd), "")
        return SimpleNamespace(rc=0, out=out, err="")


def test_partition_path_handles_digit_suffixed_names():
    assert devices.partition_path("/dev/sda", 1) == "/dev/sda1"
    assert devices.partition_path("/dev/nvme0n1", 2) == "/dev/nvme0n1p2"
    assert devices.partition_path("/dev/mmcblk0", 1) == "/dev/mmcblk0p1"


def test_usb_disks_filters_on_transport(monkeypatch):
    payload = {
        "blockdevices": [
            {"name": "sda", "path": "/dev/sda", "tran": "sata", "size": "1T", "model": "SSD", "type": "disk"},
            {"name": "sdb", "path": "/dev/sdb", "tran": "usb", "size": "29.3G", "model": "Flash Disk  ", "type": "disk"},
            {"name": "sdc", "tran": "usb", "size": "7.5G", "model": None, "type": "disk"},
        ]
    }
    recorder = RunRecorder({("lsblk", "-J", "-S", "-o", "NAME,PATH,TRAN,SIZE,MODEL,TYPE"): json.dumps(payload)})
    monkeypatch.setattr(devices, "run", recorder)
    disks = devices.usb_disks()
    assert [d.path for d in disks] == ["/dev/sdb", "/dev/sdc"]
    assert disks[0].model == "Flash Disk"
    assert disks[1].model == ""


def test_child_partitions_and_unmount(monkeypatch):
    payload = {
        "blockdevices": [
            {
                "name": "sdz",
                "path": "/dev/sdz",
                "type": "disk",
                "children": [
                    {"name": "sdz2", "path": "/dev/sdz2", "type": "part"},
                    {"name": "sdz1", "path": "/dev/sdz1", "type": "part"},
                ],
            }
        ]
    }
    recorder = RunRecorder({("lsblk", "-J", "-o", "NAME,PATH,TYPE", "/dev/sdz"): json.dumps(payload)})
    monkeypatch.setattr(devices, "run", recorder)
    monkeypatch.setattr(devices, "mountpoints_of", lambda dev: ["/media/x"] if dev == "/dev/sdz2" else [])

    assert devices.child_partitions("/dev/sdz") == ["/dev/sdz1", "/dev/sdz2"]
    assert devices.unmount_children("/dev/sdz") == ["/dev/sdz2"]
    assert ["umount", "/dev/sdz2"] in recorder.calls
    assert ["umount", "/dev/sdz1"] not in recorder.calls


def test_lsblk_garbage_yields_no_devices(monkeypatch):
    monkeypatch.setattr(devices, "run", lambda cmd, **kw: SimpleNamespace(rc=0, out="not json", err=""))
    assert devices.child_partitions("/dev/sdz") == []
    monkeypatch.setattr(devices, "run", lambda cmd, **kw: SimpleNamespace(rc=32, out="", err="lsblk: failed"))
    assert devices.usb_disks() == []


def test_transport_and_uuid(monkeypatch):
    recorder = RunRecorder(
        {
            ("lsblk", "-no", "TRAN", "-d", "/dev/sdz"): "usb\n",
            ("blkid", "-s", "UUID", "-o", "value", "/dev/nvme0n1p2"): "0f1e2d3c-aaaa-bbbb-cccc-1234567890ab\n",
        }
    )
    monkeypatch.setattr(devices, "run", recorder)
    assert devices.transport("/dev/sdz") == "usb"
    assert devices.uuid_of("/dev/nvme0n1p2") == "0f1e2d3c-aaaa-bbbb-cccc-1234567890ab"
