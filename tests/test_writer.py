from types import SimpleNamespace

import pytest

from hostkit import devices, safety, writer
from hostkit.confirm import Confirmer
from hostkit.errors import FailureKind, PipelineAborted, PreconditionError
from hostkit.model import GIB, WriterConfig

SIZE = 2_500_000_000


def _arg(cmd, key):
    prefix = f"{key}="
    values = [part[len(prefix):] for part in cmd if part.startswith(prefix)]
    return values[0] if values else None


def test_reference_scenario_arithmetic():
    plan = writer.plan_chunks(SIZE, GIB)
    assert plan.full_blocks == 2
    assert plan.remainder == 352_516_352
    assert plan.remainder_offset == 2_147_483_648


def test_remainder_command_uses_byte_offsets_for_skip_and_seek():
    plan = writer.plan_chunks(SIZE, GIB)
    cmd = writer.remainder_cmd("/isos/big.iso", "/dev/sdz", plan)
    assert _arg(cmd, "skip") == "2147483648"
    assert _arg(cmd, "seek") == "2147483648"
    assert _arg(cmd, "count") == "352516352"
    assert _arg(cmd, "iflag") == "skip_bytes,count_bytes"
    assert _arg(cmd, "oflag") == "seek_bytes"


def test_full_chunk_command_uses_block_units():
    cmd = writer.full_chunk_cmd("/isos/big.iso", "/dev/sdz", GIB, 1)
    assert _arg(cmd, "bs") == str(GIB)
    assert _arg(cmd, "skip") == "1"
    assert _arg(cmd, "seek") == "1"
    assert _arg(cmd, "count") == "1"
    assert "conv=fsync,noerror" in cmd


@pytest.mark.parametrize(
    "size, block",
    [(0, GIB), (1, GIB), (GIB - 1, GIB), (GIB, GIB), (3 * GIB, GIB), (10_000_019, 4096), (7, 3), (SIZE, 512 * 1024 * 1024)],
)
def test_chunks_cover_the_image_exactly(size, block):
    plan = writer.plan_chunks(size, block)
    assert plan.full_blocks * block + plan.remainder == size
    assert 0 <= plan.remainder < block
    assert plan.remainder_offset == size - plan.remainder


def test_non_positive_block_size_is_rejected():
    with pytest.raises(PreconditionError) as excinfo:
        writer.plan_chunks(100, 0)
    assert excinfo.value.kind == FailureKind.INVALID_INPUT


class Host:
    def __init__(self, monkeypatch, transport="usb", size=SIZE):
        self.calls = []
        self.sleeps = []
        self.events = []
        monkeypatch.setattr(writer, "run", self._run)
        monkeypatch.setattr(writer.time, "sleep", self.sleeps.append)
        monkeypatch.setattr(writer, "image_size", lambda path: size)
        monkeypatch.setattr(writer.shutil, "which", lambda name: "/usr/bin/udisksctl" if name == "udisksctl" else None)
        monkeypatch.setattr(safety, "require_root", lambda: None)
        monkeypatch.setattr(safety, "require_file", lambda path, what="file": None)
        monkeypatch.setattr(safety, "require_block_device", lambda path, what="device": None)
        monkeypatch.setattr(devices, "transport", lambda dev: transport)
        monkeypatch.setattr(devices, "unmount_children", lambda dev, dry_run=False: self.events.append("unmount") or [])
        monkeypatch.setattr(devices, "partprobe", lambda dev, dry_run=False: self.events.append("partprobe"))
        monkeypatch.setattr(devices, "child_partitions", lambda dev: ["/dev/sdz1"])

    def _run(self, cmd, **_: object):
        self.calls.append(list(cmd))
        return SimpleNamespace(rc=0, out="", err="")

    @property
    def dd_calls(self):
        return [c for c in self.calls if c[0] == "dd"]


def test_burst_write_reference_run(monkeypatch):
    host = Host(monkeypatch)
    cfg = WriterConfig(source="/isos/big.iso", device="/dev/sdz")
    summary = writer.burst_write(cfg, Confirmer(lambda prompt: "y"))

    dds = host.dd_calls
    assert len(dds) == 3
    assert [(_arg(c, "skip"), _arg(c, "seek")) for c in dds[:2]] == [("0", "0"), ("1", "1")]
    assert (_arg(dds[2], "skip"), _arg(dds[2], "seek"), _arg(dds[2], "count")) == (
        "2147483648",
        "2147483648",
        "352516352",
    )
    assert summary["bytes_written"] == SIZE
    assert summary["pause"] == 1.0
    assert summary["cycles"] == 1
    # pause after chunk 1, cycle wait then pause after chunk 2
    assert host.sleeps == [1.0, 10.0, 1.0]
    assert ["udisksctl", "mount", "-b", "/dev/sdz1"] in host.calls
    assert host.events == ["unmount", "unmount", "partprobe"]


def test_non_usb_target_defaults_to_no_pause(monkeypatch):
    host = Host(monkeypatch, transport="nvme")
    cfg = WriterConfig(source="/isos/big.iso", device="/dev/nvme1n1", cycle_bytes=0)
    summary = writer.burst_write(cfg, Confirmer(lambda prompt: "Y"))
    assert summary["pause"] == 0.0
    assert summary["cycles"] == 0
    assert host.sleeps == []
    assert ["sync"] in host.calls


def test_explicit_pause_overrides_transport(monkeypatch):
    Host(monkeypatch, transport="nvme")
    assert writer.resolve_pause(WriterConfig(source="a", device="b", pause=2.5)) == 2.5
    assert writer.resolve_pause(WriterConfig(source="a", device="b")) == 0.0


def test_exact_multiple_writes_no_remainder(monkeypatch):
    host = Host(monkeypatch, size=2 * GIB)
    summary = writer.burst_write(WriterConfig(source="a.iso", device="/dev/sdz", pause=0), Confirmer(lambda p: "y"))
    assert len(host.dd_calls) == 2
    assert summary["remainder"] == 0
    assert all("iflag=skip_bytes,count_bytes" not in c for c in host.dd_calls)


def test_declined_write_exits_zero_and_writes_nothing(monkeypatch):
    host = Host(monkeypatch)
    with pytest.raises(PipelineAborted) as excinfo:
        writer.burst_write(WriterConfig(source="a.iso", device="/dev/sdz"), Confirmer(lambda prompt: "yes"))
    assert excinfo.value.exit_code == 0
    assert excinfo.value.kind == FailureKind.DECLINED
    assert host.dd_calls == []
    assert host.events == []


def test_dry_run_skips_sleeps(monkeypatch):
    host = Host(monkeypatch)
    cfg = WriterConfig(source="a.iso", device="/dev/sdz", dry_run=True)
    writer.burst_write(cfg, Confirmer(lambda prompt: "y"))
    assert host.sleeps == []
    assert len(host.dd_calls) == 3
