"""Burst writer: copy an image to a block device in large chunks.

Full chunks are addressed in block units (``skip=i seek=i bs=B``); the tail
is addressed in bytes (``skip_bytes``/``seek_bytes``) starting at
``full_blocks * B``, so both modes meet at the same byte boundary. Between
chunks the writer can pause and periodically cycle unmount -> wait ->
remount to let USB controllers with small write caches catch up.
"""

from __future__ import annotations

import os
import shutil
import time
from dataclasses import dataclass
from typing import Any, Dict, List

from . import console, devices, safety
from .confirm import Confirmer
from .errors import FailureKind, PreconditionError
from .executil import run, trace
from .model import WriterConfig
from .pipeline import Pipeline

MIB = 1024 * 1024


@dataclass
class ChunkPlan:
    size: int
    block_size: int

    @property
    def full_blocks(self) -> int:
        return self.size // self.block_size

    @property
    def remainder(self) -> int:
        return self.size % self.block_size

    @property
    def remainder_offset(self) -> int:
        return self.full_blocks * self.block_size


def image_size(path: str) -> int:
    return os.path.getsize(path)


def plan_chunks(size: int, block_size: int) -> ChunkPlan:
    if block_size <= 0:
        raise PreconditionError(f"block size must be positive, got {block_size}", kind=FailureKind.INVALID_INPUT)
    if size < 0:
        raise PreconditionError(f"image size must not be negative, got {size}", kind=FailureKind.INVALID_INPUT)
    return ChunkPlan(size=size, block_size=block_size)


def human_bytes(n: int) -> str:
    value = float(n)
    for unit in ("B", "KiB", "MiB", "GiB", "TiB"):
        if value < 1024 or unit == "TiB":
            return f"{value:.0f}{unit}" if unit == "B" or value.is_integer() else f"{value:.1f}{unit}"
        value /= 1024
    return f"{n}B"


def full_chunk_cmd(source: str, device: str, block_size: int, index: int) -> List[str]:
    return [
        "dd",
        f"if={source}",
        f"of={device}",
        f"bs={block_size}",
        f"skip={index}",
        f"seek={index}",
        "count=1",
        "conv=fsync,noerror",
        "status=progress",
    ]


def remainder_cmd(source: str, device: str, plan: ChunkPlan, remainder_bs: str = "4M") -> List[str]:
    offset = plan.remainder_offset
    return [
        "dd",
        f"if={source}",
        f"of={device}",
        f"bs={remainder_bs}",
        "iflag=skip_bytes,count_bytes",
        "oflag=seek_bytes",
        f"skip={offset}",
        f"seek={offset}",
        f"count={plan.remainder}",
        "conv=fsync,noerror",
        "status=progress",
    ]


def resolve_pause(cfg: WriterConfig) -> float:
    """Explicit pause wins; otherwise pause only on USB transport."""

    if cfg.pause is not None:
        return max(0.0, float(cfg.pause))
    tran = devices.transport(cfg.device)
    return 1.0 if tran == "usb" else 0.0


def _timed(cmd: List[str], nbytes: int, dry_run: bool) -> float:
    started = time.monotonic()
    run(cmd, check=True, dry_run=dry_run, timeout=None, capture=False)
    elapsed = max(time.monotonic() - started, 0.000001)
    speed = nbytes / elapsed / MIB
    console.step(f"Completed: {nbytes / MIB:.2f} MiB in {elapsed:.2f}s ({speed:.2f} MiB/s)")
    return elapsed


def _sleep(seconds: float, dry_run: bool) -> None:
    if seconds > 0 and not dry_run:
        time.sleep(seconds)


def cycle_device(cfg: WriterConfig) -> None:
    """Unmount, wait, re-probe and remount the first partition (best-effort)."""

    devices.unmount_children(cfg.device, dry_run=cfg.dry_run)
    console.step(f"Sleeping for {cfg.cycle_sleep:g} seconds...")
    _sleep(cfg.cycle_sleep, cfg.dry_run)
    devices.partprobe(cfg.device, dry_run=cfg.dry_run)
    parts = devices.child_partitions(cfg.device)
    if not parts:
        return
    if shutil.which("udisksctl"):
        console.step(f"Attempting to mount {parts[0]} using udisksctl")
        res = run(["udisksctl", "mount", "-b", parts[0]], check=False, dry_run=cfg.dry_run)
        if res.rc != 0:
            console.warn("udisksctl mount failed (continuing)")
    else:
        console.step("udisksctl not found, skipping automatic mount")


class BurstWriter:
    def __init__(self, cfg: WriterConfig, confirmer: Confirmer):
        self.cfg = cfg
        self.confirmer = confirmer
        self.plan: ChunkPlan | None = None
        self.pause = 0.0
        self.since_cycle = 0
        self.cycles = 0
        self.writes: List[Dict[str, Any]] = []

    def check(self) -> None:
        safety.require_root()
        safety.require_file(self.cfg.source, "image")
        safety.require_block_device(self.cfg.device, "target")
        self.plan = plan_chunks(image_size(self.cfg.source), self.cfg.block_size)
        self.pause = resolve_pause(self.cfg)

    def announce(self) -> None:
        plan = self.plan
        console.info(f"Burst writing {self.cfg.source} -> {self.cfg.device}")
        console.step(
            f"Size: {plan.size} bytes ({plan.full_blocks}x{human_bytes(plan.block_size)} + {plan.remainder}B remainder)"
        )

    def confirm(self) -> None:
        self.confirmer.require_yes(
            f"This will erase all data on {self.cfg.device}. Continue? [y/N]: ",
            f"writing {self.cfg.device}",
        )

    def _after_write(self, nbytes: int, label: str) -> None:
        self.since_cycle += nbytes
        if self.cfg.cycle_bytes > 0 and self.since_cycle >= self.cfg.cycle_bytes:
            console.info(
                f"Cycle threshold reached {label}({self.since_cycle} bytes >= {self.cfg.cycle_bytes}). "
                "Performing unmount -> wait -> remount cycle..."
            )
            cycle_device(self.cfg)
            self.cycles += 1
            self.since_cycle = 0

    def write(self) -> Dict[str, Any]:
        plan = self.plan
        cfg = self.cfg
        started = time.monotonic()
        for i in range(plan.full_blocks):
            console.info(f"Writing chunk {i + 1} of {plan.full_blocks} (bs={human_bytes(plan.block_size)}) ...")
            cmd = full_chunk_cmd(cfg.source, cfg.device, plan.block_size, i)
            _timed(cmd, plan.block_size, cfg.dry_run)
            self.writes.append({"kind": "full", "index": i, "bytes": plan.block_size, "skip": i, "seek": i})
            self._after_write(plan.block_size, "")
            if self.pause > 0:
                console.step(f"Pausing {self.pause:g}s to let the USB controller flush its cache...")
                run(["sync"], check=False, dry_run=cfg.dry_run)
                _sleep(self.pause, cfg.dry_run)

        if plan.remainder > 0:
            console.info(f"Writing remainder ({plan.remainder} bytes)...")
            cmd = remainder_cmd(cfg.source, cfg.device, plan, cfg.remainder_bs)
            _timed(cmd, plan.remainder, cfg.dry_run)
            self.writes.append(
                {
                    "kind": "remainder",
                    "bytes": plan.remainder,
                    "skip_bytes": plan.remainder_offset,
                    "seek_bytes": plan.remainder_offset,
                }
            )
            self._after_write(plan.remainder, "after remainder ")

        run(["sync"], check=False, dry_run=cfg.dry_run, timeout=None)
        elapsed = time.monotonic() - started
        summary = {
            "source": cfg.source,
            "device": cfg.device,
            "size": plan.size,
            "block_size": plan.block_size,
            "full_blocks": plan.full_blocks,
            "remainder": plan.remainder,
            "remainder_offset": plan.remainder_offset,
            "bytes_written": sum(w["bytes"] for w in self.writes),
            "pause": self.pause,
            "cycles": self.cycles,
            "elapsed_sec": round(elapsed, 3),
            "writes": self.writes,
        }
        trace("writer.done", **{k: v for k, v in summary.items() if k != "writes"})
        print()
        console.ok(f"Done in {elapsed:.0f} seconds!")
        return summary

    def pipeline(self) -> Pipeline:
        return (
            Pipeline("burst-write")
            .add("preconditions", self.check)
            .add("announce", self.announce)
            .add("confirm", self.confirm)
            .add("unmount_partitions", lambda: devices.unmount_children(self.cfg.device, dry_run=self.cfg.dry_run))
            .add("write", self.write)
        )


def burst_write(cfg: WriterConfig, confirmer: Confirmer) -> Dict[str, Any]:
    results = BurstWriter(cfg, confirmer).pipeline().run()
    return results[-1].data
