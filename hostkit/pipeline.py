"""Ordered pipeline of fallible steps.

Every sub-command is a fixed sequence of steps. A step is either fatal (its
failure halts the run with :class:`PipelineAborted`) or best-effort (the
failure is recorded, echoed, and the run continues). Steps signal an
intentional no-op by returning :class:`Skip`.
"""

from __future__ import annotations

import os
import subprocess
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable

from . import console
from .errors import FailureKind, HostkitError, PipelineAborted, PreconditionError, StepFailed
from .executil import format_cmd, trace


@dataclass
class Skip:
    reason: str = ""


@dataclass
class Step:
    name: str
    action: Callable[[], Any]
    best_effort: bool = False


@dataclass
class StepResult:
    name: str
    ok: bool
    kind: FailureKind | None = None
    detail: str = ""
    skipped: bool = False
    data: Any = None

    def as_dict(self) -> dict:
        return {
            "name": self.name,
            "ok": self.ok,
            "kind": self.kind.value if self.kind else None,
            "detail": self.detail,
            "skipped": self.skipped,
        }


def as_hostkit_error(exc: BaseException) -> HostkitError:
    """Map the exceptions a shell-out can raise onto the failure taxonomy."""

    if isinstance(exc, HostkitError):
        return exc
    if isinstance(exc, subprocess.CalledProcessError):
        text = exc.stderr or exc.output or ""
        if isinstance(text, bytes):
            text = text.decode(errors="ignore")
        lines = text.strip().splitlines()
        detail = f": {lines[-1]}" if lines else ""
        cmd = exc.cmd if isinstance(exc.cmd, (list, tuple)) else [str(exc.cmd)]
        return StepFailed(f"{format_cmd(cmd)} exited with {exc.returncode}{detail}")
    if isinstance(exc, subprocess.TimeoutExpired):
        return StepFailed(f"{exc.cmd} timed out after {exc.timeout}s")
    if isinstance(exc, FileNotFoundError):
        name = str(exc.filename or "")
        if name and not os.path.isabs(name):
            return PreconditionError(f"required command not found: {name}", kind=FailureKind.MISSING_BINARY)
        return PreconditionError(str(exc), kind=FailureKind.MISSING_FILE)
    return StepFailed(str(exc))


@dataclass
class Pipeline:
    label: str
    steps: list[Step] = field(default_factory=list)

    def add(self, name: str, action: Callable[[], Any], *, best_effort: bool = False) -> "Pipeline":
        self.steps.append(Step(name, action, best_effort))
        return self

    def extend(self, steps: Iterable[Step]) -> "Pipeline":
        self.steps.extend(steps)
        return self

    def run(self) -> list[StepResult]:
        return run_steps(self.steps, label=self.label)


def run_steps(steps: Iterable[Step], *, label: str = "pipeline") -> list[StepResult]:
    results: list[StepResult] = []
    for step in steps:
        trace("pipeline.step.start", pipeline=label, step=step.name, best_effort=step.best_effort)
        try:
            data = step.action()
        except (HostkitError, subprocess.SubprocessError, OSError) as exc:
            err = as_hostkit_error(exc)
            result = StepResult(step.name, False, err.kind, str(err))
            results.append(result)
            trace("pipeline.step.failed", pipeline=label, step=step.name, kind=err.kind.value, detail=str(err))
            if not step.best_effort:
                raise PipelineAborted(step.name, err, results) from exc
            console.warn(f"{step.name}: {err} (continuing)")
            continue
        if isinstance(data, Skip):
            result = StepResult(step.name, True, detail=data.reason, skipped=True)
        else:
            result = StepResult(step.name, True, data=data)
        results.append(result)
        trace("pipeline.step.done", pipeline=label, step=step.name, skipped=result.skipped)
    return results
