"""Failure taxonomy shared by every sub-command."""

from __future__ import annotations

from enum import Enum


class FailureKind(str, Enum):
    NOT_ROOT = "NOT_ROOT"
    MISSING_BINARY = "MISSING_BINARY"
    MISSING_DEVICE = "MISSING_DEVICE"
    WRONG_DEVICE_TYPE = "WRONG_DEVICE_TYPE"
    DEVICE_MOUNTED = "DEVICE_MOUNTED"
    MISSING_FILE = "MISSING_FILE"
    DECLINED = "DECLINED"
    COMMAND_FAILED = "COMMAND_FAILED"
    INVALID_INPUT = "INVALID_INPUT"


class HostkitError(RuntimeError):
    """Base class; carries a failure kind and the process exit code."""

    kind: FailureKind = FailureKind.COMMAND_FAILED
    exit_code: int = 1

    def __init__(self, message: str, *, kind: FailureKind | None = None, exit_code: int | None = None) -> None:
        super().__init__(message)
        if kind is not None:
            self.kind = kind
        if exit_code is not None:
            self.exit_code = exit_code


class PreconditionError(HostkitError):
    """Raised before any mutation when the host is not in the expected state."""

    kind = FailureKind.MISSING_FILE


class ConfirmationDeclined(HostkitError):
    kind = FailureKind.DECLINED


class StepFailed(HostkitError):
    kind = FailureKind.COMMAND_FAILED


class PipelineAborted(HostkitError):
    """A non best-effort step failed; ``results`` holds everything run so far."""

    def __init__(self, step: str, cause: HostkitError, results: list) -> None:
        super().__init__(f"{step}: {cause}", kind=cause.kind, exit_code=cause.exit_code)
        self.step = step
        self.cause = cause
        self.results = results
