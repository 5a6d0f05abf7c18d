"""Operator-facing console text."""

from __future__ import annotations

import sys

from .executil import log

GREEN = "\033[0;32m"
YELLOW = "\033[0;33m"
RED = "\033[0;31m"
CLR = "\033[0m"


def _colour(code: str, text: str, stream) -> str:
    if hasattr(stream, "isatty") and stream.isatty():
        return f"{code}{text}{CLR}"
    return text


def info(msg: str) -> None:
    print(f"[*] {msg}", flush=True)
    log("INFO", "console.info", msg=msg)


def step(msg: str) -> None:
    print(f"  -> {msg}", flush=True)
    log("INFO", "console.step", msg=msg)


def ok(msg: str) -> None:
    print(f"{_colour(GREEN, '[OK]', sys.stdout)} {msg}", flush=True)
    log("INFO", "console.ok", msg=msg)


def warn(msg: str) -> None:
    print(f"{_colour(YELLOW, '[WARN]', sys.stderr)} {msg}", file=sys.stderr, flush=True)
    log("WARN", "console.warn", msg=msg)


def fail(msg: str) -> None:
    print(f"{_colour(RED, '[ERROR]', sys.stderr)} {msg}", file=sys.stderr, flush=True)
    log("ERROR", "console.fail", msg=msg)
