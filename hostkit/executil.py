from __future__ import annotations

"""Subprocess wrapper, dry-run hook and JSONL trace log."""

import datetime as _dt
import json
import os
import shlex
import subprocess
import time
from typing import Sequence

from .paths import hostkit_logs_dir


LOG_DIRS: list[str] | None = None
LOG_PATH: str | None = None
LOG_NAME = "hostkit.jsonl"


def _log_dirs() -> list[str]:
    if LOG_DIRS:
        return list(LOG_DIRS)
    return [
        hostkit_logs_dir(),
        "/var/log/hostkit",
        "/tmp/hostkit-logs",
    ]


def _ensure_logger() -> str | None:
    global LOG_PATH
    if LOG_PATH:
        return LOG_PATH
    for d in _log_dirs():
        d_expanded = os.path.expanduser(d)
        try:
            os.makedirs(d_expanded, exist_ok=True)
        except OSError:
            continue
        if not os.access(d_expanded, os.W_OK):
            continue
        LOG_PATH = os.path.join(d_expanded, LOG_NAME)
        return LOG_PATH
    LOG_PATH = None
    return None


def resolve_log_path() -> str | None:
    """Return the active log path, creating directories when possible."""

    return _ensure_logger()


class Result:
    def __init__(self, rc: int, out: str, err: str, duration: float):
        self.rc, self.out, self.err, self.duration = rc, out, err, duration

    @property
    def ok(self) -> bool:
        return self.rc == 0


LEVELS = {"TRACE": 10, "INFO": 20, "WARN": 30, "ERROR": 40, "NONE": 100}
LOG_LEVEL = os.environ.get("HOSTKIT_LOG_LEVEL", "TRACE").upper()


def append_jsonl(path: str, obj: dict):
    try:
        os.makedirs(os.path.dirname(path), exist_ok=True)
        with open(path, "a", encoding="utf-8") as f:
            f.write(json.dumps(obj, ensure_ascii=False, default=str) + "\n")
    except OSError:
        pass


def log(level: str, event: str, **fields):
    lvl = LEVELS.get(level.upper(), 100)
    cur = LEVELS.get(LOG_LEVEL, 100)
    if lvl < cur:
        return
    ts = _dt.datetime.now(_dt.timezone.utc).isoformat()
    rec = {"ts": ts, "level": level.upper(), "event": event}
    rec.update(fields)
    path = _ensure_logger()
    if path:
        append_jsonl(path, rec)


def trace(event: str, **fields):
    log("TRACE", event, **fields)


def format_cmd(cmd: Sequence[str]) -> str:
    return " ".join(shlex.quote(str(c)) for c in cmd)


def run(
    cmd: Sequence[str],
    check: bool = True,
    dry_run: bool = False,
    timeout: float | None = 60.0,
    env: dict | None = None,
    capture: bool = True,
    input_text: str | None = None,
) -> Result:
    """Run ``cmd`` and return a :class:`Result`.

    ``capture=False`` lets the tool talk to the terminal directly (``dd``
    progress, ``cryptsetup`` passphrase prompts); ``out``/``err`` are empty
    in that case. ``input_text`` is fed on stdin and never logged.
    """

    argv = [str(c) for c in cmd]
    trace("exec.start", cmd=argv, dry_run=dry_run)
    if dry_run:
        return Result(0, "DRY-RUN: " + format_cmd(argv), "", 0.0)
    started = time.time()
    env2 = (env or os.environ).copy()
    env2.setdefault("HOSTKIT_LOG_LEVEL", LOG_LEVEL)
    if capture:
        proc = subprocess.run(
            argv,
            capture_output=True,
            text=True,
            timeout=timeout,
            env=env2,
            input=input_text,
        )
    else:
        proc = subprocess.run(argv, text=True, timeout=timeout, env=env2, input=input_text)
    dur = time.time() - started
    out = (proc.stdout or "") if capture else ""
    err = (proc.stderr or "") if capture else ""
    trace("exec.done", cmd=argv, rc=proc.returncode, dur=dur, out=out[-2000:], err=err[-2000:])
    if check and proc.returncode != 0:
        raise subprocess.CalledProcessError(proc.returncode, argv, out, err)
    return Result(proc.returncode, out, err, dur)


def udev_settle():
    try:
        subprocess.run(["udevadm", "settle"], check=False)
    except OSError:
        pass
