"""Rotate a local account password and store it in a 0600 file."""

from __future__ import annotations

import os
import secrets
import string
from typing import Any, Dict

from . import console, safety
from .confirm import Confirmer
from .errors import FailureKind, PreconditionError
from .executil import run, trace
from .model import PasswdConfig
from .pipeline import Pipeline

ALPHABET = string.ascii_letters + string.digits + "!@#$%^&*()_+="


def generate_password(length: int = 16, alphabet: str = ALPHABET) -> str:
    if length <= 0:
        raise PreconditionError(f"password length must be positive, got {length}", kind=FailureKind.INVALID_INPUT)
    return "".join(secrets.choice(alphabet) for _ in range(length))


def set_password(user: str, password: str) -> None:
    run(["chpasswd"], check=True, input_text=f"{user}:{password}\n")


def save_password(path: str, password: str) -> str:
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    with os.fdopen(fd, "w", encoding="utf-8") as fh:
        fh.write(password + "\n")
    os.chmod(path, 0o600)
    return path


def rotate_password(cfg: PasswdConfig, confirmer: Confirmer) -> Dict[str, Any]:
    state: Dict[str, str] = {}

    def generate() -> int:
        state["password"] = generate_password(cfg.length)
        return cfg.length

    results = (
        Pipeline("root-passwd")
        .add("require_root", safety.require_root)
        .add("require_commands", lambda: safety.require_commands(["chpasswd"]))
        .add(
            "confirm",
            lambda: confirmer.require_yes(
                f"Set a new random password for {cfg.user} and save it to {cfg.output}? [y/N]: ",
                f"password change for {cfg.user}",
            ),
        )
        .add("generate", generate)
        .add("set_password", lambda: set_password(cfg.user, state["password"]))
        .add("save_password", lambda: save_password(cfg.output, state["password"]))
        .run()
    )
    trace("passwd.rotated", user=cfg.user, output=cfg.output)
    console.ok(f"Password for {cfg.user} changed; stored in {cfg.output} (mode 0600).")
    return {"user": cfg.user, "output": cfg.output, "steps": [r.as_dict() for r in results]}
