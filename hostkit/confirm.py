"""Interactive confirmation gates.

The :class:`Confirmer` is passed into every operation so tests can drive it
with a scripted reader instead of stdin.
"""

from __future__ import annotations

from typing import Callable

from .errors import ConfirmationDeclined
from .executil import trace

YES_LITERAL = "YES"


class Confirmer:
    def __init__(self, reader: Callable[[str], str] = input, assume_yes: bool = False):
        self.reader = reader
        self.assume_yes = assume_yes

    def ask(self, prompt: str) -> str | None:
        try:
            return self.reader(prompt)
        except EOFError:
            print()
            return None

    def literal(self, prompt: str, expected: str = YES_LITERAL) -> bool:
        """Exact, case-sensitive match; ``assume_yes`` never applies here."""

        answer = self.ask(prompt)
        accepted = answer is not None and answer.strip() == expected
        trace("confirm.literal", prompt=prompt, expected=expected, accepted=accepted)
        return accepted

    def yes_no(self, prompt: str, default: bool = False, destructive: bool = False) -> bool:
        if self.assume_yes and not destructive:
            trace("confirm.yes_no", prompt=prompt, accepted=True, assumed=True)
            return True
        answer = self.ask(prompt)
        if answer is None:
            accepted = False
        else:
            answer = answer.strip()
            accepted = default if answer == "" else answer in ("y", "Y")
        trace("confirm.yes_no", prompt=prompt, accepted=accepted, assumed=False)
        return accepted

    def require_literal(self, prompt: str, what: str, expected: str = YES_LITERAL) -> None:
        if not self.literal(prompt, expected):
            raise ConfirmationDeclined(f"operator aborted {what}", exit_code=1)

    def require_yes(self, prompt: str, what: str) -> None:
        if not self.yes_no(prompt, default=False, destructive=True):
            raise ConfirmationDeclined(f"operator declined {what}", exit_code=0)
