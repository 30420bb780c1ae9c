"""
Narrow human-input interface.

The orchestrator only ever asks three kinds of questions: free text with a
default, yes/no, and a choice between a few single-letter options. Menu
rendering beyond that is out of scope.
"""

from __future__ import annotations

import sys
from typing import Callable, Optional


def is_attended(force_interactive: bool = False, stream=None) -> bool:
    """A run is attended when stdin is a terminal or interaction is forced."""
    if force_interactive:
        return True
    stream = stream if stream is not None else sys.stdin
    try:
        return bool(stream.isatty())
    except (AttributeError, ValueError):
        return False


class Prompter:
    """Ask questions through an input function (``input`` by default)."""

    def __init__(self, reader: Optional[Callable[[str], str]] = None) -> None:
        self.reader = reader or input

    def _read(self, prompt: str) -> str:
        try:
            return self.reader(prompt).strip()
        except EOFError:
            return ""

    def ask(self, question: str, default: str = "") -> str:
        suffix = f" [{default}]" if default else ""
        answer = self._read(f"{question}{suffix}: ")
        return answer or default

    def confirm(self, question: str, default: bool = True) -> bool:
        hint = "Y/n" if default else "y/N"
        while True:
            answer = self._read(f"{question} ({hint}): ").lower()
            if not answer:
                return default
            if answer in ("y", "yes"):
                return True
            if answer in ("n", "no"):
                return False
            print("Please answer yes or no.", flush=True)

    def choose(self, question: str, options: dict[str, str]) -> str:
        """
        Ask until one of ``options`` is picked.

        ``options`` maps a canonical key (e.g. ``retry``) to its label. The
        user may answer with the full key or its first letter.
        """
        shortcuts = {key[0]: key for key in options}
        menu = ", ".join(f"({key[0]}){key[1:]}" for key in options)
        while True:
            answer = self._read(f"{question} [{menu}]: ").lower()
            if answer in options:
                return answer
            if answer in shortcuts:
                return shortcuts[answer]
            print(f"Invalid choice. Options: {', '.join(options)}", flush=True)
