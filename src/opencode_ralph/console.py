"""User-facing terminal output."""

from __future__ import annotations

import os
import sys
from typing import TextIO

BANNER = r"""
   ____  ____  ____  _   _
  / __ \/ __ \/ __ \/ | / /
 / / / / /_/ / /_/ /  |/ /
/ /_/ / ____/ ____/ /|  /
\____/_/   /_/   /_/ |_/

opencode-ralph
"""

RESET = "\033[0m"
BOLD = "\033[1m"
RED = "\033[31m"
GREEN = "\033[32m"
YELLOW = "\033[33m"
CYAN = "\033[36m"
GRAY = "\033[90m"

_STATUS_STYLES = {
    "complete": (GREEN, BOLD),
    "rate_limited": (YELLOW, BOLD),
    "max_iterations": (YELLOW, BOLD),
    "dry_run": (CYAN, BOLD),
}


def should_use_color(stream: TextIO, *, quiet: bool = False) -> bool:
    if quiet or os.environ.get("NO_COLOR"):
        return False
    isatty = getattr(stream, "isatty", None)
    try:
        return bool(isatty and isatty())
    except (OSError, ValueError):
        return False


class Console:
    """Prints loop progress; status lines are suppressed when quiet."""

    def __init__(
        self,
        *,
        quiet: bool = False,
        stream: TextIO | None = None,
        err: TextIO | None = None,
        color: bool | None = None,
    ) -> None:
        self.quiet = quiet
        self._stream = stream or sys.stdout
        self._err = err or sys.stderr
        self._color = should_use_color(self._stream, quiet=quiet) if color is None else color

    def style(self, text: str, *codes: str) -> str:
        if not self._color or not codes:
            return text
        return "".join(codes) + text + RESET

    def echo(self, text: str = "") -> None:
        print(text, file=self._stream)

    def status(self, text: str, *codes: str) -> None:
        if not self.quiet:
            self.echo(self.style(text, *codes))

    def warn(self, text: str) -> None:
        if not self.quiet:
            self.echo(self.style(f"Warning: {text}", YELLOW, BOLD))

    def error(self, text: str) -> None:
        print(self.style(f"Error: {text}", RED, BOLD), file=self._err)

    def banner(self) -> None:
        if not self.quiet:
            self._stream.write(BANNER)

    def outcome(self, status: str) -> str:
        codes = _STATUS_STYLES.get(status.lower(), (GRAY,))
        return self.style(status.upper(), *codes)


__all__ = ["BANNER", "Console", "should_use_color"]
