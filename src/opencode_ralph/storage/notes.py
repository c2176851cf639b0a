"""Append-only markdown journal of agent notes."""

from __future__ import annotations

import logging
from datetime import datetime
from pathlib import Path
from typing import Callable

logger = logging.getLogger(__name__)

DEFAULT_NOTES = "No notes yet."


class NotesJournalError(RuntimeError):
    """Raised when a note cannot be written to the journal."""


class NotesJournal:
    """Appends one markdown section per iteration; prior content is never rewritten."""

    def __init__(self, path: Path, *, clock: Callable[[], datetime] | None = None) -> None:
        self._path = Path(path)
        self._clock = clock or datetime.now

    @property
    def path(self) -> Path:
        return self._path

    def append(self, text: str, iteration: int) -> None:
        stamp = self._clock().strftime("%Y-%m-%d %H:%M:%S")
        entry = f"\n## Iteration {iteration} ({stamp})\n{text}\n"
        try:
            with self._path.open("a", encoding="utf-8") as handle:
                handle.write(entry)
        except OSError as exc:
            raise NotesJournalError(f"writing notes to {self._path}: {exc}") from exc

    def read(self, default: str = DEFAULT_NOTES) -> str:
        """Return the journal content, or ``default`` when there is none to read."""

        try:
            return self._path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return default
        except (OSError, UnicodeDecodeError) as exc:
            logger.warning(
                "Could not read notes; using default",
                extra={"path": str(self._path), "error": str(exc)},
            )
            return default


__all__ = ["DEFAULT_NOTES", "NotesJournal", "NotesJournalError"]
