"""In-band tags the agent uses to talk back to the loop."""

from __future__ import annotations

import re
from dataclasses import dataclass

_NOTES_RE = re.compile(r"<ralph_notes>(.*?)</ralph_notes>", re.DOTALL)
_COMPLETE_RE = re.compile(r"<ralph_status>\s*COMPLETE\s*</ralph_status>", re.DOTALL | re.IGNORECASE)


def extract_notes(output: str) -> str:
    """Return the stripped body of the first ``<ralph_notes>`` block, or ``""``."""

    match = _NOTES_RE.search(output)
    if match is None:
        return ""
    return match.group(1).strip()


def is_complete(output: str) -> bool:
    return _COMPLETE_RE.search(output) is not None


@dataclass(frozen=True, slots=True)
class ProtocolOutput:
    notes: str
    complete: bool

    @classmethod
    def parse(cls, output: str) -> "ProtocolOutput":
        return cls(notes=extract_notes(output), complete=is_complete(output))


__all__ = ["ProtocolOutput", "extract_notes", "is_complete"]
