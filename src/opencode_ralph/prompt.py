"""Prompt assembly from the project's context files."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from .storage.notes import DEFAULT_NOTES, NotesJournal


class PromptInputError(RuntimeError):
    """Raised when a required context file cannot be read."""

    def __init__(self, path: Path, cause: Exception) -> None:
        self.path = Path(path)
        super().__init__(f"reading {path}: {getattr(cause, 'strerror', None) or cause}")


@dataclass(frozen=True, slots=True)
class PromptInputs:
    prompt: str
    conventions: str
    specs: str
    notes: str


def _read_required(path: Path) -> str:
    try:
        return Path(path).read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        raise PromptInputError(path, exc) from exc


def load_prompt_inputs(
    prompt_path: Path,
    conventions_path: Path,
    specs_path: Path,
    notes: NotesJournal,
) -> PromptInputs:
    """Read the three context files and the notes history."""

    return PromptInputs(
        prompt=_read_required(prompt_path),
        conventions=_read_required(conventions_path),
        specs=_read_required(specs_path),
        notes=notes.read(DEFAULT_NOTES),
    )


def construct_prompt(inputs: PromptInputs, iteration: int, max_iterations: int) -> str:
    sections = [
        "You are operating in Ralph Wiggum mode.",
        "## Context Files",
        f"<prompt>\n{inputs.prompt}\n</prompt>",
        f"<conventions>\n{inputs.conventions}\n</conventions>",
        "NOTE: The full, current contents of the specs are included below in <specs>.\n"
        "Do not re-read SPECS.md unless you have modified it and need to confirm your updates.",
        f"<specs>\n{inputs.specs}\n</specs>",
        f"<ralph_notes_history>\n{inputs.notes}\n</ralph_notes_history>",
        f"## Current Iteration\nIteration: {iteration} of {max_iterations}",
    ]
    return "\n\n".join(sections) + "\n"


__all__ = ["PromptInputError", "PromptInputs", "construct_prompt", "load_prompt_inputs"]
