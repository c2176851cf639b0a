from __future__ import annotations

from pathlib import Path

import pytest

from opencode_ralph.prompt import PromptInputError, PromptInputs, construct_prompt, load_prompt_inputs
from opencode_ralph.storage import NotesJournal


def _write_inputs(root: Path) -> tuple[Path, Path, Path]:
    paths = (root / "PROMPT.md", root / "CONVENTIONS.md", root / "SPECS.md")
    for path, text in zip(paths, ("Build it", "Use tabs", "- [ ] parser")):
        path.write_text(text, encoding="utf-8")
    return paths


def test_prompt_embeds_every_section_in_order() -> None:
    inputs = PromptInputs(prompt="P", conventions="C", specs="S", notes="N")

    prompt = construct_prompt(inputs, 4, 10)

    markers = [
        "You are operating in Ralph Wiggum mode.",
        "## Context Files",
        "<prompt>\nP\n</prompt>",
        "<conventions>\nC\n</conventions>",
        "NOTE: The full, current contents of the specs are included below in <specs>.",
        "<specs>\nS\n</specs>",
        "<ralph_notes_history>\nN\n</ralph_notes_history>",
        "## Current Iteration\nIteration: 4 of 10",
    ]
    positions = [prompt.index(marker) for marker in markers]
    assert positions == sorted(positions)
    assert prompt.endswith("Iteration: 4 of 10\n")


def test_load_inputs_uses_default_notes(tmp_path: Path) -> None:
    prompt_path, conventions_path, specs_path = _write_inputs(tmp_path)
    journal = NotesJournal(tmp_path / "notes.md")

    inputs = load_prompt_inputs(prompt_path, conventions_path, specs_path, journal)

    assert inputs == PromptInputs("Build it", "Use tabs", "- [ ] parser", "No notes yet.")


def test_load_inputs_includes_existing_notes(tmp_path: Path) -> None:
    paths = _write_inputs(tmp_path)
    journal = NotesJournal(tmp_path / "notes.md")
    journal.append("parser half done", 1)

    inputs = load_prompt_inputs(*paths, journal)

    assert "## Iteration 1 (" in inputs.notes
    assert "parser half done" in construct_prompt(inputs, 2, 5)


def test_missing_required_file_names_path(tmp_path: Path) -> None:
    prompt_path, conventions_path, specs_path = _write_inputs(tmp_path)
    conventions_path.unlink()

    with pytest.raises(PromptInputError) as excinfo:
        load_prompt_inputs(prompt_path, conventions_path, specs_path, NotesJournal(tmp_path / "n.md"))

    assert excinfo.value.path == conventions_path
    assert str(excinfo.value).startswith(f"reading {conventions_path}:")


def test_undecodable_required_file_names_path(tmp_path: Path) -> None:
    prompt_path, conventions_path, specs_path = _write_inputs(tmp_path)
    prompt_path.write_bytes(b"caf\xe9")

    with pytest.raises(PromptInputError) as excinfo:
        load_prompt_inputs(prompt_path, conventions_path, specs_path, NotesJournal(tmp_path / "n.md"))

    assert excinfo.value.path == prompt_path
    assert str(excinfo.value).startswith(f"reading {prompt_path}:")
