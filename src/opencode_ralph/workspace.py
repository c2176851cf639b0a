"""Per-project filesystem layout."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from .config import RALPH_DIR


@dataclass(frozen=True, slots=True)
class Workspace:
    """Resolves the state, notes, lock and config paths below a project root."""

    root: Path

    @classmethod
    def at(cls, root: Path | str) -> "Workspace":
        return cls(Path(root).expanduser().resolve())

    @property
    def ralph_dir(self) -> Path:
        return self.root / RALPH_DIR

    @property
    def config_file(self) -> Path:
        return self.ralph_dir / "config.json"

    @property
    def state_file(self) -> Path:
        return self.ralph_dir / "state.json"

    @property
    def notes_file(self) -> Path:
        return self.ralph_dir / "notes.md"

    @property
    def lock_file(self) -> Path:
        return self.ralph_dir / "lock"

    def resolve(self, path: Path | str) -> Path:
        """Resolve an input file path relative to the project root."""

        candidate = Path(path).expanduser()
        if candidate.is_absolute():
            return candidate
        return self.root / candidate


__all__ = ["Workspace"]
