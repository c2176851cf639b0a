"""First-time setup of a working directory."""

from __future__ import annotations

from importlib import resources

from .config import ConfigError, ProjectConfig, load_project_config, save_project_config
from .workspace import Workspace


class ScaffoldError(RuntimeError):
    """Raised when a starter file cannot be written."""


def _template(name: str) -> str:
    return resources.files("opencode_ralph").joinpath("templates", name).read_text(encoding="utf-8")


def _create_from_template(workspace: Workspace, dest: str, template: str) -> str:
    path = workspace.resolve(dest)
    if path.exists():
        return f"{dest} already exists, skipping"
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(_template(template), encoding="utf-8")
    except OSError as exc:
        raise ScaffoldError(f"creating {dest}: {exc}") from exc
    return f"Created {dest}"


def init_workspace(workspace: Workspace, config: ProjectConfig | None = None) -> list[str]:
    """Create ``.ralph/`` and the starter context files; existing files are left alone."""

    try:
        workspace.ralph_dir.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        raise ScaffoldError(f"creating {workspace.ralph_dir} directory: {exc}") from exc

    config = config or load_project_config(workspace.config_file)
    messages = [
        _create_from_template(workspace, config.prompt_file, "PROMPT.md"),
        _create_from_template(workspace, config.conventions_file, "CONVENTIONS.md"),
        _create_from_template(workspace, config.specs_file, "SPECS.md"),
    ]

    if not workspace.config_file.exists():
        try:
            save_project_config(workspace.config_file, config)
        except ConfigError as exc:
            raise ScaffoldError(str(exc)) from exc
        messages.append("Created .ralph/config.json")

    return messages


__all__ = ["ScaffoldError", "init_workspace"]
