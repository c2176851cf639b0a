"""Configuration management for opencode-ralph."""

from __future__ import annotations

import json
import logging
from functools import lru_cache
from pathlib import Path

from pydantic import BaseModel, Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

RALPH_DIR = ".ralph"


class ConfigError(RuntimeError):
    """Raised when a configuration value cannot be applied."""


class RalphSettings(BaseSettings):
    """Process-level configuration sourced from environment variables and optional .env file."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    opencode_path: str | None = Field(default=None, validation_alias="OPENCODE_PATH")
    default_model: str | None = Field(default=None, validation_alias="RALPH_MODEL")
    log_level: str = Field(default="WARNING", validation_alias="RALPH_LOG_LEVEL")
    home: Path = Field(default=Path("."), validation_alias="RALPH_HOME")

    @field_validator("log_level")
    @classmethod
    def _normalize_log_level(cls, value: str) -> str:
        normalized = value.strip().upper()
        if normalized not in {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"}:
            raise ValueError(
                "RALPH_LOG_LEVEL must be one of CRITICAL, ERROR, WARNING, INFO, DEBUG"
            )
        return normalized

    @field_validator("default_model", "opencode_path", mode="before")
    @classmethod
    def _blank_to_none(cls, value):
        if isinstance(value, str) and not value.strip():
            return None
        return value


@lru_cache(maxsize=1)
def get_settings() -> RalphSettings:
    """Return cached settings instance."""

    settings = RalphSettings()
    settings.home = settings.home.expanduser().resolve()
    return settings


class ProjectConfig(BaseModel):
    """Per-project settings persisted in ``.ralph/config.json``."""

    prompt_file: str = Field(default="PROMPT.md", description="Instructions given to the agent.")
    conventions_file: str = Field(
        default="CONVENTIONS.md", description="Coding conventions the agent must follow."
    )
    specs_file: str = Field(default="SPECS.md", description="Task list driving the agent.")
    max_iterations: int = Field(default=50, description="Iterations per run.")
    max_per_hour: int = Field(default=0, description="Hourly iteration cap, 0 for unlimited.")
    max_per_day: int = Field(default=0, description="Daily iteration cap, 0 for unlimited.")
    model: str | None = Field(default=None, description="Model passed to opencode.")

    @field_validator("max_iterations", "max_per_hour", "max_per_day")
    @classmethod
    def _non_negative(cls, value: int) -> int:
        if value < 0:
            raise ValueError("iteration limits must be >= 0")
        return value

    @field_validator("model", mode="before")
    @classmethod
    def _empty_model(cls, value):
        if value == "":
            return None
        return value


_INT_KEYS = {"max_iterations", "max_per_hour", "max_per_day"}
_STR_KEYS = {"prompt_file", "conventions_file", "specs_file", "model"}


def load_project_config(path: Path) -> ProjectConfig:
    """Load the project config, falling back to defaults when it is missing or broken."""

    try:
        raw = Path(path).read_bytes()
    except FileNotFoundError:
        return ProjectConfig()
    except OSError as exc:
        logger.warning(
            "Could not read project config; using defaults",
            extra={"path": str(path), "error": str(exc)},
        )
        return ProjectConfig()

    try:
        return ProjectConfig.model_validate_json(raw)
    except (ValidationError, UnicodeDecodeError) as exc:
        logger.warning(
            "Invalid project config; using defaults",
            extra={"path": str(path), "error": str(exc)},
        )
        return ProjectConfig()


def render_project_config(config: ProjectConfig) -> str:
    return json.dumps(config.model_dump(exclude_none=True), indent=2)


def save_project_config(path: Path, config: ProjectConfig) -> None:
    """Persist ``config`` as indented JSON, creating the state directory if needed."""

    path = Path(path)
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(render_project_config(config) + "\n", encoding="utf-8")
    except OSError as exc:
        raise ConfigError(f"writing {path}: {exc}") from exc


def reset_project_config(path: Path) -> ProjectConfig:
    config = ProjectConfig()
    save_project_config(path, config)
    return config


def set_project_config_value(path: Path, key: str, value: str) -> ProjectConfig:
    """Update a single key of the persisted config and save it."""

    config = load_project_config(path)
    if key in _INT_KEYS:
        try:
            parsed: int | str | None = int(value.strip())
        except ValueError as exc:
            raise ConfigError(f"parsing {key}: {value!r} is not an integer") from exc
    elif key in _STR_KEYS:
        parsed = value
    else:
        raise ConfigError(f"unknown config key: {key}")

    try:
        updated = ProjectConfig.model_validate({**config.model_dump(), key: parsed})
    except ValidationError as exc:
        raise ConfigError(f"invalid value for {key}: {exc.errors()[0]['msg']}") from exc

    save_project_config(path, updated)
    return updated


__all__ = [
    "ConfigError",
    "ProjectConfig",
    "RALPH_DIR",
    "RalphSettings",
    "get_settings",
    "load_project_config",
    "render_project_config",
    "reset_project_config",
    "save_project_config",
    "set_project_config_value",
]
