"""Options and results exchanged with the agent runner."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator, model_validator


class AgentOptions(BaseModel):
    """Passthrough settings for ``opencode run``; the loop never interprets them."""

    model: str | None = Field(default=None, description="Model identifier, e.g. ollama/qwen3-coder:30b.")
    agent: str | None = Field(default=None, description="Agent to use.")
    output_format: Literal["default", "json"] | None = Field(
        default=None,
        description="Output format requested from opencode.",
    )
    variant: str | None = Field(default=None, description="Agent variant.")
    attach: str | None = Field(default=None, description="Remote attach target.")
    port: int | None = Field(default=None, description="Remote attach port.")
    continue_session: bool = Field(default=False, description="Continue the previous session.")
    session: str | None = Field(default=None, description="Session id to continue.")
    files: list[str] = Field(default_factory=list, description="Files attached to the message.")
    title: str | None = Field(default=None, description="Message title.")
    stream: bool = Field(default=False, description="Echo agent output while it runs.")

    @field_validator("model", "agent", "variant", "attach", "session", "title", "output_format", mode="before")
    @classmethod
    def _blank_to_none(cls, value: Any):
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @field_validator("port")
    @classmethod
    def _validate_port(cls, value: int | None) -> int | None:
        if value == 0:
            return None
        if value is not None and not 0 < value < 65536:
            raise ValueError("port must be between 1 and 65535")
        return value

    @field_validator("files", mode="before")
    @classmethod
    def _drop_empty_files(cls, value: Any):
        if value is None:
            return []
        if isinstance(value, (list, tuple)):
            return [item for item in value if item]
        raise TypeError("files must be a sequence of paths")

    @model_validator(mode="after")
    def _exclusive_session(self) -> "AgentOptions":
        if self.continue_session and self.session:
            raise ValueError("--continue and --session are mutually exclusive")
        return self


@dataclass(slots=True)
class AgentExecutionResult:
    """Holds the outcome of an agent invocation; ``output`` merges stdout and stderr."""

    args: tuple[str, ...]
    returncode: int
    output: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0


__all__ = ["AgentExecutionResult", "AgentOptions"]
