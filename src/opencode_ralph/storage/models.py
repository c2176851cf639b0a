"""Data models for persistent tracking."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field, field_validator


class RunState(BaseModel):
    """Iteration history of a working directory."""

    total_iterations: int = Field(
        default=0,
        description="Lifetime iteration counter; never reset by a single run.",
    )
    timestamps: list[int] = Field(
        default_factory=list,
        description="Unix seconds of completed, non-terminal iterations.",
    )
    last_run: datetime | None = Field(
        default=None,
        description="Completion time of the most recent recorded iteration.",
    )

    @field_validator("timestamps", mode="before")
    @classmethod
    def _null_timestamps(cls, value: Any):
        if value is None:
            return []
        return value


__all__ = ["RunState"]
