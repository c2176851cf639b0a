"""Persisted iteration history and the sliding-window rate limiter."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from pathlib import Path
from typing import Iterable

from pydantic import ValidationError

from .models import RunState

logger = logging.getLogger(__name__)

HOUR = timedelta(hours=1)
DAY = timedelta(hours=24)


@dataclass(frozen=True, slots=True)
class RateWindow:
    """Iteration counts over the trailing hour and day."""

    hour_count: int
    day_count: int


@dataclass(frozen=True, slots=True)
class RateLimits:
    """Admission limits; zero disables a limit."""

    max_per_hour: int = 0
    max_per_day: int = 0

    @property
    def enabled(self) -> bool:
        return self.max_per_hour > 0 or self.max_per_day > 0

    def check(self, window: RateWindow) -> str | None:
        """Return the reason admission is refused, or ``None`` when allowed."""

        if self.max_per_hour > 0 and window.hour_count >= self.max_per_hour:
            return (
                f"Rate limit reached: {window.hour_count} iterations in the past hour "
                f"(max: {self.max_per_hour})"
            )
        if self.max_per_day > 0 and window.day_count >= self.max_per_day:
            return (
                f"Rate limit reached: {window.day_count} iterations in the past day "
                f"(max: {self.max_per_day})"
            )
        return None


def count_recent(timestamps: Iterable[int], now: datetime) -> RateWindow:
    """Count timestamps newer than one hour and one day before ``now``."""

    hour_ago = int((now - HOUR).timestamp())
    day_ago = int((now - DAY).timestamp())

    hour_count = 0
    day_count = 0
    for ts in timestamps:
        if ts > day_ago:
            day_count += 1
            if ts > hour_ago:
                hour_count += 1
    return RateWindow(hour_count=hour_count, day_count=day_count)


def prune_timestamps(state: RunState, now: datetime) -> None:
    """Drop timestamps older than the 24 hour window."""

    cutoff = int((now - DAY).timestamp())
    state.timestamps = [ts for ts in state.timestamps if ts > cutoff]


class StateStore:
    """Loads and saves :class:`RunState` as JSON."""

    def __init__(self, path: Path) -> None:
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> RunState:
        """Return the persisted state, or an empty one when absent or unparsable."""

        try:
            raw = self._path.read_bytes()
        except FileNotFoundError:
            return RunState()
        except OSError as exc:
            logger.warning(
                "Could not read run state; starting fresh",
                extra={"path": str(self._path), "error": str(exc)},
            )
            return RunState()

        try:
            return RunState.model_validate_json(raw)
        except (ValidationError, UnicodeDecodeError) as exc:
            logger.warning(
                "Run state is unparsable; starting fresh",
                extra={"path": str(self._path), "error": str(exc)},
            )
            return RunState()

    def save(self, state: RunState) -> bool:
        """Persist ``state``. Failures are logged and reported as ``False``."""

        try:
            self._path.write_text(state.model_dump_json(indent=2), encoding="utf-8")
        except OSError as exc:
            logger.warning("Failed to save run state", extra={"path": str(self._path), "error": str(exc)})
            return False
        return True


__all__ = [
    "DAY",
    "HOUR",
    "RateLimits",
    "RateWindow",
    "StateStore",
    "count_recent",
    "prune_timestamps",
]
