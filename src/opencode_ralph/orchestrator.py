"""The iteration loop: rate check, prompt build, agent call, protocol handling."""

from __future__ import annotations

import asyncio
import enum
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable

from pydantic import BaseModel, Field, field_validator, model_validator

from .agent import AgentOptions, AgentRunner, AgentRunnerError
from .config import ProjectConfig
from .console import BOLD, CYAN, GREEN, YELLOW, Console
from .locking import LockHandle, ProcessLiveness, acquire_lock, probe_process, release_lock
from .prompt import construct_prompt, load_prompt_inputs
from .protocol import ProtocolOutput
from .signals import deferred_signals, install_lock_signal_handler
from .storage import (
    NotesJournal,
    NotesJournalError,
    RateLimits,
    RunState,
    StateStore,
    count_recent,
    prune_timestamps,
)
from .workspace import Workspace

logger = logging.getLogger(__name__)


class WorkspaceError(RuntimeError):
    """Raised when the ``.ralph`` state directory cannot be created."""


class RunOutcome(str, enum.Enum):
    COMPLETE = "complete"
    RATE_LIMITED = "rate_limited"
    MAX_ITERATIONS = "max_iterations"
    DRY_RUN = "dry_run"


class RunSettings(BaseModel):
    """Loop parameters for a single run."""

    max_iterations: int = Field(default=50, description="Iterations allowed in this run.")
    max_per_hour: int = Field(default=0, description="Hourly admission limit, 0 for unlimited.")
    max_per_day: int = Field(default=0, description="Daily admission limit, 0 for unlimited.")
    prompt_file: str = "PROMPT.md"
    conventions_file: str = "CONVENTIONS.md"
    specs_file: str = "SPECS.md"
    delay: float = Field(default=2.0, description="Seconds to wait between iterations.")
    dry_run: bool = False
    quiet: bool = False

    @field_validator("max_iterations", "max_per_hour", "max_per_day")
    @classmethod
    def _non_negative(cls, value: int) -> int:
        if value < 0:
            raise ValueError("iteration limits must be >= 0")
        return value

    @field_validator("delay")
    @classmethod
    def _non_negative_delay(cls, value: float) -> float:
        if value < 0:
            raise ValueError("delay must be >= 0")
        return value

    @model_validator(mode="after")
    def _dry_run_is_never_quiet(self) -> "RunSettings":
        if self.dry_run:
            self.quiet = False
        return self

    @classmethod
    def from_config(cls, config: ProjectConfig, **overrides) -> "RunSettings":
        """Start from the project config; ``None`` overrides keep the configured value."""

        values = {
            "max_iterations": config.max_iterations,
            "max_per_hour": config.max_per_hour,
            "max_per_day": config.max_per_day,
            "prompt_file": config.prompt_file,
            "conventions_file": config.conventions_file,
            "specs_file": config.specs_file,
        }
        values.update({key: value for key, value in overrides.items() if value is not None})
        return cls.model_validate(values)

    @property
    def limits(self) -> RateLimits:
        return RateLimits(max_per_hour=self.max_per_hour, max_per_day=self.max_per_day)


@dataclass(slots=True)
class RunResult:
    outcome: RunOutcome
    session_iterations: int
    total_iterations: int
    duration: timedelta


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class Orchestrator:
    """Drives iterations of the agent against one working directory."""

    def __init__(
        self,
        workspace: Workspace,
        settings: RunSettings,
        options: AgentOptions,
        runner: AgentRunner | None,
        *,
        console: Console | None = None,
        clock: Callable[[], datetime] | None = None,
        sleep: Callable[[float], None] = time.sleep,
        probe: Callable[[int], ProcessLiveness] = probe_process,
        install_signals: Callable[..., Callable[[], None]] = install_lock_signal_handler,
        notes: NotesJournal | None = None,
    ) -> None:
        self._workspace = workspace
        self._settings = settings
        self._options = options
        self._runner = runner
        self._console = console or Console(quiet=settings.quiet)
        self._clock = clock or _utc_now
        self._sleep = sleep
        self._probe = probe
        self._install_signals = install_signals
        self._store = StateStore(workspace.state_file)
        self._notes = notes or NotesJournal(workspace.notes_file)

    @property
    def show_summary(self) -> bool:
        return not self._settings.quiet and not self._settings.dry_run

    def run(self) -> RunResult:
        """Run until completion, rate limit, dry run or the iteration budget is spent.

        Fatal problems (state directory, lock, context files) raise; everything
        else is reported and the loop carries on.
        """

        started = time.monotonic()
        try:
            self._workspace.ralph_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise WorkspaceError(f"creating {self._workspace.ralph_dir} directory: {exc}") from exc

        # No signal may land between taking the lock and arming its cleanup.
        with deferred_signals():
            handle = acquire_lock(self._workspace.lock_file, probe=self._probe)
            stop_signals = self._install_signals(handle.path)
        if handle.replaced_stale:
            logger.info("Replaced stale lock", extra={"path": str(handle.path)})
        try:
            result = self._loop(started)
        finally:
            stop_signals()
            self._release(handle)

        if self.show_summary:
            self._print_summary(result)
        return result

    def _release(self, handle: LockHandle) -> None:
        try:
            release_lock(handle.path)
        except OSError as exc:
            self._console.error(f"failed to release lock: {exc}")

    def _loop(self, started: float) -> RunResult:
        settings = self._settings
        limits = settings.limits
        state = self._store.load()
        self._console.banner()

        session_iterations = 0
        for index in range(settings.max_iterations):
            session_iterations += 1
            state.total_iterations += 1
            iteration = state.total_iterations

            header = f"=== Iteration {iteration} (session: {index + 1}/{settings.max_iterations}) ==="
            self._console.status("")
            self._console.status(header, CYAN, BOLD)

            if limits.enabled:
                window = count_recent(state.timestamps, self._clock())
                reason = limits.check(window)
                if reason is not None:
                    self._console.status(reason, YELLOW, BOLD)
                    logger.info(
                        "Rate limited",
                        extra={"hour_count": window.hour_count, "day_count": window.day_count},
                    )
                    self._store.save(state)
                    return self._result(RunOutcome.RATE_LIMITED, session_iterations, state, started)
                self._console.status(f"Rate: {window.hour_count}/hour, {window.day_count}/day")

            inputs = load_prompt_inputs(
                self._workspace.resolve(settings.prompt_file),
                self._workspace.resolve(settings.conventions_file),
                self._workspace.resolve(settings.specs_file),
                self._notes,
            )
            prompt = construct_prompt(inputs, iteration, settings.max_iterations)

            if settings.dry_run:
                self._console.echo("\n--- DRY RUN: Constructed Prompt ---")
                self._console.echo(prompt)
                self._console.echo("--- END DRY RUN ---")
                return self._result(RunOutcome.DRY_RUN, session_iterations, state, started)

            output = self._invoke(prompt, iteration)
            protocol = ProtocolOutput.parse(output)

            if protocol.notes:
                try:
                    self._notes.append(protocol.notes, iteration)
                except NotesJournalError as exc:
                    self._console.warn(f"failed to save notes: {exc}")
                    logger.info("Notes not saved", extra={"iteration": iteration, "error": str(exc)})

            if protocol.complete:
                self._console.status("Received COMPLETE signal from opencode!", GREEN, BOLD)
                self._store.save(state)
                return self._result(RunOutcome.COMPLETE, session_iterations, state, started)

            now = self._clock()
            state.timestamps.append(int(now.timestamp()))
            state.last_run = now
            prune_timestamps(state, now)
            self._store.save(state)

            if settings.delay > 0:
                self._sleep(settings.delay)

        self._console.status(
            f"Reached maximum iterations ({settings.max_iterations})", YELLOW, BOLD
        )
        return self._result(RunOutcome.MAX_ITERATIONS, session_iterations, state, started)

    def _invoke(self, prompt: str, iteration: int) -> str:
        try:
            if self._runner is None:
                raise AgentRunnerError("no agent runner configured")
            result = asyncio.run(self._runner.run(prompt, self._options))
        except AgentRunnerError as exc:
            self._console.warn(f"opencode exited with error: {exc}")
            logger.info("Agent invocation failed", extra={"iteration": iteration, "error": str(exc)})
            return ""

        if not result.ok:
            self._console.warn(f"opencode exited with error: exit status {result.returncode}")
            logger.info(
                "Agent exited non-zero",
                extra={"iteration": iteration, "returncode": result.returncode},
            )
        return result.output

    def _result(
        self, outcome: RunOutcome, session_iterations: int, state: RunState, started: float
    ) -> RunResult:
        return RunResult(
            outcome=outcome,
            session_iterations=session_iterations,
            total_iterations=state.total_iterations,
            duration=timedelta(seconds=time.monotonic() - started),
        )

    def _print_summary(self, result: RunResult) -> None:
        millis = int(result.duration.total_seconds() * 1000)
        duration = timedelta(milliseconds=millis)
        self._console.echo("\n--- Summary ---")
        self._console.echo(f"Iterations: {result.session_iterations}")
        self._console.echo(f"Duration: {duration}")
        self._console.echo(f"Status: {self._console.outcome(result.outcome.value)}")


__all__ = ["Orchestrator", "RunOutcome", "RunResult", "RunSettings", "WorkspaceError"]
