"""Async runner for the opencode CLI."""

from __future__ import annotations

import asyncio
import codecs
import os
import shutil
import sys
from pathlib import Path
from typing import Iterable, Protocol, TextIO

from .models import AgentExecutionResult, AgentOptions

_SANITIZED_VARS = {
    "PYTHONHOME",
    "PYTHONPATH",
    "VIRTUAL_ENV",
    "PIP_RESPECT_VIRTUALENV",
}

_READ_CHUNK = 4096


class AgentRunnerError(RuntimeError):
    """Base class for agent runner errors."""


class AgentNotFoundError(AgentRunnerError):
    """Raised when the opencode executable cannot be located."""


class AgentRunner(Protocol):
    async def run(self, prompt: str, options: AgentOptions) -> AgentExecutionResult:
        ...


def build_run_args(prompt: str, options: AgentOptions) -> list[str]:
    """Translate ``options`` into ``opencode run`` arguments; the prompt goes last."""

    args: list[str] = ["run"]
    if options.model:
        args.extend(["-m", options.model])
    if options.agent:
        args.extend(["--agent", options.agent])
    if options.output_format:
        args.extend(["--format", options.output_format])
    if options.variant:
        args.extend(["--variant", options.variant])
    if options.attach:
        args.extend(["--attach", options.attach])
    if options.port:
        args.extend(["--port", str(options.port)])
    if options.continue_session:
        args.append("--continue")
    if options.session:
        args.extend(["--session", options.session])
    for file in options.files:
        args.extend(["--file", file])
    if options.title:
        args.extend(["--title", options.title])
    args.append(prompt)
    return args


def subprocess_environment() -> dict[str, str]:
    """Return the parent environment without this interpreter's virtualenv settings."""

    env = dict(os.environ)
    for key in _SANITIZED_VARS:
        env.pop(key, None)
    return env


class OpencodeRunner:
    """Execute ``opencode run`` asynchronously."""

    def __init__(self, executable: Path | None = None, *, echo: TextIO | None = None) -> None:
        self._executable_path = self._resolve_executable(executable)
        self._echo = echo

    @staticmethod
    def _resolve_executable(explicit: Path | None) -> Path:
        if explicit is not None:
            candidate = Path(explicit)
            if candidate.exists() and candidate.is_file():
                return candidate
            raise AgentNotFoundError(f"opencode executable not found at {candidate}")

        binary = shutil.which("opencode")
        if binary is None:
            raise AgentNotFoundError("opencode executable not found on PATH")
        return Path(binary)

    @property
    def executable(self) -> Path:
        return self._executable_path

    async def run(self, prompt: str, options: AgentOptions) -> AgentExecutionResult:
        return await self._invoke(build_run_args(prompt, options), stream=options.stream)

    async def _invoke(self, args: list[str], *, stream: bool) -> AgentExecutionResult:
        cmd = [str(self._executable_path), *args]
        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
                env=subprocess_environment(),
            )
        except OSError as exc:
            raise AgentRunnerError(f"failed to start {self._executable_path}: {exc}") from exc

        echo = (self._echo or sys.stdout) if stream else None
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        chunks: list[str] = []
        assert process.stdout is not None
        while True:
            data = await process.stdout.read(_READ_CHUNK)
            text = decoder.decode(data, final=not data)
            if text:
                chunks.append(text)
                if echo is not None:
                    echo.write(text)
                    echo.flush()
            if not data:
                break

        returncode = await process.wait()
        return AgentExecutionResult(args=tuple(cmd), returncode=returncode, output="".join(chunks))


class FakeOpencodeRunner:
    """Test double that replays scripted agent output."""

    def __init__(self, responses: Iterable[AgentExecutionResult | str] | None = None) -> None:
        self._responses = list(responses or [])
        self._invocations: list[tuple[str, AgentOptions]] = []

    async def run(self, prompt: str, options: AgentOptions) -> AgentExecutionResult:
        self._invocations.append((prompt, options))
        args = ("opencode", *build_run_args(prompt, options))
        if not self._responses:
            return AgentExecutionResult(args=args, returncode=0, output="")
        response = self._responses.pop(0)
        if isinstance(response, str):
            return AgentExecutionResult(args=args, returncode=0, output=response)
        return response

    @property
    def invocations(self) -> list[tuple[str, AgentOptions]]:
        return self._invocations

    @property
    def prompts(self) -> list[str]:
        return [prompt for prompt, _ in self._invocations]


__all__ = [
    "AgentNotFoundError",
    "AgentRunner",
    "AgentRunnerError",
    "FakeOpencodeRunner",
    "OpencodeRunner",
    "build_run_args",
    "subprocess_environment",
]
