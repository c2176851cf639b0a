from __future__ import annotations

import asyncio
import io
from pathlib import Path

import pytest
from pydantic import ValidationError

from opencode_ralph.agent import (
    AgentExecutionResult,
    AgentNotFoundError,
    AgentOptions,
    FakeOpencodeRunner,
    OpencodeRunner,
)
from opencode_ralph.agent.runner import build_run_args, subprocess_environment


def write_script(tmp_path: Path, body: str) -> Path:
    script = tmp_path / "opencode"
    script.write_text("#!/bin/sh\n" + body, encoding="utf-8")
    script.chmod(0o755)
    return script


def test_runner_passes_arguments(tmp_path: Path) -> None:
    runner = OpencodeRunner(write_script(tmp_path, 'echo "$@"\n'))

    result = asyncio.run(runner.run("do the thing", AgentOptions(model="gpt", title="t1")))

    assert result.ok
    assert result.output.strip() == "run -m gpt --title t1 do the thing"
    assert result.args[0] == str(tmp_path / "opencode")


def test_runner_merges_stderr_and_keeps_output_on_failure(tmp_path: Path) -> None:
    script = write_script(tmp_path, "echo out\necho '<ralph_notes>partial</ralph_notes>' >&2\nexit 3\n")
    runner = OpencodeRunner(script)

    result = asyncio.run(runner.run("p", AgentOptions()))

    assert not result.ok
    assert result.returncode == 3
    assert "out" in result.output
    assert "<ralph_notes>partial</ralph_notes>" in result.output


def test_runner_streams_when_requested(tmp_path: Path) -> None:
    echo = io.StringIO()
    runner = OpencodeRunner(write_script(tmp_path, "echo streaming\n"), echo=echo)

    quiet = asyncio.run(runner.run("p", AgentOptions()))
    assert echo.getvalue() == ""

    loud = asyncio.run(runner.run("p", AgentOptions(stream=True)))
    assert echo.getvalue() == "streaming\n"
    assert quiet.output == loud.output == "streaming\n"


def test_runner_not_found(tmp_path: Path) -> None:
    with pytest.raises(AgentNotFoundError):
        OpencodeRunner(tmp_path / "missing")


def test_runner_not_on_path(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("PATH", "")

    with pytest.raises(AgentNotFoundError):
        OpencodeRunner()


def test_build_run_args_full() -> None:
    options = AgentOptions(
        model="ollama/qwen3-coder:30b",
        agent="build",
        output_format="json",
        variant="high",
        attach="http://localhost",
        port=4096,
        session="ses_1",
        files=["a.txt", "", "b.txt"],
        title="Iteration",
    )

    assert build_run_args("PROMPT", options) == [
        "run",
        "-m",
        "ollama/qwen3-coder:30b",
        "--agent",
        "build",
        "--format",
        "json",
        "--variant",
        "high",
        "--attach",
        "http://localhost",
        "--port",
        "4096",
        "--session",
        "ses_1",
        "--file",
        "a.txt",
        "--file",
        "b.txt",
        "--title",
        "Iteration",
        "PROMPT",
    ]


def test_build_run_args_continue() -> None:
    assert build_run_args("p", AgentOptions(continue_session=True, port=0)) == ["run", "--continue", "p"]


def test_options_reject_continue_with_session() -> None:
    with pytest.raises(ValidationError, match="mutually exclusive"):
        AgentOptions(continue_session=True, session="abc")


def test_options_reject_unknown_format() -> None:
    with pytest.raises(ValidationError):
        AgentOptions(output_format="yaml")


def test_fake_runner_records_invocations() -> None:
    fake = FakeOpencodeRunner(
        [
            "first",
            AgentExecutionResult(args=("opencode",), returncode=2, output="second"),
        ]
    )
    options = AgentOptions(model="m")

    first = asyncio.run(fake.run("p1", options))
    second = asyncio.run(fake.run("p2", options))
    third = asyncio.run(fake.run("p3", options))

    assert (first.output, second.output, third.output) == ("first", "second", "")
    assert not second.ok
    assert fake.prompts == ["p1", "p2", "p3"]
    assert fake.invocations[0][1] is options


def test_subprocess_environment_strips_virtualenv(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("VIRTUAL_ENV", "/venv")
    monkeypatch.setenv("RALPH_KEEP", "1")

    env = subprocess_environment()

    assert "VIRTUAL_ENV" not in env
    assert env["RALPH_KEEP"] == "1"
