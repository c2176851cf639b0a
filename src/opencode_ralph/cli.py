"""Command line entry point for opencode-ralph."""

from __future__ import annotations

import argparse
import json
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Sequence

from pydantic import ValidationError

from . import __version__
from .agent import AgentOptions, AgentRunner, AgentRunnerError, OpencodeRunner
from .config import (
    ConfigError,
    RalphSettings,
    get_settings,
    load_project_config,
    render_project_config,
    reset_project_config,
    set_project_config_value,
)
from .console import Console
from .locking import LockError, probe_process, read_lock_owner
from .orchestrator import Orchestrator, RunSettings, WorkspaceError
from .prompt import PromptInputError
from .scaffold import ScaffoldError, init_workspace
from .storage import StateStore, count_recent
from .workspace import Workspace

logger = logging.getLogger(__name__)


def configure_logging(level: str) -> None:
    """Configure root logging for the CLI."""

    logging.basicConfig(
        level=getattr(logging, level, logging.WARNING),
        format="[%(asctime)s] [%(levelname)s] %(name)s: %(message)s",
    )


def _workspace(settings: RalphSettings) -> Workspace:
    return Workspace.at(settings.home)


def _build_runner(settings: RalphSettings) -> AgentRunner:
    return OpencodeRunner(Path(settings.opencode_path) if settings.opencode_path else None)


def _validation_message(exc: ValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return str(exc)
    message = str(errors[0].get("msg", exc))
    return message.removeprefix("Value error, ")


def _agent_options(args: argparse.Namespace, model: str | None, *, stream: bool) -> AgentOptions:
    return AgentOptions(
        model=model,
        agent=args.agent,
        output_format=args.format,
        variant=args.variant,
        attach=args.attach,
        port=args.port,
        continue_session=args.continue_session,
        session=args.session,
        files=args.files or [],
        title=args.title,
        stream=stream,
    )


def cmd_run(args: argparse.Namespace, *, single: bool = False) -> int:
    settings = get_settings()
    workspace = _workspace(settings)
    config = load_project_config(workspace.config_file)

    overrides = {
        "prompt_file": args.prompt,
        "conventions_file": args.conventions,
        "specs_file": args.specs,
        "delay": args.delay,
        "dry_run": args.dry_run,
        "quiet": args.quiet,
    }
    if single:
        # Configured rate limits still apply to a manual iteration.
        overrides["max_iterations"] = 1
    else:
        # Zero means "use the configured value".
        overrides.update(
            max_iterations=args.max_iterations or None,
            max_per_hour=args.max_per_hour or None,
            max_per_day=args.max_per_day or None,
        )

    console = Console(quiet=bool(args.quiet) and not args.dry_run)
    try:
        run_settings = RunSettings.from_config(config, **overrides)
        model = args.model or config.model or settings.default_model
        stream = (args.verbose or run_settings.quiet) and not run_settings.dry_run
        options = _agent_options(args, model, stream=stream)
    except ValidationError as exc:
        console.error(f"invalid flags: {_validation_message(exc)}")
        return 1

    try:
        runner = None if run_settings.dry_run else _build_runner(settings)
        orchestrator = Orchestrator(workspace, run_settings, options, runner, console=console)
        result = orchestrator.run()
    except LockError as exc:
        console.error(f"acquiring lock: {exc}")
        return 1
    except (WorkspaceError, PromptInputError, AgentRunnerError) as exc:
        console.error(str(exc))
        return 1

    logger.info(
        "Run finished",
        extra={
            "outcome": result.outcome.value,
            "session_iterations": result.session_iterations,
            "total_iterations": result.total_iterations,
        },
    )
    return 0


def cmd_manual(args: argparse.Namespace) -> int:
    return cmd_run(args, single=True)


def cmd_init(args: argparse.Namespace) -> int:
    settings = get_settings()
    workspace = _workspace(settings)
    config = load_project_config(workspace.config_file)
    try:
        messages = init_workspace(workspace, config)
    except ScaffoldError as exc:
        Console().error(str(exc))
        return 1
    for message in messages:
        print(message)
    print(f"\nInitialization complete. Edit {config.specs_file} to define your tasks.")
    return 0


def cmd_config(args: argparse.Namespace) -> int:
    settings = get_settings()
    workspace = _workspace(settings)
    path = workspace.config_file
    try:
        if args.config_cmd == "set":
            set_project_config_value(path, args.key, args.value)
            print(f"Set {args.key} = {args.value}")
        elif args.config_cmd == "reset":
            reset_project_config(path)
            print("Configuration reset to defaults")
        else:
            print(render_project_config(load_project_config(path)))
    except ConfigError as exc:
        Console().error(str(exc))
        return 1
    return 0


def cmd_status(args: argparse.Namespace) -> int:
    settings = get_settings()
    workspace = _workspace(settings)
    config = load_project_config(workspace.config_file)
    state = StateStore(workspace.state_file).load()
    window = count_recent(state.timestamps, datetime.now(timezone.utc))

    owner = read_lock_owner(workspace.lock_file)
    lock_present = workspace.lock_file.exists()
    payload = {
        "workspace": str(workspace.root),
        "total_iterations": state.total_iterations,
        "last_run": state.last_run.isoformat() if state.last_run else None,
        "rate": {
            "hour_count": window.hour_count,
            "day_count": window.day_count,
            "max_per_hour": config.max_per_hour,
            "max_per_day": config.max_per_day,
        },
        "lock": {
            "present": lock_present,
            "owner_pid": owner,
            "owner_state": probe_process(owner).value if owner is not None else None,
        },
    }

    if args.json:
        print(json.dumps(payload, indent=2))
        return 0

    print(f"Workspace: {payload['workspace']}")
    print(f"Total iterations: {state.total_iterations}")
    print(f"Last run: {payload['last_run'] or 'never'}")
    print(
        f"Rate: {window.hour_count}/hour (max {config.max_per_hour or 'unlimited'}), "
        f"{window.day_count}/day (max {config.max_per_day or 'unlimited'})"
    )
    if not lock_present:
        print("Lock: free")
    elif owner is None:
        print("Lock: held by an unknown owner")
    else:
        print(f"Lock: held by pid {owner} ({payload['lock']['owner_state']})")
    return 0


def _add_agent_flags(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--prompt", help="Override prompt file path")
    parser.add_argument("--conventions", help="Override conventions file path")
    parser.add_argument("--specs", help="Override specs file path")
    parser.add_argument("--agent", help="Agent to use (passed to opencode run --agent)")
    parser.add_argument(
        "--format",
        choices=["default", "json"],
        help="Output format (passed to opencode run --format)",
    )
    parser.add_argument(
        "--continue",
        dest="continue_session",
        action="store_true",
        help="Continue a previous session (passed to opencode run --continue)",
    )
    parser.add_argument("--session", help="Session ID (passed to opencode run --session)")
    parser.add_argument(
        "--file",
        dest="files",
        action="append",
        default=[],
        help="File to attach (repeatable; passed to opencode run --file)",
    )
    parser.add_argument("--title", help="Message title (passed to opencode run --title)")
    parser.add_argument("--variant", help="Variant to use (passed to opencode run --variant)")
    parser.add_argument("--attach", help="Remote attach target (passed to opencode run --attach)")
    parser.add_argument("--port", type=int, default=0, help="Remote attach port (passed to opencode run --port)")
    parser.add_argument("--quiet", action="store_true", help="Hide opencode-ralph banner/status output")
    parser.add_argument("--model", help="Model to use (e.g., ollama/qwen3-coder:30b)")
    parser.add_argument("--verbose", action="store_true", help="Stream opencode output in real-time")
    parser.add_argument("--dry-run", action="store_true", help="Show constructed prompt without executing")
    parser.add_argument("--delay", type=float, default=2.0, help="Delay between iterations in seconds")


def _add_limit_flags(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--max-iterations", type=int, default=0, help="Maximum iterations (default: from config or 50)")
    parser.add_argument(
        "--max-per-hour",
        type=int,
        default=0,
        help="Maximum iterations per hour (default: from config; 0 = unlimited)",
    )
    parser.add_argument(
        "--max-per-day",
        type=int,
        default=0,
        help="Maximum iterations per day (default: from config; 0 = unlimited)",
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="opencode-ralph",
        description="Iterative AI development orchestrator",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    sub = parser.add_subparsers(dest="cmd")

    agent_flags = argparse.ArgumentParser(add_help=False)
    _add_agent_flags(agent_flags)
    limit_flags = argparse.ArgumentParser(add_help=False)
    _add_limit_flags(limit_flags)

    p_init = sub.add_parser("init", help="Create PROMPT.md, CONVENTIONS.md, and stub SPECS.md")
    p_init.set_defaults(func=cmd_init)

    p_manual = sub.add_parser("manual", parents=[agent_flags], help="Run exactly one iteration")
    p_manual.set_defaults(func=cmd_manual)

    p_run = sub.add_parser(
        "run",
        parents=[limit_flags, agent_flags],
        help="Run multiple iterations until complete (default)",
    )
    p_run.set_defaults(func=cmd_run)

    p_config = sub.add_parser("config", help="View or modify configuration")
    config_sub = p_config.add_subparsers(dest="config_cmd")
    p_set = config_sub.add_parser("set", help="Set a configuration value")
    p_set.add_argument(
        "key",
        help="prompt_file, conventions_file, specs_file, max_iterations, max_per_hour, max_per_day, model",
    )
    p_set.add_argument("value")
    config_sub.add_parser("reset", help="Reset configuration to defaults")
    p_config.set_defaults(func=cmd_config)

    p_status = sub.add_parser("status", help="Show iteration history, rate window and lock owner")
    p_status.add_argument("--json", action="store_true", help="Output JSON")
    p_status.set_defaults(func=cmd_status)

    sub.add_parser("help", help="Show this help message")

    return parser


def main(argv: Sequence[str] | None = None) -> int:
    argv = list(sys.argv[1:] if argv is None else argv)
    # Bare flags (or nothing at all) mean "run".
    if not argv or (argv[0].startswith("-") and argv[0] not in {"-h", "--help", "--version"}):
        argv.insert(0, "run")

    parser = build_parser()
    args = parser.parse_args(argv)
    if not hasattr(args, "func"):
        parser.print_help()
        return 0

    try:
        settings = get_settings()
    except ValidationError as exc:
        Console().error(f"invalid environment: {_validation_message(exc)}")
        return 1
    configure_logging(settings.log_level)
    return args.func(args)


if __name__ == "__main__":
    raise SystemExit(main())
