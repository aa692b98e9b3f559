from __future__ import annotations

import argparse
import json
import logging
import sys
import time
from pathlib import Path
from typing import Any, Sequence

from rich.console import Console
from rich.table import Table

from tedexec._logging import setup_logging
from tedexec.models import (
    ConfigError,
    ExecutionConfig,
    SpecificationType,
    TedExecError,
)
from tedexec.runner import ExecutionRunner
from tedexec.settings import GlobalSettings, load_settings
from tedexec.step_config import load_execution_config
from tedexec.utils import parse_env_args
from tedexec.validation import field_warnings, validate_config

_cli_log = logging.getLogger("tedexec.cli")


def _console() -> Console:
    return Console(highlight=False)


def _load_inputs(args: argparse.Namespace) -> tuple[ExecutionConfig, GlobalSettings]:
    config = load_execution_config(args.config)
    settings = load_settings(args.settings)
    return config, settings


def _print_json(payload: Any) -> None:
    print(json.dumps(payload, indent=2, sort_keys=True))


def _render_validation_table(payload: dict[str, Any]) -> None:
    console = _console()
    table = Table(title="Step Validation", show_header=False)
    table.add_column("Field", style="bold cyan")
    table.add_column("Value")
    table.add_row("Step", str(payload["config"]))
    table.add_row("Mode", str(payload["execution_mode"]))
    table.add_row("Valid", "yes" if payload["valid"] else "no")
    if payload["error"]:
        table.add_row("Error", str(payload["error"]))
    for warning in payload["warnings"]:
        table.add_row("Warning", warning)
    console.print(table)


def _render_command_table(payload: dict[str, Any]) -> None:
    console = _console()
    overview = Table(title="CLI Invocation", show_header=False)
    overview.add_column("Field", style="bold cyan")
    overview.add_column("Value")
    overview.add_row("Script", str(payload["script_path"]))
    overview.add_row("CLI version", str(payload["cli_version"]))
    console.print(overview)

    arguments = list(payload["arguments"][1:])
    table = Table(title="Arguments")
    table.add_column("Flag", style="bold")
    table.add_column("Value")
    for index in range(0, len(arguments), 2):
        flag = arguments[index]
        value = arguments[index + 1] if index + 1 < len(arguments) else ""
        table.add_row(flag, value)
    console.print(table)


def _render_connections_table(settings: GlobalSettings) -> None:
    console = _console()
    table = Table(title="Host Connections")
    table.add_column("ID", style="bold")
    table.add_column("Description")
    table.add_column("Host:Port")
    table.add_column("Code Page", justify="right")
    table.add_column("CES URL")
    for connection_id in sorted(settings.host_connections):
        connection = settings.host_connections[connection_id]
        table.add_row(
            connection_id,
            connection.description,
            connection.host_port,
            connection.code_page,
            connection.ces_url,
        )
    console.print(table)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="tedexec",
        description="Run Topaz for Enterprise Data specifications",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    def _add_step_args(target: argparse.ArgumentParser) -> None:
        target.add_argument("--config", required=True, help="Step YAML")
        target.add_argument(
            "--settings",
            default=None,
            help="Settings YAML path (default: $TEDEXEC_SETTINGS or ./ted-settings.yaml)",
        )

    run = sub.add_parser(
        "run",
        help="Execute the step's specifications with the TED CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=(
            "Examples:\n"
            "  tedexec run --config ted-step.yaml --workspace ./build\n"
            "  tedexec run --config ted-step.yaml --env TED_TRACE=1\n"
        ),
    )
    _add_step_args(run)
    run.add_argument(
        "--workspace", default=".", help="Working directory for the CLI process"
    )
    run.add_argument(
        "--env",
        action="append",
        default=None,
        help="Extra environment variable for the CLI (KEY=VALUE, repeatable)",
    )
    run.set_defaults(handler=_cmd_run)

    validate = sub.add_parser(
        "validate", help="Check a step against the settings without launching"
    )
    _add_step_args(validate)
    validate.add_argument("--format", choices=["json", "table"], default="table")
    validate.set_defaults(handler=_cmd_validate)

    show_command = sub.add_parser(
        "show-command", help="Show the (masked) CLI command a run would launch"
    )
    _add_step_args(show_command)
    show_command.add_argument("--format", choices=["json", "table"], default="table")
    show_command.set_defaults(handler=_cmd_show_command)

    connections = sub.add_parser(
        "list-connections", help="List host connections from the settings file"
    )
    connections.add_argument("--settings", default=None, help="Settings YAML path")
    connections.add_argument("--format", choices=["json", "table"], default="table")
    connections.set_defaults(handler=_cmd_list_connections)

    spec_types = sub.add_parser("spec-types", help="List specification types")
    spec_types.add_argument("--format", choices=["json", "table"], default="table")
    spec_types.set_defaults(handler=_cmd_spec_types)
    return parser


def _cmd_run(args: argparse.Namespace) -> int:
    config, settings = _load_inputs(args)
    runner = ExecutionRunner(config, settings, env_vars=parse_env_args(args.env))
    return 0 if runner.run(Path(args.workspace).expanduser().resolve()) else 1


def _cmd_validate(args: argparse.Namespace) -> int:
    config, settings = _load_inputs(args)
    error: str | None = None
    try:
        validate_config(
            config,
            host_lookup=settings.get_host_connection,
            credential_lookup=settings.get_credential,
        )
    except TedExecError as exc:
        error = str(exc)
    payload = {
        "config": str(Path(args.config).expanduser().resolve()),
        "execution_mode": config.execution_mode.name.lower(),
        "valid": error is None,
        "error": error,
        "warnings": field_warnings(config),
    }
    if args.format == "json":
        _print_json(payload)
    else:
        _render_validation_table(payload)
    return 0 if error is None else 1


def _cmd_show_command(args: argparse.Namespace) -> int:
    config, settings = _load_inputs(args)
    # The runner's own progress lines go to stderr so stdout stays parseable.
    runner = ExecutionRunner(config, settings, log=sys.stderr)
    prepared = runner.prepare_command()
    payload = {
        "script_path": prepared.script_path,
        "cli_version": prepared.cli_version,
        "arguments": prepared.arguments.to_masked_list(),
        "command_line": str(prepared.arguments),
    }
    if args.format == "json":
        _print_json(payload)
    else:
        _render_command_table(payload)
    return 0


def _cmd_list_connections(args: argparse.Namespace) -> int:
    settings = load_settings(args.settings)
    if args.format == "json":
        _print_json(
            {
                "settings": None if settings.source is None else str(settings.source),
                "host_connections": [
                    settings.host_connections[key].to_json()
                    for key in sorted(settings.host_connections)
                ],
            }
        )
    else:
        _render_connections_table(settings)
    return 0


def _cmd_spec_types(args: argparse.Namespace) -> int:
    items = [
        {"value": member.value, "display_name": member.display_name}
        for member in SpecificationType
        if member is not SpecificationType.EMPTY
    ]
    if args.format == "json":
        _print_json({"specification_types": items})
        return 0
    table = Table(title="Specification Types")
    table.add_column("Value", style="bold")
    table.add_column("Display Name")
    for item in items:
        table.add_row(item["value"], item["display_name"])
    _console().print(table)
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    setup_logging()
    parser = _build_parser()
    raw_argv = list(argv) if argv is not None else sys.argv[1:]
    args = parser.parse_args(raw_argv)
    command = str(getattr(args, "command", "unknown"))
    started = time.perf_counter()
    _cli_log.info("cli_command_start command=%s argv=%s", command, " ".join(raw_argv))

    exit_code = 1
    try:
        exit_code = int(args.handler(args))
    except ConfigError as exc:
        _cli_log.error("cli_command_error command=%s kind=config error=%s", command, exc)
        print(f"[config error] {exc}", file=sys.stderr)
        exit_code = 2
    except KeyboardInterrupt:
        _cli_log.error("cli_command_error command=%s kind=interrupted", command)
        print("\n[interrupted]", file=sys.stderr)
        exit_code = 130
    except TedExecError as exc:
        _cli_log.error(
            "cli_command_error command=%s kind=%s error=%s",
            command,
            type(exc).__name__,
            exc,
        )
        print(f"[error] {exc}", file=sys.stderr)
        exit_code = 1
    except OSError as exc:
        _cli_log.error("cli_command_error command=%s kind=os error=%s", command, exc)
        print(f"[error] {type(exc).__name__}: {exc}", file=sys.stderr)
        exit_code = 1
    finally:
        _cli_log.info(
            "cli_command_end command=%s exit_code=%s duration_sec=%.3f",
            command,
            exit_code,
            time.perf_counter() - started,
        )
    return exit_code


if __name__ == "__main__":
    raise SystemExit(main())
