from __future__ import annotations

import io
import os
import threading
from pathlib import Path

import pytest

from tedexec.arguments import MASK
from tedexec.models import (
    ExecutionConfig,
    ExecutionMode,
    HostSettings,
    SpecificationType,
)
from tedexec.runner import AgentEnvironment, ExecutionRunner
from tedexec.settings import CLI_LOCATION_ENV, GlobalSettings, parse_settings

pytestmark = pytest.mark.skipif(os.name != "posix", reason="fake CLI is a shell script")

_FAKE_CLI = """#!/bin/sh
printf '%s\\n' "$@" > args.txt
echo "fake TED CLI running"
sleep "${TED_FAKE_SLEEP:-0}"
exit "${TED_FAKE_EXIT:-0}"
"""
_UNIX = AgentEnvironment(file_separator="/", is_unix=True)


@pytest.fixture(autouse=True)
def _no_cli_override(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv(CLI_LOCATION_ENV, raising=False)


def _make_cli(
    tmp_path: Path, *, version: str = "20.09.03", script_text: str = _FAKE_CLI
) -> Path:
    cli_dir = tmp_path / "cli"
    cli_dir.mkdir()
    script = cli_dir / "TedCLI.sh"
    script.write_text(script_text, encoding="utf-8")
    script.chmod(0o755)
    (cli_dir / "TopazCLI.version").write_text(version + "\n", encoding="utf-8")
    return cli_dir


def _settings(cli_dir: Path | None) -> GlobalSettings:
    return parse_settings(
        {
            "cli_location": None if cli_dir is None else str(cli_dir),
            "host_connections": {
                "cw09": {"host": "cw09.example.com", "port": 16196, "code_page": 1047}
            },
            "credentials": {"ted-user": {"username": "TEDUSR", "password": "s3cret"}},
        }
    )


def _single() -> ExecutionConfig:
    return ExecutionConfig(
        repository_name="REPO1",
        specification_name="SPEC1",
        specification_type=SpecificationType.COMPARE,
    )


def _run(
    config: ExecutionConfig,
    settings: GlobalSettings,
    workspace: Path,
    **kwargs,
) -> tuple[bool, str]:
    log = io.StringIO()
    runner = ExecutionRunner(config, settings, agent=_UNIX, log=log, **kwargs)
    return runner.run(workspace), log.getvalue()


def _launched_args(workspace: Path) -> list[str]:
    return (workspace / "args.txt").read_text(encoding="utf-8").splitlines()


def test_successful_single_spec_run(tmp_path: Path) -> None:
    cli_dir = _make_cli(tmp_path)
    workspace = tmp_path / "build" / "ws"

    ok, output = _run(_single(), _settings(cli_dir), workspace)

    assert ok is True
    assert workspace.is_dir()
    assert _launched_args(workspace) == [
        "-cmd", "execute", "-r", "REPO1", "-s", "SPEC1", "-st", "Compare",
    ]  # fmt: skip
    assert f"CLI script path: {cli_dir}/TedCLI.sh" in output
    assert "fake TED CLI running" in output
    assert "TedCLI.sh exited with exit value = 0" in output
    assert output.rstrip().endswith("Execution success...")


def test_multi_spec_failure_halts(tmp_path: Path) -> None:
    cli_dir = _make_cli(tmp_path)
    config = ExecutionConfig(
        execution_mode=ExecutionMode.MULTI,
        specification_list="A Compare B Convert",
        exit_on_failure=False,
    )

    ok, output = _run(
        config, _settings(cli_dir), tmp_path / "ws", env_vars={"TED_FAKE_EXIT": "2"}
    )

    assert ok is False
    assert _launched_args(tmp_path / "ws") == [
        "-cmd", "execute", "-sl", "A Compare B Convert", "-eof", "false",
    ]  # fmt: skip
    assert "exited with exit value = 2" in output
    assert "Specification execution failed." in output
    assert output.rstrip().endswith("Execution failure")


@pytest.mark.parametrize("halt, expected", [(False, True), (True, False)])
def test_nonzero_exit_respects_halt_setting(tmp_path: Path, halt: bool, expected: bool) -> None:
    cli_dir = _make_cli(tmp_path)
    config = ExecutionConfig(
        specification_name="SPEC1",
        specification_type=SpecificationType.LOAD,
        halt_pipeline_on_failure=halt,
    )

    ok, output = _run(config, _settings(cli_dir), tmp_path / "ws", env_vars={"TED_FAKE_EXIT": "5"})

    assert ok is expected
    warning = 'Test result failed but build continues ("Halt pipeline if errors occur" is false)'
    assert (warning in output) is (not halt)


def test_missing_cli_location_fails_without_launch(tmp_path: Path) -> None:
    ok, output = _run(_single(), _settings(None), tmp_path / "ws")

    assert ok is False
    assert "CLI location was not specified" in output
    assert "exited with exit value" not in output
    assert not (tmp_path / "ws").exists()


def test_nonexistent_cli_location(tmp_path: Path) -> None:
    ok, output = _run(_single(), _settings(tmp_path / "nowhere"), tmp_path / "ws")
    assert ok is False
    assert "CLI location does not exist" in output


def test_cli_location_env_override(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    cli_dir = _make_cli(tmp_path)
    monkeypatch.setenv(CLI_LOCATION_ENV, str(cli_dir))
    ok, _output = _run(_single(), _settings(None), tmp_path / "ws")
    assert ok is True


def test_unsupported_cli_version(tmp_path: Path) -> None:
    cli_dir = _make_cli(tmp_path, version="20.04.01")
    ok, output = _run(_single(), _settings(cli_dir), tmp_path / "ws")
    assert ok is False
    assert "20.04.01 is not supported" in output
    assert not (tmp_path / "ws" / "args.txt").exists()


def test_validation_failure_never_launches(tmp_path: Path) -> None:
    cli_dir = _make_cli(tmp_path)
    config = ExecutionConfig(specification_type=SpecificationType.COMPARE)
    ok, output = _run(config, _settings(cli_dir), tmp_path / "ws")
    assert ok is False
    assert "missing specification name" in output
    assert not (tmp_path / "ws" / "args.txt").exists()


def test_non_numeric_timeout_only_warns(tmp_path: Path) -> None:
    cli_dir = _make_cli(tmp_path)
    config = ExecutionConfig(
        specification_name="SPEC1",
        specification_type=SpecificationType.COMPARE,
        execution_timeout="soon",
    )
    ok, output = _run(config, _settings(cli_dir), tmp_path / "ws")
    assert ok is True
    assert "WARNING: execution timeout 'soon' is not an integer" in output
    assert _launched_args(tmp_path / "ws")[-2:] == ["-t", "soon"]


def test_password_reaches_cli_but_not_log(tmp_path: Path) -> None:
    cli_dir = _make_cli(tmp_path)
    config = ExecutionConfig(
        specification_name="SPEC1",
        specification_type=SpecificationType.EXTRACT,
        host=HostSettings(
            enabled=True,
            connection_id="cw09",
            include_credentials=True,
            credentials_id="ted-user",
        ),
    )

    ok, output = _run(config, _settings(cli_dir), tmp_path / "ws")

    assert ok is True
    launched = _launched_args(tmp_path / "ws")
    assert launched[-10:] == [
        "-eh", "cw09.example.com", "-ehp", "16196", "-ccs", "1047",
        "-hid", "TEDUSR", "-hpw", "s3cret",
    ]  # fmt: skip
    assert "s3cret" not in output
    assert MASK in output


def test_bare_execution_context_resolves_under_cli_location(tmp_path: Path) -> None:
    cli_dir = _make_cli(tmp_path)
    config = ExecutionConfig(
        specification_name="SPEC1",
        specification_type=SpecificationType.COMPARE,
        execution_context="nightly.context",
    )
    ok, _output = _run(config, _settings(cli_dir), tmp_path / "ws")
    assert ok is True
    launched = _launched_args(tmp_path / "ws")
    assert launched[launched.index("-ec") + 1] == f"{cli_dir}/EnterpriseData/nightly.context"


def test_env_vars_reach_the_process(tmp_path: Path) -> None:
    cli_dir = _make_cli(tmp_path)
    ok, output = _run(
        _single(), _settings(cli_dir), tmp_path / "ws", env_vars={"TED_FAKE_EXIT": "0"}
    )
    assert ok is True
    assert "exit value = 0" in output


def test_cancelled_run_terminates_process(tmp_path: Path) -> None:
    cli_dir = _make_cli(tmp_path)
    cancel = threading.Event()
    cancel.set()

    ok, output = _run(
        _single(),
        _settings(cli_dir),
        tmp_path / "ws",
        env_vars={"TED_FAKE_SLEEP": "30"},
        cancel_event=cancel,
    )

    assert ok is False
    assert "Execution was interrupted" in output
    assert "exited with exit value" not in output


def test_prepare_command_does_not_launch(tmp_path: Path) -> None:
    cli_dir = _make_cli(tmp_path, version="21.01.01")
    runner = ExecutionRunner(_single(), _settings(cli_dir), agent=_UNIX, log=io.StringIO())
    prepared = runner.prepare_command()
    assert prepared.cli_version == "21.01.01"
    assert prepared.script_path == f"{cli_dir}/TedCLI.sh"
    assert prepared.arguments.to_list()[0] == prepared.script_path


def test_agent_environment_script_name() -> None:
    assert AgentEnvironment(file_separator="/", is_unix=True).script_name == "TedCLI.sh"
    assert AgentEnvironment(file_separator="\\", is_unix=False).script_name == "TedCLI.bat"


_NOISY_CLI = """#!/bin/sh
printf 'code page byte: \\377\\n'
i=0
while [ "$i" -lt 4000 ]; do
    echo "output line $i with enough padding to fill the pipe buffer"
    i=$((i + 1))
done
exit 0
"""


def test_non_utf8_and_large_output_is_streamed(tmp_path: Path) -> None:
    cli_dir = _make_cli(tmp_path, script_text=_NOISY_CLI)
    cancel = threading.Event()
    # Upper bound so a stalled pipe fails the test instead of hanging it.
    watchdog = threading.Timer(30.0, cancel.set)
    watchdog.start()
    try:
        ok, output = _run(_single(), _settings(cli_dir), tmp_path / "ws", cancel_event=cancel)
    finally:
        watchdog.cancel()

    assert ok is True
    assert "code page byte: \ufffd" in output
    assert "output line 3999 with enough padding" in output
    assert "exited with exit value = 0" in output


def test_unlaunchable_argument_is_a_build_failure(tmp_path: Path) -> None:
    cli_dir = _make_cli(tmp_path)
    config = ExecutionConfig(
        specification_name="S\x00X",
        specification_type=SpecificationType.COMPARE,
    )

    ok, output = _run(config, _settings(cli_dir), tmp_path / "ws")

    assert ok is False
    assert "Failed to launch TedCLI.sh" in output
    assert output.rstrip().endswith("Execution failure")
