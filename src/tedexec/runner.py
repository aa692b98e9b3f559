from __future__ import annotations

import logging
import os
import signal
import subprocess
import sys
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, TextIO

import tedexec
from tedexec.arguments import ArgumentList, build_command, make_context_resolver
from tedexec.models import (
    Credential,
    ExecutionConfig,
    HostConnection,
    InterruptedExecution,
    NotFoundError,
    ProcessExecutionFailure,
    TedExecError,
)
from tedexec.settings import GlobalSettings
from tedexec.validation import field_warnings, validate_config
from tedexec.versions import check_cli_compatibility, read_cli_version

_log = logging.getLogger("tedexec.runner")

TED_CLI_SH = "TedCLI.sh"
TED_CLI_BAT = "TedCLI.bat"
DISPLAY_NAME = "Topaz for Enterprise Data Execution"
HALT_PIPELINE_TITLE = "Halt pipeline if errors occur"
_RULE = "----------------------------------"


@dataclass(frozen=True)
class AgentEnvironment:
    """Facts about the machine the CLI script runs on."""

    file_separator: str
    is_unix: bool

    @classmethod
    def local(cls) -> "AgentEnvironment":
        return cls(file_separator=os.sep, is_unix=os.name == "posix")

    @property
    def script_name(self) -> str:
        return TED_CLI_SH if self.is_unix else TED_CLI_BAT


@dataclass(frozen=True)
class PreparedCommand:
    script_path: str
    cli_version: str
    arguments: ArgumentList


class BuildLog:
    """Line-oriented writer for the user-facing build log."""

    def __init__(self, stream: TextIO | None = None):
        self._stream = stream if stream is not None else sys.stdout
        self._lock = threading.Lock()

    def println(self, message: str = "") -> None:
        with self._lock:
            self._stream.write(message + "\n")
            self._stream.flush()

    def write_raw(self, chunk: str) -> None:
        with self._lock:
            self._stream.write(chunk)
            self._stream.flush()


def _signal_process_tree(process: subprocess.Popen[str], signum: int) -> None:
    if process.poll() is not None:
        return
    if os.name == "posix":
        try:
            os.killpg(os.getpgid(process.pid), signum)
            return
        except ProcessLookupError:
            return
        except OSError:
            pass
    try:
        process.send_signal(signum)
    except ProcessLookupError:
        return


def _terminate(process: subprocess.Popen[str]) -> None:
    _signal_process_tree(process, signal.SIGTERM)
    try:
        process.wait(timeout=5.0)
        return
    except subprocess.TimeoutExpired:
        pass
    _signal_process_tree(process, getattr(signal, "SIGKILL", signal.SIGTERM))
    try:
        process.wait(timeout=5.0)
    except subprocess.TimeoutExpired:
        _log.error("process_kill_timeout pid=%s", process.pid)


def _pump_output(stream: TextIO, build_log: BuildLog) -> None:
    try:
        for line in iter(stream.readline, ""):
            build_log.write_raw(line)
    except (OSError, ValueError) as exc:
        _log.error("output_pump_failed error=%s", exc)
    finally:
        stream.close()


class ExecutionRunner:
    """Run one execution step: validate, locate the CLI, launch and map the result."""

    _POLL_INTERVAL_SEC = 0.1

    def __init__(
        self,
        config: ExecutionConfig,
        settings: GlobalSettings,
        *,
        agent: AgentEnvironment | None = None,
        log: TextIO | None = None,
        env_vars: Mapping[str, str] | None = None,
        cancel_event: threading.Event | None = None,
    ):
        self.config = config
        self.settings = settings
        self.agent = agent or AgentEnvironment.local()
        self.build_log = BuildLog(log)
        self.env_vars = dict(env_vars or {})
        self.cancel_event = cancel_event

    def run(self, workspace: str | Path) -> bool:
        self.build_log.println(f"Running {DISPLAY_NAME}")
        self.build_log.println(f"tedexec version: {tedexec.__version__}")
        started = time.perf_counter()
        _log.info("run_start workspace=%s mode=%s", workspace, self.config.execution_mode.name)
        success = False
        try:
            success = self._execute(Path(workspace))
        except ProcessExecutionFailure as exc:
            _log.error("run_failed exit_code=%s", exc.exit_code)
            self.build_log.println("Specification execution failed.")
        except InterruptedExecution as exc:
            _log.error("run_interrupted error=%s", exc)
            self.build_log.println(str(exc))
        except TedExecError as exc:
            _log.error("run_error kind=%s error=%s", type(exc).__name__, exc)
            self.build_log.println(str(exc))
        except OSError as exc:
            _log.error("run_error kind=os error=%s", exc)
            self.build_log.println(f"ERROR: {exc}")
        finally:
            _log.info(
                "run_end success=%s duration_sec=%.3f",
                success,
                time.perf_counter() - started,
            )
        if success:
            self.build_log.println("Execution success...")
        else:
            self.build_log.println("Execution failure")
        return success

    def _resolve_host_connection(self) -> HostConnection | None:
        host = self.config.host
        if not (host.enabled and host.connection_id):
            return None
        return self.settings.get_host_connection(host.connection_id)

    def _resolve_credential(self) -> Credential | None:
        host = self.config.host
        if not (host.enabled and host.include_credentials and host.credentials_id):
            return None
        return self.settings.get_credential(host.credentials_id)

    def _locate_cli(self) -> Path:
        location = self.settings.resolved_cli_location()
        if not location:
            raise NotFoundError(
                "ERROR: Topaz Workbench CLI location was not specified. "
                + self.settings.remediation_hint
            )
        cli_dir = Path(location)
        if not cli_dir.is_dir():
            raise NotFoundError(
                f"ERROR: Topaz Workbench CLI location does not exist. Location: {cli_dir}. "
                + self.settings.remediation_hint
            )
        return cli_dir

    def prepare_command(self) -> PreparedCommand:
        """Validate and resolve everything needed to launch, without launching."""
        validate_config(
            self.config,
            host_lookup=self.settings.get_host_connection,
            credential_lookup=self.settings.get_credential,
        )
        for warning in field_warnings(self.config):
            _log.warning("field_warning %s", warning)
            self.build_log.println(f"WARNING: {warning}")

        cli_dir = self._locate_cli()
        separator = self.agent.file_separator
        script_path = f"{cli_dir}{separator}{self.agent.script_name}"
        self.build_log.println(f"Topaz for Enterprise Data CLI script path: {script_path}")

        cli_version = read_cli_version(cli_dir, self.settings.version_file)
        check_cli_compatibility(cli_version)
        _log.info("cli_resolved path=%s version=%s", script_path, cli_version)

        arguments = build_command(
            script_path,
            self.config,
            cli_version=cli_version,
            host_connection=self._resolve_host_connection(),
            credential=self._resolve_credential(),
            resolve_context_path=make_context_resolver(str(cli_dir), separator),
        )
        return PreparedCommand(
            script_path=script_path, cli_version=cli_version, arguments=arguments
        )

    def _execute(self, workspace: Path) -> bool:
        prepared = self.prepare_command()
        workspace.mkdir(parents=True, exist_ok=True)

        self.build_log.println(_RULE)
        self.build_log.println(
            "Now executing Enterprise Data Execution CLI and printing out the execution log..."
        )
        self.build_log.println(_RULE)
        self.build_log.println(f"$ {prepared.arguments}")

        exit_code = self._launch(prepared.arguments, workspace)

        self.build_log.println(f"{self.agent.script_name} exited with exit value = {exit_code}")
        self.build_log.println(_RULE)
        self.build_log.println(
            "Enterprise Data Execution CLI finished executing, now analysing the result..."
        )
        self.build_log.println(_RULE)
        return self._interpret_exit_code(exit_code)

    def _interpret_exit_code(self, exit_code: int) -> bool:
        if exit_code == 0:
            return True
        if not self.config.halt_pipeline_on_failure:
            _log.warning("soft_fail exit_code=%s", exit_code)
            self.build_log.println(
                f'WARNING: Test result failed but build continues ("{HALT_PIPELINE_TITLE}" is false)'
            )
            return True
        raise ProcessExecutionFailure(exit_code)

    def _launch(self, arguments: ArgumentList, workspace: Path) -> int:
        child_env = os.environ.copy()
        child_env.update(self.env_vars)
        try:
            process = subprocess.Popen(
                arguments.to_list(),
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                # CLI output may carry host code-page bytes.
                encoding="utf-8",
                errors="replace",
                env=child_env,
                cwd=str(workspace),
                start_new_session=os.name == "posix",
            )
        except (OSError, ValueError) as exc:
            raise TedExecError(
                f"Failed to launch {self.agent.script_name}: {exc}"
            ) from exc
        _log.info("process_start pid=%s cwd=%s", process.pid, workspace)

        if process.stdout is None:
            _terminate(process)
            raise TedExecError(f"No output pipe for {self.agent.script_name}")
        pump = threading.Thread(
            target=_pump_output,
            args=(process.stdout, self.build_log),
            name="tedexec-output",
            daemon=True,
        )
        pump.start()
        try:
            exit_code = self._wait(process)
        except BaseException:
            _terminate(process)
            pump.join(timeout=5.0)
            raise
        pump.join()
        _log.info("process_exit pid=%s exit_code=%s", process.pid, exit_code)
        return exit_code

    def _wait(self, process: subprocess.Popen[str]) -> int:
        try:
            while True:
                if self.cancel_event is not None and self.cancel_event.is_set():
                    raise InterruptedExecution(
                        "Execution was interrupted; the CLI process was terminated."
                    )
                try:
                    return process.wait(timeout=self._POLL_INTERVAL_SEC)
                except subprocess.TimeoutExpired:
                    continue
        except KeyboardInterrupt as exc:
            raise InterruptedExecution(
                "Execution was interrupted; the CLI process was terminated."
            ) from exc
