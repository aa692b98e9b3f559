"""Argument construction for the Topaz for Enterprise Data CLI script.

Flags are emitted in a fixed order so two builds from the same step
configuration produce byte-identical command lines. Free-text values go
through :func:`escape_for_script`; ports, timeouts and values read from the
host-connection and credential registries are passed through as-is.
"""

from __future__ import annotations

import shlex
from dataclasses import dataclass
from typing import Callable, Iterator, NamedTuple

from tedexec.models import (
    BooleanResponse,
    Credential,
    ExecutionConfig,
    HostConnection,
)
from tedexec.utils import escape_for_script
from tedexec.versions import EXECUTE_COMMAND_MIN_VERSION, is_minimum_release

MASK = "********"
EXECUTE_VERB = "execute"
CONTEXT_SUBDIR = "EnterpriseData"


class CommandFlag(NamedTuple):
    long: str
    short: str


COMMAND = CommandFlag("-cmd", "-cmd")
REPOSITORY = CommandFlag("-repository", "-r")
RESULTS_REPOSITORY = CommandFlag("-results-repository", "-rr")
SPECIFICATION = CommandFlag("-specification", "-s")
SPECIFICATION_TYPE = CommandFlag("-specification-type", "-st")
SPECIFICATION_LIST = CommandFlag("-specification-list", "-sl")
EXIT_ON_FAILURE = CommandFlag("-exit-on-failure", "-eof")
EXECUTION_TIMEOUT = CommandFlag("-execution-timeout", "-t")
EXECUTION_CONTEXT = CommandFlag("-execution-context", "-ec")
COMM_MANAGER = CommandFlag("-comm-manager", "-cm")
COMM_MANAGER_PORT = CommandFlag("-comm-manager-port", "-cmp")
CES_URL = CommandFlag("-ces-uri", "-ces")
USE_CLOUD_CES = CommandFlag("-use-cloud", "-ucd")
CES_CUSTOMER_NUMBER = CommandFlag("-ces-cust-no", "-cno")
CES_SITE_ID = CommandFlag("-ces-site-id", "-sid")
EXECUTION_SERVER = CommandFlag("-execution-server", "-es")
EXECUTION_SERVER_PORT = CommandFlag("-execution-server-port", "-esp")
EXECUTION_HOST = CommandFlag("-execution-host", "-eh")
EXECUTION_HOST_PORT = CommandFlag("-execution-host-port", "-ehp")
CCSID = CommandFlag("-ccsid", "-ccs")
HCI_USER_ID = CommandFlag("-hci-userid", "-hid")
HCI_PASSWORD = CommandFlag("-hci-password", "-hpw")
JCL_JOBCARDS = (
    CommandFlag("-jcl-jobcard1", "-j1"),
    CommandFlag("-jcl-jobcard2", "-j2"),
    CommandFlag("-jcl-jobcard3", "-j3"),
    CommandFlag("-jcl-jobcard4", "-j4"),
    CommandFlag("-jcl-jobcard5", "-j5"),
)
DATASET_HLQ = CommandFlag("-dataset-hlq", "-hlq")
TEMP_DATASET_PREFIX = CommandFlag("-temp-dataset-prefix", "-px")
TEMP_DATASET_SUFFIX = CommandFlag("-temp-dataset-suffix", "-sx")
FADEBUG = CommandFlag("-fadebug", "-fdb")
FAEXPATH = CommandFlag("-faexpath", "-fxp")
FAIPADDR = CommandFlag("-faipaddr", "-fip")
FAJOPTS = CommandFlag("-fajopts", "-fjo")
FAJPATH = CommandFlag("-fajpath", "-fjp")

ContextPathResolver = Callable[[str], str]


@dataclass(frozen=True)
class _Argument:
    value: str
    masked: bool = False


class ArgumentList:
    """Ordered process arguments with per-value masking for display."""

    def __init__(self) -> None:
        self._items: list[_Argument] = []

    def add(self, value: str, *, masked: bool = False) -> "ArgumentList":
        self._items.append(_Argument(value=value, masked=masked))
        return self

    def add_flag(
        self, flag: CommandFlag, value: str, *, masked: bool = False
    ) -> "ArgumentList":
        return self.add(flag.short).add(value, masked=masked)

    def add_if_present(
        self, flag: CommandFlag, value: str, *, escape: bool = True
    ) -> "ArgumentList":
        if value:
            self.add_flag(flag, escape_for_script(value) if escape else value)
        return self

    def extend(self, other: "ArgumentList") -> "ArgumentList":
        self._items.extend(other._items)
        return self

    def to_list(self) -> list[str]:
        return [item.value for item in self._items]

    def to_masked_list(self) -> list[str]:
        return [MASK if item.masked else item.value for item in self._items]

    def __iter__(self) -> Iterator[str]:
        return iter(self.to_list())

    def __len__(self) -> int:
        return len(self._items)

    def __str__(self) -> str:
        return " ".join(shlex.quote(value) for value in self.to_masked_list())


def make_context_resolver(cli_location: str, file_separator: str) -> ContextPathResolver:
    """Resolve a bare execution-context name under the CLI's EnterpriseData dir."""

    def _resolve(name: str) -> str:
        return file_separator.join((cli_location, CONTEXT_SUBDIR, name))

    return _resolve


def _is_path_like(value: str) -> bool:
    return "/" in value or "\\" in value


def _add_specification_args(args: ArgumentList, config: ExecutionConfig) -> None:
    if config.is_single_spec:
        args.add_if_present(SPECIFICATION, config.specification_name)
        args.add_if_present(SPECIFICATION_TYPE, config.specification_type.value)
        return
    args.add_if_present(SPECIFICATION_LIST, config.specification_list)
    args.add_flag(EXIT_ON_FAILURE, BooleanResponse.of(config.exit_on_failure).value)


def _add_execution_context(
    args: ArgumentList, config: ExecutionConfig, resolve_context_path: ContextPathResolver
) -> None:
    context = config.execution_context
    if not context:
        return
    if not _is_path_like(context):
        context = resolve_context_path(context)
    args.add_flag(EXECUTION_CONTEXT, escape_for_script(context))


def _add_ces_args(args: ArgumentList, config: ExecutionConfig) -> None:
    ces = config.ces
    if not ces.enabled:
        return
    args.add_flag(USE_CLOUD_CES, BooleanResponse.of(ces.use_cloud).value)
    args.add_if_present(CES_URL, ces.url)
    args.add_if_present(CES_CUSTOMER_NUMBER, ces.customer_number, escape=False)
    args.add_if_present(CES_SITE_ID, ces.site_id, escape=False)


def _add_server_args(args: ArgumentList, config: ExecutionConfig) -> None:
    if config.comm_manager.enabled:
        args.add_if_present(COMM_MANAGER, config.comm_manager.host)
        args.add_if_present(COMM_MANAGER_PORT, config.comm_manager.port, escape=False)
    if config.execution_server.enabled:
        args.add_if_present(EXECUTION_SERVER, config.execution_server.host)
        args.add_if_present(
            EXECUTION_SERVER_PORT, config.execution_server.port, escape=False
        )


def _add_mainframe_args(
    args: ArgumentList,
    config: ExecutionConfig,
    host_connection: HostConnection | None,
    credential: Credential | None,
) -> None:
    host = config.host
    if host.enabled and host.connection_id and host_connection is not None:
        args.add_flag(EXECUTION_HOST, host_connection.host)
        args.add_flag(EXECUTION_HOST_PORT, host_connection.port)
        args.add_flag(CCSID, host_connection.code_page)
    if (
        host.enabled
        and host.include_credentials
        and host.credentials_id
        and credential is not None
    ):
        args.add_flag(HCI_USER_ID, credential.username)
        args.add_flag(HCI_PASSWORD, credential.password, masked=True)

    if config.jobcard.enabled:
        for number, flag in enumerate(JCL_JOBCARDS, start=1):
            args.add_if_present(flag, config.jobcard.line(number))

    qualifiers = config.qualifiers
    if qualifiers.enabled:
        args.add_if_present(DATASET_HLQ, qualifiers.high_level_qualifier)
        args.add_if_present(TEMP_DATASET_PREFIX, qualifiers.temp_prefix)
        args.add_if_present(TEMP_DATASET_SUFFIX, qualifiers.temp_suffix)

    overrides = config.data_privacy
    if overrides.enabled:
        args.add_if_present(FADEBUG, overrides.fadebug)
        args.add_if_present(FAEXPATH, overrides.faexpath)
        args.add_if_present(FAIPADDR, overrides.faipaddr)
        args.add_if_present(FAJOPTS, overrides.fajopts)
        args.add_if_present(FAJPATH, overrides.fajpath)


def build_arguments(
    config: ExecutionConfig,
    *,
    host_connection: HostConnection | None,
    credential: Credential | None,
    resolve_context_path: ContextPathResolver,
) -> ArgumentList:
    """Flags for an ``execute`` run, starting with the command verb."""
    args = ArgumentList()
    args.add_flag(COMMAND, EXECUTE_VERB)
    args.add_if_present(REPOSITORY, config.repository_name)
    args.add_if_present(RESULTS_REPOSITORY, config.results_repository_name)
    _add_specification_args(args, config)
    args.add_if_present(EXECUTION_TIMEOUT, config.execution_timeout, escape=False)
    _add_execution_context(args, config, resolve_context_path)
    _add_ces_args(args, config)
    _add_server_args(args, config)
    _add_mainframe_args(args, config, host_connection, credential)
    return args


def build_command(
    script_path: str,
    config: ExecutionConfig,
    *,
    cli_version: str | None,
    host_connection: HostConnection | None,
    credential: Credential | None,
    resolve_context_path: ContextPathResolver,
) -> ArgumentList:
    """Full process argument vector: the CLI script followed by its flags.

    CLI releases older than the ``execute`` command get the bare script path
    and nothing else.
    """
    command = ArgumentList().add(script_path)
    if not is_minimum_release(cli_version, EXECUTE_COMMAND_MIN_VERSION):
        return command
    return command.extend(
        build_arguments(
            config,
            host_connection=host_connection,
            credential=credential,
            resolve_context_path=resolve_context_path,
        )
    )
