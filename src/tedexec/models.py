from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class TedExecError(RuntimeError):
    """Base error for execution step failures."""


class ConfigError(TedExecError):
    """Raised when a settings or step document is malformed."""


class ValidationError(TedExecError):
    """Raised when step preconditions are unmet before launch."""


class NotFoundError(TedExecError):
    """Raised when the CLI installation (or part of it) cannot be found."""


class CompatibilityError(TedExecError):
    """Raised when the installed CLI is older than the supported minimum."""

    def __init__(self, required: str, found: str):
        super().__init__(
            f"Topaz for Enterprise Data CLI version {found} is not supported. "
            f"Minimum required version is {required}."
        )
        self.required = required
        self.found = found


class ProcessExecutionFailure(TedExecError):
    """Raised when the CLI exits nonzero and the step halts on failure."""

    def __init__(self, exit_code: int):
        super().__init__(f"Specification execution failed (exit code {exit_code}).")
        self.exit_code = exit_code


class InterruptedExecution(TedExecError):
    """Raised when the wait for the CLI process is interrupted."""


class SpecificationType(str, Enum):
    EMPTY = ""
    COMPARE = "Compare"
    CONVERT = "Convert"
    EXTRACT = "Extract"
    LOAD = "Load"
    EXECUTION_SUITE = "ExSuite"

    @property
    def display_name(self) -> str:
        return _SPEC_TYPE_DISPLAY[self]

    @classmethod
    def parse(cls, value: Any) -> "SpecificationType":
        if value is None:
            return cls.EMPTY
        if isinstance(value, cls):
            return value
        text = str(value).strip()
        for member in cls:
            if text in (member.value, member.display_name):
                return member
        allowed = [m.value for m in cls if m.value]
        raise ConfigError(
            f"Unknown specification type '{text}'. Allowed: {allowed} (or empty)"
        )


_SPEC_TYPE_DISPLAY = {
    SpecificationType.EMPTY: "",
    SpecificationType.COMPARE: "Compare Pro",
    SpecificationType.CONVERT: "Converter Pro",
    SpecificationType.EXTRACT: "Related Extract",
    SpecificationType.LOAD: "Related Load",
    SpecificationType.EXECUTION_SUITE: "Execution Suite",
}


class BooleanResponse(str, Enum):
    """Tri-state boolean as it appears on the CLI and in older step documents."""

    EMPTY = ""
    TRUE = "true"
    FALSE = "false"

    @classmethod
    def of(cls, flag: bool) -> "BooleanResponse":
        return cls.TRUE if flag else cls.FALSE

    @classmethod
    def parse(cls, value: Any) -> "BooleanResponse":
        if value is None:
            return cls.EMPTY
        if isinstance(value, bool):
            return cls.of(value)
        text = str(value).strip().lower()
        for member in cls:
            if member.value == text:
                return member
        raise ConfigError(f"Expected true/false, got '{value}'")

    def resolve(self, default: bool) -> bool:
        if self is BooleanResponse.EMPTY:
            return default
        return self is BooleanResponse.TRUE


class ExecutionMode(str, Enum):
    SINGLE = "-sse"
    MULTI = "-mse"

    @classmethod
    def parse(cls, value: Any) -> "ExecutionMode":
        # Anything unset or unrecognized runs a single specification.
        if isinstance(value, cls):
            return value
        text = "" if value is None else str(value).strip().lower()
        if text in (cls.MULTI.value, "multi", "multiple"):
            return cls.MULTI
        return cls.SINGLE


@dataclass(frozen=True)
class CesSettings:
    enabled: bool = False
    url: str = ""
    use_cloud: bool = False
    customer_number: str = ""
    site_id: str = ""


@dataclass(frozen=True)
class ServerEndpoint:
    enabled: bool = False
    host: str = ""
    port: str = ""


@dataclass(frozen=True)
class HostSettings:
    enabled: bool = False
    connection_id: str = ""
    include_credentials: bool = False
    credentials_id: str = ""


JOBCARD_LINES = 5


@dataclass(frozen=True)
class JobcardSettings:
    enabled: bool = False
    lines: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if len(self.lines) > JOBCARD_LINES:
            raise ConfigError(
                f"A JCL jobcard has at most {JOBCARD_LINES} lines, got {len(self.lines)}"
            )

    def line(self, number: int) -> str:
        """Jobcard line by 1-based number; missing lines are empty."""
        index = number - 1
        return self.lines[index] if 0 <= index < len(self.lines) else ""


@dataclass(frozen=True)
class DatasetQualifiers:
    enabled: bool = False
    high_level_qualifier: str = ""
    temp_prefix: str = ""
    temp_suffix: str = ""


@dataclass(frozen=True)
class DataPrivacyOverrides:
    enabled: bool = False
    fadebug: str = ""
    faexpath: str = ""
    faipaddr: str = ""
    fajopts: str = ""
    fajpath: str = ""


@dataclass(frozen=True)
class ExecutionConfig:
    repository_name: str = ""
    results_repository_name: str = ""
    execution_mode: ExecutionMode = ExecutionMode.SINGLE
    specification_name: str = ""
    specification_type: SpecificationType = SpecificationType.EMPTY
    specification_list: str = ""
    execution_context: str = ""
    execution_timeout: str = ""
    exit_on_failure: bool = True
    ces: CesSettings = field(default_factory=CesSettings)
    comm_manager: ServerEndpoint = field(default_factory=ServerEndpoint)
    execution_server: ServerEndpoint = field(default_factory=ServerEndpoint)
    host: HostSettings = field(default_factory=HostSettings)
    jobcard: JobcardSettings = field(default_factory=JobcardSettings)
    qualifiers: DatasetQualifiers = field(default_factory=DatasetQualifiers)
    data_privacy: DataPrivacyOverrides = field(default_factory=DataPrivacyOverrides)
    halt_pipeline_on_failure: bool = True

    @property
    def is_single_spec(self) -> bool:
        return self.execution_mode is ExecutionMode.SINGLE

    def to_json(self) -> dict[str, Any]:
        return {
            "repository_name": self.repository_name,
            "results_repository_name": self.results_repository_name,
            "execution_mode": self.execution_mode.value,
            "specification_name": self.specification_name,
            "specification_type": self.specification_type.value,
            "specification_list": self.specification_list,
            "execution_context": self.execution_context,
            "execution_timeout": self.execution_timeout,
            "exit_on_failure": self.exit_on_failure,
            "ces": {
                "enabled": self.ces.enabled,
                "url": self.ces.url,
                "use_cloud": self.ces.use_cloud,
                "customer_number": self.ces.customer_number,
                "site_id": self.ces.site_id,
            },
            "comm_manager": {
                "enabled": self.comm_manager.enabled,
                "host": self.comm_manager.host,
                "port": self.comm_manager.port,
            },
            "execution_server": {
                "enabled": self.execution_server.enabled,
                "host": self.execution_server.host,
                "port": self.execution_server.port,
            },
            "host": {
                "enabled": self.host.enabled,
                "connection_id": self.host.connection_id,
                "include_credentials": self.host.include_credentials,
                "credentials_id": self.host.credentials_id,
            },
            "jobcard": {
                "enabled": self.jobcard.enabled,
                "lines": list(self.jobcard.lines),
            },
            "qualifiers": {
                "enabled": self.qualifiers.enabled,
                "high_level_qualifier": self.qualifiers.high_level_qualifier,
                "temp_prefix": self.qualifiers.temp_prefix,
                "temp_suffix": self.qualifiers.temp_suffix,
            },
            "data_privacy": {
                "enabled": self.data_privacy.enabled,
                "fadebug": self.data_privacy.fadebug,
                "faexpath": self.data_privacy.faexpath,
                "faipaddr": self.data_privacy.faipaddr,
                "fajopts": self.data_privacy.fajopts,
                "fajpath": self.data_privacy.fajpath,
            },
            "halt_pipeline_on_failure": self.halt_pipeline_on_failure,
        }


@dataclass(frozen=True)
class HostConnection:
    connection_id: str
    host: str
    port: str
    code_page: str
    description: str = ""
    ces_url: str = ""

    @property
    def host_port(self) -> str:
        return f"{self.host}:{self.port}"

    def to_json(self) -> dict[str, Any]:
        return {
            "connection_id": self.connection_id,
            "host": self.host,
            "port": self.port,
            "code_page": self.code_page,
            "description": self.description,
            "ces_url": self.ces_url,
        }


@dataclass(frozen=True)
class Credential:
    credentials_id: str
    username: str
    password: str = field(repr=False)
    description: str = ""
