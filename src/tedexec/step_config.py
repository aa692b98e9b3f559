"""Load an execution step from a pipeline document.

A step document is a flat mapping for the identity/execution fields plus
one nested mapping per optional block, each gated by its ``enabled`` key::

    repository_name: REPO1
    execution_type: single
    specification_name: SPEC1
    specification_type: Compare
    host:
      enabled: true
      connection_id: cw09
      include_credentials: true
      credentials_id: ted-user
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml

from tedexec.models import (
    JOBCARD_LINES,
    BooleanResponse,
    CesSettings,
    ConfigError,
    DataPrivacyOverrides,
    DatasetQualifiers,
    ExecutionConfig,
    ExecutionMode,
    HostSettings,
    JobcardSettings,
    ServerEndpoint,
    SpecificationType,
)
from tedexec.utils import (
    coerce_bool,
    coerce_text,
    optional_mapping,
    reject_unknown_keys,
    require_mapping,
)

STEP_ALLOWED_KEYS = {
    "repository_name",
    "results_repository_name",
    "execution_type",
    "specification_name",
    "specification_type",
    "specification_list",
    "execution_context",
    "execution_timeout",
    "exit_on_failure",
    "halt_pipeline_on_failure",
    "ces",
    "comm_manager",
    "execution_server",
    "host",
    "jobcard",
    "qualifiers",
    "data_privacy",
}
_CES_KEYS = {"enabled", "url", "use_cloud", "customer_number", "site_id"}
_ENDPOINT_KEYS = {"enabled", "host", "port"}
_HOST_KEYS = {"enabled", "connection_id", "include_credentials", "credentials_id"}
_JOBCARD_KEYS = {"enabled", "lines"}
_QUALIFIER_KEYS = {"enabled", "high_level_qualifier", "temp_prefix", "temp_suffix"}
_DATA_PRIVACY_KEYS = {"enabled", "fadebug", "faexpath", "faipaddr", "fajopts", "fajpath"}


def _block(data: dict[str, Any], key: str, allowed: set[str]) -> dict[str, Any]:
    block = optional_mapping(data.get(key), label=key)
    reject_unknown_keys(block, allowed, label=key)
    return block


def _tri_state(value: Any, *, label: str, default: bool) -> bool:
    # Older step documents stored these flags as "", "true" or "false".
    try:
        return BooleanResponse.parse(value).resolve(default)
    except ConfigError as exc:
        raise ConfigError(f"{label}: {exc}") from exc


def _text(block: dict[str, Any], key: str, *, label: str) -> str:
    return coerce_text(block.get(key), label=f"{label}.{key}")


def _enabled(block: dict[str, Any], *, label: str) -> bool:
    return coerce_bool(block.get("enabled"), label=f"{label}.enabled", default=False)


def _parse_jobcard(block: dict[str, Any]) -> JobcardSettings:
    raw_lines = block.get("lines")
    if raw_lines is None:
        raw_lines = []
    if not isinstance(raw_lines, list):
        raise ConfigError("jobcard.lines must be a list of strings")
    if len(raw_lines) > JOBCARD_LINES:
        raise ConfigError(f"jobcard.lines has at most {JOBCARD_LINES} entries")
    # Jobcard text keeps its leading blanks; JCL continuation depends on them.
    lines: list[str] = []
    for index, item in enumerate(raw_lines, start=1):
        if item is None:
            lines.append("")
        elif isinstance(item, str):
            lines.append(item.rstrip())
        else:
            raise ConfigError(f"jobcard.lines[{index}] must be a string")
    return JobcardSettings(enabled=_enabled(block, label="jobcard"), lines=tuple(lines))


def parse_execution_config(payload: Any) -> ExecutionConfig:
    data = require_mapping(payload, label="step")
    reject_unknown_keys(data, STEP_ALLOWED_KEYS, label="step")

    ces = _block(data, "ces", _CES_KEYS)
    comm_manager = _block(data, "comm_manager", _ENDPOINT_KEYS)
    execution_server = _block(data, "execution_server", _ENDPOINT_KEYS)
    host = _block(data, "host", _HOST_KEYS)
    jobcard = _block(data, "jobcard", _JOBCARD_KEYS)
    qualifiers = _block(data, "qualifiers", _QUALIFIER_KEYS)
    data_privacy = _block(data, "data_privacy", _DATA_PRIVACY_KEYS)

    return ExecutionConfig(
        repository_name=_text(data, "repository_name", label="step"),
        results_repository_name=_text(data, "results_repository_name", label="step"),
        execution_mode=ExecutionMode.parse(data.get("execution_type")),
        specification_name=_text(data, "specification_name", label="step"),
        specification_type=SpecificationType.parse(data.get("specification_type")),
        specification_list=_text(data, "specification_list", label="step"),
        execution_context=_text(data, "execution_context", label="step"),
        execution_timeout=_text(data, "execution_timeout", label="step"),
        exit_on_failure=_tri_state(
            data.get("exit_on_failure"), label="step.exit_on_failure", default=True
        ),
        ces=CesSettings(
            enabled=_enabled(ces, label="ces"),
            url=_text(ces, "url", label="ces"),
            use_cloud=coerce_bool(
                ces.get("use_cloud"), label="ces.use_cloud", default=False
            ),
            customer_number=_text(ces, "customer_number", label="ces"),
            site_id=_text(ces, "site_id", label="ces"),
        ),
        comm_manager=ServerEndpoint(
            enabled=_enabled(comm_manager, label="comm_manager"),
            host=_text(comm_manager, "host", label="comm_manager"),
            port=_text(comm_manager, "port", label="comm_manager"),
        ),
        execution_server=ServerEndpoint(
            enabled=_enabled(execution_server, label="execution_server"),
            host=_text(execution_server, "host", label="execution_server"),
            port=_text(execution_server, "port", label="execution_server"),
        ),
        host=HostSettings(
            enabled=_enabled(host, label="host"),
            connection_id=_text(host, "connection_id", label="host"),
            include_credentials=coerce_bool(
                host.get("include_credentials"),
                label="host.include_credentials",
                default=False,
            ),
            credentials_id=_text(host, "credentials_id", label="host"),
        ),
        jobcard=_parse_jobcard(jobcard),
        qualifiers=DatasetQualifiers(
            enabled=_enabled(qualifiers, label="qualifiers"),
            high_level_qualifier=_text(qualifiers, "high_level_qualifier", label="qualifiers"),
            temp_prefix=_text(qualifiers, "temp_prefix", label="qualifiers"),
            temp_suffix=_text(qualifiers, "temp_suffix", label="qualifiers"),
        ),
        data_privacy=DataPrivacyOverrides(
            enabled=_enabled(data_privacy, label="data_privacy"),
            fadebug=_text(data_privacy, "fadebug", label="data_privacy"),
            faexpath=_text(data_privacy, "faexpath", label="data_privacy"),
            faipaddr=_text(data_privacy, "faipaddr", label="data_privacy"),
            fajopts=_text(data_privacy, "fajopts", label="data_privacy"),
            fajpath=_text(data_privacy, "fajpath", label="data_privacy"),
        ),
        halt_pipeline_on_failure=_tri_state(
            data.get("halt_pipeline_on_failure"),
            label="step.halt_pipeline_on_failure",
            default=True,
        ),
    )


def load_execution_config(path: str | Path) -> ExecutionConfig:
    resolved = Path(path).expanduser().resolve()
    if not resolved.exists():
        raise ConfigError(f"Step file not found: {resolved}")
    loaded = yaml.safe_load(resolved.read_text(encoding="utf-8"))
    if not isinstance(loaded, dict):
        raise ConfigError(f"Step file root must be a mapping: {resolved}")
    return parse_execution_config(loaded)
