from __future__ import annotations

from typing import Callable

from tedexec.models import Credential, ExecutionConfig, HostConnection, ValidationError

HostLookup = Callable[[str], HostConnection | None]
CredentialLookup = Callable[[str], Credential | None]


def validate_config(
    config: ExecutionConfig,
    *,
    host_lookup: HostLookup,
    credential_lookup: CredentialLookup,
) -> None:
    """Raise :class:`ValidationError` on the first unmet launch precondition."""
    if config.is_single_spec:
        if not config.specification_name:
            raise ValidationError("missing specification name")
        if not config.specification_type.value:
            raise ValidationError("missing specification type")
    elif not config.specification_list:
        raise ValidationError("missing specification list")

    host = config.host
    if host.enabled:
        if host.connection_id and host_lookup(host.connection_id) is None:
            raise ValidationError("unknown host connection")
        if host.include_credentials and (
            not host.credentials_id or credential_lookup(host.credentials_id) is None
        ):
            raise ValidationError("missing or invalid credentials")

    ces = config.ces
    if ces.enabled:
        if not ces.url:
            raise ValidationError("invalid CES configuration")
        if ces.use_cloud and not (ces.site_id and ces.customer_number):
            raise ValidationError("invalid CES configuration")


def _integer_warning(value: str, label: str) -> str | None:
    if not value:
        return None
    try:
        int(value)
    except ValueError:
        return f"{label} '{value}' is not an integer"
    return None


def field_warnings(config: ExecutionConfig) -> list[str]:
    """Non-fatal field checks; numeric fields are passed to the CLI unchanged."""
    candidates = [
        _integer_warning(config.execution_timeout, "execution timeout"),
    ]
    if config.comm_manager.enabled:
        candidates.append(
            _integer_warning(config.comm_manager.port, "communication manager port")
        )
    if config.execution_server.enabled:
        candidates.append(
            _integer_warning(config.execution_server.port, "execution server port")
        )
    return [warning for warning in candidates if warning]
