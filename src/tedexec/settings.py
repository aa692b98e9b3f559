from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from tedexec.models import ConfigError, Credential, HostConnection
from tedexec.utils import (
    coerce_required_text,
    coerce_text,
    optional_mapping,
    reject_unknown_keys,
    require_mapping,
    validate_env_name,
)
from tedexec.versions import DEFAULT_VERSION_FILE

DEFAULT_SETTINGS_FILE = "ted-settings.yaml"
SETTINGS_ENV = "TEDEXEC_SETTINGS"
CLI_LOCATION_ENV = "TEDEXEC_CLI_LOCATION"
SETTINGS_ALLOWED_KEYS = {"cli_location", "version_file", "host_connections", "credentials"}
HOST_CONNECTION_ALLOWED_KEYS = {"host", "port", "code_page", "description", "ces_url"}
CREDENTIAL_ALLOWED_KEYS = {"username", "password", "password_env", "description"}


@dataclass(frozen=True)
class CredentialEntry:
    """A stored credential whose password may live in the environment."""

    credentials_id: str
    username: str
    password: str | None = field(default=None, repr=False)
    password_env: str | None = None
    description: str = ""

    def resolve(self) -> Credential | None:
        if self.password_env is not None:
            password = os.environ.get(self.password_env)
            if password is None:
                return None
        else:
            password = self.password or ""
        return Credential(
            credentials_id=self.credentials_id,
            username=self.username,
            password=password,
            description=self.description,
        )


@dataclass(frozen=True)
class GlobalSettings:
    """Agent-wide configuration shared by every execution step."""

    source: Path | None = None
    cli_location: str | None = None
    version_file: str = DEFAULT_VERSION_FILE
    host_connections: dict[str, HostConnection] = field(default_factory=dict)
    credentials: dict[str, CredentialEntry] = field(default_factory=dict)

    def get_host_connection(self, connection_id: str) -> HostConnection | None:
        return self.host_connections.get(connection_id)

    def get_credential(self, credentials_id: str) -> Credential | None:
        entry = self.credentials.get(credentials_id)
        return None if entry is None else entry.resolve()

    def resolved_cli_location(self) -> str | None:
        override = os.environ.get(CLI_LOCATION_ENV, "").strip()
        return override or self.cli_location

    @property
    def remediation_hint(self) -> str:
        where = str(self.source) if self.source else DEFAULT_SETTINGS_FILE
        return f"Check 'cli_location' in {where} or set {CLI_LOCATION_ENV}."


def default_settings_path() -> Path:
    raw = os.environ.get(SETTINGS_ENV, "").strip()
    return Path(raw or DEFAULT_SETTINGS_FILE).expanduser().resolve()


def _parse_host_connection(connection_id: str, payload: Any) -> HostConnection:
    label = f"host_connections.{connection_id}"
    data = require_mapping(payload, label=label)
    reject_unknown_keys(data, HOST_CONNECTION_ALLOWED_KEYS, label=label)
    return HostConnection(
        connection_id=connection_id,
        host=coerce_required_text(data.get("host"), label=f"{label}.host"),
        port=coerce_required_text(data.get("port"), label=f"{label}.port"),
        code_page=coerce_required_text(data.get("code_page"), label=f"{label}.code_page"),
        description=coerce_text(data.get("description"), label=f"{label}.description"),
        ces_url=coerce_text(data.get("ces_url"), label=f"{label}.ces_url"),
    )


def _parse_credential(credentials_id: str, payload: Any) -> CredentialEntry:
    label = f"credentials.{credentials_id}"
    data = require_mapping(payload, label=label)
    reject_unknown_keys(data, CREDENTIAL_ALLOWED_KEYS, label=label)
    if "password" in data and "password_env" in data:
        raise ConfigError(f"{label} must set only one of 'password' or 'password_env'")
    password_env = None
    if "password_env" in data:
        password_env = validate_env_name(
            coerce_required_text(data["password_env"], label=f"{label}.password_env"),
            source=f"{label}.password_env",
        )
    password = data.get("password")
    if password is not None and not isinstance(password, str):
        raise ConfigError(f"{label}.password must be a string")
    return CredentialEntry(
        credentials_id=credentials_id,
        username=coerce_required_text(data.get("username"), label=f"{label}.username"),
        password=password,
        password_env=password_env,
        description=coerce_text(data.get("description"), label=f"{label}.description"),
    )


def _parse_named_entries(raw: Any, *, label: str, parser: Any) -> dict[str, Any]:
    entries = optional_mapping(raw, label=label)
    parsed: dict[str, Any] = {}
    for name in sorted(entries.keys()):
        trimmed = name.strip()
        if not trimmed:
            raise ConfigError(f"{label} ids must be non-empty strings")
        if trimmed in parsed:
            raise ConfigError(f"Duplicate id in {label}: {trimmed}")
        parsed[trimmed] = parser(trimmed, entries[name])
    return parsed


def parse_settings(payload: Any, *, source: Path | None = None) -> GlobalSettings:
    data = {} if payload is None else require_mapping(payload, label="settings")
    reject_unknown_keys(data, SETTINGS_ALLOWED_KEYS, label="settings")
    cli_location = coerce_text(data.get("cli_location"), label="settings.cli_location")
    if cli_location and source is not None and not Path(cli_location).is_absolute():
        cli_location = str((source.parent / cli_location).resolve())
    version_file = coerce_text(data.get("version_file"), label="settings.version_file")
    return GlobalSettings(
        source=source,
        cli_location=cli_location or None,
        version_file=version_file or DEFAULT_VERSION_FILE,
        host_connections=_parse_named_entries(
            data.get("host_connections"),
            label="host_connections",
            parser=_parse_host_connection,
        ),
        credentials=_parse_named_entries(
            data.get("credentials"), label="credentials", parser=_parse_credential
        ),
    )


def load_settings(path: str | Path | None, *, required: bool = False) -> GlobalSettings:
    """Read the settings file; a missing optional file yields empty settings."""
    resolved = (
        default_settings_path() if path is None else Path(path).expanduser().resolve()
    )
    if not resolved.exists():
        if required:
            raise ConfigError(f"Settings file not found: {resolved}")
        return GlobalSettings(source=resolved)
    loaded = yaml.safe_load(resolved.read_text(encoding="utf-8"))
    if loaded is not None and not isinstance(loaded, dict):
        raise ConfigError(f"Settings file root must be a mapping: {resolved}")
    return parse_settings(loaded, source=resolved)
