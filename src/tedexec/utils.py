from __future__ import annotations

import re
from typing import Any, Mapping

from tedexec.models import ConfigError

ENV_NAME_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
_DOUBLE_QUOTE = '"'
_DOUBLE_QUOTE_ESCAPED = '""'


def escape_for_script(value: str) -> str:
    """Double every double quote so the value survives a batch or shell script."""
    return value.replace(_DOUBLE_QUOTE, _DOUBLE_QUOTE_ESCAPED)


def require_mapping(value: Any, *, label: str) -> dict[str, Any]:
    if not isinstance(value, dict):
        raise ConfigError(f"{label} must be a mapping")
    return {str(k): v for k, v in value.items()}


def optional_mapping(value: Any, *, label: str) -> dict[str, Any]:
    if value is None:
        return {}
    return require_mapping(value, label=label)


def reject_unknown_keys(data: Mapping[str, Any], allowed: set[str], *, label: str) -> None:
    unknown = sorted(set(data.keys()) - allowed)
    if unknown:
        raise ConfigError(
            f"{label} has unknown keys: {unknown}. Allowed keys: {sorted(allowed)}"
        )


def coerce_text(value: Any, *, label: str) -> str:
    """Scalar to trimmed string; ``None`` becomes empty.

    Numbers are accepted so YAML like ``port: 16196`` works without quoting.
    """
    if value is None:
        return ""
    if isinstance(value, bool) or not isinstance(value, (str, int, float)):
        raise ConfigError(f"{label} must be a string")
    return str(value).strip()


def coerce_bool(value: Any, *, label: str, default: bool) -> bool:
    if value is None:
        return default
    if not isinstance(value, bool):
        raise ConfigError(f"{label} must be a boolean")
    return value


def coerce_required_text(value: Any, *, label: str) -> str:
    text = coerce_text(value, label=label)
    if not text:
        raise ConfigError(f"{label} must be a non-empty string")
    return text


def validate_env_name(name: str, *, source: str) -> str:
    if not ENV_NAME_RE.match(name):
        raise ConfigError(f"Invalid environment variable name '{name}' in {source}")
    return name


def parse_env_args(raw_items: list[str] | None) -> dict[str, str]:
    env: dict[str, str] = {}
    for item in raw_items or []:
        if "=" not in item:
            raise ConfigError(f"Invalid --env '{item}'. Expected KEY=VALUE")
        key, value = item.split("=", 1)
        env[validate_env_name(key.strip(), source="--env")] = value
    return env
