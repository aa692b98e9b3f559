from __future__ import annotations

from pathlib import Path

import pytest

from tedexec.models import ConfigError
from tedexec.settings import (
    CLI_LOCATION_ENV,
    SETTINGS_ENV,
    default_settings_path,
    load_settings,
    parse_settings,
)
from tedexec.versions import DEFAULT_VERSION_FILE


def _write(path: Path, content: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content.strip() + "\n", encoding="utf-8")


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv(CLI_LOCATION_ENV, raising=False)
    monkeypatch.delenv(SETTINGS_ENV, raising=False)


def test_load_settings_file(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("TED_PASSWORD", "from-env")
    settings_path = tmp_path / "conf" / "ted-settings.yaml"
    _write(
        settings_path,
        """
cli_location: ../cli
host_connections:
  cw09:
    description: Test LPAR
    host: cw09.example.com
    port: 16196
    code_page: 1047
credentials:
  ted-user:
    username: TEDUSR
    password_env: TED_PASSWORD
  plain-user:
    username: PLAIN
    password: inline
""",
    )
    settings = load_settings(settings_path, required=True)
    assert settings.source == settings_path.resolve()
    assert settings.cli_location == str((tmp_path / "cli").resolve())
    assert settings.version_file == DEFAULT_VERSION_FILE

    connection = settings.get_host_connection("cw09")
    assert connection is not None
    assert connection.host_port == "cw09.example.com:16196"
    assert connection.code_page == "1047"
    assert settings.get_host_connection("other") is None

    credential = settings.get_credential("ted-user")
    assert credential is not None
    assert (credential.username, credential.password) == ("TEDUSR", "from-env")
    assert "from-env" not in repr(credential)
    plain = settings.get_credential("plain-user")
    assert plain is not None and plain.password == "inline"
    assert settings.get_credential("missing") is None


def test_password_env_unset_means_no_credential(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("TED_PASSWORD", raising=False)
    settings = parse_settings(
        {"credentials": {"ted-user": {"username": "U", "password_env": "TED_PASSWORD"}}}
    )
    assert settings.get_credential("ted-user") is None


def test_missing_optional_settings_file_is_empty(tmp_path: Path) -> None:
    settings = load_settings(tmp_path / "absent.yaml")
    assert settings.cli_location is None
    assert settings.host_connections == {}
    with pytest.raises(ConfigError, match="Settings file not found"):
        load_settings(tmp_path / "absent.yaml", required=True)


def test_default_settings_path_follows_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.chdir(tmp_path)
    assert default_settings_path() == (tmp_path / "ted-settings.yaml").resolve()
    monkeypatch.setenv(SETTINGS_ENV, str(tmp_path / "other.yaml"))
    assert default_settings_path() == (tmp_path / "other.yaml").resolve()


def test_cli_location_env_overrides_file(monkeypatch: pytest.MonkeyPatch) -> None:
    settings = parse_settings({"cli_location": "/opt/ted"})
    assert settings.resolved_cli_location() == "/opt/ted"
    monkeypatch.setenv(CLI_LOCATION_ENV, "/srv/ted")
    assert settings.resolved_cli_location() == "/srv/ted"
    assert CLI_LOCATION_ENV in settings.remediation_hint


@pytest.mark.parametrize(
    "payload, message",
    [
        ({"cli_path": "/x"}, "settings has unknown keys"),
        ({"host_connections": {"cw09": {"host": "h", "port": 1}}}, "code_page"),
        (
            {"credentials": {"u": {"username": "U", "password": "p", "password_env": "P"}}},
            "only one of",
        ),
        ({"credentials": {"u": {"username": "U", "password_env": "1BAD"}}}, "Invalid environment"),
        ({"credentials": {"u": {"password": "p"}}}, "credentials.u.username"),
    ],
)
def test_invalid_settings(payload: dict, message: str) -> None:
    with pytest.raises(ConfigError, match=message):
        parse_settings(payload)
