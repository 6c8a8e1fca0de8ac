from __future__ import annotations

from datetime import datetime, timezone

import pytest
from pydantic import ValidationError

import httpbase.buildinfo as buildinfo
from httpbase.buildinfo import read_health_info
from httpbase.config import Settings, get_settings
from httpbase.errors import ConfigError


def test_settings_defaults() -> None:
    settings = get_settings()
    assert settings.host == "0.0.0.0"
    assert settings.port == 8080
    assert settings.shutdown_grace_seconds == 10.0
    assert settings.log_level == "INFO"


def test_settings_read_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("PORT", "9090")
    monkeypatch.setenv("SHUTDOWN_GRACE_SECONDS", "2.5")
    settings = get_settings()
    assert settings.port == 9090
    assert settings.shutdown_grace_seconds == 2.5


def test_settings_read_dotenv_file(tmp_path) -> None:
    # The autouse fixture runs every test from tmp_path.
    (tmp_path / ".env").write_text("PORT=7070\nAPP_VERSION=v9\n", encoding="utf-8")
    settings = get_settings()
    assert settings.port == 7070
    assert settings.app_version == "v9"


@pytest.mark.parametrize(("name", "value"), [("PORT", "70000"), ("PORT", "http"), ("SHUTDOWN_GRACE_SECONDS", "0")])
def test_invalid_settings_raise_config_error(monkeypatch: pytest.MonkeyPatch, name: str, value: str) -> None:
    monkeypatch.setenv(name, value)
    with pytest.raises(ConfigError):
        get_settings()


def test_settings_are_immutable() -> None:
    settings = get_settings()
    with pytest.raises(ValidationError):
        settings.port = 1


def test_health_info_from_build_metadata(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("APP_VERSION", "v1.0.0")
    monkeypatch.setenv("VCS_REVISION", "deadbeef")
    monkeypatch.setenv("VCS_TIME", "2024-02-09T10:11:12Z")
    monkeypatch.setenv("VCS_MODIFIED", "true")

    info = read_health_info(Settings())

    assert info.version == "v1.0.0"
    assert info.revision == "deadbeef"
    assert info.time == datetime(2024, 2, 9, 10, 11, 12, tzinfo=timezone.utc)
    assert info.modified is True


def test_health_info_tolerates_missing_and_malformed_metadata(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(buildinfo, "_installed_version", lambda: "")
    monkeypatch.setenv("VCS_TIME", "yesterday")
    monkeypatch.setenv("VCS_MODIFIED", "yes")

    info = read_health_info(Settings())

    assert info.version == ""
    assert info.revision == ""
    assert info.time is None
    assert info.modified is False


def test_health_info_falls_back_to_installed_version(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(buildinfo, "dist_version", lambda name: "0.1.0")
    assert read_health_info(Settings()).version == "0.1.0"
