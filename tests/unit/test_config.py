"""Unit tests for configuration."""

from __future__ import annotations

from pathlib import Path

import pytest

from automation_bridge.bridge.config import BridgeSettings
from automation_bridge.server.config import ServerSettings

_ENV_VARS = (
    "REMOTE_ENGINE_API_URL",
    "REMOTE_ENGINE_API_KEY",
    "REMOTE_ENGINE_WEBHOOK_BASE_URL",
    "BRIDGE_STATE_PATH",
    "BRIDGE_CORS_ORIGINS",
    "LOG_LEVEL",
)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)


def test_defaults_are_unconfigured() -> None:
    settings = BridgeSettings(_env_file=None)

    assert settings.is_configured is False
    assert settings.log_level == "INFO"
    assert settings.state_path == Path("bridge_state")
    assert settings.reconcile_max_attempts == 10
    assert settings.reconcile_interval_ms == 2000


def test_loads_from_env_file(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    (tmp_path / ".env").write_text(
        "REMOTE_ENGINE_API_URL=https://n8n.example.com/api/v1\n"
        "REMOTE_ENGINE_API_KEY=secret\n"
        "BRIDGE_STATE_PATH=state\n",
        encoding="utf-8",
    )
    monkeypatch.chdir(tmp_path)

    settings = BridgeSettings()

    assert settings.is_configured is True
    assert settings.remote_api_url == "https://n8n.example.com/api/v1"
    assert settings.state_path == Path("state")


def test_environment_overrides_env_file(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    (tmp_path / ".env").write_text("LOG_LEVEL=DEBUG\n", encoding="utf-8")
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("LOG_LEVEL", "WARNING")

    assert BridgeSettings().log_level == "WARNING"


def test_placeholder_api_key_counts_as_unconfigured(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("REMOTE_ENGINE_API_URL", "https://n8n.example.com/api/v1")
    monkeypatch.setenv("REMOTE_ENGINE_API_KEY", "REPLACE_ME")

    assert BridgeSettings(_env_file=None).is_configured is False


@pytest.mark.parametrize(
    ("api_url", "explicit", "expected"),
    [
        ("https://n8n.example.com/api/v1", "", "https://n8n.example.com"),
        ("https://n8n.example.com/api/", "", "https://n8n.example.com"),
        ("https://n8n.example.com", "", "https://n8n.example.com"),
        ("https://n8n.example.com/api/v1", "https://hooks.example.com/", "https://hooks.example.com"),
    ],
)
def test_webhook_base_url(
    monkeypatch: pytest.MonkeyPatch, api_url: str, explicit: str, expected: str
) -> None:
    monkeypatch.setenv("REMOTE_ENGINE_API_URL", api_url)
    monkeypatch.setenv("REMOTE_ENGINE_WEBHOOK_BASE_URL", explicit)

    assert BridgeSettings(_env_file=None).webhook_base_url == expected


def test_server_settings_parse_cors_origins(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("BRIDGE_CORS_ORIGINS", " https://a.example , ,https://b.example")

    settings = ServerSettings(_env_file=None)

    assert settings.parsed_cors_origins() == ["https://a.example", "https://b.example"]
    assert settings.sweep_enabled is True
