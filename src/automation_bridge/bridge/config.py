"""Configuration for the remote engine bridge.

Configuration is loaded from:
- environment variables
- and a local `.env` file (if present)

Nothing here is required at startup. A missing URL or API key only becomes an
error (:class:`IntegrationNotConfigured`) when a remote call is attempted, so
local state stays inspectable without credentials.
"""

from __future__ import annotations

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

_PLACEHOLDER_MARKER = "REPLACE"


class BridgeSettings(BaseSettings):
    """Settings for the bridge.

    Environment variables:
    - REMOTE_ENGINE_API_URL
    - REMOTE_ENGINE_API_KEY
    - REMOTE_ENGINE_WEBHOOK_BASE_URL   (optional)
    - LOG_LEVEL                        (optional)
    - BRIDGE_STATE_PATH                (optional)

    Notes:
        Pydantic-settings supports overriding the env file in tests via:
        `BridgeSettings(_env_file=path_to_env)`.
    """

    remote_api_url: str = Field(
        default="",
        validation_alias="REMOTE_ENGINE_API_URL",
        description="Base URL of the remote engine REST API, e.g. https://n8n.example.com/api/v1",
    )
    remote_api_key: str = Field(
        default="",
        validation_alias="REMOTE_ENGINE_API_KEY",
        description="API key sent to the remote engine",
    )
    remote_webhook_base_url: str = Field(
        default="",
        validation_alias="REMOTE_ENGINE_WEBHOOK_BASE_URL",
        description=(
            "Base URL used to build production webhook URLs. Defaults to the API URL "
            "without its /api/v1 suffix."
        ),
    )
    http_timeout_seconds: float = Field(
        default=30.0,
        validation_alias="REMOTE_ENGINE_HTTP_TIMEOUT_SECONDS",
        gt=0,
    )

    log_level: str = Field(
        default="INFO",
        validation_alias="LOG_LEVEL",
        description="Root logging level",
    )

    state_path: Path = Field(
        default=Path("bridge_state"),
        validation_alias="BRIDGE_STATE_PATH",
        description="Directory where the local mirror is persisted",
    )

    reconcile_max_attempts: int = Field(
        default=10,
        validation_alias="BRIDGE_RECONCILE_MAX_ATTEMPTS",
        ge=1,
        le=1000,
    )
    reconcile_interval_ms: int = Field(
        default=2000,
        validation_alias="BRIDGE_RECONCILE_INTERVAL_MS",
        ge=0,
    )
    reconcile_workers: int = Field(
        default=4,
        validation_alias="BRIDGE_RECONCILE_WORKERS",
        ge=1,
        le=64,
    )

    model_config = SettingsConfigDict(
        env_prefix="",
        env_file=".env",
        extra="ignore",
    )

    @property
    def is_configured(self) -> bool:
        """True when both the API URL and a non-placeholder API key are present."""

        key = self.remote_api_key.strip()
        return bool(self.remote_api_url.strip() and key and _PLACEHOLDER_MARKER not in key)

    @property
    def webhook_base_url(self) -> str:
        explicit = self.remote_webhook_base_url.strip().rstrip("/")
        if explicit:
            return explicit
        api = self.remote_api_url.strip().rstrip("/")
        for suffix in ("/api/v1", "/api"):
            if api.endswith(suffix):
                return api[: -len(suffix)]
        return api
