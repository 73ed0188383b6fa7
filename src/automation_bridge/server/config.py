"""Configuration for the REST server.

The server starts without remote credentials. Endpoints that need the remote
engine answer 409 ("integration not connected") until they are configured.
"""

from __future__ import annotations

from pydantic import Field
from pydantic_settings import SettingsConfigDict

from automation_bridge.bridge.config import BridgeSettings


class ServerSettings(BridgeSettings):
    """Bridge settings plus REST/background-sweep options."""

    sweep_enabled: bool = Field(
        default=True,
        validation_alias="BRIDGE_SWEEP_ENABLED",
        description="If true, periodically reconcile every running execution in the background.",
    )
    sweep_interval_seconds: float = Field(
        default=30.0,
        validation_alias="BRIDGE_SWEEP_INTERVAL_SECONDS",
        gt=0,
    )

    # Dev-friendly CORS. Override via BRIDGE_CORS_ORIGINS=...
    cors_origins: str = Field(
        default="http://localhost:5173,http://127.0.0.1:5173",
        validation_alias="BRIDGE_CORS_ORIGINS",
        description="Comma-separated list of allowed CORS origins.",
    )

    model_config = SettingsConfigDict(env_prefix="", env_file=".env", extra="ignore")

    def parsed_cors_origins(self) -> list[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]
