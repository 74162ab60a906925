"""Parley configuration, loaded from parley.yaml and the environment."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _load_yaml_config() -> dict[str, Any]:
    """Load parley.yaml from PARLEY_CONFIG_PATH or default locations."""
    config_path = os.getenv("PARLEY_CONFIG_PATH")
    search_paths = (
        [Path(config_path)]
        if config_path
        else [
            Path("parley.yaml"),
            Path.home() / ".parley" / "parley.yaml",
        ]
    )
    for path in search_paths:
        if path.exists():
            with open(path) as f:
                return yaml.safe_load(f) or {}
    return {}


class TransportConfig(BaseSettings):
    """Real-time question channel configuration."""

    url: str = Field(default="ws://localhost:8080/ws", description="Question server endpoint")
    heartbeat_interval_s: float = Field(default=45.0, gt=0, description="Seconds between pings")
    max_reconnect_attempts: int = Field(default=3, ge=0)
    reconnect_base_delay_ms: int = Field(default=5000, gt=0)
    reconnect_max_delay_ms: int = Field(default=120_000, gt=0)
    session_context_ttl_s: float = Field(
        default=30.0,
        gt=0,
        description="Lifetime of the active session binding used to route questions",
    )

    model_config = SettingsConfigDict(env_prefix="PARLEY_TRANSPORT_")


class AgentApiConfig(BaseSettings):
    """Agent server HTTP configuration."""

    base_url: str = Field(default="http://localhost:8000")
    run_path: str = Field(default="/api/run")
    timeout_s: float = Field(default=120.0, gt=0)
    api_key: str = Field(default="", description="Sent as X-API-Key when set")

    @field_validator("base_url", mode="before")
    @classmethod
    def _strip_trailing_slash(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.strip().rstrip("/")
        return value

    model_config = SettingsConfigDict(env_prefix="PARLEY_API_")


class NotificationsConfig(BaseSettings):
    """Notification persistence configuration."""

    store_path: str = Field(default=str(Path.home() / ".parley" / "notifications.json"))
    storage_key: str = Field(default="mcpNotifications")

    model_config = SettingsConfigDict(env_prefix="PARLEY_NOTIFICATIONS_")


class ParleyConfig(BaseSettings):
    """Root Parley configuration."""

    user_id: str = Field(default="parley", description="User id sent with every agent request")

    transport: TransportConfig = Field(default_factory=TransportConfig)
    api: AgentApiConfig = Field(default_factory=AgentApiConfig)
    notifications: NotificationsConfig = Field(default_factory=NotificationsConfig)

    # Logging
    log_level: str = Field(default="INFO")
    log_format: Literal["json", "console"] = Field(default="console")

    model_config = SettingsConfigDict(
        env_prefix="PARLEY_",
        env_nested_delimiter="__",
    )

    @classmethod
    def load(cls) -> ParleyConfig:
        """Load config from YAML + env vars (env takes precedence)."""
        yaml_cfg = _load_yaml_config()

        transport_data = yaml_cfg.pop("transport", {})
        api_data = yaml_cfg.pop("api", {})
        notifications_data = yaml_cfg.pop("notifications", {})

        # Only pass YAML sub-configs if they have data;
        # otherwise let pydantic-settings pick up env vars
        kwargs: dict[str, Any] = {**yaml_cfg}
        if transport_data:
            kwargs["transport"] = TransportConfig(**transport_data)
        if api_data:
            kwargs["api"] = AgentApiConfig(**api_data)
        if notifications_data:
            kwargs["notifications"] = NotificationsConfig(**notifications_data)

        return cls(**kwargs)


# Singleton
_config: ParleyConfig | None = None


def get_config() -> ParleyConfig:
    """Get or create the global config."""
    global _config
    if _config is None:
        _config = ParleyConfig.load()
    return _config
