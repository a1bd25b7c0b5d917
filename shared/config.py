"""
Shared configuration management for the StayChill client data layer.
"""

import uuid
from typing import Any

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


DEVELOPMENT_ENVS = ("local", "dev", "development", "test")


class BaseConfig(BaseSettings):
    """Base configuration class with common settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="STAYCHILL_",
        case_sensitive=False,
        extra="allow"
    )

    # Environment
    env: str = Field(default="local", description="Deployment environment name")
    log_level: str = Field(default="info")

    # Remote API
    api_base_url: str = Field(default="http://localhost:5000")
    request_timeout: float = Field(default=10.0, description="Per-attempt deadline in seconds")

    # Retry policy
    max_retries: int = Field(default=3)
    retry_base_delay: float = Field(default=1.0, description="Seconds before the first retry")
    retry_max_delay: float = Field(default=10.0)

    # Observability
    slow_request_threshold_ms: int = Field(default=500)
    enable_metrics: bool = Field(default=True)

    # Storage shared between tabs
    storage_backend: str = Field(default="memory", description="memory or redis")
    redis_url: str = Field(default="redis://localhost:6379/0")
    storage_namespace: str = Field(default="staychill:storage:")
    broadcast_channel: str = Field(default="staychill:storage-events")

    @property
    def is_development(self) -> bool:
        """Development builds enable slow-request warnings and verbose cache logs."""
        return self.env.lower() in DEVELOPMENT_ENVS


class ClientConfig(BaseConfig):
    """Configuration for a single client instance (one browser tab equivalent)."""

    tab_id: str = Field(default_factory=lambda: uuid.uuid4().hex)


def get_config(**overrides: Any) -> ClientConfig:
    """Get client configuration, applying explicit overrides on top of the environment."""
    return ClientConfig(**overrides)
