"""
Client Configuration
====================

Settings for the offline client, loaded from ``TASKFLOW_*`` environment
variables.
"""

from functools import lru_cache
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class ClientSettings(BaseSettings):
    """Client settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="TASKFLOW_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Server
    API_BASE_URL: str = Field(default="http://localhost:8000")
    REQUEST_TIMEOUT_SECONDS: float = Field(default=10.0, gt=0)

    # Local durable storage
    STORAGE_DIR: Path = Field(default=Path.home() / ".taskflow")

    # Reminders
    REMINDER_INTERVAL_SECONDS: float = Field(default=30.0, gt=0)
    REMINDER_GRACE_HOURS: float = Field(default=6.0, gt=0)
    NOTIFIED_KEYS_LIMIT: int = Field(default=500, ge=1)

    # Connectivity
    CONNECTIVITY_PROBE_INTERVAL_SECONDS: float = Field(default=15.0, gt=0)


@lru_cache
def get_client_settings() -> ClientSettings:
    """Get cached client settings instance."""
    return ClientSettings()
