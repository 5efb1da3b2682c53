"""Application configuration from environment variables."""

from typing import Optional

from pydantic import ConfigDict, Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env."""

    model_config = ConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Database
    database_url: str = Field(
        default="sqlite:///./kiosk.db",
        description="SQLAlchemy URL of the shared state database",
    )
    database_echo: bool = Field(default=False, description="Log SQL queries")

    # Logging
    log_level: str = Field(default="INFO", description="Logging level")
    log_file: str = Field(default="logs/server.log", description="Log file path")
    instance_name: str = Field(default="kiosk", description="Name shown on every log line")

    # Campaign
    bucket_count: int = Field(default=30, gt=0, description="Days in the bucketed campaign")
    broadcast_topic: str = Field(default="kiosk-config", description="State broadcast topic")
    notification_retention_seconds: float = Field(
        default=300, gt=0, description="How long SQL broadcast rows are kept"
    )

    # Installation defaults feed
    config_feed_url: Optional[str] = Field(
        default=None, description="URL or path of the masjid configuration document"
    )
    masjid_slug: Optional[str] = Field(
        default=None, description="Installation slug looked up in the feed"
    )

    # API
    api_title: str = Field(default="Masjid Kiosk API", description="API title")
    api_version: str = Field(default="0.1.0", description="API version")


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Get or create the settings instance (lazy, after .env is loaded)."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


__all__ = ["Settings", "get_settings"]
