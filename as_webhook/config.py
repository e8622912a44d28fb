"""Configuration management for the webhook application service."""

from functools import lru_cache
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Server settings
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=8080)
    log_level: str = Field(default="INFO")

    # Routes configuration
    routes_config: str = Field(default="config.toml")

    # Delivery
    webhook_timeout: float = Field(default=30.0, gt=0)
    message_event_type: str = Field(default="m.room.message")

    # Registration
    registration_id: str = Field(default="matrix-as-webhook")

    @property
    def routes_config_path(self) -> Path:
        return Path(self.routes_config)


@lru_cache
def get_settings() -> Settings:
    return Settings()
