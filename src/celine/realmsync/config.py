"""Application configuration using pydantic-settings."""

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="CELINE_REALMSYNC_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Service
    service_name: str = "celine-realmsync"
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    log_json: bool = False

    # Realm registry used by the CLI
    realms_file: Path = Field(default=Path("realms.yaml"))

    # Remote admin API
    http_timeout: float = 15.0
    page_size: int = Field(default=100, ge=1)


settings = Settings()


@lru_cache
def get_settings() -> Settings:
    """Alias for the module-level settings singleton."""
    return settings
