from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="CHANNEL_POINTS_",
        env_file=".env",
        extra="ignore",
    )

    app_name: str = "Channel Points API"
    app_version: str = "1.0.0"
    # Mount prefix when served behind a path-routing proxy (e.g. "/api")
    root_path: str = ""

    # Database
    database_url: str = "sqlite:///./channel_points.db"
    db_echo: bool = False
    sqlite_busy_timeout: float = Field(default=30.0, gt=0)

    # Ledger
    starting_points: int = Field(default=1000, ge=0)
    bulk_update_max_items: int = Field(default=1000, ge=1)

    # Reward actions
    action_timeout_seconds: float = Field(default=5.0, gt=0)
    action_workers: int = Field(default=4, ge=1)

    # Logging
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"
    log_format: Literal["plain", "json"] = "plain"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
