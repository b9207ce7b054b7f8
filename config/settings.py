"""Configuration management using pydantic-settings."""
from pathlib import Path
from typing import Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Upstream API configuration
    airtable_api_key: Optional[str] = None
    upstream_base_url: str = "https://api.airtable.com"
    upstream_timeout_seconds: float = 30.0

    # Cache policy
    # Another deployment ran with 300 / 86400; both are plain overrides.
    refresh_interval_seconds: int = 15 * 60
    forget_interval_seconds: int = 7 * 24 * 60 * 60

    # Snapshot artifacts (served to browsers for preloading)
    snapshot_directory: Path = Path("./public")
    snapshot_global_name: str = "airtableCache"

    # Site used when neither ?ref= nor a Referer header identifies one
    default_site: str = "unknown"

    # Background refresh pool
    max_refresh_workers: int = 4

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


settings = Settings()
