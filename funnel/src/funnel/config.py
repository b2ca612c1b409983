"""
Configuration management using Pydantic Settings.

Settings are read from ``FUNNEL_*`` environment variables or a ``.env`` file.
Per-run choices (which sources, how many items) live in ``AggregationConfig``;
these settings only cover transport, templates and logging.
"""

from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="FUNNEL_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Aggregation
    max_items: int = Field(10, description="Default cap on the rendered view")
    max_concurrent_fetches: int = Field(8, description="Max provider requests in flight")

    # Transport
    fetch_timeout: float = Field(15.0, description="Per-request timeout (seconds)")
    fetch_attempts: int = Field(2, description="Attempts per request on transport errors")
    user_agent: str = Field("funnel/0.1 (+https://github.com/funnel)", description="User-Agent header")
    twitter_api_url: str = Field("https://api.twitter.com/1.1", description="Twitter REST base URL")
    delicious_api_url: str = Field("https://feeds.delicious.com", description="Delicious feeds base URL")

    # Templates
    templates_dir: Optional[Path] = Field(None, description="Extra template directory")

    # Logging
    log_level: str = Field("INFO", description="Log level")
    log_json: bool = Field(False, description="Output logs as JSON")

    @field_validator("max_items", "max_concurrent_fetches", "fetch_attempts")
    @classmethod
    def must_be_positive(cls, v: int) -> int:
        """Counts must be at least one."""
        if v < 1:
            raise ValueError(f"must be >= 1, got {v}")
        return v

    @field_validator("log_level")
    @classmethod
    def known_log_level(cls, v: str) -> str:
        """Validate log level name."""
        level = v.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown log level: {v}")
        return level


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


def clear_settings_cache():
    """Clear the settings cache."""
    get_settings.cache_clear()
