"""Configuration settings for the job marketplace engine."""

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class MarketplaceSettings(BaseSettings):
    """Engine settings loaded from environment (``JOBMARKET_*``)."""

    model_config = SettingsConfigDict(
        env_prefix="JOBMARKET_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",  # Ignore extra env vars not in model
    )

    # Jobs
    default_currency: str = "SAR"

    # Listing
    default_page_size: int = Field(default=20, gt=0)
    max_page_size: int = Field(default=100, gt=0)
    featured_jobs_limit: int = Field(default=10, gt=0)
    similar_jobs_limit: int = Field(default=5, gt=0)

    # Connection hooks (only meaningful when a remote connector is wired in)
    max_reconnect_attempts: int = Field(default=5, ge=0)
    reconnect_interval_seconds: float = Field(default=5.0, ge=0)


@lru_cache
def get_settings() -> MarketplaceSettings:
    """Get cached settings instance."""
    return MarketplaceSettings()
