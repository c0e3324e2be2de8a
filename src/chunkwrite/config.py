"""
Configuration management using pydantic-settings.

Loads configuration from environment variables and .env files.
Validates limits and provides typed access to settings.
"""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from chunkwrite.retry import RetryConfig


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    Optional:
        CHUNK_SIZE: Largest content size (bytes) written in a single write
        WARNING_THRESHOLD: Fraction of CHUNK_SIZE that flags content as approaching the limit
        MAX_RETRIES: Attempts allowed per write before the failure is terminal
        BASE_DELAY_MS: Backoff delay after the first failed attempt
        MAX_DELAY_MS: Upper bound on the backoff delay
        CACHE_MAX_AGE_MS: Age after which cached entries are evicted
        MAX_CONCURRENT_WRITES: Chunk writes in flight per operation
        LOG_LEVEL: Logging level
        LOG_FILE: JSON Lines log file (console only when unset)
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Chunking
    CHUNK_SIZE: int = Field(
        default=50_000, ge=1, description="Maximum bytes per single write"
    )
    WARNING_THRESHOLD: float = Field(
        default=0.8, gt=0.0, le=1.0, description="Fraction of CHUNK_SIZE that triggers a size warning"
    )

    # Retry
    MAX_RETRIES: int = Field(default=3, ge=1, le=20, description="Maximum attempts per write")
    BASE_DELAY_MS: int = Field(default=1000, ge=0, description="Initial backoff delay in ms")
    MAX_DELAY_MS: int = Field(default=10_000, ge=0, description="Maximum backoff delay in ms")

    # Cache
    CACHE_MAX_AGE_MS: int = Field(
        default=3_600_000, ge=0, description="Cache entries older than this are evicted"
    )
    MAX_CONCURRENT_WRITES: int = Field(
        default=4, ge=1, le=64, description="Maximum concurrent chunk writes"
    )

    # Logging
    LOG_LEVEL: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO", description="Logging level"
    )
    LOG_FILE: Path | None = Field(default=None, description="JSON Lines log file")

    @model_validator(mode="after")
    def validate_delay_bounds(self) -> Settings:
        """Ensure the backoff cap is not below the initial delay."""
        if self.MAX_DELAY_MS < self.BASE_DELAY_MS:
            raise ValueError(
                "MAX_DELAY_MS must be greater than or equal to BASE_DELAY_MS"
            )
        return self

    def retry_config(self) -> RetryConfig:
        """Build the retry executor configuration."""
        return RetryConfig(
            max_retries=self.MAX_RETRIES,
            base_delay_ms=self.BASE_DELAY_MS,
            max_delay_ms=self.MAX_DELAY_MS,
        )

    def display(self) -> dict[str, str | int | float | None]:
        """Return settings as plain values for display."""
        return {
            "CHUNK_SIZE": self.CHUNK_SIZE,
            "WARNING_THRESHOLD": self.WARNING_THRESHOLD,
            "MAX_RETRIES": self.MAX_RETRIES,
            "BASE_DELAY_MS": self.BASE_DELAY_MS,
            "MAX_DELAY_MS": self.MAX_DELAY_MS,
            "CACHE_MAX_AGE_MS": self.CACHE_MAX_AGE_MS,
            "MAX_CONCURRENT_WRITES": self.MAX_CONCURRENT_WRITES,
            "LOG_LEVEL": self.LOG_LEVEL,
            "LOG_FILE": str(self.LOG_FILE) if self.LOG_FILE else None,
        }


@lru_cache
def get_settings() -> Settings:
    """Get cached settings.

    Returns:
        Settings instance loaded from environment.

    Raises:
        ValidationError: If settings are invalid.
    """
    return Settings()


def clear_settings_cache() -> None:
    """Clear the settings cache (useful for testing)."""
    get_settings.cache_clear()
