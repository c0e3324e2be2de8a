"""
Pytest configuration and fixtures for chunkwrite tests.
"""

from __future__ import annotations

import os
from datetime import datetime, timedelta, timezone
from typing import Generator
from unittest.mock import patch

import pytest

from chunkwrite.cache.memory import ContentCache
from chunkwrite.config import Settings, clear_settings_cache
from chunkwrite.retry import RetryConfig, RetryExecutor


class FakeClock:
    """Controllable clock for cache timestamps."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 1, 1, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, ms: float) -> None:
        self.now += timedelta(milliseconds=ms)


class RecordingSleep:
    """Sleep replacement that records requested delays instead of waiting."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)

    @property
    def delays_ms(self) -> list[int]:
        return [round(d * 1000) for d in self.delays]


@pytest.fixture
def mock_env_vars() -> Generator[dict[str, str], None, None]:
    """Provide environment variables for testing."""
    env_vars = {
        "CHUNK_SIZE": "1000",
        "WARNING_THRESHOLD": "0.5",
        "MAX_RETRIES": "4",
        "BASE_DELAY_MS": "100",
        "MAX_DELAY_MS": "500",
        "CACHE_MAX_AGE_MS": "60000",
        "MAX_CONCURRENT_WRITES": "2",
        "LOG_LEVEL": "DEBUG",
    }

    with patch.dict(os.environ, env_vars, clear=False):
        clear_settings_cache()
        yield env_vars


@pytest.fixture
def mock_settings(mock_env_vars: dict[str, str]) -> Generator[Settings, None, None]:
    """Provide a Settings instance built from the mock environment."""
    clear_settings_cache()
    from chunkwrite.config import get_settings

    yield get_settings()
    clear_settings_cache()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def cache(clock: FakeClock) -> ContentCache:
    """In-memory cache driven by the fake clock."""
    return ContentCache(clock=clock)


@pytest.fixture
def recording_sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def retry_executor(recording_sleep: RecordingSleep) -> RetryExecutor:
    """Executor with the default budget that never actually sleeps."""
    return RetryExecutor(
        RetryConfig(max_retries=3, base_delay_ms=1000, max_delay_ms=10_000),
        sleep=recording_sleep,
    )


@pytest.fixture(autouse=True)
def reset_settings_cache() -> Generator[None, None, None]:
    """Automatically reset settings cache before and after each test."""
    clear_settings_cache()
    yield
    clear_settings_cache()
