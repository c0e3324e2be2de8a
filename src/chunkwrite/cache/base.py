"""
Base types for content persistence.

- StorageBackend: the contract a durable store (object store, filesystem
  client) must satisfy to sit behind the content cache
- CacheEntry: one stored path with its content, timestamp and metadata
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Protocol, runtime_checkable

from chunkwrite.types import Content, WriteResult


@dataclass(frozen=True)
class CacheEntry:
    """Stored content for one path. Overwritten when the path is re-written."""

    path: str
    content: Content
    timestamp: datetime
    metadata: dict[str, Any] = field(default_factory=dict)

    def age_ms(self, now: datetime) -> float:
        """Age of the entry in milliseconds at ``now``."""
        return (now - self.timestamp) / timedelta(milliseconds=1)


@runtime_checkable
class StorageBackend(Protocol):
    """Durable storage collaborator.

    Implementations must surface I/O failures to the caller unmodified so
    the retry executor can classify them.
    """

    async def put(self, path: str, content: Content) -> WriteResult:
        """Persist content at path."""
        ...

    async def get(self, path: str) -> Content | None:
        """Read content at path, or None if absent."""
        ...

    async def has(self, path: str) -> bool:
        """Check whether path exists."""
        ...
