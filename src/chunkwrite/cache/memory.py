"""
In-memory content cache.

Path -> CacheEntry map with age-based eviction. Optionally fronts a durable
StorageBackend: writes go to the backend first, reads fall through to it on
a miss, and eviction only ever touches the local map.
"""

from __future__ import annotations

import asyncio
from datetime import datetime
from typing import Any, Callable

from chunkwrite.cache.base import CacheEntry, StorageBackend
from chunkwrite.logging import get_logger
from chunkwrite.types import Content, WriteResult, byte_size, utc_now

logger = get_logger(__name__)

DEFAULT_MAX_AGE_MS = 3_600_000  # 1 hour


class ContentCache:
    """Instance-owned content cache guarded by an asyncio lock.

    Without a backend, writes always succeed. With a backend, backend
    failures propagate to the caller unmodified and nothing is cached.
    """

    def __init__(
        self,
        backend: StorageBackend | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        """Initialize the cache.

        Args:
            backend: Optional durable store to write through to.
            clock: Source of entry timestamps (timezone-aware UTC).
        """
        self.backend = backend
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}
        self._lock = asyncio.Lock()

    def now(self) -> datetime:
        """Current time according to the cache clock."""
        return self._clock()

    def __len__(self) -> int:
        return len(self._entries)

    async def put(
        self,
        path: str,
        content: Content,
        metadata: dict[str, Any] | None = None,
    ) -> WriteResult:
        """Store or overwrite the entry for path.

        Args:
            path: Target path.
            content: Text or bytes to store.
            metadata: Arbitrary metadata kept with the entry.

        Returns:
            WriteResult with the byte size and the entry timestamp.
        """
        if self.backend is not None:
            await self.backend.put(path, content)

        timestamp = self._clock()
        entry = CacheEntry(
            path=path,
            content=content,
            timestamp=timestamp,
            metadata=dict(metadata or {}),
        )
        async with self._lock:
            self._entries[path] = entry

        size = byte_size(content)
        logger.debug("Cached content", path=path, size=size)
        return WriteResult(path=path, size=size, timestamp=timestamp)

    async def get(self, path: str) -> CacheEntry | None:
        """Get the entry for path, reading through to the backend on a miss."""
        async with self._lock:
            entry = self._entries.get(path)
        if entry is not None or self.backend is None:
            return entry

        content = await self.backend.get(path)
        if content is None:
            return None

        entry = CacheEntry(path=path, content=content, timestamp=self._clock())
        async with self._lock:
            # a concurrent put may have landed while the backend was read
            entry = self._entries.setdefault(path, entry)
        return entry

    async def has(self, path: str) -> bool:
        async with self._lock:
            if path in self._entries:
                return True
        if self.backend is None:
            return False
        return await self.backend.has(path)

    async def delete(self, path: str) -> bool:
        """Drop the cached entry for path. Returns True if one was removed."""
        async with self._lock:
            return self._entries.pop(path, None) is not None

    async def find(self, predicate: Callable[[CacheEntry], bool]) -> list[CacheEntry]:
        """Return cached entries matching predicate, ordered by path."""
        async with self._lock:
            entries = list(self._entries.values())
        return sorted((e for e in entries if predicate(e)), key=lambda e: e.path)

    async def evict(self, max_age_ms: float = DEFAULT_MAX_AGE_MS) -> None:
        """Remove every entry older than max_age_ms.

        An entry whose age equals max_age_ms exactly is kept.
        """
        now = self._clock()
        async with self._lock:
            stale = [
                path for path, entry in self._entries.items()
                if entry.age_ms(now) > max_age_ms
            ]
            for path in stale:
                del self._entries[path]

        if stale:
            logger.info("Evicted cache entries", count=len(stale), max_age_ms=max_age_ms)
