"""
Cache package for content persistence.

This package provides:
- The storage contract (base.py): StorageBackend protocol and CacheEntry
- The in-memory content cache (memory.py): age-evicted cache that can front
  a durable StorageBackend
"""

from chunkwrite.cache.base import CacheEntry, StorageBackend
from chunkwrite.cache.memory import ContentCache

__all__ = ["CacheEntry", "ContentCache", "StorageBackend"]
