"""
Core types for the chunked write system.

This module defines the data structures shared across the package:
- ContentBlob: content plus its measured byte size
- ChunkDescriptor: one ordered fragment of an oversized write
- WriteResult: outcome of a single persisted write
- OperationStatus: read-only progress snapshot for a chunked write
- Helper functions for ID generation, timestamps and byte sizes
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from uuid6 import uuid7

# Text is persisted as-is and measured as UTF-8; bytes are measured raw.
Content = str | bytes

ErrorContext = dict[str, Any]


def generate_id(prefix: str = "") -> str:
    """Generate a time-ordered unique ID using UUID7.

    Args:
        prefix: Optional prefix for the ID (e.g., "chunk").

    Returns:
        A unique ID string, optionally prefixed.
    """
    uid = str(uuid7())
    return f"{prefix}_{uid}" if prefix else uid


def utc_now() -> datetime:
    """Get current UTC time with timezone info."""
    return datetime.now(timezone.utc)


def byte_size(content: Content) -> int:
    """Encoding-aware size of content in bytes (not characters)."""
    if isinstance(content, bytes):
        return len(content)
    return len(content.encode("utf-8"))


@dataclass(frozen=True)
class ContentBlob:
    """Raw content with its measured byte size."""

    content: Content
    size: int

    @classmethod
    def measure(cls, content: Content) -> ContentBlob:
        return cls(content=content, size=byte_size(content))


@dataclass(frozen=True)
class ChunkDescriptor:
    """One fragment of a chunked write.

    Attributes:
        index: Position of the chunk, 0..total-1.
        total: Number of chunks in the operation.
        blob: The fragment content.
        operation_id: Operation this chunk belongs to.
        path: Derived path the chunk is written to.
    """

    index: int
    total: int
    blob: ContentBlob
    operation_id: str
    path: str


@dataclass(frozen=True)
class WriteResult:
    """Outcome of a single persisted write (chunk or final)."""

    path: str
    size: int
    timestamp: datetime
    cached: bool = True

    def to_dict(self) -> dict[str, Any]:
        return {
            "path": self.path,
            "size": self.size,
            "timestamp": self.timestamp.isoformat(),
            "cached": self.cached,
        }


@dataclass(frozen=True)
class OperationStatus:
    """Progress snapshot for a chunked write operation."""

    total: int
    completed: int
    progress_percent: float
    is_complete: bool

    def to_dict(self) -> dict[str, Any]:
        return {
            "total": self.total,
            "completed": self.completed,
            "progress_percent": self.progress_percent,
            "is_complete": self.is_complete,
        }
