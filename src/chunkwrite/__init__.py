"""
chunkwrite: resilient chunked content persistence.

Splits oversized content into ordered chunks, writes each chunk under
retry/backoff protection, tracks completion per operation and merges the
chunks back into the target artifact.
"""

from chunkwrite.analysis import ContentAnalysis, ContentAnalyzer, analyze_content
from chunkwrite.cache import CacheEntry, ContentCache, StorageBackend
from chunkwrite.chunking import ChunkRef, chunk_path, join_chunks, parse_chunk_path, split_content
from chunkwrite.exceptions import (
    ChunkWriteError,
    ConfigurationError,
    ErrorKind,
    PersistenceError,
    is_retryable,
)
from chunkwrite.orchestrator import ChunkedWriter
from chunkwrite.retry import RetryConfig, RetryExecutor
from chunkwrite.types import ContentBlob, OperationStatus, WriteResult

__version__ = "0.1.0"

__all__ = [
    "CacheEntry",
    "ChunkRef",
    "ChunkWriteError",
    "ChunkedWriter",
    "ConfigurationError",
    "ContentAnalysis",
    "ContentAnalyzer",
    "ContentBlob",
    "ContentCache",
    "ErrorKind",
    "OperationStatus",
    "PersistenceError",
    "RetryConfig",
    "RetryExecutor",
    "StorageBackend",
    "WriteResult",
    "analyze_content",
    "chunk_path",
    "is_retryable",
    "join_chunks",
    "parse_chunk_path",
    "split_content",
]
