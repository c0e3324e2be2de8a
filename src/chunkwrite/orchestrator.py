"""
Chunked write orchestration.

ChunkedWriter coordinates writes that exceed the single-write size:
- Analyzes the content and writes small content directly
- Splits oversized content and writes each chunk through the retry executor
- Tracks completed chunk indices per operation (a set, never a counter)
- Finalizes exactly once by merging stored chunks into the target path
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import timedelta

from chunkwrite.analysis import ContentAnalyzer
from chunkwrite.cache.base import CacheEntry
from chunkwrite.cache.memory import DEFAULT_MAX_AGE_MS, ContentCache
from chunkwrite.chunking import chunk_path, join_chunks, split_content
from chunkwrite.config import Settings
from chunkwrite.exceptions import ConfigurationError, ErrorKind, PersistenceError
from chunkwrite.logging import get_logger, log_context
from chunkwrite.retry import RetryExecutor
from chunkwrite.types import (
    ChunkDescriptor,
    Content,
    ContentBlob,
    OperationStatus,
    WriteResult,
    generate_id,
)

logger = get_logger(__name__)


def _belongs_to(entry: CacheEntry, operation_id: str) -> bool:
    # entries read through from a backend carry no metadata
    return entry.metadata.get("operation_id", operation_id) == operation_id


@dataclass
class ChunkOperation:
    """Bookkeeping for one multi-chunk write."""

    operation_id: str
    path: str
    total: int
    completed_indices: set[int] = field(default_factory=set)
    results: dict[int, WriteResult] = field(default_factory=dict)
    finalized: bool = False
    lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False)

    @property
    def is_complete(self) -> bool:
        return len(self.completed_indices) == self.total

    def status(self) -> OperationStatus:
        completed = len(self.completed_indices)
        return OperationStatus(
            total=self.total,
            completed=completed,
            progress_percent=completed / self.total * 100,
            is_complete=completed == self.total,
        )


class ChunkedWriter:
    """Writes content to a ContentCache, chunking it when it is too large.

    ``write_content`` returns the single WriteResult for content that fits in
    one write, and the per-chunk WriteResults (in index order) for chunked
    content. The merged write's result is available via ``get_final_result``.
    """

    def __init__(
        self,
        cache: ContentCache,
        retry: RetryExecutor | None = None,
        analyzer: ContentAnalyzer | None = None,
        max_concurrency: int = 4,
        cache_max_age_ms: float = DEFAULT_MAX_AGE_MS,
    ) -> None:
        """Initialize the writer.

        Args:
            cache: Cache (optionally fronting durable storage) to write into.
            retry: Executor wrapping every write.
            analyzer: Size analyzer deciding when to chunk.
            max_concurrency: Chunk writes in flight per operation.
            cache_max_age_ms: Default age limit for ``evict_cache``.
        """
        if max_concurrency < 1:
            raise ConfigurationError(
                "max_concurrency must be at least 1", context={"max_concurrency": max_concurrency}
            )
        self.cache = cache
        self.retry = retry or RetryExecutor()
        self.analyzer = analyzer or ContentAnalyzer()
        self.max_concurrency = max_concurrency
        self.cache_max_age_ms = cache_max_age_ms
        self._operations: dict[str, ChunkOperation] = {}
        self._final_results: dict[str, WriteResult] = {}

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        cache: ContentCache | None = None,
    ) -> ChunkedWriter:
        return cls(
            cache=cache or ContentCache(),
            retry=RetryExecutor(settings.retry_config()),
            analyzer=ContentAnalyzer.from_settings(settings),
            max_concurrency=settings.MAX_CONCURRENT_WRITES,
            cache_max_age_ms=settings.CACHE_MAX_AGE_MS,
        )

    async def write_content(
        self,
        path: str,
        content: Content,
        cancel_event: asyncio.Event | None = None,
    ) -> WriteResult | list[WriteResult]:
        """Persist content at path, chunking it if it exceeds the chunk size.

        Args:
            path: Target path.
            content: Text or bytes to persist.
            cancel_event: Once set, no further chunk writes or retry attempts
                start and the operation is abandoned without finalizing.

        Returns:
            The WriteResult of a direct write, or the list of chunk
            WriteResults of a chunked write.

        Raises:
            PersistenceError: If a write fails terminally or is cancelled.
        """
        analysis = self.analyzer.analyze(content)

        if not analysis.requires_chunking:
            return await self.retry.with_retry(
                lambda: self.cache.put(path, content),
                context={"path": path, "size": analysis.size},
                cancel_event=cancel_event,
            )

        operation_id = generate_id("chunk")
        with log_context(operation_id=operation_id, path=path):
            logger.info(
                f"Content requires chunking ({analysis.chunks} chunks)",
                size=analysis.size,
                chunks=analysis.chunks,
            )
            return await self._write_chunked(
                operation_id, path, content, analysis.chunks, cancel_event
            )

    async def _write_chunked(
        self,
        operation_id: str,
        path: str,
        content: Content,
        num_chunks: int,
        cancel_event: asyncio.Event | None,
    ) -> list[WriteResult]:
        fragments = split_content(content, num_chunks)
        descriptors = [
            ChunkDescriptor(
                index=i,
                total=num_chunks,
                blob=ContentBlob.measure(fragment),
                operation_id=operation_id,
                path=chunk_path(path, i, operation_id),
            )
            for i, fragment in enumerate(fragments)
        ]
        self.open_operation(path, num_chunks, operation_id)

        semaphore = asyncio.Semaphore(self.max_concurrency)

        async def write_with_semaphore(chunk: ChunkDescriptor) -> WriteResult:
            async with semaphore:
                return await self._write_chunk(chunk, cancel_event)

        outcomes = await asyncio.gather(
            *[write_with_semaphore(chunk) for chunk in descriptors],
            return_exceptions=True,
        )

        errors = [o for o in outcomes if isinstance(o, BaseException)]
        if errors:
            cancelled = [
                e for e in errors
                if isinstance(e, PersistenceError) and e.kind is ErrorKind.CANCELLED
            ]
            error = cancelled[0] if cancelled else errors[0]
            logger.warning(
                "Abandoning chunked write",
                failed_chunks=len(errors),
                error=str(error),
            )
            await self.cleanup_operation(operation_id)
            raise error

        return [o for o in outcomes if isinstance(o, WriteResult)]

    async def _write_chunk(
        self,
        chunk: ChunkDescriptor,
        cancel_event: asyncio.Event | None,
    ) -> WriteResult:
        context = {
            "operation_id": chunk.operation_id,
            "index": chunk.index,
            "path": chunk.path,
        }
        if cancel_event is not None and cancel_event.is_set():
            raise PersistenceError.cancelled(context=context)

        metadata = {
            "operation_id": chunk.operation_id,
            "index": chunk.index,
            "is_chunk": True,
        }
        result = await self.retry.with_retry(
            lambda: self.cache.put(chunk.path, chunk.blob.content, metadata),
            context=context,
            cancel_event=cancel_event,
        )
        logger.debug("Wrote chunk", index=chunk.index, total=chunk.total, size=result.size)

        if await self.record_chunk_result(chunk.operation_id, chunk.index, result):
            await self.finalize_operation(chunk.operation_id, cancel_event)
        return result

    def open_operation(self, path: str, total: int, operation_id: str | None = None) -> str:
        """Register a chunked operation and return its ID."""
        if total < 1:
            raise ValueError(f"total must be at least 1, got {total}")
        operation_id = operation_id or generate_id("chunk")
        self._operations[operation_id] = ChunkOperation(
            operation_id=operation_id, path=path, total=total
        )
        return operation_id

    async def record_chunk_result(
        self,
        operation_id: str,
        index: int,
        result: WriteResult,
    ) -> bool:
        """Mark a chunk index as written.

        Re-recording an index that is already complete replaces its result
        but never counts twice.

        Returns:
            True only for the call that completes the operation, which is
            then responsible for finalizing it.
        """
        operation = self._operations.get(operation_id)
        if operation is None:
            return False
        if not 0 <= index < operation.total:
            raise PersistenceError.permanent(
                "Chunk index out of range",
                details=[f"index {index} not in 0..{operation.total - 1}"],
                context={"operation_id": operation_id},
            )

        async with operation.lock:
            operation.results[index] = result
            operation.completed_indices.add(index)
            if operation.is_complete and not operation.finalized:
                operation.finalized = True
                return True
        return False

    async def finalize_operation(
        self,
        operation_id: str,
        cancel_event: asyncio.Event | None = None,
    ) -> WriteResult:
        """Merge stored chunks in index order and write the target path.

        Called once, by whoever received True from ``record_chunk_result``.
        The operation record is discarded after the merged write succeeds.
        """
        operation = self._operations.get(operation_id)
        if operation is None or not operation.is_complete:
            raise PersistenceError.permanent(
                "Operation cannot be finalized",
                details=["unknown, already finalized, or missing chunks"],
                context={"operation_id": operation_id},
            )

        fragments: list[Content] = []
        for index in sorted(operation.results):
            chunk_result = operation.results[index]
            entry = await self.cache.get(chunk_result.path)
            if entry is None or not _belongs_to(entry, operation_id):
                raise PersistenceError.permanent(
                    "Chunk missing at finalize",
                    details=[f"no stored content of this operation at {chunk_result.path}"],
                    context={"operation_id": operation_id, "index": index},
                )
            fragments.append(entry.content)
        merged = join_chunks(fragments)

        metadata = {
            "operation_id": operation_id,
            "is_complete": True,
            "total_chunks": operation.total,
        }
        final = await self.retry.with_retry(
            lambda: self.cache.put(operation.path, merged, metadata),
            context={"operation_id": operation_id, "path": operation.path},
            cancel_event=cancel_event,
        )

        self._final_results[operation_id] = final
        del self._operations[operation_id]
        logger.info("Finalized chunked write", total_chunks=operation.total, size=final.size)
        return final

    def get_operation_status(self, operation_id: str) -> OperationStatus | None:
        """Progress of an in-flight operation, or None if unknown."""
        operation = self._operations.get(operation_id)
        if operation is None:
            return None
        return operation.status()

    def get_final_result(self, operation_id: str) -> WriteResult | None:
        """WriteResult of a finalized operation's merged write, or None."""
        return self._final_results.get(operation_id)

    async def cleanup_operation(self, operation_id: str) -> None:
        """Remove cached chunks of an operation and discard its record.

        Also releases the stored final result of a finalized operation.
        No-op for unknown operations.
        """
        operation = self._operations.pop(operation_id, None)
        released = self._final_results.pop(operation_id, None) is not None

        def belongs(entry: CacheEntry) -> bool:
            return (
                entry.metadata.get("is_chunk") is True
                and entry.metadata.get("operation_id") == operation_id
            )

        paths = {entry.path for entry in await self.cache.find(belongs)}
        if operation is not None:
            paths.update(result.path for result in operation.results.values())

        for path in sorted(paths):
            await self.cache.delete(path)

        if operation is not None or paths or released:
            logger.info("Cleaned up operation", operation_id=operation_id, chunks_removed=len(paths))

    async def evict_cache(self, max_age_ms: float | None = None) -> None:
        """Evict stale cache entries (defaults to the configured age).

        Final results older than the same age are released as well.
        """
        if max_age_ms is None:
            max_age_ms = self.cache_max_age_ms
        await self.cache.evict(max_age_ms)

        now = self.cache.now()
        stale = [
            operation_id for operation_id, result in self._final_results.items()
            if (now - result.timestamp) / timedelta(milliseconds=1) > max_age_ms
        ]
        for operation_id in stale:
            del self._final_results[operation_id]

    def operation_ids(self) -> list[str]:
        """IDs of operations that have not finalized yet."""
        return list(self._operations)
