"""
Content size analysis.

Decides whether content fits in a single write or must be chunked, and
into how many chunks. Sizes are byte sizes (UTF-8 for text), never
character counts.
"""

from __future__ import annotations

import math
from dataclasses import dataclass

from chunkwrite.config import Settings
from chunkwrite.exceptions import ConfigurationError
from chunkwrite.logging import get_logger
from chunkwrite.types import Content, byte_size

logger = get_logger(__name__)

DEFAULT_CHUNK_SIZE = 50_000  # bytes
DEFAULT_WARNING_THRESHOLD = 0.8


def _validate_limits(chunk_size: int, warning_threshold: float) -> None:
    if chunk_size < 1:
        raise ConfigurationError(
            "chunk_size must be positive", context={"chunk_size": chunk_size}
        )
    if not 0 < warning_threshold <= 1:
        raise ConfigurationError(
            "warning_threshold must be in (0, 1]",
            context={"warning_threshold": warning_threshold},
        )


@dataclass(frozen=True)
class ContentAnalysis:
    """Result of measuring a piece of content against the chunk size."""

    size: int
    requires_chunking: bool
    chunks: int
    approaching_limit: bool


def analyze_content(
    content: Content,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    warning_threshold: float = DEFAULT_WARNING_THRESHOLD,
) -> ContentAnalysis:
    """Measure content and decide how it should be written.

    Args:
        content: Text or bytes to measure.
        chunk_size: Largest size in bytes written in one piece.
        warning_threshold: Fraction of chunk_size above which content is
            flagged as approaching the limit.

    Returns:
        ContentAnalysis with ``chunks == ceil(size / chunk_size)`` when
        chunking is required and 1 otherwise.
    """
    _validate_limits(chunk_size, warning_threshold)

    size = byte_size(content)
    requires_chunking = size > chunk_size
    return ContentAnalysis(
        size=size,
        requires_chunking=requires_chunking,
        chunks=math.ceil(size / chunk_size) if requires_chunking else 1,
        approaching_limit=size > chunk_size * warning_threshold,
    )


class ContentAnalyzer:
    """Analyzer bound to a configured chunk size and warning threshold."""

    def __init__(
        self,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        warning_threshold: float = DEFAULT_WARNING_THRESHOLD,
    ) -> None:
        _validate_limits(chunk_size, warning_threshold)
        self.chunk_size = chunk_size
        self.warning_threshold = warning_threshold

    @classmethod
    def from_settings(cls, settings: Settings) -> ContentAnalyzer:
        return cls(
            chunk_size=settings.CHUNK_SIZE,
            warning_threshold=settings.WARNING_THRESHOLD,
        )

    def analyze(self, content: Content) -> ContentAnalysis:
        analysis = analyze_content(content, self.chunk_size, self.warning_threshold)
        if analysis.approaching_limit and not analysis.requires_chunking:
            logger.warning(
                "Content approaching chunk size limit",
                size=analysis.size,
                chunk_size=self.chunk_size,
            )
        return analysis
