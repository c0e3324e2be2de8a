"""
Error taxonomy for the chunked write system.

All exceptions inherit from ChunkWriteError, which carries optional context
for structured error handling and logging. Persistence failures are a single
tagged type: PersistenceError.kind says whether a failure is retryable,
permanent, wrapped (terminal) or a cancellation.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

import httpx

from chunkwrite.types import utc_now

# errno-style codes treated as transient transport failures
TRANSIENT_ERROR_CODES = frozenset({"ECONNRESET", "ETIMEDOUT"})


class ChunkWriteError(Exception):
    """Base exception for all chunked write errors.

    Attributes:
        message: Human-readable error message.
        context: Optional structured context for logging/debugging.
    """

    def __init__(self, message: str, context: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.context = context or {}

    def __str__(self) -> str:
        if self.context:
            ctx_str = ", ".join(f"{k}={v!r}" for k, v in self.context.items())
            return f"{self.message} ({ctx_str})"
        return self.message

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, context={self.context!r})"


class ConfigurationError(ChunkWriteError):
    """Raised when configuration is invalid.

    Examples:
        - Non-positive chunk size
        - Warning threshold outside (0, 1]
    """

    pass


class ErrorKind(str, Enum):
    """Kind tag carried by every PersistenceError."""

    RETRYABLE = "retryable"
    PERMANENT = "permanent"
    WRAPPED = "wrapped"
    CANCELLED = "cancelled"

    @property
    def retryable(self) -> bool:
        return self is ErrorKind.RETRYABLE


class PersistenceError(ChunkWriteError):
    """Failure raised by a write path or produced by the retry executor.

    Context should include whatever identifies the failed write, e.g.:
        - path: Target path of the write
        - operation_id: Chunked operation the write belongs to
        - index: Chunk index
    """

    def __init__(
        self,
        message: str,
        kind: ErrorKind = ErrorKind.WRAPPED,
        details: list[str] | None = None,
        context: dict[str, Any] | None = None,
        status: int | None = None,
        code: str | None = None,
    ) -> None:
        super().__init__(message, context)
        self.kind = kind
        self.details = list(details or [])
        self.status = status
        self.code = code
        self.timestamp: datetime | None = None

    @property
    def retryable(self) -> bool:
        return self.kind.retryable

    @classmethod
    def retryable_error(
        cls,
        message: str,
        status: int | None = None,
        code: str | None = None,
        context: dict[str, Any] | None = None,
    ) -> PersistenceError:
        """Transient failure, eligible for automatic retry."""
        return cls(message, ErrorKind.RETRYABLE, context=context, status=status, code=code)

    @classmethod
    def permanent(
        cls,
        message: str,
        details: list[str] | None = None,
        context: dict[str, Any] | None = None,
    ) -> PersistenceError:
        """Validation-style failure; never retried."""
        return cls(message, ErrorKind.PERMANENT, details=details, context=context)

    @classmethod
    def wrapped(cls, message: str, context: dict[str, Any] | None = None) -> PersistenceError:
        return cls(message, ErrorKind.WRAPPED, context=context)

    @classmethod
    def cancelled(cls, message: str = "Operation cancelled", context: dict[str, Any] | None = None) -> PersistenceError:
        return cls(message, ErrorKind.CANCELLED, context=context)

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}({self.message!r}, kind={self.kind.value}, "
            f"details={self.details!r}, context={self.context!r})"
        )


def _status_of(error: BaseException) -> int | None:
    if isinstance(error, httpx.HTTPStatusError):
        return error.response.status_code
    status = getattr(error, "status", None)
    return status if isinstance(status, int) else None


def is_retryable(error: BaseException) -> bool:
    """Decide whether a failure is eligible for another attempt.

    RETRYABLE, PERMANENT and CANCELLED errors decide by their kind. WRAPPED and
    untagged errors are retryable only for server-side status codes (>= 500)
    and connection-reset/timeout conditions; everything else fails fast.
    """
    if isinstance(error, PersistenceError) and error.kind is not ErrorKind.WRAPPED:
        return error.kind.retryable

    status = _status_of(error)
    if status is not None and status >= 500:
        return True

    if isinstance(error, (ConnectionResetError, TimeoutError, httpx.TimeoutException)):
        return True

    return getattr(error, "code", None) in TRANSIENT_ERROR_CODES


def wrap_error(error: BaseException, context: dict[str, Any] | None = None) -> PersistenceError:
    """Attach context and a timestamp to a terminal failure.

    PersistenceErrors are annotated in place and keep their kind and details.
    Any other exception is converted to a WRAPPED PersistenceError; callers
    chain the original with ``raise ... from error``.
    """
    if isinstance(error, PersistenceError):
        wrapped = error
        wrapped.context = {**wrapped.context, **(context or {})}
    else:
        code = getattr(error, "code", None)
        wrapped = PersistenceError(
            str(error) or error.__class__.__name__,
            ErrorKind.WRAPPED,
            context=context,
            status=_status_of(error),
            code=code if isinstance(code, str) else None,
        )
    wrapped.timestamp = utc_now()
    return wrapped
