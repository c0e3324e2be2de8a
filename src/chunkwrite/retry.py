"""
Retry executor with exponential backoff.

Runs a fallible async operation under tenacity, consulting the error
taxonomy (is_retryable) to decide whether a failure earns another attempt.
Terminal failures are always surfaced as PersistenceError with the caller's
context and a timestamp attached.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, TypeVar

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    RetryError,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from chunkwrite.exceptions import ConfigurationError, ErrorKind, PersistenceError, is_retryable, wrap_error
from chunkwrite.logging import get_logger
from chunkwrite.types import ErrorContext

logger = get_logger(__name__)

T = TypeVar("T")

SleepFn = Callable[[float], Awaitable[None]]


@dataclass(frozen=True)
class RetryConfig:
    """Retry budget and backoff bounds.

    Attributes:
        max_retries: Total attempts allowed, including the first.
        base_delay_ms: Wait after the first failed attempt.
        max_delay_ms: Cap on any single wait.
    """

    max_retries: int = 3
    base_delay_ms: int = 1000
    max_delay_ms: int = 10_000

    def __post_init__(self) -> None:
        if self.max_retries < 1:
            raise ConfigurationError("max_retries must be at least 1", context={"max_retries": self.max_retries})
        if self.base_delay_ms < 0 or self.max_delay_ms < 0:
            raise ConfigurationError(
                "delays must be non-negative",
                context={"base_delay_ms": self.base_delay_ms, "max_delay_ms": self.max_delay_ms},
            )

    def delay_ms(self, attempt: int) -> int:
        """Wait applied after ``attempt`` (1-based) fails."""
        return min(self.base_delay_ms * 2 ** (attempt - 1), self.max_delay_ms)


def _check_cancelled(cancel_event: asyncio.Event | None, context: dict[str, Any]) -> None:
    if cancel_event is not None and cancel_event.is_set():
        raise PersistenceError.cancelled(context=context)


class RetryExecutor:
    """Runs operations under exponential backoff.

    The wait before attempt n+1 is ``min(base_delay * 2**(n-1), max_delay)``:
    with the defaults that is 1s before attempt 2 and 2s before attempt 3.
    """

    def __init__(
        self,
        config: RetryConfig | None = None,
        sleep: SleepFn | None = None,
    ) -> None:
        """Initialize the executor.

        Args:
            config: Retry budget and backoff bounds.
            sleep: Awaitable sleep taking seconds. Defaults to asyncio.sleep,
                which suspends only the retrying task.
        """
        self.config = config or RetryConfig()
        self._sleep = sleep or asyncio.sleep

    def _retrying(self, context: dict[str, Any]) -> AsyncRetrying:
        def log_retry(retry_state: RetryCallState) -> None:
            outcome = retry_state.outcome
            error = outcome.exception() if outcome else None
            delay_ms = int(retry_state.next_action.sleep * 1000) if retry_state.next_action else 0
            logger.warning(
                f"Attempt {retry_state.attempt_number} failed, retrying in {delay_ms}ms",
                attempt=retry_state.attempt_number,
                delay_ms=delay_ms,
                error=str(error),
                context=context,
            )

        return AsyncRetrying(
            stop=stop_after_attempt(self.config.max_retries),
            wait=wait_exponential(
                multiplier=self.config.base_delay_ms / 1000,
                max=self.config.max_delay_ms / 1000,
            ),
            retry=retry_if_exception(is_retryable),
            before_sleep=log_retry,
            sleep=self._sleep,
            reraise=False,
        )

    async def with_retry(
        self,
        operation: Callable[[], Awaitable[T]],
        context: ErrorContext | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> T:
        """Run ``operation`` until it succeeds or the failure becomes terminal.

        Args:
            operation: Zero-argument coroutine function to attempt.
            context: Diagnostic data attached to a terminal failure.
            cancel_event: Checked before every attempt; once set, the
                executor stops and raises a CANCELLED PersistenceError.

        Returns:
            The value of the first successful attempt.

        Raises:
            PersistenceError: CANCELLED on cancellation, the original kind for
                a non-retryable PersistenceError, WRAPPED for any other
                non-retryable failure or once retries are exhausted.
        """
        context = dict(context or {})

        try:
            async for attempt in self._retrying(context):
                with attempt:
                    _check_cancelled(cancel_event, context)
                    return await operation()
        except RetryError as e:
            last_error = e.last_attempt.exception()
            attempts = e.last_attempt.attempt_number
            message = getattr(last_error, "message", None) or str(last_error)
            logger.error(
                "Operation failed after retries",
                attempts=attempts,
                error=message,
                context=context,
            )
            raise wrap_error(
                PersistenceError.wrapped(
                    f"Operation failed after {attempts} attempts: {message}",
                    context={**context, "attempts": attempts, "final_attempt": True},
                )
            ) from last_error
        except PersistenceError as e:
            if e.kind is ErrorKind.CANCELLED:
                raise
            raise wrap_error(e, context)
        except Exception as e:
            raise wrap_error(e, context) from e

        raise RuntimeError("Retry loop exited without a result")
