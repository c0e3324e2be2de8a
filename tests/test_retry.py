"""
Tests for the retry executor and error taxonomy.
"""

from __future__ import annotations

import asyncio

import httpx
import pytest

from chunkwrite.exceptions import (
    ConfigurationError,
    ErrorKind,
    PersistenceError,
    is_retryable,
    wrap_error,
)
from chunkwrite.retry import RetryConfig, RetryExecutor

from conftest import RecordingSleep


class FlakyOperation:
    """Fails with the given errors in order, then returns a value."""

    def __init__(self, errors: list[BaseException], value: str = "ok") -> None:
        self.errors = list(errors)
        self.value = value
        self.calls = 0

    async def __call__(self) -> str:
        self.calls += 1
        if self.errors:
            raise self.errors.pop(0)
        return self.value


class CodedError(Exception):
    """Transport error carrying an errno-style code."""

    def __init__(self, message: str, code: str) -> None:
        super().__init__(message)
        self.code = code


def _http_status_error(status: int) -> httpx.HTTPStatusError:
    request = httpx.Request("PUT", "https://storage.example.com/blob")
    response = httpx.Response(status, request=request)
    return httpx.HTTPStatusError(f"status {status}", request=request, response=response)


class TestClassification:
    """Test which failures are eligible for retry."""

    def test_tagged_kinds(self) -> None:
        """Test that the kind tag decides for PersistenceError."""
        assert is_retryable(PersistenceError.retryable_error("flaky"))
        assert not is_retryable(PersistenceError.permanent("bad input", ["field x"]))
        assert not is_retryable(PersistenceError.wrapped("terminal"))
        assert not is_retryable(PersistenceError.cancelled())

    def test_server_status_is_retryable(self) -> None:
        """Test that status >= 500 is retryable and 4xx is not."""
        assert is_retryable(_http_status_error(503))
        assert is_retryable(_http_status_error(500))
        assert not is_retryable(_http_status_error(404))

    def test_connection_reset_and_timeout(self) -> None:
        """Test that reset and timeout conditions are retryable."""
        assert is_retryable(ConnectionResetError())
        assert is_retryable(TimeoutError())
        assert is_retryable(httpx.ReadTimeout("slow"))
        assert is_retryable(CodedError("reset", "ECONNRESET"))
        assert is_retryable(CodedError("timed out", "ETIMEDOUT"))

    def test_unknown_errors_fail_fast(self) -> None:
        """Test that anything unclassified is not retried."""
        assert not is_retryable(ValueError("nope"))
        assert not is_retryable(CodedError("denied", "EACCES"))

    def test_untagged_persistence_errors_use_status_and_code(self) -> None:
        """Test that WRAPPED errors fall through to the status and code checks."""
        assert is_retryable(PersistenceError("gateway", status=503))
        assert is_retryable(PersistenceError("reset", code="ECONNRESET"))
        assert not is_retryable(PersistenceError("not found", status=404))
        assert not is_retryable(PersistenceError.permanent("bad input"))

    def test_wrap_error_keeps_kind_and_details(self) -> None:
        """Test that wrapping a PersistenceError only adds context."""
        error = PersistenceError.permanent("invalid", details=["a", "b"])
        wrapped = wrap_error(error, {"path": "x.md"})

        assert wrapped is error
        assert wrapped.kind is ErrorKind.PERMANENT
        assert wrapped.details == ["a", "b"]
        assert wrapped.context == {"path": "x.md"}
        assert wrapped.timestamp is not None

    def test_wrap_error_converts_foreign_errors(self) -> None:
        """Test that other exceptions become WRAPPED errors."""
        wrapped = wrap_error(KeyError("missing"), {"path": "x.md"})

        assert wrapped.kind is ErrorKind.WRAPPED
        assert "missing" in wrapped.message
        assert "path='x.md'" in str(wrapped)


class TestBackoff:
    """Test the backoff schedule."""

    def test_delay_schedule(self) -> None:
        """Test exponential growth capped at max_delay."""
        config = RetryConfig(max_retries=10, base_delay_ms=1000, max_delay_ms=10_000)
        assert [config.delay_ms(n) for n in range(1, 7)] == [
            1000, 2000, 4000, 8000, 10_000, 10_000,
        ]

    async def test_waits_before_attempts_two_and_three(
        self,
        retry_executor: RetryExecutor,
        recording_sleep: RecordingSleep,
    ) -> None:
        """Test that waits are 1000ms then 2000ms with the default budget."""
        operation = FlakyOperation([
            PersistenceError.retryable_error("busy"),
            PersistenceError.retryable_error("busy"),
        ])

        result = await retry_executor.with_retry(operation)

        assert result == "ok"
        assert operation.calls == 3
        assert recording_sleep.delays_ms == [1000, 2000]

    async def test_delay_is_capped(self) -> None:
        """Test that no wait exceeds max_delay."""
        sleep = RecordingSleep()
        executor = RetryExecutor(
            RetryConfig(max_retries=5, base_delay_ms=1000, max_delay_ms=3000),
            sleep=sleep,
        )
        operation = FlakyOperation([ConnectionResetError()] * 4)

        assert await executor.with_retry(operation) == "ok"
        assert sleep.delays_ms == [1000, 2000, 3000, 3000]

    def test_invalid_config_rejected(self) -> None:
        """Test that a zero retry budget is a configuration error."""
        with pytest.raises(ConfigurationError):
            RetryConfig(max_retries=0)


class TestWithRetry:
    """Test terminal outcomes of with_retry."""

    async def test_success_on_first_attempt(
        self,
        retry_executor: RetryExecutor,
        recording_sleep: RecordingSleep,
    ) -> None:
        """Test that success returns immediately without waiting."""
        operation = FlakyOperation([])

        assert await retry_executor.with_retry(operation) == "ok"
        assert operation.calls == 1
        assert recording_sleep.delays == []

    async def test_permanent_error_fails_fast(self, retry_executor: RetryExecutor) -> None:
        """Test that a permanent failure invokes the operation exactly once."""
        operation = FlakyOperation([
            PersistenceError.permanent("validation failed", details=["size must be > 0"]),
        ])

        with pytest.raises(PersistenceError) as exc_info:
            await retry_executor.with_retry(operation, context={"path": "a.md"})

        assert operation.calls == 1
        error = exc_info.value
        assert error.kind is ErrorKind.PERMANENT
        assert error.details == ["size must be > 0"]
        assert error.context["path"] == "a.md"
        assert error.timestamp is not None

    async def test_unclassified_error_fails_fast(self, retry_executor: RetryExecutor) -> None:
        """Test that an unknown failure is wrapped and not retried."""
        operation = FlakyOperation([ValueError("bad value")])

        with pytest.raises(PersistenceError) as exc_info:
            await retry_executor.with_retry(operation, context={"path": "a.md"})

        assert operation.calls == 1
        assert exc_info.value.kind is ErrorKind.WRAPPED
        assert exc_info.value.message == "bad value"
        assert isinstance(exc_info.value.__cause__, ValueError)

    async def test_exhaustion_reports_attempts_and_last_message(
        self,
        retry_executor: RetryExecutor,
        recording_sleep: RecordingSleep,
    ) -> None:
        """Test the terminal error once every attempt failed."""
        operation = FlakyOperation([
            PersistenceError.retryable_error("first"),
            PersistenceError.retryable_error("second"),
            PersistenceError.retryable_error("third"),
        ])

        with pytest.raises(PersistenceError) as exc_info:
            await retry_executor.with_retry(operation, context={"path": "a.md"})

        error = exc_info.value
        assert operation.calls == 3
        assert error.kind is ErrorKind.WRAPPED
        assert error.message == "Operation failed after 3 attempts: third"
        assert error.context["attempts"] == 3
        assert error.context["final_attempt"] is True
        assert error.context["path"] == "a.md"
        assert error.timestamp is not None
        assert recording_sleep.delays_ms == [1000, 2000]

    async def test_server_error_exhaustion_embeds_message(self) -> None:
        """Test exhaustion with untagged 5xx failures."""
        executor = RetryExecutor(RetryConfig(max_retries=2), sleep=RecordingSleep())
        operation = FlakyOperation([_http_status_error(502), _http_status_error(503)])

        with pytest.raises(PersistenceError) as exc_info:
            await executor.with_retry(operation)

        assert exc_info.value.message == "Operation failed after 2 attempts: status 503"

    async def test_cancellation_before_first_attempt(self, retry_executor: RetryExecutor) -> None:
        """Test that a set cancel event prevents any attempt."""
        operation = FlakyOperation([])
        cancel = asyncio.Event()
        cancel.set()

        with pytest.raises(PersistenceError) as exc_info:
            await retry_executor.with_retry(operation, cancel_event=cancel)

        assert exc_info.value.kind is ErrorKind.CANCELLED
        assert operation.calls == 0

    async def test_cancellation_between_attempts(self) -> None:
        """Test that cancellation is checked before each retry."""
        cancel = asyncio.Event()

        async def cancel_on_sleep(seconds: float) -> None:
            cancel.set()

        executor = RetryExecutor(RetryConfig(max_retries=3), sleep=cancel_on_sleep)
        operation = FlakyOperation([PersistenceError.retryable_error("busy")])

        with pytest.raises(PersistenceError) as exc_info:
            await executor.with_retry(operation, cancel_event=cancel)

        assert exc_info.value.kind is ErrorKind.CANCELLED
        assert operation.calls == 1

    async def test_context_keys_matching_log_fields(
        self,
        retry_executor: RetryExecutor,
        recording_sleep: RecordingSleep,
    ) -> None:
        """Test that any context key is accepted, including logger field names."""
        context = {"attempt": 7, "msg": "m", "level": 1, "exc_info": True, "error": "e"}
        operation = FlakyOperation([PersistenceError.retryable_error("busy")])

        assert await retry_executor.with_retry(operation, context=context) == "ok"
        assert operation.calls == 2
        assert recording_sleep.delays_ms == [1000]

    async def test_context_keys_matching_log_fields_on_exhaustion(self) -> None:
        """Test that exhaustion still reports the caller's context."""
        executor = RetryExecutor(RetryConfig(max_retries=2), sleep=RecordingSleep())
        operation = FlakyOperation([
            PersistenceError.retryable_error("first"),
            PersistenceError.retryable_error("second"),
        ])

        with pytest.raises(PersistenceError) as exc_info:
            await executor.with_retry(operation, context={"attempts": 99, "error": "e"})

        assert exc_info.value.message == "Operation failed after 2 attempts: second"
        assert exc_info.value.context["attempts"] == 2
        assert exc_info.value.context["error"] == "e"
