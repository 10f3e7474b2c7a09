"""
Tests for retry and timeout primitives.
"""

from __future__ import annotations

import asyncio
import time
from unittest.mock import AsyncMock, MagicMock

import pytest

from callprep.exceptions import (
    ClientRequestError,
    ErrorKind,
    RateLimitedError,
    ResearchTimeoutError,
    TransientServiceError,
    is_retriable,
)
from callprep.resilience import RetryOptions, wait_backoff_with_hint, with_retry, with_timeout

FAST = RetryOptions(initial_delay=0.0, max_delay=0.0)


class TestWithRetry:
    """Test with_retry behavior."""

    @pytest.mark.asyncio
    async def test_fail_fail_succeed(self) -> None:
        """Test the value is returned after exactly three calls."""
        fn = AsyncMock(
            side_effect=[TransientServiceError("down"), TransientServiceError("down"), "ok"]
        )

        result = await with_retry(fn, FAST)

        assert result == "ok"
        assert fn.call_count == 3

    @pytest.mark.asyncio
    async def test_should_retry_false_calls_once(self) -> None:
        """Test a refusing predicate stops after the first call."""
        error = ClientRequestError("bad request", status_code=400)
        fn = AsyncMock(side_effect=error)
        options = RetryOptions(initial_delay=0.0, max_delay=0.0, should_retry=lambda e: False)

        with pytest.raises(ClientRequestError) as exc_info:
            await with_retry(fn, options)

        assert exc_info.value is error
        assert fn.call_count == 1

    @pytest.mark.asyncio
    async def test_exhaustion_reraises_last_error(self) -> None:
        """Test the last error is re-raised unchanged."""
        errors = [TransientServiceError(f"attempt {i}") for i in range(3)]
        fn = AsyncMock(side_effect=errors)

        with pytest.raises(TransientServiceError) as exc_info:
            await with_retry(fn, FAST)

        assert exc_info.value is errors[-1]
        assert fn.call_count == 3

    @pytest.mark.asyncio
    async def test_default_retries_everything(self) -> None:
        """Test the default predicate retries foreign errors too."""
        fn = AsyncMock(side_effect=[ValueError("x"), "ok"])
        assert await with_retry(fn, FAST) == "ok"

    @pytest.mark.asyncio
    async def test_kind_predicate(self) -> None:
        """Test is_retriable stops on client errors."""
        fn = AsyncMock(side_effect=ClientRequestError("401", status_code=401))
        options = RetryOptions(initial_delay=0.0, max_delay=0.0, should_retry=is_retriable)

        with pytest.raises(ClientRequestError):
            await with_retry(fn, options)
        assert fn.call_count == 1


class TestBackoff:
    """Test the wait strategy."""

    def _state(self, attempt: int, error: BaseException | None = None) -> MagicMock:
        state = MagicMock()
        state.attempt_number = attempt
        state.outcome.failed = error is not None
        state.outcome.exception.return_value = error
        return state

    def test_exponential_with_jitter(self) -> None:
        """Test delay grows by the factor with at most 20% jitter."""
        wait = wait_backoff_with_hint(RetryOptions(initial_delay=1.0, max_delay=10.0))

        for attempt, base in [(1, 1.0), (2, 2.0), (3, 4.0), (5, 10.0)]:
            delay = wait(self._state(attempt, TransientServiceError("x")))
            assert base <= delay <= base * 1.2

    def test_retry_after_hint_capped(self) -> None:
        """Test a retry hint raises the wait but never past max_delay."""
        wait = wait_backoff_with_hint(RetryOptions(initial_delay=1.0, max_delay=10.0))

        assert wait(self._state(1, RateLimitedError("x", retry_after=5))) >= 5.0
        delay = wait(self._state(1, RateLimitedError("x", retry_after=60)))
        assert 10.0 <= delay <= 12.0

    def test_base_delay(self) -> None:
        """Test the un-jittered formula."""
        options = RetryOptions(initial_delay=1.0, max_delay=10.0, backoff_factor=2.0)
        assert [options.base_delay(n) for n in (1, 2, 3, 4, 5)] == [1.0, 2.0, 4.0, 8.0, 10.0]


class TestWithTimeout:
    """Test with_timeout behavior."""

    @pytest.mark.asyncio
    async def test_returns_value(self) -> None:
        """Test fast calls return their value."""

        async def fast() -> str:
            return "done"

        assert await with_timeout(fast, 1.0) == "done"

    @pytest.mark.asyncio
    async def test_never_resolving_call_times_out(self) -> None:
        """Test a hanging call raises a timeout-kind error promptly."""
        started = asyncio.Event()
        cancelled = asyncio.Event()

        async def hang() -> None:
            started.set()
            try:
                await asyncio.Event().wait()
            except asyncio.CancelledError:
                cancelled.set()
                raise

        start = time.monotonic()
        with pytest.raises(ResearchTimeoutError) as exc_info:
            await with_timeout(hang, 0.05)
        elapsed = time.monotonic() - start

        assert exc_info.value.kind == ErrorKind.TIMEOUT
        assert exc_info.value.timeout_ms == 50
        assert elapsed < 1.0
        assert started.is_set()
        assert cancelled.is_set()
        pending = [t for t in asyncio.all_tasks() if t is not asyncio.current_task()]
        assert pending == []

    @pytest.mark.asyncio
    async def test_custom_message(self) -> None:
        """Test the message can be overridden."""

        async def hang() -> None:
            await asyncio.sleep(10)

        with pytest.raises(ResearchTimeoutError, match="Company research timed out"):
            await with_timeout(hang, 0.01, "Company research timed out")

    @pytest.mark.asyncio
    async def test_errors_pass_through(self) -> None:
        """Test errors from the wrapped call propagate unchanged."""
        fn = AsyncMock(side_effect=ClientRequestError("bad", status_code=400))

        with pytest.raises(ClientRequestError):
            await with_timeout(fn, 1.0)

    @pytest.mark.asyncio
    async def test_cancels_pending_backoff(self) -> None:
        """Test an outer timeout aborts retries waiting in backoff."""
        fn = AsyncMock(side_effect=TransientServiceError("down"))
        slow = RetryOptions(initial_delay=5.0, max_delay=5.0)

        start = time.monotonic()
        with pytest.raises(ResearchTimeoutError):
            await with_timeout(lambda: with_retry(fn, slow), 0.05)

        assert time.monotonic() - start < 1.0
        assert fn.call_count == 1
