"""
Retry and timeout primitives shared by every external call.

with_retry wraps a coroutine factory in tenacity's AsyncRetrying with an
exponential backoff that honours server retry hints. with_timeout bounds a
coroutine with a deadline and converts expiry into ResearchTimeoutError.
"""

from __future__ import annotations

import asyncio
import random
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Awaitable, Callable, TypeVar

from tenacity import AsyncRetrying, RetryCallState, retry_if_exception, stop_after_attempt
from tenacity.wait import wait_base

from callprep.exceptions import ResearchTimeoutError, error_kind, is_retriable
from callprep.logging import get_logger

if TYPE_CHECKING:
    from callprep.config import Settings

logger = get_logger(__name__)

T = TypeVar("T")

# Jitter is a uniform fraction of the computed delay, added on top.
JITTER_RATIO = 0.2


def _always_retry(error: BaseException) -> bool:
    return True


@dataclass(frozen=True)
class RetryOptions:
    """Retry policy for a single external call.

    Attributes:
        max_attempts: Total attempts including the first.
        initial_delay: Delay before the second attempt, in seconds.
        max_delay: Cap on the exponential delay, in seconds.
        backoff_factor: Multiplier applied per attempt.
        should_retry: Predicate deciding whether an error is worth retrying.
        operation: Label used in retry log lines.
    """

    max_attempts: int = 3
    initial_delay: float = 1.0
    max_delay: float = 10.0
    backoff_factor: float = 2.0
    should_retry: Callable[[BaseException], bool] = field(default=_always_retry)
    operation: str = "operation"

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        operation: str = "operation",
        should_retry: Callable[[BaseException], bool] = is_retriable,
    ) -> RetryOptions:
        """Build options from settings, retrying on retriable error kinds."""
        return cls(
            max_attempts=settings.RETRY_MAX_ATTEMPTS,
            initial_delay=settings.RETRY_INITIAL_DELAY_SECONDS,
            max_delay=settings.RETRY_MAX_DELAY_SECONDS,
            backoff_factor=settings.RETRY_BACKOFF_FACTOR,
            should_retry=should_retry,
            operation=operation,
        )

    def base_delay(self, attempt: int) -> float:
        """Backoff before attempt ``attempt + 1``, without jitter."""
        return min(self.initial_delay * self.backoff_factor ** (attempt - 1), self.max_delay)


class wait_backoff_with_hint(wait_base):
    """Exponential backoff with jitter, raised to any retry_after hint.

    The hint never pushes the wait past ``max_delay``.
    """

    def __init__(self, options: RetryOptions) -> None:
        self.options = options

    def __call__(self, retry_state: RetryCallState) -> float:
        delay = self.options.base_delay(retry_state.attempt_number)
        delay += random.uniform(0.0, delay * JITTER_RATIO)

        outcome = retry_state.outcome
        error = outcome.exception() if outcome is not None and outcome.failed else None
        hint = getattr(error, "retry_after", None)
        if isinstance(hint, (int, float)) and hint > 0:
            delay = max(delay, min(float(hint), self.options.max_delay))
        return delay


def _retry_predicate(options: RetryOptions) -> Callable[[BaseException], bool]:
    def predicate(error: BaseException) -> bool:
        # Cancellation must propagate so outer timeouts can abort the call.
        if not isinstance(error, Exception):
            return False
        return options.should_retry(error)

    return predicate


def _log_before_sleep(options: RetryOptions) -> Callable[[RetryCallState], None]:
    def before_sleep(retry_state: RetryCallState) -> None:
        outcome = retry_state.outcome
        error = outcome.exception() if outcome is not None else None
        delay = retry_state.next_action.sleep if retry_state.next_action else 0.0
        logger.warning(
            f"{options.operation} failed, retrying",
            attempt=retry_state.attempt_number,
            max_attempts=options.max_attempts,
            delay_seconds=round(delay, 3),
            error_kind=error_kind(error).value if error else None,
            error=str(error) if error else None,
        )

    return before_sleep


async def with_retry(
    fn: Callable[[], Awaitable[T]],
    options: RetryOptions | None = None,
) -> T:
    """Run ``fn`` until it succeeds, the predicate refuses, or attempts run out.

    Args:
        fn: Zero-argument coroutine factory. Called once per attempt.
        options: Retry policy. Defaults to 3 attempts, 1s initial delay,
            10s cap, factor 2, retry on everything.

    Returns:
        The first successful result.

    Raises:
        The last error, unchanged, once retries stop.
    """
    options = options or RetryOptions()
    retrying = AsyncRetrying(
        stop=stop_after_attempt(options.max_attempts),
        wait=wait_backoff_with_hint(options),
        retry=retry_if_exception(_retry_predicate(options)),
        before_sleep=_log_before_sleep(options),
        reraise=True,
    )
    return await retrying(fn)


async def with_timeout(
    fn: Callable[[], Awaitable[T]],
    timeout: float,
    message: str | None = None,
) -> T:
    """Await ``fn()`` with a deadline.

    On expiry the awaited coroutine is cancelled, which aborts an in-flight
    HTTP request or a pending backoff sleep.

    Args:
        fn: Zero-argument coroutine factory.
        timeout: Deadline in seconds.
        message: Optional error message; defaults to one naming the budget.

    Returns:
        The result of ``fn()``.

    Raises:
        ResearchTimeoutError: If the deadline passes first.
    """
    timeout_ms = int(timeout * 1000)
    try:
        async with asyncio.timeout(timeout):
            return await fn()
    except TimeoutError as e:
        raise ResearchTimeoutError(
            message or f"Operation timed out after {timeout_ms}ms",
            timeout_ms=timeout_ms,
        ) from e
