"""
Custom exception hierarchy for the call prep research engine.

All exceptions inherit from CallPrepError, which provides optional context
for structured error handling and logging. Every class carries an ErrorKind;
retry and degradation decisions match on the kind, never on the class.
"""

from __future__ import annotations

from enum import Enum
from typing import Any


class ErrorKind(str, Enum):
    """Behavioral classification of a failure."""

    CONFIGURATION = "configuration"
    RATE_LIMITED = "rate_limited"
    CLIENT_ERROR = "client_error"
    TRANSIENT = "transient"
    PARSE_ERROR = "parse_error"
    TIMEOUT = "timeout"
    BRIEF_GENERATION_FAILED = "brief_generation_failed"
    VALIDATION = "validation"
    UNKNOWN = "unknown"


RETRIABLE_KINDS = frozenset(
    {ErrorKind.RATE_LIMITED, ErrorKind.TRANSIENT, ErrorKind.PARSE_ERROR}
)


class CallPrepError(Exception):
    """Base exception for all call prep errors.

    Attributes:
        message: Human-readable error message.
        context: Optional structured context for logging/debugging.
    """

    kind: ErrorKind = ErrorKind.UNKNOWN

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


class ConfigurationError(CallPrepError):
    """Raised when configuration is invalid or missing.

    Examples:
        - Missing PERPLEXITY_API_KEY or ANTHROPIC_API_KEY
    """

    kind = ErrorKind.CONFIGURATION


class RateLimitedError(CallPrepError):
    """Raised when an external service answers HTTP 429.

    Attributes:
        retry_after: Server-provided retry hint in seconds, if any.
    """

    kind = ErrorKind.RATE_LIMITED

    def __init__(
        self,
        message: str,
        retry_after: float | None = None,
        context: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, context)
        self.retry_after = retry_after


class ClientRequestError(CallPrepError):
    """Raised for 4xx responses other than 429 (bad request, bad auth)."""

    kind = ErrorKind.CLIENT_ERROR

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        context: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, context)
        self.status_code = status_code


class TransientServiceError(CallPrepError):
    """Raised for 5xx responses and network failures."""

    kind = ErrorKind.TRANSIENT

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        context: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, context)
        self.status_code = status_code


class ResponseParseError(CallPrepError):
    """Raised when a model response cannot be parsed into the expected shape."""

    kind = ErrorKind.PARSE_ERROR


class ResearchTimeoutError(CallPrepError):
    """Raised when an operation exceeds its time budget.

    Attributes:
        timeout_ms: The budget that was exceeded, in milliseconds.
    """

    kind = ErrorKind.TIMEOUT

    def __init__(
        self,
        message: str,
        timeout_ms: int,
        context: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, context)
        self.timeout_ms = timeout_ms


class BriefGenerationError(CallPrepError):
    """Raised when no brief can be produced and no research data exists.

    The job runner marks the request failed and offers a user-facing retry.
    """

    kind = ErrorKind.BRIEF_GENERATION_FAILED


class ValidationError(CallPrepError):
    """Raised when data validation fails.

    Context should include:
        - field: The field that failed validation
        - value: The invalid value
        - expected: Description of what was expected
    """

    kind = ErrorKind.VALIDATION


def error_kind(error: BaseException) -> ErrorKind:
    """Classify any exception into an ErrorKind.

    Foreign exceptions are UNKNOWN, except bare asyncio/builtin timeouts.
    """
    if isinstance(error, CallPrepError):
        return error.kind
    if isinstance(error, TimeoutError):
        return ErrorKind.TIMEOUT
    return ErrorKind.UNKNOWN


def is_retriable(error: BaseException) -> bool:
    """Default retry predicate for external calls."""
    return error_kind(error) in RETRIABLE_KINDS
