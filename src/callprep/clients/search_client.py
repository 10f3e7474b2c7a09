"""
Client for the search-augmented chat completion API (Perplexity-compatible).

Executes exactly one call per invocation and classifies the outcome:
- 429 -> RateLimitedError (with the retry-after hint)
- other 4xx -> ClientRequestError
- 5xx and transport failures -> TransientServiceError
- 2xx -> SearchResponse with content, token usage and sources

Every call produces one ResearchOperationLog, returned in a PassExecution
together with either the response or the error.
"""

from __future__ import annotations

import asyncio
import re
import time
from dataclasses import dataclass
from typing import Any, Callable

import httpx
import orjson

from callprep.config import Settings, get_settings
from callprep.exceptions import (
    CallPrepError,
    ClientRequestError,
    ConfigurationError,
    ErrorKind,
    RateLimitedError,
    ResponseParseError,
    TransientServiceError,
    error_kind,
)
from callprep.logging import get_logger
from callprep.types import ResearchOperationLog, ResearchSource, SearchPurpose, utc_now

logger = get_logger(__name__)

SYSTEM_MESSAGES: dict[SearchPurpose, str] = {
    SearchPurpose.GENERAL: (
        "You are a business research assistant. Provide factual, cited "
        "information. Be concise and specific."
    ),
    SearchPurpose.COMPANY: (
        "You are a business research assistant. Provide factual, cited "
        "information about companies. Format your response as JSON."
    ),
    SearchPurpose.PROSPECT: (
        "You are a business research assistant. Provide factual, cited "
        "information about business professionals. Format your response as JSON."
    ),
}

_FENCED_JSON = re.compile(r"```(?:json)?\s*([\s\S]*?)```", re.IGNORECASE)


@dataclass(frozen=True)
class SearchRequest:
    """Parameters for one search-augmented call."""

    purpose: SearchPurpose
    prompt: str
    temperature: float = 0.2
    max_tokens: int = 2000
    domain_filter: str | None = None
    operation: str = "search"
    pass_name: str | None = None

    def to_payload(self, model: str) -> dict[str, Any]:
        """Build the JSON request body."""
        payload: dict[str, Any] = {
            "model": model,
            "messages": [
                {"role": "system", "content": SYSTEM_MESSAGES[self.purpose]},
                {"role": "user", "content": self.prompt},
            ],
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
        }
        if self.domain_filter:
            payload["search_domain_filter"] = [self.domain_filter]
        return payload


@dataclass(frozen=True)
class SearchResponse:
    """Successful search call output."""

    content: str
    model: str
    total_tokens: int | None
    sources: tuple[ResearchSource, ...]
    status_code: int = 200


@dataclass(frozen=True)
class PassExecution:
    """Tagged outcome of one call: exactly one of response/error is set."""

    request: SearchRequest
    log: ResearchOperationLog
    response: SearchResponse | None = None
    error: CallPrepError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def unwrap(self) -> SearchResponse:
        """Return the response or raise the recorded error."""
        if self.error is not None:
            raise self.error
        assert self.response is not None
        return self.response


def parse_json_content(content: str) -> dict[str, Any] | None:
    """Extract a JSON object from model output.

    Tries the whole text, then a fenced ```json block, then the outermost
    ``{...}`` span.

    Returns:
        The parsed object, or None if nothing parses to a JSON object.
    """
    candidates = [content.strip()]
    fenced = _FENCED_JSON.search(content)
    if fenced:
        candidates.append(fenced.group(1).strip())
    start, end = content.find("{"), content.rfind("}")
    if start != -1 and end > start:
        candidates.append(content[start : end + 1])

    for candidate in candidates:
        if not candidate:
            continue
        try:
            parsed = orjson.loads(candidate)
        except orjson.JSONDecodeError:
            continue
        if isinstance(parsed, dict):
            return parsed
    return None


def extract_sources(data: dict[str, Any]) -> tuple[ResearchSource, ...]:
    """Read sources from ``search_results``, falling back to ``citations``."""
    for key in ("search_results", "citations"):
        entries = data.get(key)
        if isinstance(entries, list) and entries:
            sources = (ResearchSource.from_payload(entry) for entry in entries)
            return tuple(s for s in sources if s is not None)
    return ()


def _parse_retry_after(value: str | None) -> float | None:
    if not value:
        return None
    try:
        seconds = float(value)
    except ValueError:
        return None
    return seconds if seconds >= 0 else None


def _error_detail(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.reason_phrase or response.text[:200]
    error = body.get("error") if isinstance(body, dict) else None
    if isinstance(error, dict):
        return str(error.get("message") or error)
    if error:
        return str(error)
    return response.reason_phrase or "unknown error"


class SearchClient:
    """Async client for the search-augmented model.

    Credentials and endpoint come from Settings at construction time.
    An httpx.AsyncClient may be injected (tests use httpx.MockTransport).
    """

    def __init__(
        self,
        settings: Settings | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize the search client.

        Args:
            settings: Settings to read credentials and model from.
            http_client: Optional pre-built HTTP client.
        """
        self.settings = settings or get_settings()
        self.api_key = self.settings.PERPLEXITY_API_KEY
        self.model = self.settings.SEARCH_MODEL
        self.base_url = self.settings.SEARCH_API_BASE_URL.rstrip("/")
        self._client = http_client

    def ensure_configured(self) -> None:
        """Raise ConfigurationError when no API key is available."""
        if not self.api_key:
            raise ConfigurationError(
                "PERPLEXITY_API_KEY is not configured",
                context={"service": "search"},
            )

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                headers={"Content-Type": "application/json"},
                timeout=self.settings.PASS_TIMEOUT_SECONDS,
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def execute_pass(
        self,
        request: SearchRequest,
        on_log: Callable[[ResearchOperationLog], None] | None = None,
    ) -> PassExecution:
        """Execute one search call and classify the result.

        Never raises for service failures; the error is returned in the
        PassExecution. Cancellation propagates, but only after a timeout
        log has been recorded for the interrupted call.

        Args:
            request: The call to make.
            on_log: Optional sink that receives the operation log, including
                the log of a call cancelled by an outer timeout.

        Returns:
            PassExecution with the response or error and one operation log.
        """
        started_at = utc_now()
        start = time.monotonic()

        def record(
            response: SearchResponse | None = None,
            status_code: int | None = None,
            kind: str | None = None,
            message: str | None = None,
        ) -> ResearchOperationLog:
            log = ResearchOperationLog(
                operation=request.operation,
                pass_name=request.pass_name,
                started_at=started_at,
                ended_at=utc_now(),
                duration_ms=int((time.monotonic() - start) * 1000),
                model=self.model,
                temperature=request.temperature,
                max_tokens=request.max_tokens,
                domain_filter=request.domain_filter,
                status_code=status_code,
                total_tokens=response.total_tokens if response else None,
                source_count=len(response.sources) if response else 0,
                error_kind=kind,
                error_message=message,
            )
            self._emit(log)
            if on_log is not None:
                on_log(log)
            return log

        try:
            self.ensure_configured()
            response = await self._send(request)
        except CallPrepError as e:
            status_code = getattr(e, "status_code", None)
            if isinstance(e, RateLimitedError):
                status_code = 429
            log = record(status_code=status_code, kind=error_kind(e).value, message=str(e))
            return PassExecution(request=request, log=log, error=e)
        except asyncio.CancelledError:
            record(
                kind=ErrorKind.TIMEOUT.value,
                message="Search call cancelled before completion",
            )
            raise

        log = record(response=response, status_code=response.status_code)
        return PassExecution(request=request, log=log, response=response)

    async def _send(self, request: SearchRequest) -> SearchResponse:
        client = await self._get_client()
        url = f"{self.base_url}/chat/completions"

        try:
            http_response = await client.post(
                url,
                headers={"Authorization": f"Bearer {self.api_key}"},
                content=orjson.dumps(request.to_payload(self.model)),
            )
        except httpx.TransportError as e:
            raise TransientServiceError(
                f"Search request failed: {e}",
                context={"operation": request.operation},
            ) from e

        status = http_response.status_code
        if status == 429:
            retry_after = _parse_retry_after(http_response.headers.get("retry-after"))
            logger.warning(
                "Search API rate limit hit",
                model=self.model,
                retry_after=retry_after,
            )
            raise RateLimitedError(
                f"Rate limited by search API: {_error_detail(http_response)}",
                retry_after=retry_after,
            )
        if 400 <= status < 500:
            raise ClientRequestError(
                f"Search API error: {_error_detail(http_response)}",
                status_code=status,
            )
        if status >= 500:
            raise TransientServiceError(
                f"Search API error: {_error_detail(http_response)}",
                status_code=status,
            )

        try:
            data = orjson.loads(http_response.content)
            content = data["choices"][0]["message"]["content"]
        except (orjson.JSONDecodeError, KeyError, IndexError, TypeError) as e:
            raise ResponseParseError(
                "Search API returned an unexpected response body",
                context={"operation": request.operation},
            ) from e

        usage = data.get("usage") or {}
        return SearchResponse(
            content=content or "",
            model=data.get("model") or self.model,
            total_tokens=usage.get("total_tokens"),
            sources=extract_sources(data),
            status_code=status,
        )

    def _emit(self, log: ResearchOperationLog) -> None:
        fields = {
            "operation": log.operation,
            "pass_name": log.pass_name,
            "duration_ms": log.duration_ms,
            "domain_filter": log.domain_filter,
            "status_code": log.status_code,
            "total_tokens": log.total_tokens,
            "source_count": log.source_count,
        }
        if log.succeeded:
            logger.debug("Search call completed", **fields)
        else:
            logger.warning(
                "Search call failed",
                error_kind=log.error_kind,
                error=log.error_message,
                **fields,
            )
