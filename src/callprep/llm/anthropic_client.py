"""
Anthropic client for brief synthesis.

Wraps AsyncAnthropic and translates SDK errors into the call prep error
taxonomy. Retries are owned by the caller so the synthesizer can share one
attempt budget between transport and parse failures.
"""

from __future__ import annotations

import time
from typing import Any

from anthropic import (
    APIConnectionError,
    APIStatusError,
    AsyncAnthropic,
    RateLimitError as AnthropicRateLimitError,
)

from callprep.exceptions import (
    ClientRequestError,
    ConfigurationError,
    RateLimitedError,
    TransientServiceError,
)
from callprep.llm.base import LLMRequest, LLMResponse
from callprep.logging import get_logger

logger = get_logger(__name__)

# Fixed back-off hint surfaced on 429s.
RATE_LIMIT_RETRY_AFTER_SECONDS = 60.0


class AnthropicClient:
    """Anthropic LLM client using AsyncAnthropic."""

    def __init__(self, api_key: str | None, client: AsyncAnthropic | None = None) -> None:
        """Initialize the Anthropic client.

        Args:
            api_key: Anthropic API key.
            client: Optional pre-built SDK client.

        Raises:
            ConfigurationError: If no API key is provided.
        """
        if not api_key and client is None:
            raise ConfigurationError(
                "ANTHROPIC_API_KEY is not configured",
                context={"service": "synthesis"},
            )
        # SDK retries are disabled; the synthesizer owns the attempt budget.
        self._client = client or AsyncAnthropic(api_key=api_key, max_retries=0)
        self._provider = "anthropic"

    @property
    def provider(self) -> str:
        """Name of this provider."""
        return self._provider

    def _convert_messages(
        self, messages: list[dict[str, Any]]
    ) -> tuple[str | None, list[dict[str, Any]]]:
        """Split out the system message; Anthropic takes it separately."""
        system_message: str | None = None
        converted: list[dict[str, Any]] = []

        for msg in messages:
            role = msg.get("role", "user")
            content = msg.get("content", "")
            if role == "system":
                system_message = f"{system_message}\n\n{content}" if system_message else content
            else:
                converted.append({"role": "assistant" if role == "assistant" else "user",
                                  "content": content})

        return system_message, converted

    async def complete(self, request: LLMRequest) -> LLMResponse:
        """Send a completion request.

        Args:
            request: The LLM request.

        Returns:
            LLM response.

        Raises:
            RateLimitedError: On 429, with a 60 second retry hint.
            ClientRequestError: On authentication and other 4xx errors.
            TransientServiceError: On 5xx and connection failures.
        """
        start_time = time.monotonic()
        system_message, messages = self._convert_messages(request.messages)

        params: dict[str, Any] = {
            "model": request.model,
            "messages": messages,
            "max_tokens": request.max_tokens,
            "temperature": request.temperature,
        }
        if system_message:
            params["system"] = system_message
        if request.stop:
            params["stop_sequences"] = request.stop

        try:
            response = await self._client.messages.create(**params)
        except AnthropicRateLimitError as e:
            logger.warning(
                "Anthropic rate limit hit",
                model=request.model,
                retry_after=RATE_LIMIT_RETRY_AFTER_SECONDS,
            )
            raise RateLimitedError(
                "Rate limited by reasoning model API",
                retry_after=RATE_LIMIT_RETRY_AFTER_SECONDS,
                context={"model": request.model},
            ) from e
        except APIStatusError as e:
            if e.status_code >= 500:
                raise TransientServiceError(
                    f"Anthropic API error: {e.message}",
                    status_code=e.status_code,
                ) from e
            raise ClientRequestError(
                f"Anthropic API error: {e.message}",
                status_code=e.status_code,
            ) from e
        except APIConnectionError as e:
            raise TransientServiceError(f"Anthropic connection failed: {e}") from e

        latency_ms = int((time.monotonic() - start_time) * 1000)

        content = ""
        for block in response.content:
            if block.type == "text":
                content += block.text

        return LLMResponse(
            content=content,
            model=response.model,
            provider=self._provider,
            input_tokens=response.usage.input_tokens,
            output_tokens=response.usage.output_tokens,
            finish_reason=response.stop_reason or "stop",
            latency_ms=latency_ms,
        )

    async def close(self) -> None:
        """Close the client."""
        await self._client.close()
