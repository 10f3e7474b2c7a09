"""
Base classes and interfaces for reasoning-model clients.

This module defines:
- LLMRequest: Standardized request format
- LLMResponse: Standardized response format
- LLMClient: Protocol the synthesizer depends on
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable


@dataclass
class LLMRequest:
    """Standardized LLM request format."""

    messages: list[dict[str, Any]]  # [{"role": "system"|"user"|"assistant", "content": "..."}]
    model: str
    temperature: float = 0.3
    max_tokens: int = 4000
    stop: list[str] | None = None


@dataclass
class LLMResponse:
    """Standardized LLM response format."""

    content: str
    model: str
    provider: str
    input_tokens: int
    output_tokens: int
    finish_reason: str = "stop"
    latency_ms: int = 0

    @property
    def total_tokens(self) -> int:
        """Total tokens used."""
        return self.input_tokens + self.output_tokens


@runtime_checkable
class LLMClient(Protocol):
    """Protocol for reasoning-model clients."""

    @property
    def provider(self) -> str:
        """Name of this provider (e.g., 'anthropic')."""
        ...

    async def complete(self, request: LLMRequest) -> LLMResponse:
        """Send a completion request.

        Raises:
            CallPrepError: Translated service failure.
        """
        ...

    async def close(self) -> None:
        """Close any open connections."""
        ...
