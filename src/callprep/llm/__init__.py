"""Reasoning-model clients."""

from callprep.llm.anthropic_client import AnthropicClient
from callprep.llm.base import LLMClient, LLMRequest, LLMResponse

__all__ = ["AnthropicClient", "LLMClient", "LLMRequest", "LLMResponse"]
