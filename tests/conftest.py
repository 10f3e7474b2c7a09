"""
Pytest configuration and fixtures for call prep tests.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Callable, Generator
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import orjson
import pytest

from callprep.clients.search_client import SearchClient
from callprep.config import Settings, clear_settings_cache
from callprep.llm.base import LLMResponse
from callprep.synthesis.brief import BriefSynthesizer
from callprep.types import CampaignContext, ResearchTarget


@pytest.fixture
def temp_dir(tmp_path: Path) -> Path:
    """Provide a temporary directory for test outputs."""
    return tmp_path


@pytest.fixture
def mock_env_vars(temp_dir: Path) -> Generator[dict[str, str], None, None]:
    """Provide mock environment variables for testing.

    Sets fake API keys and zero retry delays so retries run instantly.
    """
    env_vars = {
        "PERPLEXITY_API_KEY": "pplx-test-fake-search-key-1234567890",
        "ANTHROPIC_API_KEY": "sk-ant-REDACTED",
        "RETRY_MAX_ATTEMPTS": "3",
        "RETRY_INITIAL_DELAY_SECONDS": "0",
        "RETRY_MAX_DELAY_SECONDS": "0",
        "HISTORY_DB_PATH": str(temp_dir / "briefs.db"),
        "LOG_LEVEL": "DEBUG",
    }

    with patch.dict(os.environ, env_vars, clear=False):
        clear_settings_cache()
        yield env_vars


@pytest.fixture
def mock_settings(mock_env_vars: dict[str, str]) -> Generator[Settings, None, None]:
    """Provide a Settings instance with mock configuration."""
    clear_settings_cache()
    from callprep.config import get_settings

    settings = get_settings()
    yield settings
    clear_settings_cache()


@pytest.fixture(autouse=True)
def reset_settings_cache() -> Generator[None, None, None]:
    """Automatically reset settings cache before and after each test."""
    clear_settings_cache()
    yield
    clear_settings_cache()


class ScriptedSearchAPI:
    """Stand-in for the search API behind httpx.MockTransport.

    Queued items are returned in order; an item may be an httpx.Response, an
    exception to raise, or a callable taking the request. When the queue is
    empty the default item is used.
    """

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self._queue: list[Any] = []
        self.default: Any = None

    def queue(self, *items: Any) -> None:
        self._queue.extend(items)

    @property
    def call_count(self) -> int:
        return len(self.requests)

    @property
    def bodies(self) -> list[dict[str, Any]]:
        return [orjson.loads(request.content) for request in self.requests]

    async def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        item = self._queue.pop(0) if self._queue else self.default
        if item is None:
            raise AssertionError("Unexpected search API call")
        if isinstance(item, BaseException):
            raise item
        if callable(item):
            item = item(request)
            if not isinstance(item, httpx.Response):
                item = await item
        # Fresh copy so the same scripted response can serve repeated calls.
        return httpx.Response(item.status_code, headers=item.headers, content=item.content)


@pytest.fixture
def completion() -> Callable[..., httpx.Response]:
    """Factory for search API completion responses."""

    def make(
        content: Any,
        total_tokens: int = 300,
        search_results: list[dict[str, Any]] | None = None,
        citations: list[str] | None = None,
    ) -> httpx.Response:
        if not isinstance(content, str):
            content = orjson.dumps(content).decode()
        body: dict[str, Any] = {
            "id": "test-id",
            "model": "sonar-pro",
            "choices": [
                {
                    "message": {"role": "assistant", "content": content},
                    "finish_reason": "stop",
                }
            ],
            "usage": {
                "prompt_tokens": 100,
                "completion_tokens": total_tokens - 100,
                "total_tokens": total_tokens,
            },
        }
        if search_results is not None:
            body["search_results"] = search_results
        if citations is not None:
            body["citations"] = citations
        return httpx.Response(200, json=body)

    return make


@pytest.fixture
def search_api() -> ScriptedSearchAPI:
    """Provide a scripted search API."""
    return ScriptedSearchAPI()


@pytest.fixture
def search_client(mock_settings: Settings, search_api: ScriptedSearchAPI) -> SearchClient:
    """Provide a SearchClient wired to the scripted search API."""
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(search_api.handler))
    return SearchClient(mock_settings, http_client=http_client)


@pytest.fixture
def campaign() -> CampaignContext:
    """Provide a campaign context."""
    return CampaignContext(
        company_name="Pipeline Labs",
        company_description="Revenue intelligence for B2B sales teams",
        offering_title="Pipeline Copilot",
        offering_description="Automated deal research and call preparation",
        target_customer="Sales teams of 20-200 reps",
        key_pain_points=("Reps spend hours on manual research", "Low meeting conversion"),
    )


@pytest.fixture
def prospect_target() -> ResearchTarget:
    """Provide a single research target."""
    return ResearchTarget(email="john@acmecorp.com", name="John Doe")


@pytest.fixture
def brief_payload() -> dict[str, Any]:
    """Provide a valid synthesized brief payload."""
    return {
        "confidenceRating": "HIGH",
        "confidenceExplanation": "Complete company and prospect data",
        "companyOverview": "Acme Corp builds developer tooling.",
        "painPoints": "Scaling their sales motion.",
        "howWeFit": "We automate research for their reps.",
        "openingLine": "Congrats on the Series B!",
        "discoveryQuestions": ["What is your current process?", "Who owns research?"],
        "successOutcome": "Book a demo with the sales leadership team.",
        "watchOuts": "Recently signed with a competitor for a pilot.",
        "recentSignals": ["Raised Series B", "Hiring 10 AEs"],
    }


@pytest.fixture
def llm_response() -> Callable[[str], LLMResponse]:
    """Factory for reasoning-model responses."""

    def make(content: str) -> LLMResponse:
        return LLMResponse(
            content=content,
            model="claude-sonnet-4-5-20250929",
            provider="anthropic",
            input_tokens=1200,
            output_tokens=600,
        )

    return make


@pytest.fixture
def mock_llm() -> MagicMock:
    """Provide a mock LLM client with an AsyncMock complete()."""
    client = MagicMock()
    client.provider = "anthropic"
    client.complete = AsyncMock()
    client.close = AsyncMock()
    return client


@pytest.fixture
def synthesizer(mock_settings: Settings, mock_llm: MagicMock) -> BriefSynthesizer:
    """Provide a BriefSynthesizer using the mock LLM client."""
    return BriefSynthesizer(mock_settings, client=mock_llm)
