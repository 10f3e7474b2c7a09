"""
Tests for brief synthesis and the Anthropic client wrapper.
"""

from __future__ import annotations

from typing import Any, Callable
from unittest.mock import AsyncMock, MagicMock

import anthropic
import httpx
import orjson
import pytest

from callprep.config import Settings
from callprep.exceptions import (
    ClientRequestError,
    ConfigurationError,
    RateLimitedError,
    ResponseParseError,
    TransientServiceError,
)
from callprep.llm.anthropic_client import AnthropicClient
from callprep.llm.base import LLMRequest, LLMResponse
from callprep.synthesis.brief import (
    BriefSynthesizer,
    build_prompt,
    generate_research_brief,
    parse_brief,
    strip_code_fences,
)
from callprep.types import (
    CampaignContext,
    CompanyResearchData,
    ConfidenceRating,
    ProspectResearchData,
)


class TestParseBrief:
    """Test brief parsing."""

    def test_plain_json(self, brief_payload: dict[str, Any]) -> None:
        """Test a bare JSON object parses."""
        brief = parse_brief(orjson.dumps(brief_payload).decode())
        assert brief.confidence_rating == ConfidenceRating.HIGH
        assert brief.recent_signals == ("Raised Series B", "Hiring 10 AEs")

    def test_fenced_json(self, brief_payload: dict[str, Any]) -> None:
        """Test a fenced block is unwrapped."""
        content = f"```json\n{orjson.dumps(brief_payload).decode()}\n```"
        assert parse_brief(content).opening_line == "Congrats on the Series B!"

    def test_strip_code_fences(self) -> None:
        """Test fences with and without a language tag are removed."""
        assert strip_code_fences('```json\n{"a": 1}\n```') == '{"a": 1}'
        assert strip_code_fences('```\n{"a": 1}\n```') == '{"a": 1}'
        assert strip_code_fences('{"a": 1}') == '{"a": 1}'

    def test_surrounding_prose(self) -> None:
        """Test the outer object is recovered from chatter."""
        content = 'Here is the brief: {"confidenceRating": "LOW", "confidenceExplanation": "x"}'
        assert parse_brief(content).confidence_rating == ConfidenceRating.LOW

    def test_not_json(self) -> None:
        """Test prose raises a parse error."""
        with pytest.raises(ResponseParseError):
            parse_brief("not json")

    def test_invalid_confidence(self) -> None:
        """Test schema violations surface as parse errors."""
        with pytest.raises(ResponseParseError):
            parse_brief('{"confidenceRating": "SURE", "confidenceExplanation": "x"}')


class TestBuildPrompt:
    """Test prompt rendering."""

    def test_includes_research(self, campaign: CampaignContext) -> None:
        """Test company, prospect and campaign details are rendered."""
        company = CompanyResearchData(
            name="Acme Corp", industry="Software", recent_news=("Raised Series B",)
        )
        prospect = ProspectResearchData(name="John Doe", title="CTO")

        prompt = build_prompt(campaign, company, [prospect])

        assert "Name: Acme Corp" in prompt
        assert "- Raised Series B" in prompt
        assert "Title: CTO" in prompt
        assert "Pipeline Copilot" in prompt
        assert "1. Reps spend hours on manual research" in prompt
        assert '"confidenceRating"' in prompt

    def test_missing_research(self, campaign: CampaignContext) -> None:
        """Test placeholders are used when research is missing."""
        prompt = build_prompt(campaign, None, [])
        assert "No company research available." in prompt
        assert "No prospect research available." in prompt


class TestBriefSynthesizer:
    """Test BriefSynthesizer.generate."""

    @pytest.mark.asyncio
    async def test_success(
        self,
        synthesizer: BriefSynthesizer,
        mock_llm: MagicMock,
        llm_response: Callable[[str], LLMResponse],
        campaign: CampaignContext,
        brief_payload: dict[str, Any],
        mock_settings: Settings,
    ) -> None:
        """Test a valid response becomes a brief in one call."""
        mock_llm.complete.return_value = llm_response(orjson.dumps(brief_payload).decode())

        brief = await synthesizer.generate(campaign, CompanyResearchData(name="Acme"), [])

        assert brief.confidence_rating == ConfidenceRating.HIGH
        assert mock_llm.complete.call_count == 1
        request: LLMRequest = mock_llm.complete.call_args.args[0]
        assert request.model == mock_settings.SYNTHESIS_MODEL
        assert request.temperature == 0.3
        assert request.max_tokens == 4000
        assert request.messages[0]["role"] == "system"

    @pytest.mark.asyncio
    async def test_malformed_then_valid(
        self,
        synthesizer: BriefSynthesizer,
        mock_llm: MagicMock,
        llm_response: Callable[[str], LLMResponse],
        campaign: CampaignContext,
        brief_payload: dict[str, Any],
    ) -> None:
        """Test malformed output is retried within the attempt budget."""
        mock_llm.complete.side_effect = [
            llm_response("not json"),
            llm_response("not json"),
            llm_response(orjson.dumps(brief_payload).decode()),
        ]

        brief = await synthesizer.generate(campaign, None, [])

        assert brief.confidence_rating == ConfidenceRating.HIGH
        assert mock_llm.complete.call_count == 3

    @pytest.mark.asyncio
    async def test_malformed_exhausted(
        self,
        synthesizer: BriefSynthesizer,
        mock_llm: MagicMock,
        llm_response: Callable[[str], LLMResponse],
        campaign: CampaignContext,
    ) -> None:
        """Test persistent malformed output names the attempt count."""
        mock_llm.complete.return_value = llm_response("still not json")

        with pytest.raises(ResponseParseError, match="after 3 attempts"):
            await synthesizer.generate(campaign, None, [])
        assert mock_llm.complete.call_count == 3

    @pytest.mark.asyncio
    async def test_transient_then_valid(
        self,
        synthesizer: BriefSynthesizer,
        mock_llm: MagicMock,
        llm_response: Callable[[str], LLMResponse],
        campaign: CampaignContext,
        brief_payload: dict[str, Any],
    ) -> None:
        """Test transient failures share the same budget."""
        mock_llm.complete.side_effect = [
            TransientServiceError("overloaded", status_code=529),
            llm_response(orjson.dumps(brief_payload).decode()),
        ]

        await synthesizer.generate(campaign, None, [])
        assert mock_llm.complete.call_count == 2

    @pytest.mark.asyncio
    async def test_client_error_not_retried(
        self,
        synthesizer: BriefSynthesizer,
        mock_llm: MagicMock,
        campaign: CampaignContext,
    ) -> None:
        """Test authentication errors fail immediately."""
        mock_llm.complete.side_effect = ClientRequestError("invalid x-api-key", status_code=401)

        with pytest.raises(ClientRequestError):
            await synthesizer.generate(campaign, None, [])
        assert mock_llm.complete.call_count == 1

    @pytest.mark.asyncio
    async def test_rate_limit_not_retried(
        self,
        synthesizer: BriefSynthesizer,
        mock_llm: MagicMock,
        campaign: CampaignContext,
    ) -> None:
        """Test a 429 raises after one call with its retry hint."""
        mock_llm.complete.side_effect = RateLimitedError("429", retry_after=60.0)

        with pytest.raises(RateLimitedError) as exc_info:
            await synthesizer.generate(campaign, None, [])
        assert exc_info.value.retry_after == 60.0
        assert mock_llm.complete.call_count == 1

    @pytest.mark.asyncio
    async def test_missing_api_key(self, mock_settings: Settings, campaign: CampaignContext) -> None:
        """Test a missing key raises ConfigurationError."""
        settings = mock_settings.model_copy(update={"ANTHROPIC_API_KEY": None})

        with pytest.raises(ConfigurationError, match="ANTHROPIC_API_KEY"):
            await BriefSynthesizer(settings).generate(campaign, None, [])

    @pytest.mark.asyncio
    async def test_module_function(
        self,
        mock_settings: Settings,
        mock_llm: MagicMock,
        llm_response: Callable[[str], LLMResponse],
        campaign: CampaignContext,
        brief_payload: dict[str, Any],
    ) -> None:
        """Test generate_research_brief uses and leaves open the given client."""
        mock_llm.complete.return_value = llm_response(orjson.dumps(brief_payload).decode())

        brief = await generate_research_brief(campaign, None, [], client=mock_llm)

        assert brief.confidence_rating == ConfidenceRating.HIGH
        mock_llm.close.assert_not_called()

    @pytest.mark.asyncio
    async def test_injected_client_not_closed(
        self, synthesizer: BriefSynthesizer, mock_llm: MagicMock
    ) -> None:
        """Test close leaves a caller-owned client open."""
        await synthesizer.close()
        mock_llm.close.assert_not_called()


def _sdk_client(**create_kwargs: Any) -> MagicMock:
    sdk = MagicMock()
    sdk.messages.create = AsyncMock(**create_kwargs)
    sdk.close = AsyncMock()
    return sdk


def _status_error(cls: type[anthropic.APIStatusError], status: int) -> anthropic.APIStatusError:
    request = httpx.Request("POST", "https://api.anthropic.com/v1/messages")
    response = httpx.Response(status, request=request)
    return cls(f"status {status}", response=response, body=None)


def _request() -> LLMRequest:
    return LLMRequest(
        messages=[
            {"role": "system", "content": "Be terse."},
            {"role": "user", "content": "Hello"},
        ],
        model="claude-sonnet-4-5-20250929",
    )


class TestAnthropicClient:
    """Test SDK call construction and error mapping."""

    def test_requires_key(self) -> None:
        """Test a missing key is a configuration error."""
        with pytest.raises(ConfigurationError):
            AnthropicClient(api_key=None)

    @pytest.mark.asyncio
    async def test_complete(self) -> None:
        """Test the system message is passed separately and text joined."""
        message = MagicMock()
        message.content = [MagicMock(type="text", text='{"a": '), MagicMock(type="text", text="1}")]
        message.model = "claude-sonnet-4-5-20250929"
        message.usage.input_tokens = 10
        message.usage.output_tokens = 5
        message.stop_reason = "end_turn"
        sdk = _sdk_client(return_value=message)

        response = await AnthropicClient("sk-ant-test", client=sdk).complete(_request())

        assert response.content == '{"a": 1}'
        assert response.total_tokens == 15
        assert response.finish_reason == "end_turn"
        kwargs = sdk.messages.create.call_args.kwargs
        assert kwargs["system"] == "Be terse."
        assert kwargs["messages"] == [{"role": "user", "content": "Hello"}]

    @pytest.mark.asyncio
    async def test_rate_limit(self) -> None:
        """Test 429 maps to RateLimitedError with a 60s hint."""
        sdk = _sdk_client(side_effect=_status_error(anthropic.RateLimitError, 429))

        with pytest.raises(RateLimitedError) as exc_info:
            await AnthropicClient("sk-ant-test", client=sdk).complete(_request())
        assert exc_info.value.retry_after == 60.0

    @pytest.mark.asyncio
    async def test_server_error(self) -> None:
        """Test 5xx maps to TransientServiceError."""
        sdk = _sdk_client(side_effect=_status_error(anthropic.InternalServerError, 500))

        with pytest.raises(TransientServiceError):
            await AnthropicClient("sk-ant-test", client=sdk).complete(_request())

    @pytest.mark.asyncio
    async def test_auth_error(self) -> None:
        """Test 401 maps to ClientRequestError."""
        sdk = _sdk_client(side_effect=_status_error(anthropic.AuthenticationError, 401))

        with pytest.raises(ClientRequestError) as exc_info:
            await AnthropicClient("sk-ant-test", client=sdk).complete(_request())
        assert exc_info.value.status_code == 401

    @pytest.mark.asyncio
    async def test_connection_error(self) -> None:
        """Test connection failures map to TransientServiceError."""
        request = httpx.Request("POST", "https://api.anthropic.com/v1/messages")
        sdk = _sdk_client(side_effect=anthropic.APIConnectionError(request=request))

        with pytest.raises(TransientServiceError):
            await AnthropicClient("sk-ant-test", client=sdk).complete(_request())
