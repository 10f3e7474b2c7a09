"""
Brief synthesizer.

Turns campaign context plus whatever company and prospect research succeeded
into a structured, confidence-rated ResearchBriefData using the reasoning
model. Malformed output, transient failures and rate limits share one attempt
budget; client errors fail immediately.
"""

from __future__ import annotations

from typing import Sequence

import orjson

from callprep.config import Settings, get_settings
from callprep.exceptions import ErrorKind, ResponseParseError, ValidationError, error_kind
from callprep.llm.anthropic_client import AnthropicClient
from callprep.llm.base import LLMClient, LLMRequest
from callprep.logging import get_logger
from callprep.resilience import RetryOptions, with_retry, with_timeout
from callprep.types import (
    CampaignContext,
    CompanyResearchData,
    ProspectResearchData,
    ResearchBriefData,
)

logger = get_logger(__name__)

SYNTHESIS_TEMPERATURE = 0.3
SYNTHESIS_MAX_TOKENS = 4000

SYSTEM_MESSAGE = (
    "You are a sales intelligence assistant. You synthesize research data into "
    "structured, actionable call prep briefs and answer with JSON only."
)

BRIEF_PROMPT = """Synthesize the research below into a sales call prep brief.

## Input Data

**Company Research:**
{company_section}

**Prospect Information:**
{prospect_section}

**Our Company:**
{seller_name} - {seller_description}

**What We're Selling:**
{offering_title}
{offering_description}

**Target Customer:**
{target_customer}

**Pain Points We Solve:**
{pain_points}

## Task

Return ONLY a JSON object with these exact fields:

{{
  "confidenceRating": "HIGH" | "MEDIUM" | "LOW",
  "confidenceExplanation": "Brief explanation of data quality and completeness",
  "companyOverview": "2-3 sentences: what they do, market position, trajectory",
  "painPoints": "2-3 sentences: likely pain points that align with what we solve",
  "howWeFit": "2-3 sentences: how our offering addresses their probable challenges",
  "openingLine": "A personalized conversation starter",
  "discoveryQuestions": ["Question 1", "Question 2", "Question 3", "Question 4"],
  "successOutcome": "1-2 sentences: what a successful call looks like",
  "watchOuts": "1-2 sentences: potential objections or red flags",
  "recentSignals": ["Signal 1", "Signal 2"]
}}

**Guidelines:**
- Be specific and actionable, not generic
- Reference actual data from the research
- If data is limited, reflect it in confidenceRating
- If a prospect has minimal info, focus on company-level insights
- Use "may" or "might" for inferences

Return ONLY the JSON object, no additional text."""


def strip_code_fences(content: str) -> str:
    """Remove a surrounding markdown code fence, if any."""
    text = content.strip()
    if text.startswith("```"):
        first_newline = text.find("\n")
        text = text[first_newline + 1 :] if first_newline != -1 else text[3:]
        if text.rstrip().endswith("```"):
            text = text.rstrip()[:-3]
    return text.strip()


def parse_brief(content: str) -> ResearchBriefData:
    """Parse and validate model output into a brief.

    Raises:
        ResponseParseError: If the output is not valid JSON or fails validation.
    """
    text = strip_code_fences(content)
    try:
        data = orjson.loads(text)
    except orjson.JSONDecodeError:
        start, end = text.find("{"), text.rfind("}")
        if start == -1 or end <= start:
            raise ResponseParseError(
                "Reasoning model response is not valid JSON",
                context={"preview": text[:120]},
            ) from None
        try:
            data = orjson.loads(text[start : end + 1])
        except orjson.JSONDecodeError as e:
            raise ResponseParseError(
                "Reasoning model response is not valid JSON",
                context={"preview": text[:120]},
            ) from e

    try:
        return ResearchBriefData.from_dict(data)
    except ValidationError as e:
        raise ResponseParseError(e.message, context=e.context) from e


def _format_company(company: CompanyResearchData | None) -> str:
    if company is None or not company.has_data():
        return "No company research available."
    lines = [
        f"Name: {company.name or 'Unknown'}",
        f"Industry: {company.industry or 'Unknown'}",
    ]
    optional = [
        ("Employees", company.employee_count),
        ("Revenue", company.revenue),
        ("Funding stage", company.funding_stage),
        ("Headquarters", company.headquarters),
        ("Website", company.website),
    ]
    lines.extend(f"{label}: {value}" for label, value in optional if value)
    overview = company.extra.get("overview")
    if overview:
        lines.append(f"Overview: {overview}")
    if company.recent_news:
        lines.append("Recent news:")
        lines.extend(f"- {item}" for item in company.recent_news)
    return "\n".join(lines)


def _format_prospect(prospect: ProspectResearchData) -> str:
    lines = [f"Name: {prospect.name or 'Unknown'}"]
    optional = [
        ("Title", prospect.title),
        ("Company", prospect.company_name),
        ("Location", prospect.location),
        ("Background", prospect.background),
        ("LinkedIn", prospect.linkedin_url),
    ]
    lines.extend(f"{label}: {value}" for label, value in optional if value)
    if prospect.recent_activity:
        lines.append("Recent activity:")
        lines.extend(f"- {item}" for item in prospect.recent_activity)
    return "\n".join(lines)


def build_prompt(
    campaign: CampaignContext,
    company: CompanyResearchData | None,
    prospects: Sequence[ProspectResearchData],
) -> str:
    """Render the synthesis prompt."""
    prospect_section = (
        "\n\n".join(_format_prospect(p) for p in prospects)
        if prospects
        else "No prospect research available."
    )
    pain_points = (
        "\n".join(f"{i}. {p}" for i, p in enumerate(campaign.key_pain_points, start=1))
        or "Not specified."
    )
    return BRIEF_PROMPT.format(
        company_section=_format_company(company),
        prospect_section=prospect_section,
        seller_name=campaign.company_name,
        seller_description=campaign.company_description or "Not specified.",
        offering_title=campaign.offering_title,
        offering_description=campaign.offering_description,
        target_customer=campaign.target_customer or "Not specified.",
        pain_points=pain_points,
    )


def _synthesis_retriable(error: BaseException) -> bool:
    # A 429 from the reasoning model surfaces at once with its 60s hint.
    return error_kind(error) in (ErrorKind.PARSE_ERROR, ErrorKind.TRANSIENT)


class BriefSynthesizer:
    """Generates call prep briefs with the reasoning model."""

    def __init__(
        self,
        settings: Settings | None = None,
        client: LLMClient | None = None,
    ) -> None:
        """Initialize the synthesizer.

        Args:
            settings: Settings for model, budgets and retry policy.
            client: Optional LLM client; an AnthropicClient is created lazily.
        """
        self.settings = settings or get_settings()
        self._client = client
        self._owns_client = client is None

    async def _get_client(self) -> LLMClient:
        """Get or create the reasoning-model client."""
        if self._client is None:
            self._client = AnthropicClient(api_key=self.settings.ANTHROPIC_API_KEY)
        return self._client

    async def close(self) -> None:
        """Close the client if this synthesizer created it."""
        if self._client is not None and self._owns_client:
            await self._client.close()
            self._client = None

    async def generate(
        self,
        campaign: CampaignContext,
        company: CompanyResearchData | None,
        prospects: Sequence[ProspectResearchData],
    ) -> ResearchBriefData:
        """Generate a brief.

        Args:
            campaign: The seller's offering.
            company: Company research, if it succeeded.
            prospects: Prospect research that succeeded.

        Returns:
            Validated ResearchBriefData.

        Raises:
            ConfigurationError: If ANTHROPIC_API_KEY is missing.
            ResponseParseError: If no valid brief was produced within the
                attempt budget.
            ClientRequestError: On authentication or other 4xx errors.
            RateLimitedError: On 429, without retrying.
        """
        client = await self._get_client()
        request = LLMRequest(
            messages=[
                {"role": "system", "content": SYSTEM_MESSAGE},
                {"role": "user", "content": build_prompt(campaign, company, prospects)},
            ],
            model=self.settings.SYNTHESIS_MODEL,
            temperature=SYNTHESIS_TEMPERATURE,
            max_tokens=SYNTHESIS_MAX_TOKENS,
        )
        timeout = self.settings.SYNTHESIS_TIMEOUT_SECONDS

        async def attempt() -> ResearchBriefData:
            response = await with_timeout(
                lambda: client.complete(request),
                timeout,
                "Brief synthesis timed out",
            )
            logger.debug(
                "Synthesis response received",
                model=response.model,
                total_tokens=response.total_tokens,
                latency_ms=response.latency_ms,
            )
            return parse_brief(response.content)

        options = RetryOptions.from_settings(
            self.settings,
            operation="brief synthesis",
            should_retry=_synthesis_retriable,
        )
        try:
            brief = await with_retry(attempt, options)
        except ResponseParseError as e:
            raise ResponseParseError(
                "Failed to get valid JSON response from the reasoning model "
                f"after {options.max_attempts} attempts",
                context={"last_error": e.message},
            ) from e

        logger.info(
            "Brief synthesized",
            confidence=brief.confidence_rating.value,
            prospects=len(prospects),
            has_company=company is not None,
        )
        return brief


async def generate_research_brief(
    campaign: CampaignContext,
    company: CompanyResearchData | None,
    prospects: Sequence[ProspectResearchData],
    client: LLMClient | None = None,
) -> ResearchBriefData:
    """Generate a brief with a one-off BriefSynthesizer."""
    synthesizer = BriefSynthesizer(client=client)
    try:
        return await synthesizer.generate(campaign, company, prospects)
    finally:
        await synthesizer.close()
