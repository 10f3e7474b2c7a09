"""
Research coordinator.

Fans out prospect research concurrently, researches the company once, and
hands whatever succeeded to the synthesizer. The coordinator alone decides the
final confidence rating: any missing research forces LOW.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Sequence

from callprep.clients.search_client import SearchClient
from callprep.config import Settings, get_settings
from callprep.exceptions import BriefGenerationError, error_kind
from callprep.logging import get_logger, log_context
from callprep.research.entity import (
    CompanyResearchOptions,
    EntityResearcher,
    ProspectResearchOptions,
)
from callprep.research.multi_pass import MultiPassOptions, MultiPassResearcher, pass_domain
from callprep.research.parsing import company_from_passes, prospect_from_passes
from callprep.synthesis.brief import BriefSynthesizer
from callprep.types import (
    CampaignContext,
    CompanyResearchData,
    ConfidenceRating,
    MultiPassResearchResult,
    OrchestrationResult,
    ProspectResearchData,
    ResearchBriefData,
    ResearchTarget,
)

logger = get_logger(__name__)

DEGRADED_NOTE = (
    "Some research data was unavailable, so this brief may be incomplete. "
    "Verify key details during the call."
)

MINIMAL_EXPLANATION = (
    "Minimal information available. Automated research could not produce a "
    "full brief, so this is a generic discovery-call outline."
)

MINIMAL_DISCOVERY_QUESTIONS = (
    "What prompted you to take this meeting?",
    "What are your top priorities for this quarter?",
    "How are you handling this today, and what is not working?",
    "Who else is involved in evaluating a solution like this?",
    "What would a successful outcome look like for you?",
)


@dataclass(frozen=True)
class CoordinatorOptions:
    """Options for orchestrate_research.

    Attributes:
        multi_pass: Run three-pass research per prospect instead of single
            lookups. The company record then comes from the passes.
        company_options: Options for the company lookup.
        prospect_options: Options for each prospect lookup.
        multi_pass_options: Budgets for multi-pass research.
    """

    multi_pass: bool = False
    company_options: CompanyResearchOptions | None = None
    prospect_options: ProspectResearchOptions | None = None
    multi_pass_options: MultiPassOptions | None = None


@dataclass(frozen=True)
class _Gathered:
    prospects: tuple[ProspectResearchData, ...]
    company: CompanyResearchData | None
    prospect_failures: int
    company_failed: bool
    partial: bool = False


def unique_domains(prospects: Sequence[ResearchTarget]) -> list[str]:
    """Company domains in first-seen order, deduplicated."""
    seen: list[str] = []
    for target in prospects:
        domain = target.resolved_domain
        if domain and domain not in seen:
            seen.append(domain)
    return seen


def minimal_brief(
    campaign: CampaignContext,
    company: CompanyResearchData | None,
    prospects: Sequence[ProspectResearchData],
) -> ResearchBriefData:
    """Fabricate a LOW-confidence brief from generic discovery-call content."""
    company_name = company.name if company and company.name else None
    prospect = prospects[0] if prospects else None

    if company_name and company and company.industry:
        overview = f"{company_name} operates in {company.industry}."
    elif company_name:
        overview = f"Limited information is available about {company_name}."
    else:
        overview = "Limited information is available about this company."

    greeting = f"Hi {prospect.name}" if prospect and prospect.name not in (None, "Unknown") else "Hi"
    return ResearchBriefData(
        confidence_rating=ConfidenceRating.LOW,
        confidence_explanation=MINIMAL_EXPLANATION,
        company_overview=overview,
        pain_points=(
            "Pain points could not be researched. Use discovery to learn how "
            f"{campaign.offering_title} might apply."
        ),
        how_we_fit=campaign.offering_description,
        opening_line=(
            f"{greeting}, thanks for making the time. I'd love to hear what "
            "is top of mind for you right now."
        ),
        discovery_questions=MINIMAL_DISCOVERY_QUESTIONS,
        success_outcome="Agree on the key problem to solve and a concrete next step.",
        watch_outs="Research was limited; confirm basic facts about the company early.",
        recent_signals=tuple(company.recent_news[:2]) if company else (),
    )


class ResearchCoordinator:
    """Coordinates research and synthesis for one meeting or ad-hoc request."""

    def __init__(
        self,
        settings: Settings | None = None,
        search_client: SearchClient | None = None,
        synthesizer: BriefSynthesizer | None = None,
    ) -> None:
        """Initialize the coordinator.

        Args:
            settings: Settings shared by all components.
            search_client: Search client shared by the researchers.
            synthesizer: Brief synthesizer.
        """
        self.settings = settings or get_settings()
        self._owns_search_client = search_client is None
        self.search_client = search_client or SearchClient(self.settings)
        self.entity_researcher = EntityResearcher(self.search_client, self.settings)
        self.multi_pass_researcher = MultiPassResearcher(self.search_client, self.settings)
        self._owns_synthesizer = synthesizer is None
        self.synthesizer = synthesizer or BriefSynthesizer(self.settings)

    async def close(self) -> None:
        """Close the clients this coordinator created."""
        if self._owns_search_client:
            await self.search_client.close()
        if self._owns_synthesizer:
            await self.synthesizer.close()

    async def _research_prospect_safely(
        self,
        target: ResearchTarget,
        options: ProspectResearchOptions | None,
    ) -> ProspectResearchData | None:
        with log_context(prospect=target.email or target.display_name, stage="prospect"):
            try:
                return await self.entity_researcher.research_prospect(target, options)
            except Exception as e:
                logger.warning(
                    "Prospect research failed",
                    error_kind=error_kind(e).value,
                    error=str(e),
                )
                return None

    async def _research_company_safely(
        self,
        domain: str,
        options: CompanyResearchOptions | None,
    ) -> CompanyResearchData | None:
        with log_context(stage="company"):
            try:
                return await self.entity_researcher.research_company(domain, options)
            except Exception as e:
                logger.warning(
                    "Company research failed",
                    domain=domain,
                    error_kind=error_kind(e).value,
                    error=str(e),
                )
                return None

    async def _multi_pass_safely(
        self,
        target: ResearchTarget,
        options: MultiPassOptions | None,
    ) -> MultiPassResearchResult | None:
        with log_context(prospect=target.email or target.display_name, stage="multi_pass"):
            try:
                return await self.multi_pass_researcher.research(target, options)
            except Exception as e:
                logger.warning(
                    "Multi-pass research failed",
                    error_kind=error_kind(e).value,
                    error=str(e),
                )
                return None

    async def _gather_single_pass(
        self,
        prospects: Sequence[ResearchTarget],
        options: CoordinatorOptions,
    ) -> _Gathered:
        outcomes = await asyncio.gather(
            *(self._research_prospect_safely(t, options.prospect_options) for t in prospects)
        )
        successes = tuple(p for p in outcomes if p is not None)

        domains = unique_domains(prospects)
        company: CompanyResearchData | None = None
        if domains:
            if len(domains) > 1:
                logger.info(
                    "Multiple company domains found, researching the first only",
                    domains=domains,
                )
            company_options = options.company_options
            if company_options is None:
                first_named = next((t.company_name for t in prospects if t.company_name), None)
                company_options = CompanyResearchOptions(company_name=first_named)
            company = await self._research_company_safely(domains[0], company_options)

        return _Gathered(
            prospects=successes,
            company=company,
            prospect_failures=len(prospects) - len(successes),
            company_failed=bool(domains) and company is None,
        )

    async def _gather_multi_pass(
        self,
        prospects: Sequence[ResearchTarget],
        options: CoordinatorOptions,
    ) -> _Gathered:
        outcomes = await asyncio.gather(
            *(self._multi_pass_safely(t, options.multi_pass_options) for t in prospects)
        )

        successes: list[ProspectResearchData] = []
        company: CompanyResearchData | None = None
        partial = False
        for target, result in zip(prospects, outcomes):
            if result is None:
                continue
            partial = partial or result.is_partial_data
            prospect = prospect_from_passes(target, result)
            if prospect is not None:
                successes.append(prospect)
            if company is None:
                domain = pass_domain(target) or target.resolved_domain
                company = company_from_passes(domain, result, target.company_name)

        return _Gathered(
            prospects=tuple(successes),
            company=company,
            prospect_failures=len(prospects) - len(successes),
            company_failed=bool(unique_domains(prospects)) and company is None,
            partial=partial,
        )

    async def orchestrate(
        self,
        campaign: CampaignContext,
        prospects: Sequence[ResearchTarget],
        options: CoordinatorOptions | None = None,
    ) -> OrchestrationResult:
        """Research the prospects and their company, then synthesize a brief.

        Args:
            campaign: The seller's offering.
            prospects: Prospects attending the meeting.
            options: Coordinator options.

        Returns:
            OrchestrationResult. Partial research is a success with LOW
            confidence.

        Raises:
            BriefGenerationError: If synthesis fails and no research succeeded.
        """
        options = options or CoordinatorOptions()
        logger.info(
            "Starting research orchestration",
            prospects=len(prospects),
            multi_pass=options.multi_pass,
        )

        if options.multi_pass:
            gathered = await self._gather_multi_pass(prospects, options)
        else:
            gathered = await self._gather_single_pass(prospects, options)

        degraded = (
            gathered.prospect_failures > 0
            or gathered.company_failed
            or not gathered.prospects
            or gathered.partial
        )

        with log_context(stage="synthesis"):
            try:
                brief = await self.synthesizer.generate(
                    campaign, gathered.company, gathered.prospects
                )
            except Exception as e:
                if not gathered.prospects and gathered.company is None:
                    logger.error(
                        "Brief generation failed with no research data",
                        error_kind=error_kind(e).value,
                        error=str(e),
                    )
                    raise BriefGenerationError(
                        "Unable to generate a brief: no research data and synthesis failed",
                        context={"cause": str(e), "prospects": len(prospects)},
                    ) from e
                logger.warning(
                    "Synthesis failed, using minimal brief",
                    error_kind=error_kind(e).value,
                    error=str(e),
                )
                brief = minimal_brief(campaign, gathered.company, gathered.prospects)
                degraded = True

        if degraded:
            brief = brief.downgraded(DEGRADED_NOTE)

        logger.info(
            "Research orchestration completed",
            confidence=brief.confidence_rating.value,
            prospects_researched=len(gathered.prospects),
            prospect_failures=gathered.prospect_failures,
            company_researched=gathered.company is not None,
            partial=degraded,
        )
        return OrchestrationResult(
            brief=brief,
            prospect_research=gathered.prospects,
            company_research=gathered.company,
            is_partial_data=degraded,
        )


async def orchestrate_research(
    campaign: CampaignContext,
    prospects: Sequence[ResearchTarget],
    options: CoordinatorOptions | None = None,
) -> OrchestrationResult:
    """Run one orchestration with a one-off ResearchCoordinator."""
    coordinator = ResearchCoordinator()
    try:
        return await coordinator.orchestrate(campaign, prospects, options)
    finally:
        await coordinator.close()
