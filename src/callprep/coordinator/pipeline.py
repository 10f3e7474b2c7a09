"""
Research pipeline entry point.

Consumes a research request: checks brief history for a reusable brief, runs
orchestration on a miss, and records the new brief so later calendar requests
can reuse it.
"""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime

from callprep.cache.history import BriefHistory
from callprep.cache.recency import find_reusable_brief
from callprep.config import Settings, get_settings
from callprep.coordinator.orchestrator import CoordinatorOptions, ResearchCoordinator
from callprep.logging import get_logger, log_context
from callprep.types import (
    CampaignContext,
    PipelineOutcome,
    ResearchRequest,
    ResearchTarget,
    ResearchType,
)
from callprep.utils.domains import infer_company_name

logger = get_logger(__name__)


def prepare_targets(request: ResearchRequest) -> tuple[ResearchTarget, ...]:
    """Fill in ad-hoc company names inferred from the prospect's domain."""
    if request.type != ResearchType.ADHOC:
        return request.prospects

    prepared = []
    for target in request.prospects:
        domain = target.resolved_domain
        if not target.company_name and domain:
            target = replace(target, company_name=infer_company_name(domain))
        prepared.append(target)
    return tuple(prepared)


class ResearchPipeline:
    """Handles research requests end to end."""

    def __init__(
        self,
        history: BriefHistory,
        coordinator: ResearchCoordinator | None = None,
        settings: Settings | None = None,
    ) -> None:
        """Initialize the pipeline.

        Args:
            history: Brief history used for reuse checks and recording.
            coordinator: Research coordinator; created from settings if omitted.
            settings: Settings for the reuse window.
        """
        self.settings = settings or get_settings()
        self.history = history
        self._owns_coordinator = coordinator is None
        self.coordinator = coordinator or ResearchCoordinator(self.settings)

    async def close(self) -> None:
        """Close the coordinator if this pipeline created it."""
        if self._owns_coordinator:
            await self.coordinator.close()

    async def run(
        self,
        request: ResearchRequest,
        campaign: CampaignContext,
        options: CoordinatorOptions | None = None,
        now: datetime | None = None,
    ) -> PipelineOutcome:
        """Handle one research request.

        Args:
            request: Inbound request.
            campaign: Campaign context for synthesis.
            options: Coordinator options.
            now: Current time for the reuse window (defaults to UTC now).

        Returns:
            PipelineOutcome. ``reused`` is True when an existing brief was
            returned without any external calls.

        Raises:
            BriefGenerationError: If no brief could be produced at all.
        """
        with log_context(request_id=request.request_id):
            with log_context(stage="cache"):
                brief_id = await find_reusable_brief(
                    request,
                    self.history,
                    window_days=self.settings.BRIEF_REUSE_WINDOW_DAYS,
                    now=now,
                )
            if brief_id:
                return PipelineOutcome(brief_id=brief_id, reused=True)

            result = await self.coordinator.orchestrate(
                campaign, prepare_targets(request), options
            )
            record = await self.history.record_brief(
                request.campaign_id,
                request.prospect_emails,
                result,
                created_at=now,
            )
            logger.info(
                "Research request completed",
                brief_id=record.brief_id,
                request_type=request.type.value,
                confidence=result.brief.confidence_rating.value,
            )
            return PipelineOutcome(brief_id=record.brief_id, reused=False, result=result)
