"""
Multi-pass research: three sequential search passes per target.

Passes:
1. company_website - scoped to the company's own site when a domain is known
2. company_news - open search for recent news and signals
3. prospect_background - open search for the prospect's role and activity

Each pass has its own timeout and retry budget; all share an aggregate
budget. A failed pass becomes an empty slot and an entry in metadata.errors.
The aggregate timeout is never raised: whatever completed is returned.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, replace

from callprep.clients.search_client import SearchClient, SearchRequest
from callprep.config import MAX_AGGREGATE_TIMEOUT_SECONDS, Settings, get_settings
from callprep.exceptions import ResearchTimeoutError, ResponseParseError, error_kind
from callprep.logging import get_logger, log_context
from callprep.research.prompts import (
    COMPANY_NEWS_PASS_PROMPT,
    COMPANY_WEBSITE_PASS_PROMPT,
    PROSPECT_BACKGROUND_PASS_PROMPT,
    prospect_subject,
)
from callprep.resilience import RetryOptions, with_retry, with_timeout
from callprep.types import (
    MultiPassMetadata,
    MultiPassResearchResult,
    PassName,
    PassResult,
    ResearchOperationLog,
    ResearchTarget,
    SearchPurpose,
    utc_now,
)
from callprep.utils.domains import email_domain, extract_domain, infer_company_name

logger = get_logger(__name__)

PASS_MAX_TOKENS = 1500
PASS_TEMPERATURE = 0.2


@dataclass(frozen=True)
class MultiPassOptions:
    """Budgets for multi-pass research, in seconds.

    None falls back to PASS_TIMEOUT_SECONDS / AGGREGATE_TIMEOUT_SECONDS. The
    aggregate budget is clamped to MAX_AGGREGATE_TIMEOUT_SECONDS.
    """

    per_pass_timeout: float | None = None
    aggregate_timeout: float | None = None


def pass_domain(target: ResearchTarget) -> str | None:
    """Domain used to scope the website pass: website, then company_domain."""
    for value in (target.website, target.company_domain):
        if value:
            domain = extract_domain(value)
            if domain:
                return domain
    return None


def _company_label(target: ResearchTarget, domain: str | None) -> str:
    if target.company_name:
        return target.company_name
    domain = domain or (email_domain(target.email) if target.email else None)
    if domain:
        return f"{infer_company_name(domain)} ({domain})"
    return "the prospect's company"


class MultiPassResearcher:
    """Runs the three research passes for one target."""

    def __init__(
        self,
        client: SearchClient | None = None,
        settings: Settings | None = None,
    ) -> None:
        self.settings = settings or (client.settings if client else get_settings())
        self._owns_client = client is None
        self.client = client or SearchClient(self.settings)

    async def close(self) -> None:
        """Close the search client if this researcher created it."""
        if self._owns_client:
            await self.client.close()

    def _build_requests(self, target: ResearchTarget) -> list[tuple[PassName, SearchRequest]]:
        domain = pass_domain(target)
        company = _company_label(target, domain)
        prospect = prospect_subject(target.name, target.email, target.company_name or domain)

        def request(name: PassName, prompt: str, domain_filter: str | None = None) -> SearchRequest:
            return SearchRequest(
                purpose=SearchPurpose.GENERAL,
                prompt=prompt,
                temperature=PASS_TEMPERATURE,
                max_tokens=PASS_MAX_TOKENS,
                domain_filter=domain_filter,
                operation="multi_pass_research",
                pass_name=name.value,
            )

        return [
            (
                PassName.COMPANY_WEBSITE,
                request(
                    PassName.COMPANY_WEBSITE,
                    COMPANY_WEBSITE_PASS_PROMPT.format(company=company),
                    domain_filter=domain,
                ),
            ),
            (
                PassName.COMPANY_NEWS,
                request(PassName.COMPANY_NEWS, COMPANY_NEWS_PASS_PROMPT.format(company=company)),
            ),
            (
                PassName.PROSPECT_BACKGROUND,
                request(
                    PassName.PROSPECT_BACKGROUND,
                    PROSPECT_BACKGROUND_PASS_PROMPT.format(prospect=prospect),
                ),
            ),
        ]

    async def _run_pass(
        self,
        request: SearchRequest,
        logs: list[ResearchOperationLog],
    ) -> PassResult:
        async def attempt() -> PassResult:
            execution = await self.client.execute_pass(request, on_log=logs.append)
            response = execution.unwrap()
            if not response.content.strip():
                raise ResponseParseError(
                    "Search pass returned empty content",
                    context={"pass": request.pass_name},
                )
            return PassResult(content=response.content, sources=response.sources)

        options = RetryOptions.from_settings(
            self.settings, operation=f"{request.pass_name} pass"
        )
        return await with_retry(attempt, options)

    async def research(
        self,
        target: ResearchTarget,
        options: MultiPassOptions | None = None,
    ) -> MultiPassResearchResult:
        """Run all three passes sequentially.

        Args:
            target: Who to research.
            options: Per-pass and aggregate budgets.

        Returns:
            MultiPassResearchResult. Failed or skipped passes are None.

        Raises:
            ConfigurationError: If the search API key is missing.
        """
        options = options or MultiPassOptions()
        self.client.ensure_configured()

        per_pass = options.per_pass_timeout or self.settings.PASS_TIMEOUT_SECONDS
        aggregate = min(
            options.aggregate_timeout or self.settings.AGGREGATE_TIMEOUT_SECONDS,
            MAX_AGGREGATE_TIMEOUT_SECONDS,
        )

        start = time.monotonic()
        deadline = start + aggregate
        logs: list[ResearchOperationLog] = []
        errors: list[str] = []
        results: dict[PassName, PassResult] = {}

        requests = self._build_requests(target)
        for index, (name, request) in enumerate(requests):
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                skipped = len(requests) - index
                errors.append(
                    f"Aggregate timeout of {int(aggregate * 1000)}ms exceeded; "
                    f"{skipped} pass(es) skipped"
                )
                logger.warning(
                    "Aggregate research budget exhausted",
                    aggregate_timeout_ms=int(aggregate * 1000),
                    skipped=skipped,
                )
                break

            budget = min(per_pass, remaining)
            with log_context(stage=name.value):
                try:
                    results[name] = await with_timeout(
                        lambda: self._run_pass(request, logs),
                        budget,
                        f"{name.value} pass timed out",
                    )
                except ResearchTimeoutError as e:
                    errors.append(f"{name.value} failed: Timeout")
                    logger.warning(
                        "Research pass timed out",
                        pass_name=name.value,
                        timeout_ms=e.timeout_ms,
                    )
                except Exception as e:
                    errors.append(f"{name.value} failed: {getattr(e, 'message', str(e))}")
                    logger.warning(
                        "Research pass failed",
                        pass_name=name.value,
                        error_kind=error_kind(e).value,
                        error=str(e),
                    )

        metadata = MultiPassMetadata(
            model=self.client.model,
            timestamp=utc_now(),
            total_duration_ms=int((time.monotonic() - start) * 1000),
            passes_completed=len(results),
            errors=tuple(errors),
        )
        result = MultiPassResearchResult(
            company_website_pass=results.get(PassName.COMPANY_WEBSITE),
            company_news_pass=results.get(PassName.COMPANY_NEWS),
            prospect_background_pass=results.get(PassName.PROSPECT_BACKGROUND),
            metadata=metadata,
            operation_logs=tuple(logs),
        )
        if result.is_partial_data:
            result = replace(
                result,
                operation_logs=tuple(
                    replace(log, is_partial_result=True) for log in result.operation_logs
                ),
            )

        logger.info(
            "Multi-pass research completed",
            prospect=target.email,
            passes_completed=metadata.passes_completed,
            duration_ms=metadata.total_duration_ms,
            partial=result.is_partial_data,
        )
        return result


async def perform_multi_pass_research(
    target: ResearchTarget,
    options: MultiPassOptions | None = None,
    client: SearchClient | None = None,
) -> MultiPassResearchResult:
    """Run multi-pass research with a one-off MultiPassResearcher."""
    researcher = MultiPassResearcher(client=client)
    try:
        return await researcher.research(target, options)
    finally:
        await researcher.close()
