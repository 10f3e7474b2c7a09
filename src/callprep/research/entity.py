"""
Single-entity researchers for companies and prospects.

Each lookup is one structured search call wrapped in with_retry, all under a
single outer with_timeout. Company lookups may be scoped to the company's own
site and fall back to an open search when the scoped result is too thin.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, replace
from typing import Any

from callprep.clients.search_client import (
    SearchClient,
    SearchRequest,
    SearchResponse,
    parse_json_content,
)
from callprep.config import Settings, get_settings
from callprep.exceptions import ResponseParseError, ValidationError
from callprep.logging import get_logger
from callprep.research.prompts import (
    COMPANY_PROMPT,
    PROSPECT_PROMPT,
    company_subject,
    prospect_subject,
)
from callprep.resilience import RetryOptions, with_retry, with_timeout
from callprep.types import (
    CompanyResearchData,
    ProspectResearchData,
    ResearchMetadata,
    ResearchOperationLog,
    ResearchTarget,
    SearchPurpose,
    utc_now,
)
from callprep.utils.domains import extract_domain

logger = get_logger(__name__)

# A company lookup is insufficient when fewer critical fields are populated.
MIN_CRITICAL_FIELDS = 2

COMPANY_MAX_TOKENS = 2000
PROSPECT_MAX_TOKENS = 1500
RESEARCH_TEMPERATURE = 0.2


@dataclass(frozen=True)
class CompanyResearchOptions:
    """Options for research_company.

    Attributes:
        use_domain_filter: Restrict the first call to the company's own site.
        include_domain_fallback: Re-issue unfiltered when the filtered result
            populates fewer than two of name/industry.
        timeout: Outer budget in seconds shared by both calls. None uses
            COMPANY_RESEARCH_TIMEOUT_SECONDS.
        company_name: Optional known name to sharpen the prompt.
    """

    use_domain_filter: bool = True
    include_domain_fallback: bool = True
    timeout: float | None = None
    company_name: str | None = None


@dataclass(frozen=True)
class ProspectResearchOptions:
    """Options for research_prospect.

    Attributes:
        timeout: Outer budget in seconds. None uses
            PROSPECT_RESEARCH_TIMEOUT_SECONDS.
    """

    timeout: float | None = None


@dataclass(frozen=True)
class _StructuredResult:
    payload: dict[str, Any]
    response: SearchResponse


class EntityResearcher:
    """Researches one company or one prospect with the search model."""

    def __init__(
        self,
        client: SearchClient | None = None,
        settings: Settings | None = None,
    ) -> None:
        """Initialize the researcher.

        Args:
            client: Search client. Created from settings when omitted.
            settings: Settings for budgets and retry policy.
        """
        self.settings = settings or (client.settings if client else get_settings())
        self._owns_client = client is None
        self.client = client or SearchClient(self.settings)

    async def close(self) -> None:
        """Close the search client if this researcher created it."""
        if self._owns_client:
            await self.client.close()

    def _retry_options(self, operation: str) -> RetryOptions:
        return RetryOptions.from_settings(self.settings, operation=operation)

    async def _structured_call(
        self,
        request: SearchRequest,
        logs: list[ResearchOperationLog],
    ) -> _StructuredResult:
        """One retried call whose content must parse as a JSON object."""

        async def attempt() -> _StructuredResult:
            execution = await self.client.execute_pass(request, on_log=logs.append)
            response = execution.unwrap()
            payload = parse_json_content(response.content)
            if payload is None:
                raise ResponseParseError(
                    "Search response did not contain a JSON object",
                    context={"operation": request.operation},
                )
            return _StructuredResult(payload=payload, response=response)

        return await with_retry(attempt, self._retry_options(request.operation))

    async def research_company(
        self,
        domain: str,
        options: CompanyResearchOptions | None = None,
    ) -> CompanyResearchData:
        """Research a company by domain.

        Args:
            domain: Company domain or URL.
            options: Filtering, fallback and timeout options.

        Returns:
            CompanyResearchData with metadata and operation logs.

        Raises:
            ConfigurationError: If the search API key is missing.
            ValidationError: If ``domain`` contains no usable domain.
            ResearchTimeoutError: If the shared budget is exhausted.
            CallPrepError: The last error once retries stop.
        """
        options = options or CompanyResearchOptions()
        self.client.ensure_configured()

        root_domain = extract_domain(domain)
        if not root_domain:
            raise ValidationError(
                "Cannot research a company without a domain",
                context={"field": "domain", "value": domain},
            )

        timeout = options.timeout or self.settings.COMPANY_RESEARCH_TIMEOUT_SECONDS
        return await with_timeout(
            lambda: self._research_company(root_domain, options),
            timeout,
            f"Company research timed out for {root_domain}",
        )

    async def _research_company(
        self,
        domain: str,
        options: CompanyResearchOptions,
    ) -> CompanyResearchData:
        start = time.monotonic()
        logs: list[ResearchOperationLog] = []
        prompt = COMPANY_PROMPT.format(subject=company_subject(domain, options.company_name))

        def build_request(domain_filter: str | None) -> SearchRequest:
            return SearchRequest(
                purpose=SearchPurpose.COMPANY,
                prompt=prompt,
                temperature=RESEARCH_TEMPERATURE,
                max_tokens=COMPANY_MAX_TOKENS,
                domain_filter=domain_filter,
                operation="research_company",
            )

        used_filter = options.use_domain_filter
        result = await self._structured_call(
            build_request(domain if used_filter else None), logs
        )
        company = CompanyResearchData.from_payload(result.payload)
        sources = result.response.sources
        fallback_occurred = False

        if (
            used_filter
            and options.include_domain_fallback
            and company.critical_field_count() < MIN_CRITICAL_FIELDS
        ):
            logger.info(
                "Filtered company research insufficient, retrying without domain filter",
                domain=domain,
                critical_fields=company.critical_field_count(),
            )
            fallback_occurred = True
            result = await self._structured_call(build_request(None), logs)
            company = CompanyResearchData.from_payload(result.payload)
            sources = sources + result.response.sources
            used_filter = False

        metadata = ResearchMetadata(
            model=result.response.model,
            timestamp=utc_now(),
            total_tokens=result.response.total_tokens,
            duration_ms=int((time.monotonic() - start) * 1000),
            used_domain_filter=used_filter,
            fallback_occurred=fallback_occurred,
        )
        if fallback_occurred and logs:
            logs[-1] = replace(logs[-1], fallback_occurred=True)

        logger.info(
            "Company research completed",
            domain=domain,
            company=company.name,
            fallback_occurred=fallback_occurred,
            duration_ms=metadata.duration_ms,
        )
        return replace(
            company,
            website=company.website or domain,
            sources=sources,
            metadata=metadata,
            operation_logs=tuple(logs),
        )

    async def research_prospect(
        self,
        target: ResearchTarget,
        options: ProspectResearchOptions | None = None,
    ) -> ProspectResearchData:
        """Research a prospect.

        Args:
            target: Who to research.
            options: Timeout options.

        Returns:
            ProspectResearchData. Missing fields are None; the name defaults
            to the provided name, then "Unknown".

        Raises:
            ConfigurationError: If the search API key is missing.
            ResearchTimeoutError: If the budget is exhausted.
            CallPrepError: The last error once retries stop.
        """
        options = options or ProspectResearchOptions()
        self.client.ensure_configured()

        timeout = options.timeout or self.settings.PROSPECT_RESEARCH_TIMEOUT_SECONDS
        return await with_timeout(
            lambda: self._research_prospect(target),
            timeout,
            f"Prospect research timed out for {target.email or target.display_name}",
        )

    async def _research_prospect(self, target: ResearchTarget) -> ProspectResearchData:
        start = time.monotonic()
        logs: list[ResearchOperationLog] = []
        company = target.company_name or target.resolved_domain
        request = SearchRequest(
            purpose=SearchPurpose.PROSPECT,
            prompt=PROSPECT_PROMPT.format(
                subject=prospect_subject(target.name, target.email, company)
            ),
            temperature=RESEARCH_TEMPERATURE,
            max_tokens=PROSPECT_MAX_TOKENS,
            operation="research_prospect",
        )

        result = await self._structured_call(request, logs)
        metadata = ResearchMetadata(
            model=result.response.model,
            timestamp=utc_now(),
            total_tokens=result.response.total_tokens,
            duration_ms=int((time.monotonic() - start) * 1000),
        )
        prospect = ProspectResearchData.from_payload(
            result.payload,
            default_name=target.name,
            email=target.email,
            sources=result.response.sources,
            metadata=metadata,
        )

        logger.info(
            "Prospect research completed",
            prospect=target.email,
            title=prospect.title,
            duration_ms=metadata.duration_ms,
        )
        return replace(prospect, operation_logs=tuple(logs))


async def research_company(
    domain: str,
    options: CompanyResearchOptions | None = None,
    client: SearchClient | None = None,
) -> CompanyResearchData:
    """Research a company with a one-off EntityResearcher."""
    researcher = EntityResearcher(client=client)
    try:
        return await researcher.research_company(domain, options)
    finally:
        await researcher.close()


async def research_prospect(
    target: ResearchTarget,
    options: ProspectResearchOptions | None = None,
    client: SearchClient | None = None,
) -> ProspectResearchData:
    """Research a prospect with a one-off EntityResearcher."""
    researcher = EntityResearcher(client=client)
    try:
        return await researcher.research_prospect(target, options)
    finally:
        await researcher.close()
