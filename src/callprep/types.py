"""
Core types for the call prep research engine.

This module defines the value objects that flow through the pipeline:
- Enums for confidence ratings, request types, search purposes and passes
- Frozen dataclasses for research records (company, prospect, sources, metadata)
- Multi-pass results and per-call operation logs
- Campaign context, synthesized briefs, inbound requests and outbound results
- Helper functions for ID generation and timestamps

Every record is created per research request and discarded once the brief is
handed to the caller. ``to_dict()`` produces the camelCase JSON shape used by
the persistence and presentation layers.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from uuid6 import uuid7

from callprep.exceptions import ValidationError
from callprep.utils.domains import email_domain, extract_domain, normalize_email

# Upper bound on unknown keys retained from model payloads.
MAX_EXTRA_FIELDS = 20

# Fields that decide whether a company lookup found the right company.
CRITICAL_COMPANY_FIELDS = ("name", "industry")


def generate_id(prefix: str = "") -> str:
    """Generate a time-ordered unique ID using UUID7.

    Args:
        prefix: Optional prefix for the ID (e.g., "req", "brief")

    Returns:
        A unique ID string, optionally prefixed.
    """
    uid = str(uuid7())
    return f"{prefix}_{uid}" if prefix else uid


def utc_now() -> datetime:
    """Get current UTC time with timezone info."""
    return datetime.now(timezone.utc)


class ConfidenceRating(str, Enum):
    """How complete and trustworthy the underlying research is."""

    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"


class ResearchType(str, Enum):
    """Where a research request came from."""

    CALENDAR = "calendar"
    ADHOC = "adhoc"


class SearchPurpose(str, Enum):
    """Selects the system message sent to the search-augmented model."""

    GENERAL = "general"
    COMPANY = "company"
    PROSPECT = "prospect"


class PassName(str, Enum):
    """The three research angles of multi-pass research."""

    COMPANY_WEBSITE = "company_website"
    COMPANY_NEWS = "company_news"
    PROSPECT_BACKGROUND = "prospect_background"


def _clean_str(value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, str):
        stripped = value.strip()
        return stripped or None
    if isinstance(value, (int, float)):
        return str(value)
    return None


def _clean_str_list(value: Any) -> tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str):
        stripped = value.strip()
        return (stripped,) if stripped else ()
    if isinstance(value, (list, tuple)):
        items = (_clean_str(item) for item in value)
        return tuple(item for item in items if item)
    return ()


def _pick(payload: dict[str, Any], *keys: str) -> Any:
    for key in keys:
        if key in payload and payload[key] is not None:
            return payload[key]
    return None


def _extra_fields(payload: dict[str, Any], known: set[str]) -> dict[str, Any]:
    extra: dict[str, Any] = {}
    for key, value in payload.items():
        if key in known or value is None:
            continue
        if len(extra) >= MAX_EXTRA_FIELDS:
            break
        extra[key] = value
    return extra


@dataclass(frozen=True)
class ResearchTarget:
    """Who or what to research.

    At least one of email, company_name or website is present; callers
    upstream enforce that.
    """

    email: str | None = None
    name: str | None = None
    company_domain: str | None = None
    website: str | None = None
    company_name: str | None = None

    @property
    def resolved_domain(self) -> str | None:
        """Company domain: website first, then explicit domain, then email."""
        if self.website:
            domain = extract_domain(self.website)
            if domain:
                return domain
        if self.company_domain:
            domain = extract_domain(self.company_domain)
            if domain:
                return domain
        if self.email:
            return email_domain(self.email)
        return None

    @property
    def display_name(self) -> str:
        """Best human-readable label for prompts and logs."""
        if self.name:
            return self.name
        if self.email:
            return self.email.split("@")[0]
        return self.company_name or self.website or "Unknown"

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ResearchTarget:
        """Build a target from an event payload entry."""
        email = _clean_str(data.get("email"))
        return cls(
            email=normalize_email(email) if email else None,
            name=_clean_str(data.get("name")),
            company_domain=_clean_str(_pick(data, "companyDomain", "company_domain")),
            website=_clean_str(data.get("website")),
            company_name=_clean_str(_pick(data, "companyName", "company_name")),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "email": self.email,
            "name": self.name,
            "companyDomain": self.company_domain,
            "website": self.website,
            "companyName": self.company_name,
        }


@dataclass(frozen=True)
class ResearchSource:
    """Provenance record for a research finding."""

    url: str
    title: str | None = None
    snippet: str | None = None

    @classmethod
    def from_payload(cls, data: Any) -> ResearchSource | None:
        """Parse a source from a search result entry or a bare citation URL."""
        if isinstance(data, str):
            url = data.strip()
            return cls(url=url) if url else None
        if isinstance(data, dict):
            url = _clean_str(data.get("url"))
            if not url:
                return None
            return cls(
                url=url,
                title=_clean_str(data.get("title")),
                snippet=_clean_str(data.get("snippet")),
            )
        return None

    def to_dict(self) -> dict[str, Any]:
        return {"url": self.url, "title": self.title, "snippet": self.snippet}


@dataclass(frozen=True)
class ResearchMetadata:
    """Observability record attached to every researched entity."""

    model: str
    timestamp: datetime
    total_tokens: int | None = None
    duration_ms: int | None = None
    used_domain_filter: bool | None = None
    fallback_occurred: bool | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "model": self.model,
            "timestamp": self.timestamp.isoformat(),
            "totalTokens": self.total_tokens,
            "durationMs": self.duration_ms,
            "usedDomainFilter": self.used_domain_filter,
            "fallbackOccurred": self.fallback_occurred,
        }


@dataclass(frozen=True)
class ResearchOperationLog:
    """Append-only record of one external call attempt.

    Used for observability only; nothing branches on it.
    """

    operation: str
    started_at: datetime
    ended_at: datetime
    duration_ms: int
    model: str
    temperature: float
    max_tokens: int
    domain_filter: str | None = None
    pass_name: str | None = None
    status_code: int | None = None
    total_tokens: int | None = None
    source_count: int = 0
    error_kind: str | None = None
    error_message: str | None = None
    is_partial_result: bool = False
    fallback_occurred: bool = False

    @property
    def succeeded(self) -> bool:
        return self.error_kind is None

    def to_dict(self) -> dict[str, Any]:
        return {
            "operation": self.operation,
            "pass": self.pass_name,
            "startTime": self.started_at.isoformat(),
            "endTime": self.ended_at.isoformat(),
            "duration": self.duration_ms,
            "apiCallParams": {
                "model": self.model,
                "temperature": self.temperature,
                "maxTokens": self.max_tokens,
                "domainFilter": self.domain_filter,
            },
            "responseMetadata": {
                "statusCode": self.status_code,
                "totalTokens": self.total_tokens,
                "sourceCount": self.source_count,
            },
            "error": (
                {"kind": self.error_kind, "message": self.error_message}
                if self.error_kind
                else None
            ),
            "isPartialResult": self.is_partial_result,
            "fallbackOccurred": self.fallback_occurred,
        }


_COMPANY_KEYS = {
    "name", "companyName", "company_name", "industry", "employeeCount",
    "employee_count", "revenue", "fundingStage", "funding_stage",
    "headquarters", "website", "recentNews", "recent_news", "sources",
}


@dataclass(frozen=True)
class CompanyResearchData:
    """Structured company research. Every field may be None.

    A missing field means the research found no evidence for it.
    """

    name: str | None = None
    industry: str | None = None
    employee_count: str | None = None
    revenue: str | None = None
    funding_stage: str | None = None
    headquarters: str | None = None
    website: str | None = None
    recent_news: tuple[str, ...] = ()
    sources: tuple[ResearchSource, ...] = ()
    metadata: ResearchMetadata | None = None
    extra: dict[str, Any] = field(default_factory=dict)
    operation_logs: tuple[ResearchOperationLog, ...] = ()

    @classmethod
    def from_payload(
        cls,
        payload: dict[str, Any],
        sources: tuple[ResearchSource, ...] = (),
        metadata: ResearchMetadata | None = None,
    ) -> CompanyResearchData:
        """Build from a model JSON payload (camelCase or snake_case keys)."""
        return cls(
            name=_clean_str(_pick(payload, "name", "companyName", "company_name")),
            industry=_clean_str(payload.get("industry")),
            employee_count=_clean_str(_pick(payload, "employeeCount", "employee_count")),
            revenue=_clean_str(payload.get("revenue")),
            funding_stage=_clean_str(_pick(payload, "fundingStage", "funding_stage")),
            headquarters=_clean_str(payload.get("headquarters")),
            website=_clean_str(payload.get("website")),
            recent_news=_clean_str_list(_pick(payload, "recentNews", "recent_news")),
            sources=sources,
            metadata=metadata,
            extra=_extra_fields(payload, _COMPANY_KEYS),
        )

    def critical_field_count(self) -> int:
        """Number of populated fields among CRITICAL_COMPANY_FIELDS."""
        return sum(1 for name in CRITICAL_COMPANY_FIELDS if getattr(self, name))

    def has_data(self) -> bool:
        return any(
            (
                self.name, self.industry, self.employee_count, self.revenue,
                self.funding_stage, self.headquarters, self.recent_news,
            )
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "industry": self.industry,
            "employeeCount": self.employee_count,
            "revenue": self.revenue,
            "fundingStage": self.funding_stage,
            "headquarters": self.headquarters,
            "website": self.website,
            "recentNews": list(self.recent_news),
            "sources": [s.to_dict() for s in self.sources],
            "metadata": self.metadata.to_dict() if self.metadata else None,
            **({"extra": dict(self.extra)} if self.extra else {}),
        }


_PROSPECT_KEYS = {
    "name", "title", "companyName", "company_name", "location", "background",
    "recentActivity", "recent_activity", "linkedinUrl", "linkedin_url", "sources",
}


@dataclass(frozen=True)
class ProspectResearchData:
    """Structured prospect research. Same nullability contract as companies."""

    name: str | None = None
    title: str | None = None
    company_name: str | None = None
    location: str | None = None
    background: str | None = None
    recent_activity: tuple[str, ...] = ()
    linkedin_url: str | None = None
    email: str | None = None
    sources: tuple[ResearchSource, ...] = ()
    metadata: ResearchMetadata | None = None
    extra: dict[str, Any] = field(default_factory=dict)
    operation_logs: tuple[ResearchOperationLog, ...] = ()

    @classmethod
    def from_payload(
        cls,
        payload: dict[str, Any],
        default_name: str | None = None,
        email: str | None = None,
        sources: tuple[ResearchSource, ...] = (),
        metadata: ResearchMetadata | None = None,
    ) -> ProspectResearchData:
        """Build from a model JSON payload (camelCase or snake_case keys)."""
        return cls(
            name=_clean_str(payload.get("name")) or default_name or "Unknown",
            title=_clean_str(payload.get("title")),
            company_name=_clean_str(_pick(payload, "companyName", "company_name")),
            location=_clean_str(payload.get("location")),
            background=_clean_str(payload.get("background")),
            recent_activity=_clean_str_list(
                _pick(payload, "recentActivity", "recent_activity")
            ),
            linkedin_url=_clean_str(_pick(payload, "linkedinUrl", "linkedin_url")),
            email=email,
            sources=sources,
            metadata=metadata,
            extra=_extra_fields(payload, _PROSPECT_KEYS),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "title": self.title,
            "companyName": self.company_name,
            "location": self.location,
            "background": self.background,
            "recentActivity": list(self.recent_activity),
            "linkedinUrl": self.linkedin_url,
            "email": self.email,
            "sources": [s.to_dict() for s in self.sources],
            "metadata": self.metadata.to_dict() if self.metadata else None,
            **({"extra": dict(self.extra)} if self.extra else {}),
        }


@dataclass(frozen=True)
class PassResult:
    """Raw output of one research pass before structural parsing."""

    content: str
    sources: tuple[ResearchSource, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {"content": self.content, "sources": [s.to_dict() for s in self.sources]}


@dataclass(frozen=True)
class MultiPassMetadata:
    """Metadata for a multi-pass research run."""

    model: str
    timestamp: datetime
    total_duration_ms: int
    passes_completed: int
    errors: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "model": self.model,
            "timestamp": self.timestamp.isoformat(),
            "totalDurationMs": self.total_duration_ms,
            "passesCompleted": self.passes_completed,
            "errors": list(self.errors) or None,
        }


@dataclass(frozen=True)
class MultiPassResearchResult:
    """Outcome of the three research passes; any slot may be None."""

    company_website_pass: PassResult | None
    company_news_pass: PassResult | None
    prospect_background_pass: PassResult | None
    metadata: MultiPassMetadata
    operation_logs: tuple[ResearchOperationLog, ...] = ()

    @property
    def is_partial_data(self) -> bool:
        """True iff any pass is missing or fewer than three completed."""
        slots = (
            self.company_website_pass,
            self.company_news_pass,
            self.prospect_background_pass,
        )
        return any(slot is None for slot in slots) or self.metadata.passes_completed < 3

    def to_dict(self) -> dict[str, Any]:
        def _slot(result: PassResult | None) -> dict[str, Any] | None:
            return result.to_dict() if result else None

        return {
            "companyWebsitePass": _slot(self.company_website_pass),
            "companyNewsPass": _slot(self.company_news_pass),
            "prospectBackgroundPass": _slot(self.prospect_background_pass),
            "metadata": self.metadata.to_dict(),
            "isPartialData": self.is_partial_data,
            "operationLogs": [log.to_dict() for log in self.operation_logs],
        }


@dataclass(frozen=True)
class CampaignContext:
    """The seller's offering. Passed through to synthesis unchanged."""

    company_name: str
    offering_title: str
    offering_description: str
    company_description: str = ""
    target_customer: str = ""
    key_pain_points: tuple[str, ...] = ()

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CampaignContext:
        """Build from a camelCase or snake_case mapping.

        Raises:
            ValidationError: If a required field is missing.
        """
        values = {
            "company_name": _clean_str(_pick(data, "companyName", "company_name")),
            "offering_title": _clean_str(_pick(data, "offeringTitle", "offering_title")),
            "offering_description": _clean_str(
                _pick(data, "offeringDescription", "offering_description")
            ),
        }
        for key, value in values.items():
            if not value:
                raise ValidationError(
                    "Campaign context is missing a required field",
                    context={"field": key},
                )
        return cls(
            company_name=values["company_name"],
            offering_title=values["offering_title"],
            offering_description=values["offering_description"],
            company_description=_clean_str(
                _pick(data, "companyDescription", "company_description")
            ) or "",
            target_customer=_clean_str(_pick(data, "targetCustomer", "target_customer")) or "",
            key_pain_points=_clean_str_list(_pick(data, "keyPainPoints", "key_pain_points")),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "companyName": self.company_name,
            "companyDescription": self.company_description,
            "offeringTitle": self.offering_title,
            "offeringDescription": self.offering_description,
            "targetCustomer": self.target_customer,
            "keyPainPoints": list(self.key_pain_points),
        }


@dataclass(frozen=True)
class ResearchBriefData:
    """Synthesized call prep brief.

    Only the confidence pair is mandatory; every narrative field is optional.
    """

    confidence_rating: ConfidenceRating
    confidence_explanation: str
    company_overview: str | None = None
    pain_points: str | None = None
    how_we_fit: str | None = None
    opening_line: str | None = None
    discovery_questions: tuple[str, ...] = ()
    success_outcome: str | None = None
    watch_outs: str | None = None
    recent_signals: tuple[str, ...] = ()

    @classmethod
    def from_dict(cls, data: Any) -> ResearchBriefData:
        """Validate and build a brief from parsed model output.

        Raises:
            ValidationError: If the mandatory fields are missing or invalid.
        """
        if not isinstance(data, dict):
            raise ValidationError(
                "Brief payload must be a JSON object",
                context={"expected": "object", "value": type(data).__name__},
            )

        rating_raw = _clean_str(_pick(data, "confidenceRating", "confidence_rating"))
        explanation = _clean_str(_pick(data, "confidenceExplanation", "confidence_explanation"))
        if not rating_raw or not explanation:
            raise ValidationError(
                "Brief payload is missing confidenceRating or confidenceExplanation",
                context={"field": "confidenceRating" if not rating_raw else "confidenceExplanation"},
            )
        try:
            rating = ConfidenceRating(rating_raw.upper())
        except ValueError as e:
            raise ValidationError(
                "Invalid confidence rating",
                context={"field": "confidenceRating", "value": rating_raw,
                         "expected": "HIGH|MEDIUM|LOW"},
            ) from e

        return cls(
            confidence_rating=rating,
            confidence_explanation=explanation,
            company_overview=_clean_str(_pick(data, "companyOverview", "company_overview")),
            pain_points=_clean_str(_pick(data, "painPoints", "pain_points")),
            how_we_fit=_clean_str(_pick(data, "howWeFit", "how_we_fit")),
            opening_line=_clean_str(_pick(data, "openingLine", "opening_line")),
            discovery_questions=_clean_str_list(
                _pick(data, "discoveryQuestions", "discovery_questions")
            ),
            success_outcome=_clean_str(_pick(data, "successOutcome", "success_outcome")),
            watch_outs=_clean_str(_pick(data, "watchOuts", "watch_outs")),
            recent_signals=_clean_str_list(_pick(data, "recentSignals", "recent_signals")),
        )

    def downgraded(self, note: str) -> ResearchBriefData:
        """Return a copy forced to LOW confidence with ``note`` appended."""
        explanation = f"{self.confidence_explanation} {note}".strip()
        return replace(
            self,
            confidence_rating=ConfidenceRating.LOW,
            confidence_explanation=explanation,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "confidenceRating": self.confidence_rating.value,
            "confidenceExplanation": self.confidence_explanation,
            "companyOverview": self.company_overview,
            "painPoints": self.pain_points,
            "howWeFit": self.how_we_fit,
            "openingLine": self.opening_line,
            "discoveryQuestions": list(self.discovery_questions),
            "successOutcome": self.success_outcome,
            "watchOuts": self.watch_outs,
            "recentSignals": list(self.recent_signals),
        }


@dataclass(frozen=True)
class ResearchRequest:
    """Inbound "research requested" record from the trigger layer."""

    type: ResearchType
    campaign_id: str
    prospects: tuple[ResearchTarget, ...]
    is_incremental: bool = False
    meeting_id: str | None = None
    adhoc_request_id: str | None = None
    request_id: str = field(default_factory=lambda: generate_id("req"))

    @property
    def prospect_emails(self) -> list[str]:
        """Sorted, normalized prospect emails (duplicates kept)."""
        return sorted(normalize_email(p.email) for p in self.prospects if p.email)

    @classmethod
    def from_event(cls, data: dict[str, Any]) -> ResearchRequest:
        """Parse the event payload emitted by the webhook or ad-hoc form.

        Raises:
            ValidationError: If the type or campaign id is missing or invalid.
        """
        try:
            request_type = ResearchType(data.get("type", ""))
        except ValueError as e:
            raise ValidationError(
                "Unknown research request type",
                context={"field": "type", "value": data.get("type"),
                         "expected": "calendar|adhoc"},
            ) from e

        campaign_id = _clean_str(_pick(data, "campaignId", "campaign_id"))
        if not campaign_id:
            raise ValidationError(
                "Research request is missing campaignId",
                context={"field": "campaignId"},
            )

        prospects = tuple(
            ResearchTarget.from_dict(p)
            for p in data.get("prospects") or []
            if isinstance(p, dict)
        )
        return cls(
            type=request_type,
            campaign_id=campaign_id,
            prospects=prospects,
            is_incremental=bool(_pick(data, "isIncremental", "is_incremental")),
            meeting_id=_clean_str(_pick(data, "meetingId", "meeting_id")),
            adhoc_request_id=_clean_str(_pick(data, "adHocRequestId", "adhoc_request_id")),
        )


@dataclass(frozen=True)
class OrchestrationResult:
    """Outbound record handed to the persistence layer."""

    brief: ResearchBriefData
    prospect_research: tuple[ProspectResearchData, ...]
    company_research: CompanyResearchData | None
    is_partial_data: bool

    def to_dict(self) -> dict[str, Any]:
        return {
            "brief": self.brief.to_dict(),
            "prospectResearch": [p.to_dict() for p in self.prospect_research],
            "companyResearch": (
                self.company_research.to_dict() if self.company_research else None
            ),
            "isPartialData": self.is_partial_data,
        }


@dataclass(frozen=True)
class PipelineOutcome:
    """Result of handling one research request.

    ``result`` is None when an existing brief was reused.
    """

    brief_id: str
    reused: bool
    result: OrchestrationResult | None = None
