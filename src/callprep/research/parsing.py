"""
Convert multi-pass prose into structured research records.

Passes return free text. When the text carries a JSON object it is used
directly; otherwise the prose is kept as-is in the narrative fields.
"""

from __future__ import annotations

import re
from dataclasses import replace

from callprep.clients.search_client import parse_json_content
from callprep.types import (
    MAX_EXTRA_FIELDS,
    CompanyResearchData,
    MultiPassResearchResult,
    ProspectResearchData,
    ResearchMetadata,
    ResearchTarget,
)
from callprep.utils.domains import infer_company_name

MAX_NEWS_ITEMS = 5

_BULLET = re.compile(r"^\s*(?:[-*•]|\d+[.)])\s+")


def bullet_items(content: str, limit: int = MAX_NEWS_ITEMS) -> tuple[str, ...]:
    """Pull list items out of markdown-ish prose."""
    items = [
        _BULLET.sub("", line).strip()
        for line in content.splitlines()
        if _BULLET.match(line)
    ]
    return tuple(item for item in items if item)[:limit]


def _metadata(result: MultiPassResearchResult) -> ResearchMetadata:
    return ResearchMetadata(
        model=result.metadata.model,
        timestamp=result.metadata.timestamp,
        duration_ms=result.metadata.total_duration_ms,
    )


def prospect_from_passes(
    target: ResearchTarget,
    result: MultiPassResearchResult,
) -> ProspectResearchData | None:
    """Build the prospect record from the background pass, if it ran."""
    background = result.prospect_background_pass
    if background is None:
        return None

    payload = parse_json_content(background.content) or {}
    prospect = ProspectResearchData.from_payload(
        payload,
        default_name=target.name,
        email=target.email,
        sources=background.sources,
        metadata=_metadata(result),
    )
    if not payload:
        prospect = replace(
            prospect,
            company_name=target.company_name,
            background=background.content.strip(),
            recent_activity=bullet_items(background.content),
        )
    return replace(prospect, operation_logs=result.operation_logs)


def company_from_passes(
    domain: str | None,
    result: MultiPassResearchResult,
    company_name: str | None = None,
) -> CompanyResearchData | None:
    """Build the company record from the website and news passes.

    Returns None when neither company pass produced content.
    """
    website = result.company_website_pass
    news = result.company_news_pass
    if website is None and news is None:
        return None

    payload = parse_json_content(website.content) if website else None
    sources = (website.sources if website else ()) + (news.sources if news else ())
    company = CompanyResearchData.from_payload(
        payload or {}, sources=sources, metadata=_metadata(result)
    )

    extra = dict(company.extra)
    if website and not payload and len(extra) < MAX_EXTRA_FIELDS:
        extra["overview"] = website.content.strip()

    return replace(
        company,
        name=company.name or company_name or (infer_company_name(domain) if domain else None),
        website=company.website or domain,
        recent_news=company.recent_news or (bullet_items(news.content) if news else ()),
        extra=extra,
        operation_logs=result.operation_logs,
    )
