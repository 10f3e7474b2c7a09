"""
Prompt templates for the search-augmented model.

Single-entity prompts ask for a JSON object; multi-pass prompts ask for prose
that the synthesizer reads directly.
"""

from __future__ import annotations

COMPANY_PROMPT = """Research the company {subject}. Provide:
1. Industry and market position
2. Company size (employee count, revenue if available)
3. Funding stage and investors
4. Headquarters location
5. Recent news and developments (last 6 months)

Return the information as a JSON object with these fields:
- name (string, the company's official name)
- industry (string)
- employeeCount (string, e.g. "50-200")
- revenue (string if available)
- fundingStage (string)
- headquarters (string)
- website (string)
- recentNews (array of strings, max 5 items)

Use null for anything you cannot verify. Cite all sources."""

PROSPECT_PROMPT = """Research the professional {subject}. Provide:
1. Current job title and company
2. Location
3. Professional background and experience
4. Recent activity (LinkedIn posts, articles, speaking engagements)
5. LinkedIn profile URL

Return the information as a JSON object with these fields:
- name (string)
- title (string)
- companyName (string)
- location (string if available)
- background (string, 2-3 sentences about professional experience)
- recentActivity (array of strings, max 5 items)
- linkedinUrl (string if found)

Use null for anything you cannot verify. Cite all sources."""

COMPANY_WEBSITE_PASS_PROMPT = """Using the official website of {company}, summarize:
- What the company does and its main products or services
- Who its customers are
- Company size and locations
- Leadership team

Be factual and concise. Say so explicitly when information is not available."""

COMPANY_NEWS_PASS_PROMPT = """Find recent news about {company} from the last 6 months:
- Funding rounds, acquisitions or partnerships
- Product launches and major announcements
- Leadership changes
- Hiring or expansion signals

List each item with its date when known."""

PROSPECT_BACKGROUND_PASS_PROMPT = """Research the professional background of {prospect}:
- Current role and responsibilities
- Career history and prior companies
- Recent public activity (posts, talks, articles, interviews)
- Topics they care about professionally

Be factual and concise. Say so explicitly when information is not available."""


def company_subject(domain: str, company_name: str | None = None) -> str:
    """Describe the company being researched for a prompt."""
    if company_name:
        return f'"{company_name}" (website: {domain})'
    return f'with the website "{domain}"'


def prospect_subject(
    name: str | None,
    email: str | None,
    company: str | None,
) -> str:
    """Describe the prospect being researched for a prompt."""
    label = name or email or "Unknown"
    parts = [f'"{label}"']
    if company:
        parts.append(f"at {company}")
    if email and email != label:
        parts.append(f"(email: {email})")
    return " ".join(parts)
