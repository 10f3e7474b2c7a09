"""
Email and domain helpers.

Domain normalization decides which company gets researched and whether a
search is restricted to the company's own site, so every caller goes through
these functions rather than parsing URLs inline.
"""

from __future__ import annotations

from urllib.parse import urlparse

# Second-level labels that form a public suffix together with a ccTLD.
_COMPOUND_SUFFIX_LABELS = frozenset({"co", "com", "org", "net", "ac", "gov", "edu"})


def normalize_email(email: str) -> str:
    """Lowercase and trim an email address."""
    return email.strip().lower()


def email_domain(email: str) -> str | None:
    """Return the lowercase domain part of an email, or None if malformed."""
    normalized = normalize_email(email)
    if normalized.count("@") != 1:
        return None
    domain = normalized.split("@", 1)[1]
    return extract_domain(domain)


def normalize_url(value: str) -> str:
    """Ensure a URL-ish value has a scheme so it can be parsed."""
    value = value.strip()
    if not value:
        return value
    if "://" not in value:
        value = f"https://{value}"
    return value


def extract_domain(value: str) -> str | None:
    """Reduce a URL or hostname to its registrable root domain.

    Strips the scheme, path, port, a leading ``www.`` and any subdomains.
    Handles two-level public suffixes such as ``co.uk``.

    Args:
        value: URL, bare hostname, or domain.

    Returns:
        Lowercase root domain, or None when nothing domain-like is present.
    """
    if not value or not value.strip():
        return None

    parsed = urlparse(normalize_url(value))
    host = (parsed.hostname or "").strip(".").lower()
    if not host or "." not in host:
        return None

    labels = [label for label in host.split(".") if label]
    if labels and labels[0] == "www":
        labels = labels[1:]
    if len(labels) < 2:
        return None

    if (
        len(labels) >= 3
        and len(labels[-1]) == 2
        and labels[-2] in _COMPOUND_SUFFIX_LABELS
    ):
        return ".".join(labels[-3:])
    return ".".join(labels[-2:])


def infer_company_name(domain: str) -> str:
    """Best-effort company name from a domain: ``acme.com`` -> ``Acme``."""
    root = extract_domain(domain) or domain
    label = root.split(".")[0]
    return label[:1].upper() + label[1:]
