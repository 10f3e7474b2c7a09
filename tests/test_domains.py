"""
Tests for email and domain helpers.
"""

from __future__ import annotations

import pytest

from callprep.utils.domains import (
    email_domain,
    extract_domain,
    infer_company_name,
    normalize_email,
    normalize_url,
)


class TestExtractDomain:
    """Test root domain extraction."""

    @pytest.mark.parametrize(
        ("value", "expected"),
        [
            ("https://acmecorp.com", "acmecorp.com"),
            ("https://www.acmecorp.com/about?x=1", "acmecorp.com"),
            ("acmecorp.com", "acmecorp.com"),
            ("http://blog.eng.acmecorp.io:8080/post", "acmecorp.io"),
            ("https://shop.acme.co.uk", "acme.co.uk"),
            ("ACMECORP.COM", "acmecorp.com"),
        ],
    )
    def test_extracts_root(self, value: str, expected: str) -> None:
        """Test scheme, path, www and subdomains are stripped."""
        assert extract_domain(value) == expected

    @pytest.mark.parametrize("value", ["", "   ", "localhost", "not a url"])
    def test_rejects_non_domains(self, value: str) -> None:
        """Test values without a registrable domain return None."""
        assert extract_domain(value) is None


class TestEmails:
    """Test email helpers."""

    def test_normalize_email(self) -> None:
        """Test trimming and lowercasing."""
        assert normalize_email("  John.Doe@AcmeCorp.com ") == "john.doe@acmecorp.com"

    def test_email_domain(self) -> None:
        """Test the domain part is extracted."""
        assert email_domain("john@mail.acmecorp.com") == "acmecorp.com"

    def test_email_domain_malformed(self) -> None:
        """Test malformed emails yield None."""
        assert email_domain("no-at-sign") is None
        assert email_domain("a@b@c.com") is None


class TestMisc:
    """Test URL normalisation and name inference."""

    def test_normalize_url_adds_scheme(self) -> None:
        """Test a scheme is added only when missing."""
        assert normalize_url("acme.com") == "https://acme.com"
        assert normalize_url("http://acme.com") == "http://acme.com"

    def test_infer_company_name(self) -> None:
        """Test the first label is capitalised."""
        assert infer_company_name("acmecorp.com") == "Acmecorp"
        assert infer_company_name("www.globex.co.uk") == "Globex"
