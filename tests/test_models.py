"""Unit tests for DomainRecord and hostname parsing."""

import pytest

from traebeler.exceptions import MalformedDomain
from traebeler.models import APEX_LABEL, DomainRecord, parse_domain


class TestDomainRecord:
    def test_empty_label_is_normalized_to_apex_label(self) -> None:
        rec = DomainRecord(apex="example.com", label="")

        assert rec.label == APEX_LABEL
        assert rec.has_subdomain() is False

    def test_fully_qualified_name_of_apex(self) -> None:
        assert DomainRecord("foo.bar", "@").fully_qualified_name() == "foo.bar"

    def test_fully_qualified_name_of_subdomain(self) -> None:
        assert DomainRecord("jen.pet", "sub").fully_qualified_name() == "sub.jen.pet"

    def test_with_ip_returns_stamped_copy(self) -> None:
        rec = DomainRecord("foo.bar", "@")

        stamped = rec.with_ip("127.0.0.1")

        assert stamped == DomainRecord("foo.bar", "@", "127.0.0.1")
        assert rec.current_ip == ""


class TestParseDomain:
    def test_apex_domain(self) -> None:
        assert parse_domain("foo.bar") == DomainRecord("foo.bar", "@", "")

    def test_subdomain(self) -> None:
        assert parse_domain("sub.jen.pet") == DomainRecord("jen.pet", "sub", "")

    def test_nested_subdomain(self) -> None:
        assert parse_domain("a.b.example.com") == DomainRecord("example.com", "a.b", "")

    def test_multi_part_public_suffix(self) -> None:
        assert parse_domain("www.example.co.uk") == DomainRecord("example.co.uk", "www", "")

    def test_normalizes_case_and_trailing_dot(self) -> None:
        assert parse_domain("  App.Example.COM. ") == DomainRecord("example.com", "app", "")

    @pytest.mark.parametrize("domain", ["foo--", "", "localhost", "127.0.0.1", "bad_-.example.com"])
    def test_malformed_domains_raise(self, domain: str) -> None:
        with pytest.raises(MalformedDomain):
            parse_domain(domain)

    def test_invalid_label_raises(self) -> None:
        with pytest.raises(MalformedDomain, match="invalid label"):
            parse_domain("-app.example.com")

    @pytest.mark.parametrize(
        "domain, expected",
        [
            ("münchen.de", DomainRecord("münchen.de", "@", "")),
            ("Bücher.münchen.de", DomainRecord("münchen.de", "bücher", "")),
        ],
    )
    def test_internationalized_domains(self, domain: str, expected: DomainRecord) -> None:
        assert parse_domain(domain) == expected
