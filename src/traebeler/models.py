"""Value types shared by the reconciler and its backends."""

from __future__ import annotations

import dataclasses
import re
from dataclasses import dataclass

import tldextract

from traebeler.exceptions import MalformedDomain

# Label used by zone APIs for the apex itself.
APEX_LABEL = "@"

_LABEL_RE = re.compile(r"^[a-z0-9_](?:[a-z0-9_-]{0,61}[a-z0-9_])?$")

# Offline extractor backed by the public suffix snapshot bundled with tldextract.
_EXTRACT = tldextract.TLDExtract(cache_dir=None, suffix_list_urls=())


@dataclass(frozen=True)
class DomainRecord:
    """One managed DNS entry and the IP last confirmed in the remote zone.

    An empty ``current_ip`` means the record was never synchronized.
    """

    apex: str
    label: str = APEX_LABEL
    current_ip: str = ""

    def __post_init__(self) -> None:
        if not self.label:
            object.__setattr__(self, "label", APEX_LABEL)

    def has_subdomain(self) -> bool:
        return bool(self.label) and self.label != APEX_LABEL

    def fully_qualified_name(self) -> str:
        if not self.has_subdomain():
            return self.apex
        return f"{self.label}.{self.apex}"

    def with_ip(self, ip: str) -> "DomainRecord":
        return dataclasses.replace(self, current_ip=ip)

    def __str__(self) -> str:
        return f"{self.fully_qualified_name()} -> {self.current_ip or '<unsynced>'}"


@dataclass(frozen=True)
class ZoneEntry:
    """A DNS resource record as stored by the remote zone API."""

    id: str
    domain_id: str = ""
    ttl: str = ""
    record: str = APEX_LABEL
    type: str = "A"
    content: str = ""


def _ascii_label(domain: str, label: str) -> str:
    """Return the punycode form of an internationalized label."""
    if label.isascii():
        return label
    try:
        return label.encode("idna").decode("ascii")
    except UnicodeError as e:
        raise MalformedDomain(domain, f"invalid label '{label}'") from e


def parse_domain(domain: str) -> DomainRecord:
    """Convert a raw hostname into a DomainRecord using public suffix rules.

    Raises:
        MalformedDomain: if no registrable apex can be extracted or any label
            of the hostname is syntactically invalid.
    """
    if not isinstance(domain, str):
        raise MalformedDomain(str(domain), "not a string")

    name = domain.strip().lower().rstrip(".")
    if not name:
        raise MalformedDomain(domain, "empty hostname")

    ext = _EXTRACT(name)
    if not ext.domain or not ext.suffix:
        raise MalformedDomain(domain)

    labels = name.split(".")
    suffix_len = len(ext.suffix.split("."))
    for label in labels[: len(labels) - suffix_len]:
        if not _LABEL_RE.match(_ascii_label(domain, label)):
            raise MalformedDomain(domain, f"invalid label '{label}'")

    return DomainRecord(apex=f"{ext.domain}.{ext.suffix}", label=ext.subdomain or APEX_LABEL)
