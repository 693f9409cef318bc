"""Backends consumed by the reconciler.

Concrete HTTP implementations live in ``traefik``, ``ip`` and ``froxlor``.
Implementations signal remote failures by raising ``RemoteAPIError``.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import List

from traebeler.models import ZoneEntry


class DomainProvider(ABC):
    """Source of the hostnames that should resolve to this host."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Return the provider name for logging."""
        pass

    @abstractmethod
    def get_domains(self) -> List[str]:
        """Return deduplicated hostnames. Order is irrelevant."""
        pass


class IPResolver(ABC):
    @abstractmethod
    def resolve_ipv4(self) -> str:
        """Return the current public IPv4 address.

        Raises:
            IPResolutionFailed: if the address cannot be determined.
        """
        pass


class ZoneRepository(ABC):
    """Zone-record API of a DNS control panel."""

    @abstractmethod
    def find(self, apex: str, label: str) -> List[ZoneEntry]:
        """Return all zone entries of ``apex`` whose record equals ``label``."""
        pass

    @abstractmethod
    def add(self, apex: str, label: str, content: str, ttl: int, rtype: str) -> None:
        pass

    @abstractmethod
    def delete(self, apex: str, entry_id: str) -> None:
        pass


class ExistenceChecker(ABC):
    """Registry of domains and subdomains known to the DNS control panel."""

    @abstractmethod
    def exists(self, fqdn: str) -> bool:
        pass

    @abstractmethod
    def register_subdomain(self, apex: str, label: str) -> None:
        pass
