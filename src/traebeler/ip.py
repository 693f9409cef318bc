"""Public IPv4 lookup."""

from __future__ import annotations

import ipaddress
import logging

import requests

from traebeler.exceptions import IPResolutionFailed
from traebeler.interfaces import IPResolver

logger = logging.getLogger(__name__)

# Returns the caller's public IPv4 as plain text.
IPIFY_URL = "https://api.ipify.org?format=text"


class IpifyResolver(IPResolver):
    def __init__(self, url: str = IPIFY_URL, timeout_seconds: float = 5.0):
        self._url = url
        self._timeout = timeout_seconds
        self._session = requests.Session()

    def resolve_ipv4(self) -> str:
        try:
            response = self._session.get(self._url, timeout=self._timeout)
            response.raise_for_status()
        except requests.exceptions.HTTPError as e:
            raise IPResolutionFailed(
                f"IP provider returned status {e.response.status_code if e.response is not None else '?'}"
            ) from e
        except requests.exceptions.RequestException as e:
            raise IPResolutionFailed(f"Could not reach IP provider ({self._url}): {e}") from e

        ip = response.text.strip()
        try:
            ipaddress.IPv4Address(ip)
        except ValueError as e:
            raise IPResolutionFailed(f"IP provider returned no IPv4 address: {ip!r}") from e

        logger.debug(f"Current public IP: {ip}")
        return ip
