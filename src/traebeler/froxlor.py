"""Froxlor customer API backend.

All calls are made on behalf of a customer, so the API key and secret must be
customer credentials. Administrative commands (like creating new top-level
domains) are not available with them.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, List

import requests

from traebeler.exceptions import RemoteAPIError
from traebeler.interfaces import ExistenceChecker, ZoneRepository
from traebeler.models import ZoneEntry

logger = logging.getLogger(__name__)

FROXLOR_API_PATH = "/froxlor/api.php"


class FroxlorAPI(ZoneRepository, ExistenceChecker):
    """Zone entries and subdomains managed through ``/froxlor/api.php``."""

    def __init__(self, uri: str, key: str, secret: str, timeout_seconds: float = 10.0):
        self._url = uri.rstrip("/") + FROXLOR_API_PATH
        self._key = key
        self._secret = secret
        self._timeout = timeout_seconds
        self._session = requests.Session()

    @property
    def name(self) -> str:
        return "Froxlor"

    # -------------------------------------------------------------------------
    # Zone entries
    # -------------------------------------------------------------------------

    def find(self, apex: str, label: str) -> List[ZoneEntry]:
        body = self._post(
            "DomainZones.listing",
            {
                "domainname": apex,
                "sql_search": {"record": {"op": "=", "value": label}},
            },
        )
        entries = []
        for item in ((body or {}).get("data") or {}).get("list") or []:
            if not isinstance(item, dict):
                logger.warning(f"Skipping malformed zone entry for {apex}: {item}")
                continue
            entries.append(
                ZoneEntry(
                    id=str(item.get("id", "")),
                    domain_id=str(item.get("domain_id", "")),
                    ttl=str(item.get("ttl", "")),
                    record=str(item.get("record", "")),
                    type=str(item.get("type", "")),
                    content=str(item.get("content", "")),
                )
            )
        return entries

    def add(self, apex: str, label: str, content: str, ttl: int, rtype: str) -> None:
        self._post(
            "DomainZones.add",
            {
                "domainname": apex,
                "record": label,
                "content": content,
                "ttl": str(ttl),
                "type": rtype,
            },
        )
        logger.info(f"Added zone entry {label} ({rtype}) of {apex} -> {content}")

    def delete(self, apex: str, entry_id: str) -> None:
        self._post("DomainZones.delete", {"domainname": apex, "entry_id": entry_id})
        logger.info(f"Deleted zone entry '{entry_id}' of {apex}")

    # -------------------------------------------------------------------------
    # Subdomains
    # -------------------------------------------------------------------------

    def exists(self, fqdn: str) -> bool:
        # Froxlor joins the domain table internally, hence the "d." column prefix.
        body = self._post(
            "SubDomains.listing",
            {"sql_search": {"d.domain": {"op": "=", "value": fqdn}}},
        )
        data = (body or {}).get("data") or {}
        try:
            return int(data.get("count") or 0) > 0
        except (TypeError, ValueError) as e:
            raise RemoteAPIError(f"Unexpected subdomain count in {self.name} response: {e}") from e

    def register_subdomain(self, apex: str, label: str) -> None:
        self._post("SubDomains.add", {"domain": apex, "subdomain": label})
        logger.info(f"Registered subdomain {label}.{apex}")

    # -------------------------------------------------------------------------
    # Transport
    # -------------------------------------------------------------------------

    def _post(self, command: str, params: Dict[str, Any]) -> Dict[str, Any]:
        """Send one API command and return the decoded response body.

        Returns an empty dict for a bodyless 304 (not modified) response.

        Raises:
            RemoteAPIError: on transport errors, undecodable bodies, or when
                either the HTTP status or the body status is not 200.
        """
        payload = {
            "header": {"apikey": self._key, "secret": self._secret},
            "body": {"command": command, "params": params},
        }
        try:
            response = self._session.post(self._url, json=payload, timeout=self._timeout)
        except requests.exceptions.RequestException as e:
            raise RemoteAPIError(f"{self.name} command {command} failed: {e}") from e

        if not response.content:
            if response.status_code == 304:
                return {}
            raise RemoteAPIError(
                f"{self.name} command {command} returned no body with HTTP status code "
                f"{response.status_code}"
            )

        try:
            body = response.json()
        except (json.JSONDecodeError, ValueError) as e:
            raise RemoteAPIError(f"{self.name} command {command} returned invalid JSON: {e}") from e
        if not isinstance(body, dict):
            raise RemoteAPIError(
                f"{self.name} command {command} returned unexpected body type "
                f"{type(body).__name__}"
            )

        body_status = _status_code(body.get("status"))
        if response.status_code != 200 or body_status != 200:
            raise RemoteAPIError(
                f"{self.name} API HTTP response code is '{response.status_code}' and body "
                f"response code '{body_status}' with reason '{body.get('status_message', '')}'"
            )
        logger.debug(f"{self.name} command {command} succeeded")
        return body


def _status_code(value: Any) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0
