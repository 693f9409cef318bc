"""Domain discovery from the Traefik API.

Instances are read from a YAML file (or a directory of YAML files) shaped
like::

    instances:
      - name: "core"
        url: "http://traefik:8080"
        verify_tls: true
        router_filter: "*-public*"

When no instance is configured there, a single instance is built from the
base URI passed to the provider.
"""

from __future__ import annotations

import fnmatch
import json
import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List

import requests
import yaml
from requests.auth import HTTPBasicAuth

from traebeler.interfaces import DomainProvider

logger = logging.getLogger(__name__)

ROUTER_STATUS_ENABLED = "enabled"


def find_config_files(config_path: str) -> List[str]:
    """Find all .yaml config files in directory or return single file.

    Args:
        config_path: Path to config file or directory

    Returns:
        List of config file paths (excluding .template files)
    """
    if not config_path:
        return []
    path = Path(config_path)

    if path.is_file():
        return [str(path)]

    if path.is_dir():
        yaml_files = sorted(path.glob("*.yaml"))
        return [str(f) for f in yaml_files if not f.name.endswith(".template")]

    # Path doesn't exist yet
    return []


def _parse_bool(value: Any, *, default: bool = True) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in {"1", "true", "yes", "y", "on"}


@dataclass(frozen=True)
class TraefikInstance:
    """Connection settings of one Traefik API."""

    name: str
    url: str
    verify_tls: bool = True
    username: str = ""
    password: str = ""
    router_filter: str = ""


class TraefikDomainProvider(DomainProvider):
    """Collects hostnames from the Host() matchers of enabled Traefik routers."""

    HOST_MATCHER_RE = re.compile(r"\bHost\(([^)]*)\)", re.IGNORECASE)
    QUOTED_RE = re.compile(r"[`\"']([^`\"']+)[`\"']")

    def __init__(self, config_path: str = "", base_uri: str = "", timeout_seconds: float = 5.0):
        self._config_path = config_path
        self._base_uri = base_uri
        self._timeout = timeout_seconds

    @property
    def name(self) -> str:
        return "Traefik"

    def get_instances(self) -> List[TraefikInstance]:
        config_files = find_config_files(self._config_path)
        instances: List[TraefikInstance] = []

        for config_file in config_files:
            try:
                with open(config_file, "r") as f:
                    config_data = yaml.safe_load(f)
            except (OSError, yaml.YAMLError) as e:
                logger.error(f"Failed to load config from {config_file}: {e}")
                continue

            if not isinstance(config_data, dict) or "instances" not in config_data:
                logger.warning(f"Config file {config_file} missing 'instances' key")
                continue

            for item in config_data["instances"] or []:
                if not isinstance(item, dict):
                    continue
                url = str(item.get("url") or "").strip()
                if not url:
                    continue
                instances.append(
                    TraefikInstance(
                        name=str(item.get("name") or "traefik").strip(),
                        url=url,
                        verify_tls=_parse_bool(item.get("verify_tls"), default=True),
                        username=str(item.get("username") or "").strip(),
                        password=str(item.get("password") or "").strip(),
                        router_filter=str(item.get("router_filter") or "").strip(),
                    )
                )

        if instances:
            logger.debug(
                f"Loaded {len(instances)} Traefik instance(s) from {len(config_files)} config file(s)"
            )
            return instances

        # Single-instance fallback
        url = self._base_uri.strip()
        if not url:
            return []
        return [TraefikInstance(name="traefik", url=url)]

    def get_domains(self) -> List[str]:
        domains: Dict[str, None] = {}
        for instance in self.get_instances():
            try:
                routers = self.get_routers(instance)
            except (requests.exceptions.RequestException, ValueError) as e:
                logger.error(f"Failed to get routers from Traefik instance '{instance.name}': {e}")
                continue

            for rule in self._enabled_rules(instance, routers):
                for hostname in self._extract_hostnames(rule):
                    domains.setdefault(hostname, None)
        return list(domains)

    def get_routers(self, instance: TraefikInstance) -> List[Dict[str, Any]]:
        session = requests.Session()
        if instance.username and instance.password:
            session.auth = HTTPBasicAuth(instance.username, instance.password)

        base = instance.url.rstrip("/")
        response = session.get(
            f"{base}/api/http/routers",
            timeout=self._timeout,
            verify=instance.verify_tls,
        )
        response.raise_for_status()
        try:
            routers = response.json()
        except json.JSONDecodeError as e:
            raise ValueError(f"Invalid JSON from {instance.name}: {e}") from e

        if not isinstance(routers, list):
            raise ValueError(
                f"Unexpected response format from {instance.name}: "
                f"expected list, got {type(routers).__name__}"
            )
        logger.debug(f"Received {len(routers)} routers from Traefik instance '{instance.name}'")
        return routers

    def _enabled_rules(self, instance: TraefikInstance, routers: List[Any]) -> List[str]:
        rules: List[str] = []
        for router in routers:
            if not isinstance(router, dict):
                logger.debug(f"Skipping non-dict router entry: {router}")
                continue
            router_name = router.get("name") or ""
            status = str(router.get("status") or ROUTER_STATUS_ENABLED).lower()
            if status != ROUTER_STATUS_ENABLED:
                logger.debug(
                    f"Skipping rule {router.get('rule')} of router '{router_name}' with status "
                    f"{status}. Errors: {router.get('error') or []}"
                )
                continue
            if instance.router_filter and not fnmatch.fnmatch(router_name, instance.router_filter):
                logger.debug(
                    f"Router '{router_name}' filtered out by name pattern '{instance.router_filter}'"
                )
                continue
            rules.append(router.get("rule") or "")
        return rules

    def _extract_hostnames(self, rule: str) -> List[str]:
        """Extract hostnames from a Traefik router rule, in order of appearance."""
        hostnames: Dict[str, None] = {}
        for matcher in self.HOST_MATCHER_RE.finditer(rule or ""):
            for quoted in self.QUOTED_RE.finditer(matcher.group(1)):
                hostnames.setdefault(quoted.group(1).strip().lower(), None)
        return [h for h in hostnames if h]
