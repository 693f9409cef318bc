#!/usr/bin/env python3
"""traebeler - Traefik routes to DNS zone records

Keeps the zone entries of every hostname routed by Traefik pointed at the
public IPv4 address of this host.

Supported processors:
    - froxlor: Froxlor customer API (DomainZones / SubDomains)

Environment variables:

    Runtime:
        TRAEBELER_PROCESSOR         Processor identifier (required): "froxlor"
        TRAEBELER_LOOKUP_INTERVAL   Seconds between reconciliation passes (default: 30)
        TRAEBELER_SYNC_MODE         "once" or "watch" (polling loop) (default: watch)
        TRAEBELER_MAX_WORKERS       Concurrent record updates per pass (default: 8)
        TRAEBELER_LOG_LEVEL         DEBUG, INFO, WARNING, ERROR (default: INFO)
        TRAEBELER_IP_PROVIDER_URL   Plain text IPv4 echo service
                                    (default: https://api.ipify.org?format=text)

    Traefik:
        TRAEFIK_CONFIG_PATH         YAML file or directory of YAML files listing instances
                                    (default: /config/traefik-instances.yaml)
                                    Example config file:
                                      instances:
                                        - name: "core"
                                          url: "http://traefik:8080"
                                          verify_tls: true
                                          router_filter: "*-public*"
        TRAEFIK_BASE_URI            Single Traefik API base URI, used when the config
                                    path yields no instance

    Froxlor processor:
        TRAEBELER_PROCESSOR_FROXLOR_URI     Froxlor base URI (required)
        TRAEBELER_PROCESSOR_FROXLOR_KEY     Customer API key
        TRAEBELER_PROCESSOR_FROXLOR_SECRET  Customer API secret
"""

from __future__ import annotations

import logging
import os
import signal
import sys
import threading
from pathlib import Path
from typing import Callable, Dict, List, Optional

from traebeler.froxlor import FroxlorAPI
from traebeler.interfaces import DomainProvider
from traebeler.ip import IPIFY_URL, IpifyResolver
from traebeler.reconciler import DEFAULT_MAX_WORKERS, Reconciler
from traebeler.traefik import TraefikDomainProvider, find_config_files


def _parse_int(value: str) -> Optional[int]:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


# =============================================================================
# Configuration
# =============================================================================

PROCESSOR = os.getenv("TRAEBELER_PROCESSOR", "").lower().strip()
LOOKUP_INTERVAL = _parse_int(os.getenv("TRAEBELER_LOOKUP_INTERVAL", "30"))
SYNC_MODE = os.getenv("TRAEBELER_SYNC_MODE", "watch").lower().strip()
MAX_WORKERS = _parse_int(os.getenv("TRAEBELER_MAX_WORKERS", str(DEFAULT_MAX_WORKERS)))
LOG_LEVEL = os.getenv("TRAEBELER_LOG_LEVEL", "INFO")
IP_PROVIDER_URL = os.getenv("TRAEBELER_IP_PROVIDER_URL", IPIFY_URL)

TRAEFIK_CONFIG_PATH = os.getenv("TRAEFIK_CONFIG_PATH", "/config/traefik-instances.yaml")
TRAEFIK_BASE_URI = os.getenv("TRAEFIK_BASE_URI", "")

FROXLOR_URI = os.getenv("TRAEBELER_PROCESSOR_FROXLOR_URI", "")
FROXLOR_KEY = os.getenv("TRAEBELER_PROCESSOR_FROXLOR_KEY", "")
FROXLOR_SECRET = os.getenv("TRAEBELER_PROCESSOR_FROXLOR_SECRET", "")

# =============================================================================
# Logging Setup
# =============================================================================

logging.basicConfig(
    level=getattr(logging, LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s [%(levelname)s] %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger(__name__)

# =============================================================================
# Processor Registry
# =============================================================================


def create_froxlor_processor() -> Reconciler:
    api = FroxlorAPI(FROXLOR_URI, FROXLOR_KEY, FROXLOR_SECRET)
    return Reconciler(
        ip_resolver=IpifyResolver(IP_PROVIDER_URL),
        zone_repository=api,
        existence_checker=api,
        identifier="froxlor",
        max_workers=MAX_WORKERS or DEFAULT_MAX_WORKERS,
    )


PROCESSORS: Dict[str, Callable[[], Reconciler]] = {
    "froxlor": create_froxlor_processor,
}


def create_processor(identifier: str) -> Reconciler:
    """Factory function to create the processor registered under ``identifier``."""
    factory = PROCESSORS.get(identifier)
    if factory is None:
        raise ValueError(
            f"Unsupported processor: '{identifier}'. "
            f"Supported processors: {', '.join(sorted(PROCESSORS))}"
        )
    return factory()


def create_domain_provider() -> TraefikDomainProvider:
    return TraefikDomainProvider(config_path=TRAEFIK_CONFIG_PATH, base_uri=TRAEFIK_BASE_URI)


# =============================================================================
# File Watching
# =============================================================================


def get_config_file_mtime(config_path: str) -> float:
    """Get modification time of config file, returns 0 if file doesn't exist."""
    try:
        return os.path.getmtime(config_path) if os.path.exists(config_path) else 0.0
    except OSError:
        return 0.0


class ConfigWatcher:
    """Detects added, removed or modified YAML files below a config path."""

    def __init__(self, config_path: str):
        self.config_path = config_path
        self._files = find_config_files(config_path)
        self._mtimes = self._snapshot(self._files)

    @staticmethod
    def _snapshot(files: List[str]) -> Dict[str, float]:
        return {f: get_config_file_mtime(f) for f in files}

    def changed(self) -> bool:
        current_files = find_config_files(self.config_path)
        current_mtimes = self._snapshot(current_files)
        if set(current_files) == set(self._files) and current_mtimes == self._mtimes:
            return False

        new_files = set(current_files) - set(self._files)
        removed_files = set(self._files) - set(current_files)
        if new_files:
            logger.info(f"New config file(s) detected: {', '.join(Path(f).name for f in new_files)}")
        if removed_files:
            logger.info(f"Config file(s) removed: {', '.join(Path(f).name for f in removed_files)}")
        modified = [
            f for f in current_files if f in self._mtimes and current_mtimes[f] != self._mtimes[f]
        ]
        if modified:
            logger.info(f"Config change detected in: {', '.join(Path(f).name for f in modified)}")

        self._files = current_files
        self._mtimes = current_mtimes
        return True


# =============================================================================
# Scheduling Loop
# =============================================================================


def process_domains(provider: DomainProvider, processor: Reconciler) -> None:
    """Fetch domains from the provider and hand them to the processor."""
    logger.info("Querying for domains...")
    domains = provider.get_domains()
    logger.info(f"Done querying for domains. Received {len(domains)} unique domains.")
    processor.process(domains)


def work_domains(
    processor: Reconciler,
    provider: DomainProvider,
    interval: float,
    stop_event: threading.Event,
    watcher: Optional[ConfigWatcher] = None,
    provider_factory: Optional[Callable[[], DomainProvider]] = None,
) -> None:
    """Run one pass right away, then one pass per interval until stopped.

    A pass in flight always runs to completion; ``stop_event`` is only
    checked between passes.
    """
    logger.info("Started listening for domains...")
    _run_pass(provider, processor)

    while not stop_event.wait(interval):
        if watcher is not None and provider_factory is not None and watcher.changed():
            try:
                provider = provider_factory()
                logger.info("Reloaded domain provider after config change")
            except Exception as e:
                logger.error(f"Failed to reload configuration: {e}", exc_info=True)
                logger.warning("Continuing with previous configuration")
        _run_pass(provider, processor)

    logger.info("Stopped listening for domains.")


def _run_pass(provider: DomainProvider, processor: Reconciler) -> None:
    try:
        process_domains(provider, processor)
    except Exception as e:
        logger.error(f"Reconciliation pass failed: {e}", exc_info=True)


# =============================================================================
# Main
# =============================================================================


def validate_config() -> bool:
    """Validate configuration."""
    errors = []

    if LOOKUP_INTERVAL is None or LOOKUP_INTERVAL <= 0:
        errors.append("TRAEBELER_LOOKUP_INTERVAL must be a positive number of seconds")
    if MAX_WORKERS is None or MAX_WORKERS <= 0:
        errors.append("TRAEBELER_MAX_WORKERS must be a positive integer")
    if SYNC_MODE not in ("once", "watch"):
        errors.append(f"Invalid TRAEBELER_SYNC_MODE: {SYNC_MODE}. Use 'once' or 'watch'")

    if not PROCESSOR:
        errors.append("TRAEBELER_PROCESSOR is required")
    elif PROCESSOR not in PROCESSORS:
        errors.append(
            f"Unsupported TRAEBELER_PROCESSOR: {PROCESSOR}. Supported: {', '.join(sorted(PROCESSORS))}"
        )
    elif PROCESSOR == "froxlor":
        if not FROXLOR_URI:
            errors.append("TRAEBELER_PROCESSOR_FROXLOR_URI is required when TRAEBELER_PROCESSOR=froxlor")
        if not FROXLOR_KEY or not FROXLOR_SECRET:
            logger.warning("TRAEBELER_PROCESSOR_FROXLOR_KEY/SECRET not set. Froxlor will reject calls.")

    if not create_domain_provider().get_instances():
        errors.append(
            "At least one Traefik instance is required (set TRAEFIK_CONFIG_PATH or TRAEFIK_BASE_URI)"
        )

    if errors:
        for error in errors:
            logger.error(error)
        return False

    return True


def main():
    """Main entry point."""
    logger.info(f"traebeler: traefik -> {PROCESSOR or '<unset>'}")

    if not validate_config():
        logger.error("Configuration validation failed")
        sys.exit(1)

    processor = create_processor(PROCESSOR)
    provider = create_domain_provider()

    logger.info(f"Processor: {processor.identifier()}")
    logger.info(f"Traefik instances: {', '.join(i.name for i in provider.get_instances())}")
    logger.info(f"Sync mode: {SYNC_MODE}")

    if SYNC_MODE == "once":
        process_domains(provider, processor)
        return

    logger.info(f"Lookup interval: {LOOKUP_INTERVAL}s")
    stop_event = threading.Event()

    def _handle_signal(signum, _frame):
        logger.info(f"Received os signal '{signal.Signals(signum).name}'")
        stop_event.set()

    signal.signal(signal.SIGTERM, _handle_signal)

    try:
        work_domains(
            processor,
            provider,
            LOOKUP_INTERVAL,
            stop_event,
            watcher=ConfigWatcher(TRAEFIK_CONFIG_PATH),
            provider_factory=create_domain_provider,
        )
    except KeyboardInterrupt:
        logger.info("Shutting down gracefully...")
    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
