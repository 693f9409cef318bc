"""Reconciliation of managed DNS records against a remote zone API.

A pass resolves the public IP, diffs the requested domains against the
records confirmed by earlier passes, synchronizes whatever is new or stale
concurrently and finally replaces the cache with the reconciled set.

Failures of single records never abort a pass. Those records are simply
left out of the cache so that the next pass picks them up again.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Dict, Iterable, Iterator, List, Optional, Sequence, Tuple

from traebeler.exceptions import (
    AmbiguousZoneState,
    DomainRequiresManualRegistration,
    ExistenceCheckFailed,
    RecordSyncError,
    RemoteAPIError,
    SubdomainRegistrationFailed,
    TraebelerError,
    ZoneLookupFailed,
    ZoneMutationFailed,
)
from traebeler.interfaces import ExistenceChecker, IPResolver, ZoneRepository
from traebeler.models import DomainRecord, parse_domain

logger = logging.getLogger(__name__)

# TTL in seconds of every zone entry we create.
RECORD_TTL = 18000
RECORD_TYPE = "A"

DEFAULT_MAX_WORKERS = 8


# =============================================================================
# Cache
# =============================================================================


class ReconciliationCache:
    """Records confirmed by previous passes, keyed by fully qualified name.

    Owned by a single Reconciler. It is only replaced between passes, never
    mutated by the record tasks themselves.
    """

    def __init__(self, records: Iterable[DomainRecord] = ()):
        self._records: Dict[str, DomainRecord] = {}
        self.replace(records)

    def get(self, fqdn: str) -> Optional[DomainRecord]:
        return self._records.get(fqdn)

    def records(self) -> List[DomainRecord]:
        return list(self._records.values())

    def replace(self, records: Iterable[DomainRecord]) -> None:
        self._records = {r.fully_qualified_name(): r for r in records}

    def __contains__(self, fqdn: object) -> bool:
        return fqdn in self._records

    def __iter__(self) -> Iterator[DomainRecord]:
        return iter(list(self._records.values()))

    def __len__(self) -> int:
        return len(self._records)


def diff_cache(
    cache: ReconciliationCache, domains: Sequence[str], ip: str
) -> Tuple[List[DomainRecord], List[DomainRecord]]:
    """Split requested domains into cached-and-current and requiring sync.

    Returns ``(carried_forward, requires_sync)``. Cached names missing from
    ``domains`` appear in neither list. The cache itself is not modified.

    Raises:
        MalformedDomain: for the first domain that cannot be parsed.
    """
    carried: Dict[str, DomainRecord] = {}
    required: Dict[str, DomainRecord] = {}

    for domain in domains:
        rec = parse_domain(domain)
        name = rec.fully_qualified_name()
        if name in carried or name in required:
            continue

        cached = cache.get(name)
        if cached is not None and cached.current_ip and cached.current_ip == ip:
            carried[name] = cached
        else:
            required[name] = rec

    return list(carried.values()), list(required.values())


# =============================================================================
# Per-record synchronization
# =============================================================================


def ensure_domain_existence(checker: ExistenceChecker, rec: DomainRecord) -> None:
    """Make sure the domain backing ``rec`` is known to the control panel.

    Only subdomains are created. A missing apex has to be registered by an
    administrator.
    """
    fqdn = rec.fully_qualified_name()
    try:
        exists = checker.exists(fqdn)
    except RemoteAPIError as e:
        raise ExistenceCheckFailed(fqdn, f"failed checking existence of '{fqdn}': {e}") from e

    if exists:
        return
    if not rec.has_subdomain():
        raise DomainRequiresManualRegistration(fqdn)

    logger.info(f"Registering missing subdomain '{rec.label}' of '{rec.apex}'")
    try:
        checker.register_subdomain(rec.apex, rec.label)
    except RemoteAPIError as e:
        raise SubdomainRegistrationFailed(
            fqdn, f"failed registering subdomain '{fqdn}': {e}"
        ) from e


def synchronize_record(
    repository: ZoneRepository,
    checker: ExistenceChecker,
    rec: DomainRecord,
    ip: str,
) -> DomainRecord:
    """Make the remote zone entry of ``rec`` point at ``ip``.

    The existing entry is looked up first. A matching entry is left alone, a
    stale one is deleted and re-added, and a missing one is added. When the
    lookup yields several entries nothing is touched.

    A failing delete or add leaves the zone dirty until the next pass.

    Returns:
        ``rec`` stamped with ``ip``.

    Raises:
        RecordSyncError: describing why this record could not be synchronized.
    """
    fqdn = rec.fully_qualified_name()
    ensure_domain_existence(checker, rec)

    try:
        entries = repository.find(rec.apex, rec.label)
    except RemoteAPIError as e:
        raise ZoneLookupFailed(fqdn, f"failed looking up zone entries of '{fqdn}': {e}") from e

    if len(entries) > 1:
        raise AmbiguousZoneState(fqdn, entries)

    if len(entries) == 1:
        entry = entries[0]
        if entry.content == ip:
            logger.info(
                f"Zone entry '{entry.id}' of domain '{fqdn}' already points to {ip}. "
                f"No update required."
            )
            return rec.with_ip(ip)

        try:
            repository.delete(rec.apex, entry.id)
        except RemoteAPIError as e:
            raise ZoneMutationFailed(
                fqdn, f"failed deleting zone entry '{entry.id}' of '{fqdn}': {e}"
            ) from e
        logger.debug(f"Deleted stale zone entry '{entry.id}' ({entry.content}) of '{fqdn}'")

    try:
        repository.add(rec.apex, rec.label, ip, RECORD_TTL, RECORD_TYPE)
    except RemoteAPIError as e:
        raise ZoneMutationFailed(fqdn, f"failed adding zone entry '{fqdn}' -> {ip}: {e}") from e

    logger.info(f"Updated ip for domain '{fqdn}' to {ip}")
    return rec.with_ip(ip)


# =============================================================================
# Pass orchestration
# =============================================================================


@dataclass(frozen=True)
class RecordFailure:
    fqdn: str
    error: Exception

    def __str__(self) -> str:
        return f"{self.fqdn}: {self.error}"


@dataclass
class PassResult:
    """Outcome of one reconciliation pass.

    ``error`` is set when the pass was aborted before any record was
    synchronized; the cache is untouched in that case.
    """

    ip: str = ""
    carried_forward: List[DomainRecord] = field(default_factory=list)
    synchronized: List[DomainRecord] = field(default_factory=list)
    failures: List[RecordFailure] = field(default_factory=list)
    error: Optional[TraebelerError] = None

    @property
    def aborted(self) -> bool:
        return self.error is not None

    @property
    def ok(self) -> bool:
        return not self.aborted and not self.failures


class Reconciler:
    """Keeps zone entries of the requested domains pointed at the public IP."""

    def __init__(
        self,
        *,
        ip_resolver: IPResolver,
        zone_repository: ZoneRepository,
        existence_checker: ExistenceChecker,
        identifier: str,
        max_workers: int = DEFAULT_MAX_WORKERS,
        cache: Optional[ReconciliationCache] = None,
    ):
        if max_workers < 1:
            raise ValueError("max_workers must be at least 1")
        self._ip_resolver = ip_resolver
        self._repository = zone_repository
        self._checker = existence_checker
        self._identifier = identifier
        self._max_workers = max_workers
        self._cache = cache if cache is not None else ReconciliationCache()

    def identifier(self) -> str:
        return self._identifier

    @property
    def cache(self) -> ReconciliationCache:
        return self._cache

    def process(self, domains: Sequence[str]) -> None:
        """Run one pass and log its outcome. Errors are never raised."""
        result = self.reconcile(domains)
        if result.aborted:
            logger.error(f"Reconciliation pass aborted: {result.error}")
            return
        if result.failures:
            logger.error(
                f"{len(result.failures)} record(s) failed to synchronize: "
                f"{'; '.join(str(f) for f in result.failures)}"
            )
        logger.info(
            f"Reconciliation pass finished: {len(result.carried_forward)} unchanged, "
            f"{len(result.synchronized)} synchronized, {len(result.failures)} failed"
        )

    def reconcile(self, domains: Sequence[str]) -> PassResult:
        """Run one pass and return what happened."""
        logger.info(
            f"{self._identifier} processor received {len(domains)} domain(s): {list(domains)}"
        )

        try:
            ip = self._ip_resolver.resolve_ipv4()
        except TraebelerError as e:
            logger.error(f"Failed to get IPv4 address from provider: {e}")
            return PassResult(error=e)

        try:
            carried, required = diff_cache(self._cache, domains, ip)
        except TraebelerError as e:
            logger.error(f"Failed to update cache based on domains: {e}")
            return PassResult(ip=ip, error=e)

        logger.info(f"Identified {len(required)} record(s) which require an update to {ip}")
        synchronized, failures = self._synchronize_all(required, ip)

        self._cache.replace(carried + synchronized)
        return PassResult(
            ip=ip,
            carried_forward=carried,
            synchronized=synchronized,
            failures=failures,
        )

    def _synchronize_all(
        self, records: List[DomainRecord], ip: str
    ) -> Tuple[List[DomainRecord], List[RecordFailure]]:
        """Synchronize every record in its own task and wait for all of them."""
        if not records:
            return [], []

        outcomes: Dict[int, DomainRecord] = {}
        failures: List[RecordFailure] = []

        workers = min(self._max_workers, len(records))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="traebeler-sync") as executor:
            futures = {}
            for index, rec in enumerate(records):
                future = executor.submit(synchronize_record, self._repository, self._checker, rec, ip)
                futures[future] = (index, rec)
            for future in as_completed(futures):
                index, rec = futures[future]
                fqdn = rec.fully_qualified_name()
                try:
                    outcomes[index] = future.result()
                except RecordSyncError as e:
                    logger.error(f"Failed synchronizing record '{fqdn}': {e}")
                    failures.append(RecordFailure(fqdn=fqdn, error=e))
                except Exception as e:
                    logger.error(f"Unexpected error synchronizing record '{fqdn}': {e}", exc_info=True)
                    failures.append(RecordFailure(fqdn=fqdn, error=e))

        synchronized = [outcomes[i] for i in sorted(outcomes)]
        failures.sort(key=lambda f: f.fqdn)
        return synchronized, failures
