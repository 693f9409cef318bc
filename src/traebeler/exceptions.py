"""Errors raised while reconciling DNS zone records.

Pass-level errors (MalformedDomain, IPResolutionFailed) abort a whole
reconciliation pass. Everything else is record-level: the affected record is
skipped and retried on the next pass.
"""

from __future__ import annotations


class TraebelerError(Exception):
    """Base class for all errors raised by traebeler."""


class RemoteAPIError(TraebelerError):
    """Raised by HTTP adapters when a remote call fails.

    Covers transport errors, unexpected HTTP status codes, undecodable
    bodies and API-level status codes embedded in an otherwise valid body.
    """


class MalformedDomain(TraebelerError):
    """A hostname could not be split into apex and label."""

    def __init__(self, domain: str, reason: str = "no registrable domain found"):
        super().__init__(f"domain '{domain}' is malformed: {reason}")
        self.domain = domain


class IPResolutionFailed(TraebelerError):
    """The public IPv4 address of the host could not be determined."""


class RecordSyncError(TraebelerError):
    """Base class for errors that only affect a single record."""

    def __init__(self, fqdn: str, message: str):
        super().__init__(message)
        self.fqdn = fqdn


class AmbiguousZoneState(RecordSyncError):
    """More than one zone entry exists for one (apex, label) pair.

    This is never repaired automatically. An operator has to clean up the
    zone by hand.
    """

    def __init__(self, fqdn: str, entries: list):
        super().__init__(
            fqdn,
            f"multiple lookup results ({len(entries)}) for existing record entries "
            f"of domain '{fqdn}', please verify manually",
        )
        self.entries = list(entries)


class ZoneLookupFailed(RecordSyncError):
    pass


class ZoneMutationFailed(RecordSyncError):
    """Adding or deleting a zone entry failed.

    The remote zone may be left without an entry for the name until the
    next successful pass.
    """


class DomainRequiresManualRegistration(RecordSyncError):
    """A bare apex domain is missing remotely and cannot be created by us."""

    def __init__(self, fqdn: str):
        super().__init__(
            fqdn,
            f"domain '{fqdn}' does not exist and has no subdomain that can be used "
            f"for creation, it has to be registered by an administrator",
        )


class ExistenceCheckFailed(RecordSyncError):
    pass


class SubdomainRegistrationFailed(RecordSyncError):
    pass
