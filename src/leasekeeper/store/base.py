"""Base cluster object store interface.

Defines the records the election works on and the abstract interface every
store backend implements. All writes to the lease and to status records are
version checked: a write carrying a stale version raises ConflictError.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from dataclasses import dataclass, replace
from datetime import datetime


class StoreError(Exception):
    """Base error for object store operations.

    Store errors are transient from the election's point of view: they are
    logged and retried on the next scheduled attempt.
    """


class ConflictError(StoreError):
    """A version-checked write lost against a concurrent writer."""


class NotFoundError(StoreError):
    """The requested object does not exist."""


@dataclass(frozen=True)
class Lease:
    """The lease record backing one election domain."""

    holder_identity: str = ""
    lease_duration_seconds: float = 15.0
    renew_time: datetime | None = None
    acquire_time: datetime | None = None
    leader_transitions: int = 0

    def is_expired(self, now: datetime) -> bool:
        """Check whether the lease is free for anyone to take at `now`."""
        if not self.holder_identity or self.renew_time is None:
            return True
        return (now - self.renew_time).total_seconds() > self.lease_duration_seconds

    def is_held_by(self, identity: str, now: datetime) -> bool:
        """Check whether `identity` holds a lease that has not expired."""
        return self.holder_identity == identity and not self.is_expired(now)

    def acquired_by(self, identity: str, now: datetime, duration: float) -> Lease:
        """Return the lease as written by a successful acquisition."""
        return replace(
            self,
            holder_identity=identity,
            lease_duration_seconds=duration,
            renew_time=now,
            acquire_time=now,
            leader_transitions=self.leader_transitions + 1,
        )

    def renewed(self, now: datetime) -> Lease:
        """Return the lease with a fresh renew time."""
        return replace(self, renew_time=now)

    def released(self) -> Lease:
        """Return the lease with the holder cleared."""
        return replace(self, holder_identity="")


class ObjectStore(ABC):
    """Abstract base class for cluster object store backends."""

    # -------------------------------------------------------------------------
    # Leases
    # -------------------------------------------------------------------------

    @abstractmethod
    async def get_lease(self, name: str) -> tuple[Lease, str]:
        """Read a lease.

        Returns:
            Tuple of (lease, version token)

        Raises:
            NotFoundError: If the lease does not exist
        """
        ...

    @abstractmethod
    async def compare_and_swap_lease(
        self,
        name: str,
        lease: Lease,
        expected_version: str | None,
    ) -> str:
        """Write a lease if its version still matches.

        Args:
            name: Lease name
            lease: New lease contents
            expected_version: Version read before the write, or None to
                create a lease that must not exist yet

        Returns:
            The new version token

        Raises:
            ConflictError: If the version is stale or the lease already exists
        """
        ...

    # -------------------------------------------------------------------------
    # Candidate markers
    # -------------------------------------------------------------------------

    @abstractmethod
    def list_candidates_by_marker(self, key: str, value: str) -> AsyncIterator[str]:
        """List identities of candidates carrying `key=value`.

        Every call starts a fresh listing.

        Yields:
            Candidate identities
        """
        ...

    @abstractmethod
    async def set_candidate_marker(self, identity: str, key: str, value: str | None) -> None:
        """Set the marker `key` on a candidate, or clear it when value is None."""
        ...

    # -------------------------------------------------------------------------
    # Shared key/value records
    # -------------------------------------------------------------------------

    @abstractmethod
    async def get_record(self, name: str) -> tuple[dict[str, str], str]:
        """Read a record.

        Returns:
            Tuple of (fields, version token)

        Raises:
            NotFoundError: If the record does not exist
        """
        ...

    @abstractmethod
    async def create_record(self, name: str, fields: dict[str, str]) -> None:
        """Create a record.

        Raises:
            ConflictError: If the record already exists
        """
        ...

    @abstractmethod
    async def update_record(self, name: str, fields: dict[str, str], version: str) -> None:
        """Replace a record's fields if its version still matches.

        Raises:
            ConflictError: If the version is stale
            NotFoundError: If the record was deleted
        """
        ...

    async def close(self) -> None:
        """Release client resources."""
        return None
