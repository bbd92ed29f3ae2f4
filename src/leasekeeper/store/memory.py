"""In-memory object store.

Suitable for single-process runs and tests. Several election engines can
share one instance to simulate a cluster of candidates.
"""

from __future__ import annotations

from collections.abc import AsyncIterator

from leasekeeper.store.base import ConflictError, Lease, NotFoundError, ObjectStore


class InMemoryObjectStore(ObjectStore):
    """Object store backed by plain dictionaries.

    Versions are a per-object write counter rendered as a string.
    """

    def __init__(self) -> None:
        self._leases: dict[str, tuple[Lease, int]] = {}
        self._records: dict[str, tuple[dict[str, str], int]] = {}
        self._markers: dict[str, dict[str, str]] = {}
        self.write_count = 0

    async def get_lease(self, name: str) -> tuple[Lease, str]:
        if name not in self._leases:
            raise NotFoundError(f"lease {name!r} not found")
        lease, version = self._leases[name]
        return lease, str(version)

    async def compare_and_swap_lease(
        self,
        name: str,
        lease: Lease,
        expected_version: str | None,
    ) -> str:
        current = self._leases.get(name)
        if expected_version is None:
            if current is not None:
                raise ConflictError(f"lease {name!r} already exists")
            next_version = 1
        else:
            if current is None:
                raise ConflictError(f"lease {name!r} does not exist")
            if str(current[1]) != expected_version:
                raise ConflictError(
                    f"lease {name!r} version {expected_version} is stale (current {current[1]})"
                )
            next_version = current[1] + 1

        self._leases[name] = (lease, next_version)
        self.write_count += 1
        return str(next_version)

    async def list_candidates_by_marker(self, key: str, value: str) -> AsyncIterator[str]:
        # Snapshot so callers may clear markers while iterating
        matches = [
            identity
            for identity, markers in self._markers.items()
            if markers.get(key) == value
        ]
        for identity in matches:
            yield identity

    async def set_candidate_marker(self, identity: str, key: str, value: str | None) -> None:
        markers = self._markers.setdefault(identity, {})
        if value is None:
            markers.pop(key, None)
        else:
            markers[key] = value
        self.write_count += 1

    def markers_of(self, identity: str) -> dict[str, str]:
        """Return a copy of the markers carried by a candidate."""
        return dict(self._markers.get(identity, {}))

    async def get_record(self, name: str) -> tuple[dict[str, str], str]:
        if name not in self._records:
            raise NotFoundError(f"record {name!r} not found")
        fields, version = self._records[name]
        return dict(fields), str(version)

    async def create_record(self, name: str, fields: dict[str, str]) -> None:
        if name in self._records:
            raise ConflictError(f"record {name!r} already exists")
        self._records[name] = (dict(fields), 1)
        self.write_count += 1

    async def update_record(self, name: str, fields: dict[str, str], version: str) -> None:
        if name not in self._records:
            raise NotFoundError(f"record {name!r} not found")
        current_version = self._records[name][1]
        if str(current_version) != version:
            raise ConflictError(
                f"record {name!r} version {version} is stale (current {current_version})"
            )
        self._records[name] = (dict(fields), current_version + 1)
        self.write_count += 1
