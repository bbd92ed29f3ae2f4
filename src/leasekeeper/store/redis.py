"""Redis object store.

Keeps leases and shared records as hashes holding an orjson document and an
integer version. Version-checked writes run as Lua scripts so the compare and
the write are atomic on the server.

Key layout (with the default "leasekeeper:" prefix):
    leasekeeper:lease:{name}            hash {doc, version}
    leasekeeper:record:{name}           hash {doc, version}
    leasekeeper:candidate:{identity}    hash {marker key: marker value}
    leasekeeper:marker:{key}={value}    set of candidate identities
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Awaitable
from datetime import datetime
from typing import TYPE_CHECKING, Any, cast

import orjson
import redis.asyncio as redis
from redis.exceptions import RedisError

from leasekeeper.store.base import ConflictError, Lease, NotFoundError, ObjectStore, StoreError

if TYPE_CHECKING:
    from redis.asyncio import Redis

logger = logging.getLogger(__name__)

DEFAULT_KEY_PREFIX = "leasekeeper:"

# Returns the new version, 0 on version mismatch, -1 when the object is missing.
# ARGV[1] is the expected version, or "" to create an object that must not exist.
_COMPARE_AND_SWAP = """
local current = redis.call("HGET", KEYS[1], "version")
if ARGV[1] == "" then
    if current then
        return 0
    end
elseif not current then
    return -1
elseif current ~= ARGV[1] then
    return 0
end
local next_version = (tonumber(current) or 0) + 1
redis.call("HSET", KEYS[1], "doc", ARGV[2], "version", next_version)
return next_version
"""

# Moves a candidate between marker index sets. ARGV[3] == "" clears the marker.
_SET_MARKER = """
local old = redis.call("HGET", KEYS[1], ARGV[2])
if old then
    redis.call("SREM", ARGV[4] .. ARGV[2] .. "=" .. old, ARGV[1])
end
if ARGV[3] == "" then
    redis.call("HDEL", KEYS[1], ARGV[2])
else
    redis.call("HSET", KEYS[1], ARGV[2], ARGV[3])
    redis.call("SADD", ARGV[4] .. ARGV[2] .. "=" .. ARGV[3], ARGV[1])
end
return 1
"""


def _decode(value: bytes | str) -> str:
    return value.decode() if isinstance(value, bytes) else value


def _parse_time(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


def _lease_to_doc(lease: Lease) -> bytes:
    return orjson.dumps(
        {
            "holderIdentity": lease.holder_identity,
            "leaseDurationSeconds": lease.lease_duration_seconds,
            "renewTime": lease.renew_time,
            "acquireTime": lease.acquire_time,
            "leaderTransitions": lease.leader_transitions,
        }
    )


def _lease_from_doc(doc: bytes) -> Lease:
    data = orjson.loads(doc)
    return Lease(
        holder_identity=data.get("holderIdentity") or "",
        lease_duration_seconds=float(data.get("leaseDurationSeconds", 0)),
        renew_time=_parse_time(data.get("renewTime")),
        acquire_time=_parse_time(data.get("acquireTime")),
        leader_transitions=int(data.get("leaderTransitions", 0)),
    )


class RedisObjectStore(ObjectStore):
    """Object store on a single Redis instance.

    Example:
        store = RedisObjectStore.from_url("redis://localhost:6379/0")
        lease, version = await store.get_lease("my-election")
    """

    def __init__(self, client: Redis, key_prefix: str = DEFAULT_KEY_PREFIX):
        self.client = client
        self.key_prefix = key_prefix

    @classmethod
    def from_url(cls, url: str, key_prefix: str = DEFAULT_KEY_PREFIX) -> "RedisObjectStore":
        """Create a store with a pooled client for `url`."""
        client = redis.from_url(  # type: ignore[no-untyped-call]
            url,
            encoding="utf-8",
            decode_responses=False,
        )
        return cls(client, key_prefix=key_prefix)

    def _lease_key(self, name: str) -> str:
        return f"{self.key_prefix}lease:{name}"

    def _record_key(self, name: str) -> str:
        return f"{self.key_prefix}record:{name}"

    def _candidate_key(self, identity: str) -> str:
        return f"{self.key_prefix}candidate:{identity}"

    def _marker_index_prefix(self) -> str:
        return f"{self.key_prefix}marker:"

    async def _read_versioned(self, key: str, kind: str) -> tuple[bytes, str]:
        try:
            doc, version = await cast(
                Awaitable[list[Any]],
                self.client.hmget(key, ["doc", "version"]),
            )
        except RedisError as e:
            raise StoreError(f"read {kind} {key}: {e}") from e
        if doc is None or version is None:
            raise NotFoundError(f"{kind} {key} not found")
        return doc, _decode(version)

    async def _compare_and_swap(
        self, key: str, doc: bytes, expected_version: str | None, kind: str
    ) -> str:
        try:
            result = await cast(
                Awaitable[int],
                self.client.eval(_COMPARE_AND_SWAP, 1, key, expected_version or "", doc),
            )
        except RedisError as e:
            raise StoreError(f"write {kind} {key}: {e}") from e

        if result == -1:
            raise NotFoundError(f"{kind} {key} not found")
        if result == 0:
            if expected_version is None:
                raise ConflictError(f"{kind} {key} already exists")
            raise ConflictError(f"{kind} {key} version {expected_version} is stale")
        return str(result)

    # -------------------------------------------------------------------------
    # Leases
    # -------------------------------------------------------------------------

    async def get_lease(self, name: str) -> tuple[Lease, str]:
        doc, version = await self._read_versioned(self._lease_key(name), "lease")
        return _lease_from_doc(doc), version

    async def compare_and_swap_lease(
        self,
        name: str,
        lease: Lease,
        expected_version: str | None,
    ) -> str:
        try:
            return await self._compare_and_swap(
                self._lease_key(name), _lease_to_doc(lease), expected_version, "lease"
            )
        except NotFoundError as e:
            # Swapping against a vanished lease is a lost race, not a missing object
            raise ConflictError(str(e)) from e

    # -------------------------------------------------------------------------
    # Candidate markers
    # -------------------------------------------------------------------------

    async def list_candidates_by_marker(self, key: str, value: str) -> AsyncIterator[str]:
        index_key = f"{self._marker_index_prefix()}{key}={value}"
        try:
            async for member in self.client.sscan_iter(index_key):
                yield _decode(member)
        except RedisError as e:
            raise StoreError(f"list candidates {key}={value}: {e}") from e

    async def set_candidate_marker(self, identity: str, key: str, value: str | None) -> None:
        try:
            await cast(
                Awaitable[int],
                self.client.eval(
                    _SET_MARKER,
                    1,
                    self._candidate_key(identity),
                    identity,
                    key,
                    value or "",
                    self._marker_index_prefix(),
                ),
            )
        except RedisError as e:
            raise StoreError(f"set marker {key} on {identity}: {e}") from e

    # -------------------------------------------------------------------------
    # Shared key/value records
    # -------------------------------------------------------------------------

    async def get_record(self, name: str) -> tuple[dict[str, str], str]:
        doc, version = await self._read_versioned(self._record_key(name), "record")
        return dict(orjson.loads(doc)), version

    async def create_record(self, name: str, fields: dict[str, str]) -> None:
        await self._compare_and_swap(self._record_key(name), orjson.dumps(fields), None, "record")

    async def update_record(self, name: str, fields: dict[str, str], version: str) -> None:
        await self._compare_and_swap(
            self._record_key(name), orjson.dumps(fields), version, "record"
        )

    async def close(self) -> None:
        await self.client.aclose()
