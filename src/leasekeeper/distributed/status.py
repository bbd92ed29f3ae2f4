"""Publishes the current leader into a shared status record.

Consumers outside the election read the record to find the leader. The
publisher owns a single field and leaves the rest of the record alone.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from leasekeeper.store.base import NotFoundError, ObjectStore, StoreError

if TYPE_CHECKING:
    from leasekeeper.config import Settings
    from leasekeeper.observability.metrics import ElectionMetrics

logger = logging.getLogger(__name__)

DEFAULT_FIELD = "leaderIdentity"


class StatusPublisher:
    """Upserts the leader identity into a named record.

    Each publish() makes exactly one attempt. A stale record is corrected by
    the next transition, never by retrying here.
    """

    def __init__(
        self,
        store: ObjectStore,
        record_name: str,
        field_name: str = DEFAULT_FIELD,
        metrics: ElectionMetrics | None = None,
    ):
        self.store = store
        self.record_name = record_name
        self.field_name = field_name
        self.metrics = metrics

    @classmethod
    def from_settings(
        cls,
        store: ObjectStore,
        settings: Settings,
        metrics: ElectionMetrics | None = None,
    ) -> "StatusPublisher":
        return cls(
            store,
            record_name=settings.status_record,
            field_name=settings.status_field,
            metrics=metrics,
        )

    async def publish(self, leader_identity: str) -> bool:
        """Set the leader field to `leader_identity` ("" clears it).

        Returns:
            True if the record was written, False if the attempt failed
        """
        try:
            await self._upsert(leader_identity)
        except StoreError as e:
            logger.error(
                f"Failed to publish leader {leader_identity or '<none>'} "
                f"to {self.record_name}: {e!r}"
            )
            self._count("error")
            return False

        logger.info(f"Published leader {leader_identity or '<none>'} to {self.record_name}")
        self._count("ok")
        return True

    async def _upsert(self, leader_identity: str) -> None:
        try:
            fields, version = await self.store.get_record(self.record_name)
        except NotFoundError:
            await self.store.create_record(self.record_name, {self.field_name: leader_identity})
            return

        fields[self.field_name] = leader_identity
        await self.store.update_record(self.record_name, fields, version)

    def _count(self, result: str) -> None:
        if self.metrics is not None:
            self.metrics.status_publish_total.labels(result=result).inc()
