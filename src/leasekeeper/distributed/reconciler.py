"""Leader marker reconciliation.

Several writers touch candidate markers without coordinating: every leader
sets its own marker, a crashed leader never clears its own, and two leaders
can briefly overlap around a hand-off. The reconciler repairs this by removing
the marker from every candidate that is not the lease holder, so at most one
candidate stays marked within one reconciliation period.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from leasekeeper.store.base import NotFoundError, ObjectStore, StoreError

if TYPE_CHECKING:
    from leasekeeper.config import Settings
    from leasekeeper.observability.metrics import ElectionMetrics

logger = logging.getLogger(__name__)


@dataclass
class ReconcileResult:
    """Outcome of one reconciliation pass."""

    holder: str
    removed: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    # True when the pass could not run at all (listing or lease read failed)
    skipped: bool = False


class MarkerReconciler:
    """Converges candidate markers onto the current lease holder.

    Args:
        store: Object store holding the candidates and the lease
        election_name: Lease name whose holder is the ground truth
        marker_key: Marker key set on the leader
        marker_value: Marker value set on the leader
        period: Seconds between passes of run_periodic()
    """

    def __init__(
        self,
        store: ObjectStore,
        election_name: str,
        marker_key: str,
        marker_value: str = "true",
        period: float = 5.0,
        metrics: ElectionMetrics | None = None,
    ):
        self.store = store
        self.election_name = election_name
        self.marker_key = marker_key
        self.marker_value = marker_value
        self.period = period
        self.metrics = metrics

    @classmethod
    def from_settings(
        cls,
        store: ObjectStore,
        settings: Settings,
        metrics: ElectionMetrics | None = None,
    ) -> "MarkerReconciler":
        return cls(
            store,
            election_name=settings.election_id,
            marker_key=settings.marker_key,
            marker_value=settings.marker_value,
            period=settings.reconcile_period,
            metrics=metrics,
        )

    async def reconcile(self, current_holder: str) -> ReconcileResult:
        """Clear the marker on every marked candidate other than `current_holder`.

        Candidates without the marker are never written, so a second pass
        with nothing changed in between performs no writes. One candidate's
        failure does not stop the others.
        """
        result = ReconcileResult(holder=current_holder)

        try:
            marked = [
                identity
                async for identity in self.store.list_candidates_by_marker(
                    self.marker_key, self.marker_value
                )
            ]
        except StoreError as e:
            logger.warning(f"Skipping reconciliation, cannot list marked candidates: {e!r}")
            result.skipped = True
            self._count_failure()
            return result

        for identity in marked:
            if identity == current_holder:
                continue
            try:
                await self.store.set_candidate_marker(identity, self.marker_key, None)
            except StoreError as e:
                logger.warning(f"Failed to remove stale leader marker from {identity}: {e!r}")
                result.failed.append(identity)
                self._count_failure()
            else:
                logger.info(
                    f"Removed stale leader marker from {identity} "
                    f"(holder={current_holder or '<none>'})"
                )
                result.removed.append(identity)
                if self.metrics is not None:
                    self.metrics.markers_removed_total.inc()

        return result

    async def reconcile_to_lease_holder(self) -> ReconcileResult:
        """Read the live lease holder and reconcile markers against it."""
        try:
            lease, _ = await self.store.get_lease(self.election_name)
            holder = lease.holder_identity
        except NotFoundError:
            holder = ""
        except StoreError as e:
            logger.warning(f"Skipping reconciliation, cannot read lease holder: {e!r}")
            self._count_failure()
            return ReconcileResult(holder="", skipped=True)

        return await self.reconcile(holder)

    async def run_periodic(self) -> None:
        """Reconcile against the live lease holder every period until cancelled."""
        logger.debug(f"Starting periodic reconciliation every {self.period}s")
        while True:
            await asyncio.sleep(self.period)
            try:
                await self.reconcile_to_lease_holder()
            except Exception:
                logger.exception("Unexpected error during reconciliation")

    async def mark(self, identity: str) -> bool:
        """Set the leader marker on `identity`."""
        return await self._set(identity, self.marker_value)

    async def unmark(self, identity: str) -> bool:
        """Clear the leader marker on `identity`."""
        return await self._set(identity, None)

    async def _set(self, identity: str, value: str | None) -> bool:
        action = "set" if value is not None else "clear"
        try:
            await self.store.set_candidate_marker(identity, self.marker_key, value)
        except StoreError as e:
            logger.error(f"Failed to {action} leader marker on {identity}: {e!r}")
            self._count_failure()
            return False
        logger.info(f"Leader marker {self.marker_key} {action} on {identity}")
        return True

    def _count_failure(self) -> None:
        if self.metrics is not None:
            self.metrics.reconcile_failures_total.inc()
