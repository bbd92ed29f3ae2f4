"""Distributed coordination for leasekeeper.

Provides:
- Lease-based leader election
- Reconciliation of leader markers onto the lease holder
- Publishing the leader identity to a shared status record

Example:
    from leasekeeper.distributed import ElectionConfig, ElectionEngine

    engine = ElectionEngine(store, ElectionConfig(name="my-election", identity="pod-a"))
    await engine.run(on_became_leader, on_lost_leadership)
"""

from leasekeeper.distributed.election import (
    ElectionConfig,
    ElectionEngine,
    ElectionState,
    EventKind,
    LeadershipEvent,
    LeadershipHandler,
)
from leasekeeper.distributed.reconciler import MarkerReconciler, ReconcileResult
from leasekeeper.distributed.status import StatusPublisher

__all__ = [
    "ElectionConfig",
    "ElectionEngine",
    "ElectionState",
    "EventKind",
    "LeadershipEvent",
    "LeadershipHandler",
    "MarkerReconciler",
    "ReconcileResult",
    "StatusPublisher",
]
