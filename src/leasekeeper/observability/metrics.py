"""Prometheus metrics for leasekeeper.

Provides metrics for the election and the marker/status side effects:
- Leadership state and transitions
- Lease renewal outcomes
- Stale markers removed by reconciliation
- Status record publish outcomes

Usage:
    metrics = ElectionMetrics()
    metrics.is_leader.set(1)
    metrics.serve(9090)  # Expose /metrics over HTTP
"""

from __future__ import annotations

import logging

from prometheus_client import CollectorRegistry, Counter, Gauge, start_http_server

logger = logging.getLogger(__name__)


class ElectionMetrics:
    """Prometheus metrics on a private registry.

    Each instance owns its registry, so several instances (one per test, or
    several engines in one process) never collide on metric names.
    """

    def __init__(self, registry: CollectorRegistry | None = None) -> None:
        self.registry = registry or CollectorRegistry()

        self.is_leader = Gauge(
            "leasekeeper_is_leader",
            "1 while this process holds the lease",
            registry=self.registry,
        )
        self.leader_transitions_total = Counter(
            "leasekeeper_leader_transitions_total",
            "Leadership transitions observed by this process",
            ["kind"],
            registry=self.registry,
        )
        self.lease_renewals_total = Counter(
            "leasekeeper_lease_renewals_total",
            "Lease renewal attempts",
            ["result"],
            registry=self.registry,
        )
        self.markers_removed_total = Counter(
            "leasekeeper_markers_removed_total",
            "Stale leader markers removed by reconciliation",
            registry=self.registry,
        )
        self.reconcile_failures_total = Counter(
            "leasekeeper_reconcile_failures_total",
            "Reconciliation passes or marker writes that failed",
            registry=self.registry,
        )
        self.status_publish_total = Counter(
            "leasekeeper_status_publish_total",
            "Status record publish attempts",
            ["result"],
            registry=self.registry,
        )

    def serve(self, port: int, addr: str = "0.0.0.0") -> None:  # nosec B104
        """Expose the registry over HTTP on a background thread."""
        start_http_server(port, addr=addr, registry=self.registry)
        logger.info(f"Serving metrics on {addr}:{port}")
