"""Observability module for leasekeeper.

Provides metrics and structured logging:
- Prometheus metrics for leadership and reconciliation
- JSON structured logging with election context
"""

from leasekeeper.observability.logging import (
    LogContext,
    configure_logging,
    election_var,
    identity_var,
)
from leasekeeper.observability.metrics import ElectionMetrics

__all__ = [
    # Logging
    "configure_logging",
    "LogContext",
    "identity_var",
    "election_var",
    # Metrics
    "ElectionMetrics",
]
