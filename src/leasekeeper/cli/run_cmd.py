"""CLI command for running a candidate process.

Usage:
    leasekeeper run
    leasekeeper run --election-id dns-election --lease-duration 15
    leasekeeper run --store redis --log-level debug

Identity and namespace come from POD_NAME and POD_NAMESPACE unless given
with --identity and --namespace.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import typer
from pydantic import ValidationError

from leasekeeper.config import Settings
from leasekeeper.observability.logging import LogContext, configure_logging
from leasekeeper.observability.metrics import ElectionMetrics
from leasekeeper.store.base import StoreError
from leasekeeper.store.factory import create_store
from leasekeeper.supervisor import Supervisor

logger = logging.getLogger(__name__)

app = typer.Typer(help="Take part in the leader election")


def load_settings(**overrides: Any) -> Settings:
    """Build settings from the environment, with non-None overrides applied.

    Raises:
        typer.Exit: With code 1 if the configuration is invalid or incomplete
    """
    given = {key: value for key, value in overrides.items() if value is not None}
    try:
        return Settings(**given)
    except ValidationError as e:
        typer.echo(f"Invalid configuration: {e}", err=True)
        raise typer.Exit(code=1) from e


@app.callback(invoke_without_command=True)
def run(
    identity: str | None = typer.Option(
        None,
        "--identity",
        help="Candidate identity (default: $POD_NAME)",
    ),
    namespace: str | None = typer.Option(
        None,
        "--namespace",
        "-n",
        help="Namespace/scope of the election (default: $POD_NAMESPACE)",
    ),
    election_id: str | None = typer.Option(
        None,
        "--election-id",
        help="Lease name",
    ),
    lease_duration: float | None = typer.Option(
        None,
        "--lease-duration",
        help="Lease duration in seconds",
    ),
    renew_deadline: float | None = typer.Option(
        None,
        "--renew-deadline",
        help="Seconds the leader may keep failing to renew before stepping down",
    ),
    retry_period: float | None = typer.Option(
        None,
        "--retry-period",
        help="Seconds between acquisition and renewal attempts",
    ),
    marker_key: str | None = typer.Option(
        None,
        "--marker-key",
        help="Marker key set on the leader",
    ),
    marker_value: str | None = typer.Option(
        None,
        "--marker-value",
        help="Marker value set on the leader",
    ),
    status_record: str | None = typer.Option(
        None,
        "--status-record",
        help="Record that publishes the leader identity",
    ),
    reconcile_period: float | None = typer.Option(
        None,
        "--reconcile-period",
        help="Seconds between marker reconciliation passes while leading",
    ),
    store_backend: str | None = typer.Option(
        None,
        "--store",
        "-s",
        help="Object store backend: kubernetes, redis, memory",
    ),
    log_level: str | None = typer.Option(
        None,
        "--log-level",
        "-l",
        help="Log level: debug, info, warning, error",
    ),
) -> None:
    """Run the election until SIGTERM/SIGINT.

    Exits with code 1 if the configuration is incomplete or the object store
    client cannot be built. Store errors after startup are logged and retried.
    """
    settings = load_settings(
        identity=identity,
        namespace=namespace,
        election_id=election_id,
        lease_duration=lease_duration,
        renew_deadline=renew_deadline,
        retry_period=retry_period,
        marker_key=marker_key,
        marker_value=marker_value,
        status_record=status_record,
        reconcile_period=reconcile_period,
        store_backend=store_backend,
        log_level=log_level,
    )
    configure_logging(json_format=settings.log_json, level=settings.log_level)

    try:
        store = create_store(settings)
    except (StoreError, ValueError) as e:
        logger.critical(f"Cannot create {settings.store_backend} store client: {e}")
        raise typer.Exit(code=1) from e

    metrics: ElectionMetrics | None = None
    if settings.enable_metrics:
        metrics = ElectionMetrics()
        metrics.serve(settings.metrics_port)

    supervisor = Supervisor.from_settings(settings, store, metrics=metrics)
    with LogContext(identity=settings.identity, election=settings.election_id):
        asyncio.run(supervisor.run())
