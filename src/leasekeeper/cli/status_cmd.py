"""CLI command for inspecting the election.

Usage:
    leasekeeper status
    leasekeeper status --election-id dns-election --format json
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Any

import typer

from leasekeeper.cli.run_cmd import load_settings
from leasekeeper.config import Settings
from leasekeeper.store.base import NotFoundError, ObjectStore, StoreError
from leasekeeper.store.factory import create_store

app = typer.Typer(help="Show the lease holder and the published leader")


async def collect_status(store: ObjectStore, settings: Settings) -> dict[str, Any]:
    """Read the lease, the status record, and the marked candidates once."""
    now = datetime.now(timezone.utc)
    status: dict[str, Any] = {
        "election": settings.election_id,
        "holder": None,
        "renewTime": None,
        "leaderTransitions": None,
        "expired": None,
        "publishedLeader": None,
        "markedCandidates": [],
    }

    try:
        lease, _ = await store.get_lease(settings.election_id)
    except NotFoundError:
        pass
    else:
        status["holder"] = lease.holder_identity
        status["renewTime"] = lease.renew_time.isoformat() if lease.renew_time else None
        status["leaderTransitions"] = lease.leader_transitions
        status["expired"] = lease.is_expired(now)

    try:
        fields, _ = await store.get_record(settings.status_record)
    except NotFoundError:
        pass
    else:
        status["publishedLeader"] = fields.get(settings.status_field)

    status["markedCandidates"] = [
        identity
        async for identity in store.list_candidates_by_marker(
            settings.marker_key, settings.marker_value
        )
    ]
    return status


async def _read(settings: Settings) -> dict[str, Any]:
    store = create_store(settings)
    try:
        return await collect_status(store, settings)
    finally:
        await store.close()


@app.callback(invoke_without_command=True)
def status(
    election_id: str | None = typer.Option(
        None,
        "--election-id",
        help="Lease name",
    ),
    namespace: str | None = typer.Option(
        None,
        "--namespace",
        "-n",
        help="Namespace/scope of the election (default: $POD_NAMESPACE)",
    ),
    store_backend: str | None = typer.Option(
        None,
        "--store",
        "-s",
        help="Object store backend: kubernetes, redis, memory",
    ),
    output_format: str = typer.Option(
        "text",
        "--format",
        "-f",
        help="Output format: text, json",
    ),
) -> None:
    """Show the current lease holder, published leader, and marked candidates."""
    import json

    from rich.console import Console
    from rich.table import Table

    # Inspection does not need a candidate identity of its own
    settings = load_settings(
        identity="leasekeeper-status",
        namespace=namespace,
        election_id=election_id,
        store_backend=store_backend,
    )

    try:
        result = asyncio.run(_read(settings))
    except StoreError as e:
        typer.echo(f"Cannot read election state: {e}", err=True)
        raise typer.Exit(code=1) from e

    if output_format == "json":
        typer.echo(json.dumps(result, indent=2))
        return

    console = Console()
    table = Table(title=f"Election {settings.election_id}")
    table.add_column("Field")
    table.add_column("Value")
    for key, value in result.items():
        if isinstance(value, list):
            value = ", ".join(value) or "-"
        table.add_row(key, "-" if value is None or value == "" else str(value))
    console.print(table)

    if result["holder"] and result["markedCandidates"] not in ([], [result["holder"]]):
        console.print("[yellow]Warning:[/yellow] markers have not converged on the lease holder")
