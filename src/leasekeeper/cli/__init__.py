"""CLI commands for leasekeeper.

Provides command-line interface using Typer:
- leasekeeper run: Take part in the election as one candidate
- leasekeeper status: Show the lease holder and the published leader

Usage:
    leasekeeper --help
    leasekeeper run --election-id dns-election
    leasekeeper status --format json
"""

import typer

from leasekeeper.cli.run_cmd import app as run_app
from leasekeeper.cli.status_cmd import app as status_app

# Main CLI application
app = typer.Typer(
    name="leasekeeper",
    help="leasekeeper: lease-based leader election with self-healing leader markers",
    no_args_is_help=True,
)

app.add_typer(run_app, name="run")
app.add_typer(status_app, name="status")


@app.callback()
def callback() -> None:
    """leasekeeper: lease-based leader election with self-healing leader markers."""
    pass


def main() -> None:
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
