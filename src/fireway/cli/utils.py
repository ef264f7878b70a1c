"""
CLI output helpers.
"""

from __future__ import annotations

import json

from rich.console import Console

from fireway.errors import FirewayError
from fireway.stats import RunStats

console = Console()
err_console = Console(stderr=True)


def output_stats(stats: RunStats, *, as_json: bool = False, dry_run: bool = False) -> None:
    """Render the run summary to the terminal."""
    if as_json:
        console.print_json(json.dumps({**stats.to_dict(), "dry_run": dry_run}))
        return

    prefix = "[yellow](dry run)[/yellow] " if dry_run else ""
    console.print(f"{prefix}[green]{stats.summary()}[/green]")


def output_error(error: FirewayError) -> None:
    """Render an aborted run to stderr."""
    err_console.print(
        f"[bold red]Error[/bold red] ({error.category.value}): {error.message}"
    )
    context = error.context.to_dict()
    for key, value in context.items():
        err_console.print(f"  [cyan]{key}[/cyan]: {value}")
