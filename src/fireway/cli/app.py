"""
Root Typer application for the fireway CLI.
"""

from __future__ import annotations

import asyncio

import typer
from typer import Typer

from fireway.cli.utils import output_error, output_stats
from fireway.errors import FirewayError
from fireway.logging import configure_logging

app = Typer(
    name="fireway",
    help="fireway: versioned data migrations for Firestore.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)


# ── Version callback ─────────────────────────────────────────────────────


def _version_callback(value: bool) -> None:
    if value:
        from importlib.metadata import PackageNotFoundError
        from importlib.metadata import version as pkg_version

        try:
            v = pkg_version("fireway")
        except PackageNotFoundError:
            from fireway import __version__ as v
        typer.echo(f"fireway {v}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool | None = typer.Option(
        None,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
) -> None:
    """fireway CLI: apply migrations to a Firestore project."""


# ── Commands ─────────────────────────────────────────────────────────────


@app.command("migrate")
def migrate_command(
    path: str = typer.Option("./migrations", "--path", "-p", help="Directory of migration files."),
    project_id: str | None = typer.Option(
        None, "--project-id", "--projectId", envvar="GOOGLE_CLOUD_PROJECT", help="Target project."
    ),
    dry_run: bool = typer.Option(False, "--dry-run", "--dryrun", help="Count writes without sending them."),
    debug: bool = typer.Option(False, "--debug", "-d", help="Log every file and write."),
    force_wait: bool = typer.Option(
        False, "--force-wait", "--forceWait", help="Wait for async calls a migration did not await."
    ),
    require: str | None = typer.Option(
        None, "--require", "-r", help="Module to load before running migrations."
    ),
    json_out: bool = typer.Option(False, "--json", help="Print the summary as JSON."),
) -> None:
    """Apply pending migrations."""
    from fireway.pipeline import migrate

    configure_logging(level="DEBUG" if debug else "INFO")
    try:
        stats = asyncio.run(
            migrate(
                path,
                project_id=project_id,
                dry_run=dry_run,
                debug=debug,
                force_wait=force_wait,
                require=require,
            )
        )
    except FirewayError as exc:
        output_error(exc)
        raise typer.Exit(code=1) from exc

    output_stats(stats, as_json=json_out, dry_run=dry_run)
