"""Quarry CLI entry point."""

from __future__ import annotations

import importlib.metadata
import sys
from typing import Annotated

import typer
from loguru import logger

from quarry.cli.backfill import backfill_cmd
from quarry.cli.graph import graph_app
from quarry.cli.ingest import ingest_cmd
from quarry.cli.pending import pending_cmd
from quarry.cli.remove import remove_cmd
from quarry.cli.search import search_cmd
from quarry.cli.status import status_cmd


def _installed_version() -> str:
    try:
        return importlib.metadata.version("quarry")
    except importlib.metadata.PackageNotFoundError:
        return "dev"


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"quarry {_installed_version()}")
        raise typer.Exit()


def configure_logging(verbose: bool) -> None:
    """Route loguru to stderr: DEBUG with --verbose, WARNING otherwise."""
    logger.remove()
    logger.add(
        sys.stderr,
        level="DEBUG" if verbose else "WARNING",
        format="<dim>{time:HH:mm:ss}</dim> <level>{level: <7}</level> {message}",
    )


app = typer.Typer(
    name="quarry",
    help=(
        "Quarry — chunk/vector index and knowledge graph for long-form reading.\n\n"
        "  quarry ingest   Index a text file (and extract its entities).\n"
        "  quarry search   Hybrid semantic + keyword search."
    ),
    add_completion=False,
)


@app.callback()
def main_callback(
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Show debug logging."),
    ] = False,
    version: Annotated[
        bool,
        typer.Option(
            "--version",
            callback=_version_callback,
            is_eager=True,
            help="Show version and exit.",
        ),
    ] = False,
) -> None:
    """Quarry — chunk/vector index and knowledge graph for long-form reading."""
    configure_logging(verbose)


app.command("ingest")(ingest_cmd)
app.command("search")(search_cmd)
app.command("status")(status_cmd)
app.command("remove")(remove_cmd)
app.command("pending")(pending_cmd)
app.command("backfill")(backfill_cmd)
app.add_typer(graph_app, name="graph")


@app.command("version")
def version_cmd() -> None:
    """Show the installed Quarry version."""
    typer.echo(f"quarry {_installed_version()}")


if __name__ == "__main__":
    app()
