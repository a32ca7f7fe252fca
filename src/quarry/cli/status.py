"""quarry status — index and graph totals, or the embedding status of one source."""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.panel import Panel

from quarry.cli.errors import err_source_not_found
from quarry.cli.runtime import DEFAULT_DB, open_existing_or_exit
from quarry.db.models import SourceIndexStatus

console = Console()


def status_cmd(
    source_type: Annotated[
        str | None, typer.Option("--type", "-t", help="Source type of one source.")
    ] = None,
    source_id: Annotated[str | None, typer.Option("--id", help="Id of one source.")] = None,
    db: Annotated[Path, typer.Option("--db", help="Path to .quarry.db.")] = DEFAULT_DB,
) -> None:
    """Show embedding progress for the whole index or for one source."""
    rt = open_existing_or_exit(db, console)
    try:
        if source_id is not None:
            stype = source_type or "article"
            status = rt.index.get_source_index_status(stype, source_id)
            if status.total == 0:
                console.print(err_source_not_found(stype, source_id))
                raise typer.Exit(0)
            console.print(
                Panel(_status_lines(status), title=f"[bold]{stype}:{source_id}[/]", expand=False)
            )
            return

        status = rt.index.get_index_status()
        stats = rt.kg_service().get_stats()
        lines = [
            f"Database:  {db}",
            f"Sources:   [bold]{rt.index.count_sources()}[/]",
            _status_lines(status),
            f"Vector search: {'[green]on[/]' if rt.index.vec_available else '[yellow]off[/]'}  |  "
            f"Embedder: {rt.embedder.model if rt.embedder else '[yellow]not configured[/]'}",
            f"Graph:     {stats.entity_count} entities, {stats.relation_count} relations, "
            f"{stats.source_count} sources",
        ]
        console.print(Panel("\n".join(lines), title="[bold]Quarry[/]", expand=False))
    finally:
        rt.close()


def _status_lines(status: SourceIndexStatus) -> str:
    return (
        f"Chunks:    [bold]{status.total}[/]  "
        f"(done {status.done}, pending {status.pending}, failed {status.failed})"
    )
