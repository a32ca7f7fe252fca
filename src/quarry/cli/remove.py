"""quarry remove — delete a source from the index and the knowledge graph.

Removes:
  - chunks, their vectors and the full-text document
  - the source's entity links; entities left without sources are deleted

Usage:
  quarry remove --type article --id note-42
  quarry remove --type article --id note-42 --yes
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console

from quarry.cli.errors import err_source_not_found
from quarry.cli.runtime import DEFAULT_DB, open_existing_or_exit

console = Console()


def remove_cmd(
    source_id: Annotated[str, typer.Option("--id", help="Id of the source to remove.")],
    source_type: Annotated[str, typer.Option("--type", "-t", help="Source type.")] = "article",
    db: Annotated[Path, typer.Option("--db", help="Path to .quarry.db.")] = DEFAULT_DB,
    yes: Annotated[bool, typer.Option("--yes", "-y", help="Skip confirmation prompt.")] = False,
) -> None:
    """Remove a source and all its derived data."""
    rt = open_existing_or_exit(db, console)
    try:
        status = rt.index.get_source_index_status(source_type, source_id)
        entities = rt.graph.get_entities_by_source(source_type, source_id)
        if status.total == 0 and not entities:
            console.print(err_source_not_found(source_type, source_id))
            raise typer.Exit(0)

        console.print(f"\nRemove source: [bold]{source_type}:{source_id}[/]")
        console.print(f"  Chunks: {status.total}  |  Linked entities: {len(entities)}")

        if not yes and not typer.confirm("Confirm removal?", default=False):
            console.print("[dim]Cancelled.[/]")
            raise typer.Exit(0)

        chunks = rt.index.delete_chunks_by_source(source_type, source_id)
        deleted_entities = rt.graph.delete_entities_by_source(source_type, source_id)
        console.print(f"\n[green]✓[/] Removed: {source_type}:{source_id}")
        console.print(f"  {chunks} chunks, {deleted_entities} orphaned entities deleted")
    finally:
        rt.close()
