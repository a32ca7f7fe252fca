"""quarry pending — embed chunks left pending (no key at ingest time, index rebuilt, retries)."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console

from quarry.cli.errors import warn_no_embedding_key, warn_no_vec_extension
from quarry.cli.runtime import DEFAULT_DB, open_existing_or_exit

console = Console()


def pending_cmd(
    batch_size: Annotated[
        int | None,
        typer.Option("--batch-size", "-b", help="Chunks per embedding batch."),
    ] = None,
    retry_failed: Annotated[
        bool,
        typer.Option("--retry-failed", help="Move failed chunks back to pending first."),
    ] = False,
    db: Annotated[Path, typer.Option("--db", help="Path to .quarry.db.")] = DEFAULT_DB,
) -> None:
    """Drain the pending-embedding backlog."""
    rt = open_existing_or_exit(db, console)
    try:
        if not rt.index.vec_available:
            console.print(warn_no_vec_extension())
            raise typer.Exit(1)
        if rt.embedder is None:
            console.print(warn_no_embedding_key())
            raise typer.Exit(1)
        if retry_failed:
            reset = rt.index.reset_failed_chunks()
            console.print(f"  {reset} failed chunks moved back to pending")

        size = batch_size or rt.cfg.backfill.batch_size
        result = asyncio.run(rt.pipeline().drain_pending(size))
    finally:
        rt.close()

    console.print(
        f"[green]✓[/] {result.processed} chunks embedded ({result.total_tokens} tokens)"
        + (f", [red]{result.failed} failed[/]" if result.failed else "")
    )
