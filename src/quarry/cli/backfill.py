"""quarry backfill — index every text file in a directory, then drain pending embeddings.

Each file becomes one source with the file stem as its id. Ctrl-C requests
cancellation; the document in flight finishes first.
"""

from __future__ import annotations

import asyncio
import signal
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.progress import BarColumn, Progress, TaskProgressColumn, TextColumn

from quarry.cli.errors import err_file_not_found, err_unknown_source_type
from quarry.cli.runtime import DEFAULT_DB, load_cfg_or_exit, open_runtime
from quarry.db.models import SOURCE_TYPES
from quarry.ingest.backfill import (
    BackfillCoordinator,
    BackfillProgress,
    BackfillReport,
    SourceDocument,
)

console = Console()

_TEXT_EXTS = {".txt", ".md", ".markdown", ".text"}


def backfill_cmd(
    directory: Annotated[Path, typer.Argument(help="Directory of UTF-8 text files.")],
    source_type: Annotated[
        str, typer.Option("--type", "-t", help="Source type for every file.")
    ] = "article",
    graph: Annotated[
        bool,
        typer.Option("--graph/--no-graph", help="Also extract entities into the knowledge graph."),
    ] = True,
    batch_size: Annotated[
        int | None, typer.Option("--batch-size", "-b", help="Pending-drain batch size.")
    ] = None,
    db: Annotated[
        Path, typer.Option("--db", help="Path to .quarry.db (created if missing).")
    ] = DEFAULT_DB,
) -> None:
    """Bulk-index a directory."""
    if source_type not in SOURCE_TYPES:
        console.print(err_unknown_source_type(source_type))
        raise typer.Exit(1)
    if not directory.is_dir():
        console.print(err_file_not_found(str(directory)))
        raise typer.Exit(1)

    files = sorted(p for p in directory.iterdir() if p.is_file() and p.suffix.lower() in _TEXT_EXTS)
    docs = [
        SourceDocument(
            source_type=source_type,
            source_id=p.stem,
            text=p.read_text(encoding="utf-8"),
            title=p.stem,
            metadata={"title": p.stem},
        )
        for p in files
    ]
    if not docs:
        console.print("[yellow]No text files found.[/]")
        raise typer.Exit(0)

    rt = open_runtime(db, load_cfg_or_exit(console))
    try:
        with Progress(
            TextColumn("[bold]{task.description}"),
            BarColumn(),
            TaskProgressColumn(),
            TextColumn("[dim]{task.fields[title]}"),
            console=console,
        ) as progress:
            task = progress.add_task("indexing", total=len(docs), title="")

            def on_progress(p: BackfillProgress) -> None:
                progress.update(
                    task,
                    description=p.phase.value,
                    completed=p.current,
                    title=p.current_title or "",
                )

            coordinator = BackfillCoordinator(
                rt.pipeline(), rt.kg_pipeline() if graph else None, on_progress=on_progress
            )
            report = asyncio.run(
                _run(coordinator, docs, batch_size or rt.cfg.backfill.batch_size)
            )
    finally:
        rt.close()

    console.print(
        f"[green]✓[/] {report.indexed} indexed, {report.failed} failed, "
        f"{report.graph_ingested} added to graph, {report.pending.processed} pending chunks embedded"
        + (" [yellow](cancelled)[/]" if report.cancelled else "")
    )


async def _run(
    coordinator: BackfillCoordinator, docs: list[SourceDocument], batch_size: int
) -> BackfillReport:
    """Run the backfill with SIGINT mapped to coordinator.cancel()."""
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, coordinator.cancel)
        handler_installed = True
    except (NotImplementedError, RuntimeError):
        # No loop signal handlers on Windows or off the main thread.
        handler_installed = False
    try:
        return await coordinator.run(docs, batch_size)
    finally:
        if handler_installed:
            loop.remove_signal_handler(signal.SIGINT)
