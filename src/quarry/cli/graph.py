"""quarry graph — inspect the knowledge graph.

Subcommands:
  quarry graph overview [--top 50]
  quarry graph article --type article --id ID
  quarry graph search QUERY [--entity-type person]
  quarry graph stats
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.table import Table

from quarry.cli.runtime import DEFAULT_DB, open_existing_or_exit
from quarry.graph.service import GraphData

console = Console()

graph_app = typer.Typer(help="Inspect the knowledge graph.", no_args_is_help=True)

DbOption = Annotated[Path, typer.Option("--db", help="Path to .quarry.db.")]


def _print_graph(data: GraphData, title: str) -> None:
    if not data.nodes:
        console.print("[dim]No entities.[/]")
        return

    names = {n.id: n.name for n in data.nodes}
    nodes = Table(title=title, show_header=True, header_style="bold")
    nodes.add_column("Entity")
    nodes.add_column("Type", style="dim")
    nodes.add_column("Mentions", justify="right")
    nodes.add_column("Sources", justify="right")
    for n in data.nodes:
        nodes.add_row(n.name, n.type, str(n.mention_count), str(n.source_count))
    console.print(nodes)

    if data.edges:
        edges = Table(show_header=True, header_style="bold")
        edges.add_column("Source")
        edges.add_column("Relation", style="cyan")
        edges.add_column("Target")
        edges.add_column("Strength", justify="right")
        for e in data.edges:
            edges.add_row(
                names.get(e.source, e.source), e.relation_type, names.get(e.target, e.target),
                str(e.strength),
            )
        console.print(edges)


@graph_app.command("overview")
def overview_cmd(
    top: Annotated[int, typer.Option("--top", "-n", help="Number of entities.")] = 50,
    db: DbOption = DEFAULT_DB,
) -> None:
    """Most-mentioned entities and the relations among them."""
    rt = open_existing_or_exit(db, console)
    try:
        _print_graph(rt.kg_service().get_overview(top), f"Top {top} entities")
    finally:
        rt.close()


@graph_app.command("article")
def article_cmd(
    source_id: Annotated[str, typer.Option("--id", help="Source id.")],
    source_type: Annotated[str, typer.Option("--type", "-t", help="Source type.")] = "article",
    db: DbOption = DEFAULT_DB,
) -> None:
    """Entities extracted from one source."""
    rt = open_existing_or_exit(db, console)
    try:
        _print_graph(
            rt.kg_service().get_article_graph(source_type, source_id),
            f"{source_type}:{source_id}",
        )
    finally:
        rt.close()


@graph_app.command("search")
def search_cmd(
    query: Annotated[str, typer.Argument(help="Name or alias substring.")],
    entity_type: Annotated[
        str | None, typer.Option("--entity-type", help="Restrict to an entity type.")
    ] = None,
    db: DbOption = DEFAULT_DB,
) -> None:
    """Find entities by name or alias."""
    rt = open_existing_or_exit(db, console)
    try:
        entities = rt.kg_service().search_entities(query, entity_type)
    finally:
        rt.close()

    if not entities:
        console.print("[dim]No matching entities.[/]")
        return
    table = Table(show_header=True, header_style="bold")
    table.add_column("Entity")
    table.add_column("Type", style="dim")
    table.add_column("Aliases")
    table.add_column("Mentions", justify="right")
    for e in entities:
        table.add_row(e.name, e.type, ", ".join(e.aliases), str(e.mention_count))
    console.print(table)


@graph_app.command("stats")
def stats_cmd(db: DbOption = DEFAULT_DB) -> None:
    """Entity, relation and source counts."""
    rt = open_existing_or_exit(db, console)
    try:
        stats = rt.kg_service().get_stats()
    finally:
        rt.close()
    console.print(
        f"Entities: [bold]{stats.entity_count}[/]  |  "
        f"Relations: [bold]{stats.relation_count}[/]  |  "
        f"Sources: [bold]{stats.source_count}[/]"
    )
