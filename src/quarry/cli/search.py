"""quarry search — hybrid keyword + vector search over the store."""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
from rich.table import Table

from quarry.cli.session import console, open_cli_manager

_PREVIEW_CHARS = 120


def search_cmd(
    query: Annotated[str, typer.Argument(help="Free-text query.")],
    collection: Annotated[
        str | None,
        typer.Option("--collection", "-c", help="Only search this collection."),
    ] = None,
    limit: Annotated[
        int | None,
        typer.Option("--limit", "-n", min=1, help="Maximum results (default from config)."),
    ] = None,
    db: Annotated[
        Path | None,
        typer.Option("--db", help="Path to the knowledge database."),
    ] = None,
    project_dir: Annotated[
        Path | None,
        typer.Option("--project-dir", hidden=True, help="Directory holding quarry.yaml."),
    ] = None,
) -> None:
    """Search the knowledge store and print ranked chunks."""
    manager = open_cli_manager(db, project_dir, must_exist=True)
    try:
        results = manager.search(query, collection_name=collection, limit=limit)
    finally:
        manager.close()

    if not results:
        console.print(f"[yellow]No results for[/] {query!r}")
        raise typer.Exit(0)

    table = Table(title=f"Results for {query!r}", show_header=True, header_style="bold")
    table.add_column("#", justify="right")
    table.add_column("Score", justify="right")
    table.add_column("Collection")
    table.add_column("Source")
    table.add_column("Content")
    table.add_column("Chunk ID", style="dim")

    for rank, hit in enumerate(results, start=1):
        preview = " ".join(hit.content.split())
        if len(preview) > _PREVIEW_CHARS:
            preview = preview[:_PREVIEW_CHARS] + "…"
        source = hit.source_title or (Path(hit.source_file).name if hit.source_file else "")
        table.add_row(
            str(rank),
            f"{hit.score:.4f}",
            hit.collection_name or "",
            source,
            preview,
            hit.chunk_id,
        )

    console.print(table)
