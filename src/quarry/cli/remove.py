"""quarry remove — delete a single chunk by id.

Usage:
  quarry remove 3f2a9c...
  quarry remove 3f2a9c... --yes
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer

from quarry.cli.errors import err_chunk_not_found
from quarry.cli.session import console, open_cli_manager


def remove_cmd(
    chunk_id: Annotated[str, typer.Argument(help="Chunk id (see `quarry search`).")],
    db: Annotated[
        Path | None,
        typer.Option("--db", help="Path to the knowledge database."),
    ] = None,
    yes: Annotated[
        bool,
        typer.Option("--yes", "-y", help="Skip confirmation prompt."),
    ] = False,
    project_dir: Annotated[
        Path | None,
        typer.Option("--project-dir", hidden=True, help="Directory holding quarry.yaml."),
    ] = None,
) -> None:
    """Remove one chunk (and its index entry) from the store."""
    manager = open_cli_manager(db, project_dir, must_exist=True)
    try:
        chunk = manager.repo.get_chunk(chunk_id)
        if chunk is None:
            console.print(err_chunk_not_found(chunk_id))
            raise typer.Exit(0)

        preview = " ".join(chunk.content.split())[:80]
        console.print(f"\nRemove chunk [bold]{chunk_id}[/]")
        console.print(f"  [dim]{preview}[/]")

        if not yes:
            if not typer.confirm("Confirm removal?", default=False):
                console.print("[dim]Cancelled.[/]")
                raise typer.Exit(0)

        manager.remove_document(chunk_id)
        console.print(f"[green]✓[/] Removed: {chunk_id}")
    finally:
        manager.close()
