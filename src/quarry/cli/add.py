"""quarry add — store text or a file in a collection.

Usage:
  quarry add "BM25 rewards rare terms" --collection notes
  quarry add --file docs/architecture.md --collection docs
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer

from quarry.cli.errors import (
    err_dimension_mismatch,
    err_file_not_found,
    err_nothing_to_add,
    warn_lexical_only,
)
from quarry.cli.session import console, open_cli_manager
from quarry.db.vectors import DimensionMismatchError
from quarry.manager import DEFAULT_COLLECTION


def add_cmd(
    text: Annotated[
        str | None,
        typer.Argument(help="Text to store. Omit when using --file."),
    ] = None,
    file: Annotated[
        Path | None,
        typer.Option("--file", "-f", help="Markdown or plain-text file to index."),
    ] = None,
    collection: Annotated[
        str,
        typer.Option("--collection", "-c", help="Target collection (created if missing)."),
    ] = DEFAULT_COLLECTION,
    title: Annotated[
        str | None,
        typer.Option("--title", "-t", help="Title stored with every chunk of TEXT."),
    ] = None,
    db: Annotated[
        Path | None,
        typer.Option("--db", help="Path to the knowledge database (created if missing)."),
    ] = None,
    project_dir: Annotated[
        Path | None,
        typer.Option("--project-dir", hidden=True, help="Directory holding quarry.yaml."),
    ] = None,
) -> None:
    """Add text or a file to the knowledge store."""
    if text is None and file is None:
        console.print(err_nothing_to_add())
        raise typer.Exit(1)
    if file is not None and not file.is_file():
        console.print(err_file_not_found(str(file)))
        raise typer.Exit(1)

    manager = open_cli_manager(db, project_dir)
    try:
        if manager.embedder is None:
            console.print(warn_lexical_only())
        try:
            if file is not None:
                count = manager.add_document(file, collection_name=collection)
                label = str(file)
            else:
                count = manager.add_text(text or "", collection_name=collection, title=title)
                label = "text"
        except DimensionMismatchError as exc:
            console.print(err_dimension_mismatch(str(exc)))
            raise typer.Exit(1) from exc
        except OSError as exc:
            console.print(f"[red]Error:[/] Cannot read '{file}': {exc}")
            raise typer.Exit(1) from exc
    finally:
        manager.close()

    if count == 0:
        console.print(f"[yellow]No chunks produced from {label} (empty content).[/]")
        return
    console.print(f"[green]✓[/] Added {count} chunks from {label} to '{collection}'")
