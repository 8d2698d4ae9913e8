"""quarry reindex — rebuild the lexical index and re-import configured directories.

With ``--file`` only that file is re-chunked, into the collection it was
originally indexed in. ``--clear-embeddings --embed`` re-embeds the whole
store with the configured model.
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
from rich.progress import Progress, SpinnerColumn, TextColumn

from quarry.cli.errors import err_dimension_mismatch
from quarry.cli.session import console, open_cli_manager
from quarry.db.vectors import DimensionMismatchError


def reindex_cmd(
    file: Annotated[
        Path | None,
        typer.Option("--file", "-f", help="Reindex a single, previously indexed file."),
    ] = None,
    embed: Annotated[
        bool,
        typer.Option("--embed", help="Also embed chunks stored without a vector."),
    ] = False,
    clear_embeddings: Annotated[
        bool,
        typer.Option(
            "--clear-embeddings",
            help="Drop stored vectors first, e.g. after changing the embedding model.",
        ),
    ] = False,
    db: Annotated[
        Path | None,
        typer.Option("--db", help="Path to the knowledge database."),
    ] = None,
    project_dir: Annotated[
        Path | None,
        typer.Option("--project-dir", hidden=True, help="Directory holding quarry.yaml."),
    ] = None,
) -> None:
    """Rebuild the index for the whole store or a single file."""
    manager = open_cli_manager(db, project_dir, must_exist=True)
    try:
        if clear_embeddings:
            cleared = manager.clear_embeddings()
            console.print(f"[green]✓[/] Cleared {cleared} stored embeddings")

        if file is not None:
            try:
                count = manager.reindex_file(file)
            except DimensionMismatchError as exc:
                console.print(err_dimension_mismatch(str(exc)))
                raise typer.Exit(1) from exc
            if count == 0:
                console.print(f"[yellow]{file} is not indexed (or is now empty) — nothing stored.[/]")
            else:
                console.print(f"[green]✓[/] Reindexed {file}: {count} chunks")
        else:
            with Progress(
                SpinnerColumn(),
                TextColumn("[progress.description]{task.description}"),
                transient=True,
                console=console,
            ) as prog:
                prog.add_task("Reindexing…", total=None)
                result = manager.reindex()
            console.print(
                f"[green]✓[/] Reindexed: {result.files_processed} files, "
                f"{result.chunks_created} chunks "
                f"[dim]({result.files_skipped} unchanged, {result.files_failed} failed)[/]"
            )

        if embed:
            embedded = manager.embed_pending()
            console.print(f"[green]✓[/] Embedded {embedded} pending chunks")
    finally:
        manager.close()
