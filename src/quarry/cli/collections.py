"""quarry collections CLI commands.

Commands:
  quarry collections list             — show collections with chunk counts
  quarry collections create <name>    — create an empty collection
  quarry collections delete <name>    — delete a collection and all its chunks
"""

from __future__ import annotations

import sqlite3
from pathlib import Path
from typing import Annotated

import typer
from rich.table import Table

from quarry.cli.errors import err_collection_exists, err_collection_not_found
from quarry.cli.session import console, open_cli_manager

collections_app = typer.Typer(
    name="collections",
    help="Manage collections (list, create, delete).",
    add_completion=False,
)

_DbOption = Annotated[
    Path | None,
    typer.Option("--db", help="Path to the knowledge database."),
]
_ProjectDirOption = Annotated[
    Path | None,
    typer.Option("--project-dir", hidden=True, help="Directory holding quarry.yaml."),
]


@collections_app.command("list")
def collections_list_cmd(db: _DbOption = None, project_dir: _ProjectDirOption = None) -> None:
    """List all collections and their chunk counts."""
    manager = open_cli_manager(db, project_dir, must_exist=True)
    try:
        stats = manager.list_collections()
    finally:
        manager.close()

    if not stats:
        console.print(
            "[yellow]No collections yet.[/]\n"
            "  Create one with:  quarry collections create <name>"
        )
        raise typer.Exit(0)

    table = Table(title="Collections", show_header=True, header_style="bold")
    table.add_column("Name", style="bold")
    table.add_column("Chunks", justify="right")
    for entry in stats:
        table.add_row(entry.name, str(entry.chunk_count))

    console.print(table)
    console.print(f"\n  {sum(s.chunk_count for s in stats)} chunks in {len(stats)} collections")


@collections_app.command("create")
def collections_create_cmd(
    name: Annotated[str, typer.Argument(help="Collection name.")],
    description: Annotated[
        str,
        typer.Option("--description", "-d", help="Free-text description."),
    ] = "",
    db: _DbOption = None,
    project_dir: _ProjectDirOption = None,
) -> None:
    """Create an empty collection."""
    manager = open_cli_manager(db, project_dir)
    try:
        manager.create_collection(name, description=description)
    except sqlite3.IntegrityError as exc:
        console.print(err_collection_exists(name))
        raise typer.Exit(1) from exc
    finally:
        manager.close()
    console.print(f"[green]✓[/] Created collection '{name}'")


@collections_app.command("delete")
def collections_delete_cmd(
    name: Annotated[str, typer.Argument(help="Collection name.")],
    yes: Annotated[
        bool,
        typer.Option("--yes", "-y", help="Skip confirmation prompt."),
    ] = False,
    db: _DbOption = None,
    project_dir: _ProjectDirOption = None,
) -> None:
    """Delete a collection and every chunk in it."""
    manager = open_cli_manager(db, project_dir, must_exist=True)
    try:
        collection = manager.repo.get_collection(name)
        if collection is None:
            console.print(err_collection_not_found(name))
            raise typer.Exit(0)

        count = manager.repo.count_chunks(collection.id)
        console.print(f"\nDelete collection [bold]{name}[/] ({count} chunks)")
        if not yes:
            if not typer.confirm("Confirm deletion?", default=False):
                console.print("[dim]Cancelled.[/]")
                raise typer.Exit(0)

        manager.delete_collection(name)
        console.print(f"[green]✓[/] Deleted '{name}' and {count} chunks")
    finally:
        manager.close()
