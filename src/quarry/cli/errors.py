"""Quarry rich error messages — actionable feedback.

Every error shown to the user must contain:
  1. What went wrong (clear cause)
  2. The exact action the user should take to fix it

Usage:
    from quarry.cli.errors import err_no_db
    console.print(err_no_db(".quarry.db"))
    raise typer.Exit(1)
"""

from __future__ import annotations


def err_no_db(db_path: str = ".quarry.db") -> str:
    """No knowledge database at *db_path*."""
    return (
        f"[red]Error:[/] No database found at '{db_path}'.\n"
        '  Run:  quarry add "some text"   (creates the database)'
    )


def err_config(message: str) -> str:
    """quarry.yaml or the global config is invalid."""
    return (
        f"[red]Error:[/] Invalid configuration.\n"
        f"  {message}\n"
        "  Fix quarry.yaml (or ~/.quarry/config.yaml) and retry."
    )


def err_file_not_found(path: str) -> str:
    return (
        f"[red]Error:[/] File not found: '{path}'\n"
        "  Check the path, or use --file with an existing .md / .txt file."
    )


def err_collection_not_found(name: str) -> str:
    return (
        f"[yellow]Collection '{name}' not found.[/]\n"
        "  List collections with:  quarry collections list"
    )


def err_collection_exists(name: str) -> str:
    return (
        f"[red]Error:[/] Collection '{name}' already exists.\n"
        f"  Pick another name, or remove it first:  quarry collections delete {name}"
    )


def err_chunk_not_found(chunk_id: str) -> str:
    return (
        f"[yellow]No chunk with id '{chunk_id}'.[/]\n"
        "  Chunk ids are shown by:  quarry search <query>"
    )


def err_dimension_mismatch(detail: str) -> str:
    """Embeddings from the configured model do not fit the stored vectors."""
    return (
        f"[red]Error:[/] Embedding dimension mismatch.\n"
        f"  {detail}\n"
        "  Switch back to the embedding model the database was built with, or re-embed:\n"
        "    quarry reindex --clear-embeddings --embed"
    )


def err_nothing_to_add() -> str:
    return (
        "[red]Error:[/] Nothing to add.\n"
        '  Pass text:  quarry add "..."   or a file:  quarry add --file notes.md'
    )


def warn_lexical_only() -> str:
    """Shown when no embedding model is configured."""
    return (
        "[dim]No embedding model configured — stored for keyword search only.\n"
        "  Enable vectors with:  export QUARRY_EMBEDDING_MODEL=openai/text-embedding-3-small[/]"
    )
