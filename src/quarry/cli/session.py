"""Shared CLI plumbing: config loading and opening a KnowledgeManager."""

from __future__ import annotations

import sqlite3
from pathlib import Path

import typer
from rich.console import Console

from quarry.cli.errors import err_config, err_no_db
from quarry.config import ConfigError, KnowledgeConfig, load_config
from quarry.manager import KnowledgeManager, open_manager

console = Console()


def load_cli_config(project_dir: Path | None) -> KnowledgeConfig:
    """Load config or exit 1 with an actionable message."""
    try:
        return load_config(project_dir)
    except ConfigError as exc:
        console.print(err_config(str(exc)))
        raise typer.Exit(1) from exc


def open_cli_manager(
    db: Path | None,
    project_dir: Path | None,
    *,
    must_exist: bool = False,
) -> KnowledgeManager:
    """Open the store at *db* (or the configured database) with schema applied.

    Configured directories are not crawled here; ``quarry reindex`` does that.

    Args:
        db: ``--db`` flag value; overrides the configured database.
        project_dir: Directory holding quarry.yaml (CWD when None).
        must_exist: Exit 1 instead of creating a missing database file.
    """
    config = load_cli_config(project_dir)
    db_path = db if db is not None else Path(config.database)

    if must_exist and not db_path.exists():
        console.print(err_no_db(str(db_path)))
        raise typer.Exit(1)

    try:
        manager = open_manager(db_path, config)
        manager.initialize(index=False)
    except sqlite3.Error as exc:
        console.print(f"[red]Error:[/] Cannot open database '{db_path}': {exc}")
        raise typer.Exit(1) from exc
    return manager
