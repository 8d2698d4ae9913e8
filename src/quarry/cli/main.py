"""Quarry CLI entry point."""

from __future__ import annotations

import importlib.metadata
import logging
from typing import Annotated

import typer
from rich.logging import RichHandler

from quarry.cli.add import add_cmd
from quarry.cli.collections import collections_app
from quarry.cli.reindex import reindex_cmd
from quarry.cli.remove import remove_cmd
from quarry.cli.search import search_cmd


def _installed_version() -> str:
    try:
        return importlib.metadata.version("quarry")
    except importlib.metadata.PackageNotFoundError:
        return "dev"


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"quarry {_installed_version()}")
        raise typer.Exit()


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(rich_tracebacks=True, show_path=verbose)],
        force=True,
    )
    # litellm and its HTTP stack are chatty at DEBUG.
    for noisy in ("LiteLLM", "httpx", "httpcore"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


app = typer.Typer(
    name="quarry",
    help=(
        "Quarry — local hybrid-retrieval knowledge store.\n\n"
        "  quarry add       Store text or a file in a collection.\n"
        "  quarry search    Keyword + vector search, fused by rank."
    ),
    add_completion=False,
)


@app.callback()
def main_callback(
    version: Annotated[
        bool,
        typer.Option(
            "--version",
            callback=_version_callback,
            is_eager=True,
            help="Show version and exit.",
        ),
    ] = False,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Show debug logging."),
    ] = False,
) -> None:
    """Quarry — local hybrid-retrieval knowledge store."""
    _configure_logging(verbose)


app.command("add")(add_cmd)
app.command("search")(search_cmd)
app.command("remove")(remove_cmd)
app.command("reindex")(reindex_cmd)
app.add_typer(collections_app, name="collections")


@app.command("version")
def version_cmd() -> None:
    """Show the installed Quarry version."""
    typer.echo(f"quarry {_installed_version()}")


if __name__ == "__main__":
    app()
