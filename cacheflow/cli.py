"""cli.py — Command-line metrics viewer for **cacheflow**
=====================================================

A small **Typer** application that reads the metric documents a running
cache persists in its SQLite file.  It never writes to the cache.

Usage examples
--------------
::

    # Process-wide rollup
    cacheflow global

    # Statistics of one key (``global`` works here too)
    cacheflow resolver getUser

    # Every key with its call count and size
    cacheflow keys --db ./cacheflow.db

    # Raw JSON instead of a table
    cacheflow resolver getUser --json

    # Start the read-only HTTP viewer
    cacheflow serve --port 8080

Notes
-----
* All commands run **asynchronously** using ``asyncio.run``.
* The SQLite location is read from :pymod:`cacheflow.config.settings`;
  override via ``CACHEFLOW_SQLITE_PATH`` or ``--db``.
"""
from __future__ import annotations

import asyncio
import sys
from typing import Any, Awaitable, Callable, Dict, Optional, TypeVar

import orjson
import typer
from rich import print as rprint
from rich.console import Console
from rich.table import Table
from rich.traceback import install as rich_tb_install

from cacheflow.config.settings import configure_logging, get_settings
from cacheflow.core.repository import SQLiteMetricsRepository
from cacheflow.utils.exceptions import CacheflowError

# pretty tracebacks for CLI users
rich_tb_install(show_locals=False)

_T = TypeVar("_T")

GLOBAL_NAME = "global"

app = typer.Typer(add_completion=False, rich_markup_mode="rich", no_args_is_help=True)
console = Console()

_DB_OPTION = typer.Option(None, "--db", help="SQLite file written by the cache")
_JSON_OPTION = typer.Option(False, "--json", help="Print the raw JSON document")

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _with_repository(db: Optional[str], action: Callable[[SQLiteMetricsRepository], Awaitable[_T]]) -> _T:
    """Open the metrics tables, run *action* and close them again."""

    async def _run() -> _T:
        repository = SQLiteMetricsRepository(db or get_settings().sqlite_path)
        await repository.open()
        try:
            return await action(repository)
        finally:
            await repository.close()

    return asyncio.run(_run())


def _print_document(title: str, document: Dict[str, Any], as_json: bool) -> None:
    if as_json:
        typer.echo(orjson.dumps(document, option=orjson.OPT_INDENT_2).decode())
        return
    table = Table(title=title, show_header=True, header_style="bold")
    table.add_column("Field")
    table.add_column("Value", justify="right")
    for field, value in document.items():
        if isinstance(value, list):
            value = ", ".join(str(v) for v in value)
        table.add_row(field, "—" if value is None else str(value))
    console.print(table)


def _show_global(db: Optional[str], as_json: bool) -> None:
    document = _with_repository(db, lambda repo: repo.load_global())
    if document is None:
        rprint("[yellow]No global metrics recorded yet.[/]")
        raise typer.Exit(code=1)
    _print_document("global", document, as_json)


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


@app.command("global", help="Show the process-wide rollup.")
def global_(db: Optional[str] = _DB_OPTION, as_json: bool = _JSON_OPTION) -> None:
    _show_global(db, as_json)


@app.command(help="Show the statistics of one key, or the rollup for 'global'.")
def resolver(
    key: str = typer.Argument(..., help="Cache key, or 'global'"),
    db: Optional[str] = _DB_OPTION,
    as_json: bool = _JSON_OPTION,
) -> None:
    if key == GLOBAL_NAME:
        _show_global(db, as_json)
        return
    document = _with_repository(db, lambda repo: repo.load_resolver(key))
    if document is None:
        rprint(f"[yellow]No metrics recorded for[/] [bold]{key}[/]")
        raise typer.Exit(code=1)
    _print_document(key, document, as_json)


@app.command(help="List every key with its call count, size and location.")
def keys(db: Optional[str] = _DB_OPTION, as_json: bool = _JSON_OPTION) -> None:
    documents = _with_repository(db, lambda repo: repo.load_resolvers())
    if as_json:
        typer.echo(orjson.dumps(documents, option=orjson.OPT_INDENT_2).decode())
        return
    if not documents:
        rprint("[yellow]No keys recorded yet.[/]")
        return
    table = Table(show_header=True, header_style="bold")
    table.add_column("Key")
    table.add_column("Calls", justify="right")
    table.add_column("Avg span (ms)", justify="right")
    table.add_column("Size (B)", justify="right")
    table.add_column("Location")
    table.add_column("Score", justify="right")
    for key, doc in documents.items():
        score = doc.get("cacheThreshold")
        table.add_row(
            key,
            str(doc.get("numberOfCalls")),
            str(doc.get("averageCallSpan")),
            str(doc.get("dataSize")),
            str(doc.get("storedLocation")),
            "—" if score is None else f"{score:.3f}",
        )
    console.print(table)


@app.command(help="Run the read-only HTTP metrics viewer.")
def serve(
    host: Optional[str] = typer.Option(None, "--host", help="Bind address"),
    port: Optional[int] = typer.Option(None, "--port", help="Bind port"),
    db: Optional[str] = _DB_OPTION,
) -> None:
    import uvicorn

    from cacheflow.api.app import create_app

    settings = get_settings()
    if db:
        settings = settings.model_copy(update={"sqlite_path": db})
    configure_logging(settings)
    uvicorn.run(
        create_app(settings),
        host=host or settings.host,
        port=port or settings.port,
        log_config=None,
    )


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def main() -> None:  # pragma: no cover
    """CLI entry-point used by the ``cacheflow`` console script."""

    try:
        app()
    except CacheflowError as exc:
        rprint(f"[red]Error:[/] {exc.message}")
        sys.exit(1)


if __name__ == "__main__":  # pragma: no cover
    main()
