"""Command line interface for rfcli."""

from __future__ import annotations

import asyncio
import sys
from typing import TYPE_CHECKING, Any, Optional

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

import rfcli.tools.get_tldr as t_get_tldr
import rfcli.tools.list_catalog as t_list_catalog
import rfcli.tools.read_rfc as t_read_rfc
import rfcli.tools.search_rfcs as t_search
from rfcli import __version__
from rfcli.config import Settings
from rfcli.errors import ErrorCode, RfcliError
from rfcli.models.cache import CacheKind
from rfcli.runtime import open_state, setup_logging
from rfcli.source import ensure_catalog

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from rfcli.state import AppState

console = Console()
err_console = Console(stderr=True)
app = typer.Typer(help="rfcli - instant fuzzy lookup and TLDRs for IETF RFCs", no_args_is_help=True)
cache_app = typer.Typer(help="Inspect and maintain the local content cache.", no_args_is_help=True)
app.add_typer(cache_app, name="cache")

_BULLET_PREFIXES = ("- ", "* ", "• ")


# ---------------------------------------------------------------------------
# Plumbing
# ---------------------------------------------------------------------------


def _version_callback(value: bool) -> None:
    if value:
        console.print(f"rfcli {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    ctx: typer.Context,
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose (debug) logging"),
    version: bool = typer.Option(
        False, "--version", callback=_version_callback, is_eager=True, help="Show version"
    ),
) -> None:
    ctx.obj = {"verbose": verbose}


def _load_settings(ctx: typer.Context) -> Settings:
    settings = Settings()
    if ctx.obj and ctx.obj.get("verbose"):
        settings.logging.level = "DEBUG"
    setup_logging(settings)
    return settings


def _fail(exc: RfcliError) -> None:
    err_console.print(f"[bold red]{exc.code}[/bold red]: {exc.message}")
    if exc.suggestion:
        err_console.print(f"[dim]{exc.suggestion}[/dim]")
    raise typer.Exit(code=1)


def _run(settings: Settings, action: Callable[[AppState], Awaitable[Any]]) -> Any:
    """Open AppState, run ``action`` against it, and map errors to exit code 1."""

    async def _main() -> Any:
        async with open_state(settings) as state:
            return await action(state)

    try:
        return asyncio.run(_main())
    except RfcliError as exc:
        _fail(exc)


async def _resolve_number(state: AppState, number: int | None, query: str | None) -> int:
    """Pick the RFC to act on: the explicit number, else the best search match."""
    if number is not None:
        return number
    if not query:
        raise RfcliError(
            code=ErrorCode.VALIDATION_ERROR,
            message="Give an RFC number or a --query to search for.",
            suggestion="For example: rfcli read 8446, or rfcli read --query tls13",
            recoverable=False,
        )

    await ensure_catalog(state)
    result = await t_search.handle(query, 1, state)
    if not result["matches"]:
        hint = ", ".join(result["suggestions"])
        raise RfcliError(
            code=ErrorCode.RFC_NOT_FOUND,
            message=f"No RFC matches {query!r}.",
            suggestion=f"Did you mean: {hint}?" if hint else "Try fewer or different characters.",
            recoverable=False,
        )
    best = result["matches"][0]
    err_console.print(f"[dim]Best match: RFC {best['number']}: {best['title']}[/dim]")
    return best["number"]


def _highlight(title: str, positions: list[int]) -> Text:
    text = Text(title)
    for pos in positions:
        if 0 <= pos < len(title):
            text.stylize("bold yellow", pos, pos + 1)
    return text


def _render_tldr(tldr: str) -> Table:
    """Lay out summary lines, giving bullets a hanging indent."""
    grid = Table.grid(padding=(0, 1))
    grid.add_column(no_wrap=True)
    grid.add_column(ratio=1)
    for line in tldr.splitlines():
        stripped = line.strip()
        if not stripped:
            continue
        if stripped.startswith(_BULLET_PREFIXES):
            grid.add_row("[cyan]•[/cyan]", Text(stripped[2:].strip()))
        else:
            grid.add_row("", Text(stripped, style="bold"))
    return grid


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


@app.command()
def search(
    ctx: typer.Context,
    query: str = typer.Argument("", help="Number, title words or keyword, e.g. 'tls13'"),
    limit: Optional[int] = typer.Option(None, "--limit", "-n", help="Number of results"),
) -> None:
    """Fuzzy-search the RFC catalog."""
    settings = _load_settings(ctx)

    async def action(state: AppState) -> dict:
        await ensure_catalog(state)
        return await t_search.handle(query, limit or settings.search.default_limit, state)

    result = _run(settings, action)
    if not result["matches"]:
        console.print("[yellow]No matches found.[/yellow]")
        if result["suggestions"]:
            console.print(f"Did you mean: {', '.join(result['suggestions'])}?")
        return

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("RFC", justify="right")
    table.add_column("Score", justify="right")
    table.add_column("Title")
    table.add_column("Match", style="dim")
    for hit in result["matches"]:
        title = (
            _highlight(hit["title"], hit["positions"])
            if hit["matched_field"] == "title"
            else Text(hit["title"])
        )
        table.add_row(str(hit["number"]), str(hit["score"]), title, hit["matched_field"] or "")
    console.print(table)


@app.command()
def read(
    ctx: typer.Context,
    number: Optional[int] = typer.Argument(None, help="RFC number"),
    query: Optional[str] = typer.Option(None, "--query", "-q", help="Open the best match"),
    refresh: bool = typer.Option(False, "--refresh", "-r", help="Refresh the catalog first"),
    pager: bool = typer.Option(True, "--pager/--no-pager", help="Show in a pager"),
) -> None:
    """Read the cleaned plain text of an RFC."""
    settings = _load_settings(ctx)

    async def action(state: AppState) -> dict:
        if refresh:
            await ensure_catalog(state, force=True)
        resolved = await _resolve_number(state, number, query)
        return await t_read_rfc.handle(resolved, 1, sys.maxsize, state)

    result = _run(settings, action)
    if pager:
        with console.pager(styles=False):
            console.print(result["content"], markup=False, highlight=False)
    else:
        console.print(result["content"], markup=False, highlight=False)


@app.command()
def tldr(
    ctx: typer.Context,
    number: Optional[int] = typer.Argument(None, help="RFC number"),
    query: Optional[str] = typer.Option(None, "--query", "-q", help="Summarize the best match"),
    model: Optional[str] = typer.Option(None, "--model", "-m", help="Summarizer model name"),
) -> None:
    """Show a short TLDR summary of an RFC."""
    settings = _load_settings(ctx)
    if model:
        settings.summarizer.model = model

    async def action(state: AppState) -> dict:
        resolved = await _resolve_number(state, number, query)
        with err_console.status(f"Summarizing RFC {resolved}..."):
            return await t_get_tldr.handle(resolved, state)

    result = _run(settings, action)
    heading = f"RFC {result['number']}"
    if result["title"]:
        heading += f": {result['title']}"
    console.print(Panel(_render_tldr(result["tldr"]), title=heading, title_align="left"))


@app.command("list")
def list_rfcs(
    ctx: typer.Context,
    status: Optional[str] = typer.Option(None, "--status", "-s", help="e.g. 'standards track'"),
    limit: int = typer.Option(50, "--limit", "-n", help="Rows to show"),
    offset: int = typer.Option(0, "--offset", help="Rows to skip"),
) -> None:
    """List catalog entries by number."""
    settings = _load_settings(ctx)

    async def action(state: AppState) -> dict:
        await ensure_catalog(state)
        return await t_list_catalog.handle(state, status, offset, limit)

    result = _run(settings, action)
    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("RFC", justify="right")
    table.add_column("Published")
    table.add_column("Status")
    table.add_column("Title")
    table.add_column("Cached", style="dim")
    for row in result["records"]:
        cached = " ".join(
            flag for flag, present in (("body", row["has_body"]), ("tldr", row["has_tldr"])) if present
        )
        table.add_row(
            str(row["number"]), row["published"] or "", row["status"], row["title"], cached
        )
    console.print(table)
    shown = len(result["records"])
    console.print(f"[dim]{shown} of {result['total']} records (offset {offset})[/dim]")


@app.command()
def refresh(ctx: typer.Context) -> None:
    """Download the RFC index and update the local catalog."""
    settings = _load_settings(ctx)

    async def action(state: AppState) -> int:
        await ensure_catalog(state, force=True)
        return await state.catalog.count()

    count = _run(settings, action)
    console.print(f"[green]Catalog updated:[/green] {count} RFCs.")


@app.command()
def serve() -> None:
    """Run the MCP server on stdio."""
    from rfcli.server import main as serve_main

    serve_main()


# ---------------------------------------------------------------------------
# cache subcommands
# ---------------------------------------------------------------------------


@cache_app.command("stats")
def cache_stats(ctx: typer.Context) -> None:
    """Show cache entry counts and size."""
    settings = _load_settings(ctx)

    async def action(state: AppState) -> dict:
        return await state.cache.stats()

    stats = _run(settings, action)
    table = Table(show_header=False)
    for kind, count in stats["entries"].items():
        table.add_row(f"{kind} entries", str(count))
    table.add_row("total bytes", f"{stats['total_bytes']:,}")
    table.add_row("max bytes", f"{stats['max_bytes']:,}")
    console.print(table)


@cache_app.command("prune")
def cache_prune(ctx: typer.Context) -> None:
    """Delete long-expired entries and orphaned blob files."""
    settings = _load_settings(ctx)

    async def action(state: AppState) -> int:
        return await state.cache.cleanup_expired(settings.cache.cleanup_grace_days)

    removed = _run(settings, action)
    console.print(f"Removed {removed} expired entries.")


@cache_app.command("clear")
def cache_clear(
    ctx: typer.Context,
    number: int = typer.Argument(..., help="RFC number"),
    kind: Optional[CacheKind] = typer.Option(None, "--kind", help="Only this kind of entry"),
) -> None:
    """Drop cached content for one RFC."""
    settings = _load_settings(ctx)

    async def action(state: AppState) -> int:
        if kind is not None:
            return int(await state.cache.invalidate(number, kind))
        return await state.cache.purge(number)

    removed = _run(settings, action)
    console.print(f"Removed {removed} cache entries for RFC {number}.")
