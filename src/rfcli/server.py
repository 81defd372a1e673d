"""MCP server entrypoint.

Responsibilities (and nothing more):
- Configure structlog
- Create AppState via the FastMCP lifespan context manager
- Start the background schedulers
- Register tools
"""

from __future__ import annotations

import asyncio
import json
from contextlib import asynccontextmanager, suppress
from typing import TYPE_CHECKING

import structlog
from mcp.server.fastmcp import Context, FastMCP
from mcp.types import CallToolResult, TextContent

import rfcli.tools.get_tldr as t_get_tldr
import rfcli.tools.list_catalog as t_list_catalog
import rfcli.tools.read_rfc as t_read_rfc
import rfcli.tools.search_rfcs as t_search
from rfcli import __version__
from rfcli.config import Settings
from rfcli.errors import RfcliError
from rfcli.runtime import open_state, setup_logging
from rfcli.schedulers import run_cache_cleanup_scheduler, run_catalog_refresh_scheduler
from rfcli.source import check_for_catalog_update

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

    from rfcli.state import AppState

log = structlog.get_logger()

FIRST_RUN_FETCH_TIMEOUT_SECONDS = 30.0


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


async def _maybe_blocking_first_run_fetch(state: AppState) -> bool:
    """Attempt a one-shot blocking catalog refresh when the catalog is empty.

    Returns True if the refresh succeeded.
    """
    try:
        outcome = await asyncio.wait_for(
            check_for_catalog_update(state),
            timeout=FIRST_RUN_FETCH_TIMEOUT_SECONDS,
        )
        if outcome == "success":
            log.info("first_run_fetch_success", catalog_version=state.catalog.version)
            return True
    except TimeoutError:
        log.warning("first_run_fetch_timeout", timeout=FIRST_RUN_FETCH_TIMEOUT_SECONDS)
    except Exception:
        log.warning("first_run_fetch_error", exc_info=True)

    log.warning(
        "catalog_empty",
        message=(
            "The RFC catalog is empty; search_rfcs and list_rfcs will return nothing "
            "until a refresh succeeds. get_rfc_tldr and read_rfc still work by number."
        ),
    )
    return False


@asynccontextmanager
async def lifespan(server: FastMCP) -> AsyncGenerator[AppState, None]:
    """Create and tear down all shared resources for the server's lifetime."""
    settings = Settings()
    setup_logging(settings)

    log.info("server_starting", version=__version__)

    async with open_state(settings, run_cleanup=False) as state:
        if await state.catalog.count() == 0:
            await _maybe_blocking_first_run_fetch(state)

        catalog_refresh_task = asyncio.create_task(run_catalog_refresh_scheduler(state))
        cache_cleanup_task = asyncio.create_task(run_cache_cleanup_scheduler(state))

        log.info(
            "server_started",
            version=__version__,
            catalog_records=await state.catalog.count(),
            catalog_version=state.catalog.version,
        )

        try:
            yield state
        finally:
            catalog_refresh_task.cancel()
            cache_cleanup_task.cancel()
            with suppress(asyncio.CancelledError):
                await catalog_refresh_task
            with suppress(asyncio.CancelledError):
                await cache_cleanup_task
            log.info("server_stopping")


# ---------------------------------------------------------------------------
# FastMCP instance and tool registration
# ---------------------------------------------------------------------------

mcp = FastMCP("rfcli", lifespan=lifespan)
# FastMCP has no version kwarg, so set it on the underlying Server
# so the MCP initialize handshake reports our version, not the SDK's.
mcp._mcp_server.version = __version__  # pyright: ignore[reportPrivateUsage]


def _serialise_tool_error(error: RfcliError) -> CallToolResult:
    """Convert an RfcliError to the MCP tool error result envelope."""
    return CallToolResult(
        content=[TextContent(type="text", text=json.dumps(error.to_dict()))],
        isError=True,
    )


def _log_tool_error(tool: str, exc: RfcliError) -> None:
    log.warning(
        "tool_error",
        tool=tool,
        code=exc.code,
        message=exc.message,
        recoverable=exc.recoverable,
    )


@mcp.tool()
async def search_rfcs(query: str, ctx: Context, limit: int = 20) -> object:
    """Fuzzy-search the RFC catalog by number, title or keyword.

    Query characters must appear in order in the title (or abstract);
    "tls13" finds RFC 8446 and "8446" or "rfc8446" match by number.
    An empty query lists RFCs by number.
    """
    state: AppState = ctx.request_context.lifespan_context
    try:
        return await t_search.handle(query, limit, state)
    except RfcliError as exc:
        _log_tool_error("search_rfcs", exc)
        return _serialise_tool_error(exc)
    except Exception:
        log.error("tool_unexpected_error", tool="search_rfcs", exc_info=True)
        raise


@mcp.tool()
async def get_rfc_tldr(number: int, ctx: Context) -> object:
    """Return a short TLDR summary of an RFC, generated once and cached."""
    state: AppState = ctx.request_context.lifespan_context
    try:
        return await t_get_tldr.handle(number, state)
    except RfcliError as exc:
        _log_tool_error("get_rfc_tldr", exc)
        return _serialise_tool_error(exc)
    except Exception:
        log.error("tool_unexpected_error", tool="get_rfc_tldr", exc_info=True)
        raise


@mcp.tool()
async def list_rfcs(
    ctx: Context,
    status: str | None = None,
    offset: int = 0,
    limit: int = 50,
) -> object:
    """List catalog entries by number, optionally filtered by status.

    Each row reports whether the body and a TLDR are cached locally.
    """
    state: AppState = ctx.request_context.lifespan_context
    try:
        return await t_list_catalog.handle(state, status, offset, limit)
    except RfcliError as exc:
        _log_tool_error("list_rfcs", exc)
        return _serialise_tool_error(exc)
    except Exception:
        log.error("tool_unexpected_error", tool="list_rfcs", exc_info=True)
        raise


@mcp.tool()
async def read_rfc(number: int, ctx: Context, offset: int = 1, limit: int = 2000) -> object:
    """Read the plain text of an RFC.

    Returns a section map (line numbers + heading text) for the full
    document, and a content window controlled by offset and limit. Use the
    section map to find a section, then call again with offset to jump to it.
    """
    state: AppState = ctx.request_context.lifespan_context
    try:
        return await t_read_rfc.handle(number, offset, limit, state)
    except RfcliError as exc:
        _log_tool_error("read_rfc", exc)
        return _serialise_tool_error(exc)
    except Exception:
        log.error("tool_unexpected_error", tool="read_rfc", exc_info=True)
        raise


# ---------------------------------------------------------------------------
# Entrypoint
# ---------------------------------------------------------------------------


def main() -> None:
    mcp.run()


if __name__ == "__main__":
    main()
