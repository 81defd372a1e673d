"""Process wiring shared by the CLI and the MCP server.

Responsibilities (and nothing more):
- Configure structlog
- Open the SQLite database and HTTP client
- Build AppState and tear it down again
"""

from __future__ import annotations

import logging
import sys
from contextlib import asynccontextmanager
from pathlib import Path
from typing import TYPE_CHECKING

import aiosqlite
import structlog

from rfcli.cache import ContentCache
from rfcli.catalog import CatalogStore
from rfcli.fetcher import RfcFetcher, build_http_client
from rfcli.index import SearchIndexHolder
from rfcli.source import RfcIndexSource
from rfcli.state import AppState
from rfcli.summarizer import build_summarizer
from rfcli.summary import SummaryService

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

    import httpx

    from rfcli.config import Settings

log = structlog.get_logger()


def setup_logging(settings: Settings) -> None:
    """Configure structlog. Called once at startup before any log statements."""
    log_level = logging.getLevelNamesMapping()[settings.logging.level]

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.TimeStamper(fmt="iso"),
    ]

    if settings.logging.format == "json":
        processors = [*shared_processors, structlog.processors.JSONRenderer()]
    else:
        processors = [*shared_processors, structlog.dev.ConsoleRenderer()]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        # stdout belongs to command output or the MCP JSON-RPC stream
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=False,
    )


@asynccontextmanager
async def open_state(
    settings: Settings,
    *,
    http_client: httpx.AsyncClient | None = None,
    run_cleanup: bool = True,
) -> AsyncGenerator[AppState, None]:
    """Create all shared resources, yield AppState, and close them on exit.

    An injected ``http_client`` is used as-is and left open for its owner.
    """
    owns_client = http_client is None
    client = http_client if http_client is not None else build_http_client(settings.fetcher)

    db_path = Path(settings.cache.db_path).expanduser()
    db_path.parent.mkdir(parents=True, exist_ok=True)
    db = await aiosqlite.connect(str(db_path))

    try:
        cache = ContentCache(
            db,
            Path(settings.cache.blob_dir).expanduser(),
            ttl_hours=settings.cache.ttl_hours,
            max_bytes=settings.cache.max_bytes,
        )
        await cache.init_db()
        catalog = CatalogStore(db, cache)
        await catalog.init_db()

        fetcher = RfcFetcher(client, settings.fetcher.base_url)
        summarizer = build_summarizer(settings.summarizer, client)
        summaries = SummaryService(
            cache=cache,
            fetcher=fetcher,
            summarizer=summarizer,
            catalog=catalog,
            fetch_timeout_seconds=settings.fetcher.fetch_timeout_seconds,
            derive_timeout_seconds=settings.fetcher.derive_timeout_seconds,
            max_retries=settings.fetcher.max_retries,
            backoff_seconds=settings.fetcher.backoff_seconds,
        )

        state = AppState(
            settings=settings,
            catalog=catalog,
            cache=cache,
            index=SearchIndexHolder(excerpt_chars=settings.catalog.excerpt_chars),
            summaries=summaries,
            source=RfcIndexSource(fetcher, settings.catalog.index_url),
            fetcher=fetcher,
            summarizer=summarizer,
            http_client=client,
        )

        if run_cleanup:
            await cache.cleanup_if_due(
                settings.cache.cleanup_interval_hours,
                settings.cache.cleanup_grace_days,
            )

        log.debug("state_opened", db_path=str(db_path), catalog_version=catalog.version)
        yield state
    finally:
        if owns_client:
            await client.aclose()
        await db.close()
        log.debug("state_closed")
