"""Application state container.

AppState is created once per process by ``rfcli.runtime.open_state`` (the
CLI opens it per command, the MCP server inside its lifespan context
manager) and is passed to every tool handler.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    import httpx

    from rfcli.cache import ContentCache
    from rfcli.catalog import CatalogStore
    from rfcli.config import Settings
    from rfcli.index import SearchIndexHolder
    from rfcli.protocols import CatalogSourceProtocol, FetcherProtocol, SummarizerProtocol
    from rfcli.summary import SummaryService


@dataclass
class AppState:
    """Holds all shared runtime state. Passed to every tool handler."""

    settings: Settings
    catalog: CatalogStore
    cache: ContentCache
    index: SearchIndexHolder
    summaries: SummaryService
    source: CatalogSourceProtocol
    fetcher: FetcherProtocol | None = None
    summarizer: SummarizerProtocol | None = None
    http_client: httpx.AsyncClient | None = None
