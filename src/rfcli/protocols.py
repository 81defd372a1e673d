"""Protocol interfaces for swappable components.

The Summary Service, tool handlers and AppState reference these protocols,
not the concrete implementations. This allows:
- Tests to use lightweight in-memory fakes (counting fetchers, canned summaries)
- Other summarization backends to be plugged in without touching the service
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from rfcli.models.cache import CacheEntry, CacheKind
    from rfcli.models.catalog import RfcRecord


class CacheProtocol(Protocol):
    """Interface for the content cache backend."""

    async def get(self, number: int, kind: CacheKind) -> CacheEntry | None: ...

    async def put(self, number: int, kind: CacheKind, content: bytes | str) -> CacheEntry: ...

    async def invalidate(self, number: int, kind: CacheKind) -> bool: ...

    async def purge(self, number: int) -> int: ...


class FetcherProtocol(Protocol):
    """Interface for retrieving raw RFC text."""

    async def fetch_raw(self, number: int) -> bytes: ...


class SummarizerProtocol(Protocol):
    """Interface for deriving a TLDR from raw RFC text."""

    async def derive_tldr(self, raw: bytes, *, number: int | None = None) -> str: ...


class CatalogSourceProtocol(Protocol):
    """Bulk feed of catalog records (e.g. the rfc-editor index)."""

    async def fetch_records(self) -> list[RfcRecord]: ...
