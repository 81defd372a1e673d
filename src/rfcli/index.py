"""Index builder: catalog snapshot → immutable in-memory search index.

The index is a pure function of the catalog snapshot. Rebuilding is the only
mutation path: a new SearchIndex is built off to the side and swapped in with
a single reference assignment, so concurrent searches see either the old or
the new index in full.
"""

from __future__ import annotations

import asyncio
import re
from typing import TYPE_CHECKING

import structlog

from rfcli.matcher import boundary_bonuses
from rfcli.models.search import IndexEntry, SearchIndex

if TYPE_CHECKING:
    from rfcli.catalog import CatalogStore
    from rfcli.models.catalog import CatalogSnapshot, RfcRecord

log = structlog.get_logger()

_RUN_RE = re.compile(r"[a-z0-9]+")
_PART_RE = re.compile(r"[a-z]+|[0-9]+")


def fold(text: str) -> str:
    """Lower-case ``text`` without changing its length.

    Characters whose lower-case form is longer than one code point are left
    as-is so that match offsets stay valid against the original string.
    """
    return "".join(ch if len(low := ch.lower()) != 1 else low for ch in text)


def tokenize(text: str) -> list[str]:
    """Split text into deduplicated, compound-aware tokens.

    "RFC8446 (TLS 1.3)" → ["rfc8446", "rfc", "8446", "tls", "1", "3"]
    """
    tokens: list[str] = []
    seen: set[str] = set()
    for run in _RUN_RE.findall(fold(text)):
        parts = _PART_RE.findall(run)
        candidates = [run, *parts] if len(parts) > 1 else [run]
        for token in candidates:
            if token not in seen:
                seen.add(token)
                tokens.append(token)
    return tokens


def _excerpt_source(record: RfcRecord) -> str:
    pieces = [*record.also]
    if record.abstract:
        pieces.append(" ".join(record.abstract.split()))
    return " ".join(pieces)


def build_entry(record: RfcRecord, *, excerpt_chars: int) -> IndexEntry:
    haystack = fold(record.title)
    excerpt = fold(_excerpt_source(record))[:excerpt_chars]
    return IndexEntry(
        record=record,
        haystack=haystack,
        bonuses=boundary_bonuses(haystack),
        tokens=frozenset(tokenize(record.title)) | frozenset(tokenize(excerpt)),
        excerpt=excerpt,
        excerpt_bonuses=boundary_bonuses(excerpt),
    )


def build_index(
    snapshot: CatalogSnapshot,
    *,
    excerpt_chars: int = 240,
    previous: SearchIndex | None = None,
) -> SearchIndex:
    """Build a SearchIndex from a catalog snapshot.

    Entries from ``previous`` whose record is unchanged are reused, so a
    rebuild after a handful of upserts only re-tokenizes those records.
    """
    reusable = previous is not None and previous.excerpt_chars == excerpt_chars
    entries: list[IndexEntry] = []
    reused = 0

    for record in snapshot.records:
        old = previous.by_number.get(record.number) if reusable and previous else None
        if old is not None and old.record == record:
            entries.append(old)
            reused += 1
        else:
            entries.append(build_entry(record, excerpt_chars=excerpt_chars))

    entries.sort(key=lambda entry: entry.number)
    vocabulary: set[str] = set()
    for entry in entries:
        vocabulary.update(entry.tokens)

    log.debug(
        "index_built",
        version=snapshot.version,
        entries=len(entries),
        reused=reused,
    )
    return SearchIndex(
        version=snapshot.version,
        entries=tuple(entries),
        by_number={entry.number: entry for entry in entries},
        vocabulary=tuple(sorted(vocabulary)),
        excerpt_chars=excerpt_chars,
    )


class SearchIndexHolder:
    """Owns the current SearchIndex and swaps in rebuilt ones atomically."""

    def __init__(self, *, excerpt_chars: int = 240) -> None:
        self._excerpt_chars = excerpt_chars
        # Version -1 never matches a catalog, so the first query builds.
        self._index = SearchIndex(version=-1, excerpt_chars=excerpt_chars)
        self._lock = asyncio.Lock()

    @property
    def current(self) -> SearchIndex:
        return self._index

    def is_stale(self, current_version: int) -> bool:
        return self._index.version != current_version

    async def rebuild(self, snapshot: CatalogSnapshot) -> SearchIndex:
        async with self._lock:
            return self._swap(snapshot)

    async def ensure_fresh(self, catalog: CatalogStore) -> SearchIndex:
        """Return an index matching the catalog's version, rebuilding if needed."""
        if not self.is_stale(catalog.version):
            return self._index
        async with self._lock:
            # Another caller may have rebuilt while we waited.
            if self.is_stale(catalog.version):
                self._swap(await catalog.snapshot())
        return self._index

    def _swap(self, snapshot: CatalogSnapshot) -> SearchIndex:
        new_index = build_index(
            snapshot,
            excerpt_chars=self._excerpt_chars,
            previous=self._index,
        )
        self._index = new_index
        log.info("index_swapped", version=new_index.version, entries=len(new_index.entries))
        return new_index
