"""Shared test fixtures for the rfcli test suite."""

from __future__ import annotations

from typing import TYPE_CHECKING

import aiosqlite
import pytest

from rfcli.cache import ContentCache
from rfcli.catalog import CatalogStore
from rfcli.index import build_index
from rfcli.models.catalog import CatalogSnapshot, PublicationDate, RfcRecord, RfcStatus

if TYPE_CHECKING:
    from collections.abc import AsyncIterator
    from pathlib import Path

    from rfcli.models.search import SearchIndex


SAMPLE_RFC_TEXT = """\



Network Working Group                                         S. Bradner
Request for Comments: 2119                            Harvard University
BCP: 14                                                       March 1997
Category: Best Current Practice


        Key words for use in RFCs to Indicate Requirement Levels

Status of this Memo

   This document specifies an Internet Best Current Practices for the
   Internet Community, and requests discussion and suggestions for
   improvements.

Abstract

   In many standards track documents several words are used to signify
   the requirements in the specification.  These words are often
   capitalized.  This document defines these words as they should be
   interpreted in IETF documents.

1. MUST

   This word, or the terms "REQUIRED" or "SHALL", mean that the
   definition is an absolute requirement of the specification.



Bradner                  Best Current Practice                  [Page 1]
\x0c
RFC 2119                     RFC Key Words                    March 1997


2. MUST NOT

   This phrase, or the phrase "SHALL NOT", mean that the definition is
   an absolute prohibition of the specification.
"""


@pytest.fixture()
def sample_rfc_text() -> str:
    return SAMPLE_RFC_TEXT


@pytest.fixture()
def sample_records() -> list[RfcRecord]:
    """Small catalog covering titles, numbers and relations."""
    return [
        RfcRecord(
            number=2119,
            title="Key words for use in RFCs to Indicate Requirement Levels",
            published=PublicationDate(year=1997, month=3),
            status=RfcStatus.BEST_CURRENT_PRACTICE,
            updated_by=frozenset({8174}),
            also=("BCP0014",),
        ),
        RfcRecord(
            number=5246,
            title="The Transport Layer Security (TLS) Protocol Version 1.2",
            published=PublicationDate(year=2008, month=8),
            status=RfcStatus.STANDARDS_TRACK,
            obsoleted_by=frozenset({8446}),
        ),
        RfcRecord(
            number=8446,
            title="The Transport Layer Security (TLS) Protocol Version 1.3",
            published=PublicationDate(year=2018, month=8),
            status=RfcStatus.STANDARDS_TRACK,
            obsoletes=frozenset({5077, 5246, 6961}),
            updates=frozenset({5705, 6066}),
            abstract=(
                "This document specifies version 1.3 of the Transport Layer Security "
                "(TLS) protocol. TLS allows client/server applications to communicate "
                "over the Internet in a way that is designed to prevent eavesdropping, "
                "tampering, and message forgery."
            ),
        ),
        RfcRecord(
            number=9110,
            title="HTTP Semantics",
            published=PublicationDate(year=2022, month=6),
            status=RfcStatus.STANDARDS_TRACK,
        ),
    ]


@pytest.fixture()
def sample_index(sample_records: list[RfcRecord]) -> SearchIndex:
    return build_index(CatalogSnapshot(version=1, records=tuple(sample_records)))


@pytest.fixture()
async def db() -> AsyncIterator[aiosqlite.Connection]:
    async with aiosqlite.connect(":memory:") as conn:
        yield conn


@pytest.fixture()
async def cache(db: aiosqlite.Connection, tmp_path: Path) -> ContentCache:
    """ContentCache over an in-memory database and a temporary blob dir."""
    content_cache = ContentCache(db, tmp_path / "blobs", ttl_hours=24, max_bytes=1024 * 1024)
    await content_cache.init_db()
    return content_cache


@pytest.fixture()
async def catalog(db: aiosqlite.Connection, cache: ContentCache) -> CatalogStore:
    store = CatalogStore(db, cache)
    await store.init_db()
    return store


@pytest.fixture()
async def populated_catalog(
    catalog: CatalogStore, sample_records: list[RfcRecord]
) -> CatalogStore:
    await catalog.upsert_many(sample_records)
    return catalog
