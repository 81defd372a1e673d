from __future__ import annotations

from rfcli.models.cache import CacheEntry, CacheKind
from rfcli.models.catalog import (
    CatalogSnapshot,
    CatalogSummary,
    PublicationDate,
    RfcRecord,
    RfcStatus,
)
from rfcli.models.search import IndexEntry, SearchHit, SearchIndex
from rfcli.models.tools import (
    GetTldrInput,
    GetTldrOutput,
    ListCatalogInput,
    ListCatalogOutput,
    ReadRfcInput,
    ReadRfcOutput,
    SearchRfcsInput,
    SearchRfcsOutput,
)

__all__ = [
    # catalog
    "RfcStatus",
    "PublicationDate",
    "RfcRecord",
    "CatalogSnapshot",
    "CatalogSummary",
    # cache
    "CacheKind",
    "CacheEntry",
    # search
    "IndexEntry",
    "SearchIndex",
    "SearchHit",
    # tools
    "SearchRfcsInput",
    "SearchRfcsOutput",
    "GetTldrInput",
    "GetTldrOutput",
    "ListCatalogInput",
    "ListCatalogOutput",
    "ReadRfcInput",
    "ReadRfcOutput",
]
