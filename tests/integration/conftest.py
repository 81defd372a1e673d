"""Integration test fixtures.

Provides a fully wired AppState (built by ``open_state`` against a temporary
database and blob directory) with a real httpx client that tests mock with
respx, plus the baseline environment for subprocess-based MCP tests.
"""

from __future__ import annotations

import asyncio
import os
from typing import TYPE_CHECKING

import httpx
import pytest

from rfcli.config import Settings
from rfcli.models.cache import CacheKind
from rfcli.runtime import open_state

if TYPE_CHECKING:
    from collections.abc import AsyncIterator
    from pathlib import Path

    from rfcli.models.catalog import RfcRecord
    from rfcli.state import AppState

BASE_URL = "https://rfc.test/rfc"
# Nothing listens on port 1, so catalog refreshes fail fast.
UNREACHABLE_INDEX_URL = "http://127.0.0.1:1/rfc-index.txt"


def _settings(tmp_path: Path) -> Settings:
    return Settings(
        cache={"db_path": str(tmp_path / "rfcli.db"), "blob_dir": str(tmp_path / "blobs")},
        catalog={"index_url": UNREACHABLE_INDEX_URL},
        fetcher={"base_url": BASE_URL, "backoff_seconds": 0, "max_retries": 1},
        summarizer={"backend": "extractive"},
    )


@pytest.fixture()
async def app_state(tmp_path: Path, sample_records: list[RfcRecord]) -> AsyncIterator[AppState]:
    """AppState over a temporary database, seeded with the sample catalog."""
    async with (
        httpx.AsyncClient() as client,
        open_state(_settings(tmp_path), http_client=client) as state,
    ):
        await state.catalog.upsert_many(sample_records)
        await state.catalog.mark_refreshed()
        yield state


@pytest.fixture()
def subprocess_env(tmp_path: Path, sample_records: list[RfcRecord]) -> dict[str, str]:
    """Baseline env dict for subprocess-based MCP integration tests.

    Points all data paths at an isolated tmp directory seeded with the sample
    catalog and a cached TLDR for RFC 8446, so no tool call needs the network.
    """

    async def _seed() -> None:
        async with open_state(_settings(tmp_path)) as state:
            await state.catalog.upsert_many(sample_records)
            await state.catalog.mark_refreshed()
            await state.cache.put(8446, CacheKind.TLDR, "- TLS 1.3: faster, safer handshakes")

    asyncio.run(_seed())

    env = os.environ.copy()
    env.pop("GROQ_API_KEY", None)
    env["RFCLI__CACHE__DB_PATH"] = str(tmp_path / "rfcli.db")
    env["RFCLI__CACHE__BLOB_DIR"] = str(tmp_path / "blobs")
    env["RFCLI__CATALOG__INDEX_URL"] = UNREACHABLE_INDEX_URL
    env["RFCLI__FETCHER__BASE_URL"] = "http://127.0.0.1:1/rfc"
    env["RFCLI__SUMMARIZER__BACKEND"] = "extractive"
    return env
