"""Unit tests for rfcli.catalog."""

from __future__ import annotations

from typing import TYPE_CHECKING

import aiosqlite
import pytest

from rfcli.catalog import CatalogStore
from rfcli.errors import ErrorCode, RfcliError
from rfcli.models.cache import CacheKind
from rfcli.models.catalog import PublicationDate, RfcRecord, RfcStatus

if TYPE_CHECKING:
    from rfcli.cache import ContentCache


class TestUpsertAndGet:
    async def test_round_trip_preserves_every_field(
        self, catalog: CatalogStore, sample_records: list[RfcRecord]
    ) -> None:
        record = sample_records[2]  # 8446, with relations and abstract
        await catalog.upsert(record)
        assert await catalog.get(record.number) == record

    async def test_round_trip_keeps_designations_with_spaces(self, catalog: CatalogStore) -> None:
        record = RfcRecord(number=2119, title="Key words", also=("BCP 14", "STD0001"))
        await catalog.upsert(record)

        stored = await catalog.get(2119)
        assert stored == record
        assert stored.also == ("BCP 14", "STD0001")

    async def test_upsert_accepts_mapping(self, catalog: CatalogStore) -> None:
        stored = await catalog.upsert({"number": 1, "title": "  Host Software  "})
        assert stored.title == "Host Software"
        assert (await catalog.get(1)).status == RfcStatus.UNKNOWN

    async def test_upsert_replaces_existing(self, catalog: CatalogStore) -> None:
        await catalog.upsert(RfcRecord(number=7, title="Old"))
        await catalog.upsert(RfcRecord(number=7, title="New"))
        assert (await catalog.get(7)).title == "New"
        assert await catalog.count() == 1

    @pytest.mark.parametrize(
        "raw",
        [
            {"number": 0, "title": "Zero"},
            {"number": -5, "title": "Negative"},
            {"number": 12, "title": "   "},
        ],
    )
    async def test_invalid_record_rejected(self, catalog: CatalogStore, raw: dict) -> None:
        with pytest.raises(RfcliError) as exc_info:
            await catalog.upsert(raw)
        assert exc_info.value.code == ErrorCode.VALIDATION_ERROR
        assert await catalog.count() == 0

    async def test_model_construct_bypass_is_caught(self, catalog: CatalogStore) -> None:
        bogus = RfcRecord.model_construct(number=-1, title="")
        with pytest.raises(RfcliError) as exc_info:
            await catalog.upsert(bogus)
        assert exc_info.value.code == ErrorCode.VALIDATION_ERROR

    async def test_get_unknown_raises_not_found(self, catalog: CatalogStore) -> None:
        with pytest.raises(RfcliError) as exc_info:
            await catalog.get(424242)
        assert exc_info.value.code == ErrorCode.RFC_NOT_FOUND

    async def test_find_unknown_returns_none(self, catalog: CatalogStore) -> None:
        assert await catalog.find(424242) is None

    async def test_partial_publication_date_survives(self, catalog: CatalogStore) -> None:
        record = RfcRecord(number=1, title="Host Software", published=PublicationDate(year=1969))
        await catalog.upsert(record)
        assert (await catalog.get(1)).published == PublicationDate(year=1969)


class TestBulkUpsert:
    async def test_one_version_bump_for_many_records(
        self, catalog: CatalogStore, sample_records: list[RfcRecord]
    ) -> None:
        before = catalog.version
        count = await catalog.upsert_many(sample_records)
        assert count == len(sample_records)
        assert catalog.version == before + 1

    async def test_one_invalid_record_writes_nothing(self, catalog: CatalogStore) -> None:
        with pytest.raises(RfcliError):
            await catalog.upsert_many(
                [{"number": 1, "title": "Fine"}, {"number": 2, "title": ""}]
            )
        assert await catalog.count() == 0
        assert catalog.version == 0

    async def test_empty_batch_is_noop(self, catalog: CatalogStore) -> None:
        assert await catalog.upsert_many([]) == 0
        assert catalog.version == 0


class TestVersioning:
    async def test_every_mutation_bumps_version(self, catalog: CatalogStore) -> None:
        versions = [catalog.version]
        await catalog.upsert(RfcRecord(number=1, title="A"))
        versions.append(catalog.version)
        await catalog.upsert(RfcRecord(number=2, title="B"))
        versions.append(catalog.version)
        await catalog.remove(1)
        versions.append(catalog.version)
        assert versions == sorted(set(versions))

    async def test_version_persists_across_instances(
        self, db: aiosqlite.Connection, catalog: CatalogStore
    ) -> None:
        await catalog.upsert(RfcRecord(number=1, title="A"))
        await catalog.upsert(RfcRecord(number=2, title="B"))

        reopened = CatalogStore(db)
        await reopened.init_db()
        assert reopened.version == catalog.version == 2

    async def test_snapshot_captures_version_and_order(
        self, populated_catalog: CatalogStore
    ) -> None:
        snapshot = await populated_catalog.snapshot()
        assert snapshot.version == populated_catalog.version
        numbers = [record.number for record in snapshot.records]
        assert numbers == sorted(numbers)


class TestRemove:
    async def test_remove_unknown_raises_not_found(self, catalog: CatalogStore) -> None:
        with pytest.raises(RfcliError) as exc_info:
            await catalog.remove(99)
        assert exc_info.value.code == ErrorCode.RFC_NOT_FOUND
        assert catalog.version == 0

    async def test_remove_cascades_to_cache(
        self, catalog: CatalogStore, cache: ContentCache
    ) -> None:
        await catalog.upsert(RfcRecord(number=7, title="Seven"))
        await cache.put(7, CacheKind.RAW_BODY, b"body")
        await cache.put(7, CacheKind.TLDR, "summary")

        await catalog.remove(7)

        assert await catalog.find(7) is None
        assert await cache.get(7, CacheKind.RAW_BODY) is None
        assert await cache.get(7, CacheKind.TLDR) is None


class TestListing:
    async def test_list_records_is_ordered_and_restartable(
        self, populated_catalog: CatalogStore
    ) -> None:
        first = [r.number async for r in populated_catalog.list_records()]
        second = [r.number async for r in populated_catalog.list_records()]
        assert first == second == [2119, 5246, 8446, 9110]

    async def test_count_by_status(self, populated_catalog: CatalogStore) -> None:
        assert await populated_catalog.count() == 4
        assert await populated_catalog.count(RfcStatus.STANDARDS_TRACK) == 3
        assert await populated_catalog.count(RfcStatus.HISTORIC) == 0

    async def test_summaries_include_cache_bookkeeping(
        self, populated_catalog: CatalogStore, cache: ContentCache
    ) -> None:
        await cache.put(8446, CacheKind.TLDR, "- TLS 1.3")

        summaries = await populated_catalog.list_summaries()
        by_number = {s.number: s for s in summaries}

        assert by_number[8446].has_tldr is True
        assert by_number[8446].has_body is False
        assert by_number[8446].tldr_cached_at is not None
        assert by_number[2119].has_tldr is False
        assert by_number[2119].published == "1997-03"

    async def test_summaries_paginate_and_filter(self, populated_catalog: CatalogStore) -> None:
        page = await populated_catalog.list_summaries(
            status=RfcStatus.STANDARDS_TRACK, offset=1, limit=1
        )
        assert [s.number for s in page] == [8446]


class TestMetadata:
    async def test_never_refreshed(self, catalog: CatalogStore) -> None:
        assert await catalog.last_refreshed_at() is None

    async def test_mark_refreshed(self, catalog: CatalogStore) -> None:
        await catalog.mark_refreshed()
        assert await catalog.last_refreshed_at() is not None

    async def test_database_failure_surfaces_as_io_error(
        self, db: aiosqlite.Connection, catalog: CatalogStore
    ) -> None:
        await db.execute("DROP TABLE rfc_records")

        with pytest.raises(RfcliError) as exc_info:
            await catalog.find(1)
        assert exc_info.value.code == ErrorCode.CACHE_IO_ERROR
