"""SQLite-backed catalog of RFC metadata with a versioned snapshot model.

The CatalogStore exclusively owns RfcRecords. Every mutation bumps a
monotonically increasing catalog version (persisted alongside the records in
the same transaction); the Index Builder compares that version against the
one captured in its in-memory index to decide when to rebuild.

Unlike the Content Cache's best-effort reads, database failures here surface
to the caller as ``CACHE_IO_ERROR``: they indicate a broken local
environment and are never retried silently.
"""

from __future__ import annotations

import asyncio
import json
from collections.abc import Mapping
from datetime import UTC, datetime
from typing import TYPE_CHECKING

import aiosqlite
import structlog
from pydantic import ValidationError

from rfcli.errors import ErrorCode, RfcliError
from rfcli.models.catalog import (
    CatalogSnapshot,
    CatalogSummary,
    PublicationDate,
    RfcRecord,
    RfcStatus,
)

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Iterable

    from rfcli.cache import ContentCache

log = structlog.get_logger()

_CREATE_RECORDS_TABLE = """
CREATE TABLE IF NOT EXISTS rfc_records (
    number       INTEGER PRIMARY KEY,
    title        TEXT NOT NULL,
    published    TEXT,
    status       TEXT NOT NULL,
    obsoletes    TEXT NOT NULL DEFAULT '',
    obsoleted_by TEXT NOT NULL DEFAULT '',
    updates      TEXT NOT NULL DEFAULT '',
    updated_by   TEXT NOT NULL DEFAULT '',
    also         TEXT NOT NULL DEFAULT '',
    abstract     TEXT
)
"""

CREATE_METADATA_TABLE = """
CREATE TABLE IF NOT EXISTS rfcli_metadata (
    key   TEXT PRIMARY KEY,
    value TEXT NOT NULL
)
"""

_SELECT_COLUMNS = (
    "SELECT number, title, published, status, obsoletes, obsoleted_by, "
    "updates, updated_by, also, abstract FROM rfc_records"
)

_VERSION_KEY = "catalog_version"
_LAST_REFRESH_KEY = "catalog_last_refreshed_at"


class CatalogStore:
    """Durable record table keyed by RFC number."""

    def __init__(self, db: aiosqlite.Connection, cache: ContentCache | None = None) -> None:
        self._db = db
        self._cache = cache
        self._version = 0
        self._lock = asyncio.Lock()

    async def init_db(self) -> None:
        """Create tables and load the persisted catalog version."""
        try:
            await self._db.execute(_CREATE_RECORDS_TABLE)
            await self._db.execute(CREATE_METADATA_TABLE)
            await self._db.commit()
            raw = await self.get_metadata(_VERSION_KEY)
        except aiosqlite.Error as exc:
            raise _io_error("init", exc) from exc
        self._version = int(raw) if raw is not None else 0

    @property
    def version(self) -> int:
        return self._version

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    async def upsert(self, record: RfcRecord | Mapping) -> RfcRecord:
        """Insert or replace a record by number. Returns the validated record."""
        validated = _validate(record)
        async with self._lock:
            try:
                await self._db.execute(_UPSERT_SQL, _to_row(validated))
                await self._commit_with_version_bump()
            except aiosqlite.Error as exc:
                await self._rollback()
                raise _io_error("upsert", exc, number=validated.number) from exc
        log.debug("catalog_upsert", number=validated.number, version=self._version)
        return validated

    async def upsert_many(self, records: Iterable[RfcRecord | Mapping]) -> int:
        """Bulk insert-or-replace in a single transaction and version bump.

        Every record is validated before anything is written, so one bad
        record leaves the catalog untouched.
        """
        validated = [_validate(record) for record in records]
        if not validated:
            return 0
        async with self._lock:
            try:
                await self._db.executemany(_UPSERT_SQL, [_to_row(r) for r in validated])
                await self._commit_with_version_bump()
            except aiosqlite.Error as exc:
                await self._rollback()
                raise _io_error("upsert_many", exc) from exc
        log.info("catalog_bulk_upsert", records=len(validated), version=self._version)
        return len(validated)

    async def remove(self, number: int) -> None:
        """Delete a record and cascade removal of its cache entries."""
        async with self._lock:
            try:
                cursor = await self._db.execute(
                    "DELETE FROM rfc_records WHERE number = ?", (number,)
                )
                if cursor.rowcount == 0:
                    await self._rollback()
                    raise _not_found(number)
                await self._commit_with_version_bump()
            except aiosqlite.Error as exc:
                await self._rollback()
                raise _io_error("remove", exc, number=number) from exc

        purged = await self._cache.purge(number) if self._cache is not None else 0
        log.info("catalog_remove", number=number, cache_entries_purged=purged)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get(self, number: int) -> RfcRecord:
        """Return the record for ``number`` or raise RFC_NOT_FOUND."""
        record = await self.find(number)
        if record is None:
            raise _not_found(number)
        return record

    async def find(self, number: int) -> RfcRecord | None:
        try:
            cursor = await self._db.execute(f"{_SELECT_COLUMNS} WHERE number = ?", (number,))
            row = await cursor.fetchone()
        except aiosqlite.Error as exc:
            raise _io_error("get", exc, number=number) from exc
        return _from_row(row) if row is not None else None

    async def list_records(self) -> AsyncIterator[RfcRecord]:
        """Yield every record ordered by number.

        Each call opens a fresh cursor, so the sequence is restartable.
        """
        try:
            async with self._db.execute(f"{_SELECT_COLUMNS} ORDER BY number") as cursor:
                async for row in cursor:
                    yield _from_row(row)
        except aiosqlite.Error as exc:
            raise _io_error("list", exc) from exc

    async def count(self, status: RfcStatus | None = None) -> int:
        try:
            if status is None:
                cursor = await self._db.execute("SELECT COUNT(*) FROM rfc_records")
            else:
                cursor = await self._db.execute(
                    "SELECT COUNT(*) FROM rfc_records WHERE status = ?", (status.value,)
                )
            row = await cursor.fetchone()
        except aiosqlite.Error as exc:
            raise _io_error("count", exc) from exc
        return int(row[0]) if row else 0

    async def snapshot(self) -> CatalogSnapshot:
        """Capture the version and all records consistently."""
        async with self._lock:
            records = tuple([record async for record in self.list_records()])
            return CatalogSnapshot(version=self._version, records=records)

    async def list_summaries(
        self,
        *,
        status: RfcStatus | None = None,
        offset: int = 0,
        limit: int | None = None,
    ) -> list[CatalogSummary]:
        """Listing rows ordered by number, joined with cache bookkeeping."""
        sql = f"{_SELECT_COLUMNS}"
        params: list[object] = []
        if status is not None:
            sql += " WHERE status = ?"
            params.append(status.value)
        sql += " ORDER BY number LIMIT ? OFFSET ?"
        params.extend([limit if limit is not None else -1, offset])
        try:
            cursor = await self._db.execute(sql, params)
            rows = await cursor.fetchall()
        except aiosqlite.Error as exc:
            raise _io_error("list_summaries", exc) from exc

        records = [_from_row(row) for row in rows]
        bookkeeping = (
            await self._cache.bookkeeping([r.number for r in records])
            if self._cache is not None
            else {}
        )

        summaries: list[CatalogSummary] = []
        for record in records:
            kinds = bookkeeping.get(record.number, {})
            summaries.append(
                CatalogSummary(
                    number=record.number,
                    title=record.title,
                    status=record.status,
                    published=str(record.published) if record.published else None,
                    has_body="raw_body" in kinds,
                    has_tldr="tldr" in kinds,
                    tldr_cached_at=kinds.get("tldr"),
                )
            )
        return summaries

    # ------------------------------------------------------------------
    # Metadata
    # ------------------------------------------------------------------

    async def get_metadata(self, key: str) -> str | None:
        cursor = await self._db.execute("SELECT value FROM rfcli_metadata WHERE key = ?", (key,))
        row = await cursor.fetchone()
        return row[0] if row is not None else None

    async def set_metadata(self, key: str, value: str) -> None:
        await self._db.execute(
            "INSERT OR REPLACE INTO rfcli_metadata (key, value) VALUES (?, ?)", (key, value)
        )
        await self._db.commit()

    async def last_refreshed_at(self) -> datetime | None:
        """When the catalog was last refreshed from its source, if ever."""
        try:
            raw = await self.get_metadata(_LAST_REFRESH_KEY)
            return datetime.fromisoformat(raw) if raw else None
        except (aiosqlite.Error, ValueError):
            log.warning("catalog_metadata_read_error", key=_LAST_REFRESH_KEY, exc_info=True)
            return None

    async def mark_refreshed(self) -> None:
        try:
            await self.set_metadata(_LAST_REFRESH_KEY, datetime.now(UTC).isoformat())
        except aiosqlite.Error as exc:
            raise _io_error("mark_refreshed", exc) from exc

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _commit_with_version_bump(self) -> None:
        new_version = self._version + 1
        await self._db.execute(
            "INSERT OR REPLACE INTO rfcli_metadata (key, value) VALUES (?, ?)",
            (_VERSION_KEY, str(new_version)),
        )
        await self._db.commit()
        self._version = new_version

    async def _rollback(self) -> None:
        try:
            await self._db.rollback()
        except aiosqlite.Error:
            log.warning("catalog_rollback_error", exc_info=True)


_UPSERT_SQL = (
    "INSERT OR REPLACE INTO rfc_records "
    "(number, title, published, status, obsoletes, obsoleted_by, updates, updated_by, "
    "also, abstract) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)"
)


def _validate(record: RfcRecord | Mapping) -> RfcRecord:
    """Re-validate at the store boundary (catches model_construct'ed records too)."""
    try:
        if isinstance(record, RfcRecord):
            return RfcRecord.model_validate(record.model_dump())
        return RfcRecord.model_validate(dict(record))
    except ValidationError as exc:
        raise RfcliError(
            code=ErrorCode.VALIDATION_ERROR,
            message=f"Invalid RFC record: {exc.errors()[0]['msg']}",
            suggestion="RFC numbers must be positive and titles non-empty.",
            recoverable=False,
        ) from exc


def _join_numbers(numbers: frozenset[int]) -> str:
    return " ".join(str(n) for n in sorted(numbers))


def _split_numbers(raw: str) -> frozenset[int]:
    return frozenset(int(part) for part in raw.split())


def _to_row(record: RfcRecord) -> tuple:
    return (
        record.number,
        record.title,
        str(record.published) if record.published else None,
        record.status.value,
        _join_numbers(record.obsoletes),
        _join_numbers(record.obsoleted_by),
        _join_numbers(record.updates),
        _join_numbers(record.updated_by),
        json.dumps(list(record.also)),
        record.abstract,
    )


def _from_row(row: tuple) -> RfcRecord:
    return RfcRecord(
        number=row[0],
        title=row[1],
        published=PublicationDate.parse(row[2]) if row[2] else None,
        status=RfcStatus(row[3]),
        obsoletes=_split_numbers(row[4]),
        obsoleted_by=_split_numbers(row[5]),
        updates=_split_numbers(row[6]),
        updated_by=_split_numbers(row[7]),
        also=tuple(json.loads(row[8])) if row[8] else (),
        abstract=row[9],
    )


def _not_found(number: int) -> RfcliError:
    return RfcliError(
        code=ErrorCode.RFC_NOT_FOUND,
        message=f"RFC {number} is not in the local catalog.",
        suggestion="Run 'rfcli refresh' to update the catalog, or search by title.",
        recoverable=False,
    )


def _io_error(action: str, exc: Exception, **context: object) -> RfcliError:
    log.error("catalog_io_error", action=action, error=str(exc), **context)
    return RfcliError(
        code=ErrorCode.CACHE_IO_ERROR,
        message=f"Catalog {action} failed: {exc}",
        suggestion="Check that the cache directory is writable and not corrupted.",
        recoverable=False,
    )
