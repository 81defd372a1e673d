"""Content cache for RFC bodies and derived TLDRs.

Blobs live on disk, one file per (number, kind, content hash); an index row
per (number, kind) in SQLite points at the live blob. A put writes the blob
to a temporary file, fsyncs it and promotes it with ``os.replace`` before the
index row is swapped in a single transaction, so readers observe either the
old entry or the new one, never a torn write.

Freshness is lazy: entries older than ``ttl_hours`` read as a miss but stay
on disk until ``cleanup_expired`` runs. Size is bounded: after each put the
least-recently-accessed entries are evicted until the total fits
``max_bytes``. Blobs being read are pinned and never unlinked underneath a
reader; their deletion is deferred until the last reader lets go.

Failures surface as ``CACHE_IO_ERROR``; the caller decides what to do.
"""

from __future__ import annotations

import asyncio
import hashlib
import os
import secrets
import sys
from collections import Counter
from contextlib import asynccontextmanager, suppress
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import TYPE_CHECKING

import aiosqlite
import structlog

from rfcli.catalog import CREATE_METADATA_TABLE
from rfcli.errors import ErrorCode, RfcliError
from rfcli.models.cache import CacheEntry, CacheKind

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Iterable

log = structlog.get_logger()

_CREATE_CACHE_TABLE = """
CREATE TABLE IF NOT EXISTS content_cache (
    rfc_number   INTEGER NOT NULL,
    kind         TEXT NOT NULL,
    content_hash TEXT NOT NULL,
    blob_name    TEXT NOT NULL,
    size         INTEGER NOT NULL,
    fetched_at   TEXT NOT NULL,
    last_access  INTEGER NOT NULL,
    PRIMARY KEY (rfc_number, kind)
)
"""

_CREATE_ACCESS_INDEX = (
    "CREATE INDEX IF NOT EXISTS idx_content_last_access ON content_cache(last_access)"
)

_BLOB_SUFFIX = ".blob"


class ContentCache:
    """Key-addressed blob cache implementing CacheProtocol."""

    def __init__(
        self,
        db: aiosqlite.Connection,
        blob_dir: Path,
        *,
        ttl_hours: float,
        max_bytes: int,
    ) -> None:
        self._db = db
        self._blob_dir = blob_dir
        self._ttl = timedelta(hours=ttl_hours)
        self._max_bytes = max_bytes
        self._tick = 0
        self._locks: dict[int, asyncio.Lock] = {}
        self._lock_users: Counter[int] = Counter()
        self._pins: Counter[str] = Counter()
        self._pending_unlink: set[str] = set()

    async def init_db(self) -> None:
        """Create tables and the blob directory. Called once at startup."""
        try:
            self._blob_dir.mkdir(parents=True, exist_ok=True)
            await self._db.execute("PRAGMA journal_mode = WAL")
            await self._db.execute(_CREATE_CACHE_TABLE)
            await self._db.execute(_CREATE_ACCESS_INDEX)
            await self._db.execute(CREATE_METADATA_TABLE)
            await self._db.commit()
            cursor = await self._db.execute("SELECT MAX(last_access) FROM content_cache")
            row = await cursor.fetchone()
        except (OSError, aiosqlite.Error) as exc:
            raise _io_error("init", exc) from exc
        self._tick = int(row[0]) if row and row[0] is not None else 0

    @property
    def max_bytes(self) -> int:
        return self._max_bytes

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get(self, number: int, kind: CacheKind) -> CacheEntry | None:
        """Return the live entry, or ``None`` on miss, expiry or corruption."""
        # A put or eviction may unlink the blob between the row read and the
        # pin; the second pass sees the row that replaced it.
        for attempt in range(2):
            row = await self._select_live(number, kind)
            if row is None:
                log.debug("cache_miss", number=number, kind=kind)
                return None

            content_hash, blob_name, size, fetched_raw = row
            fetched_at = datetime.fromisoformat(fetched_raw)
            if datetime.now(UTC) - fetched_at > self._ttl:
                log.debug("cache_expired", number=number, kind=kind, fetched_at=fetched_raw)
                return None

            try:
                content = await self._load_blob(blob_name)
            except FileNotFoundError:
                if attempt == 0:
                    continue
                log.warning("cache_blob_missing", number=number, kind=kind, blob=blob_name)
                return None
            except OSError as exc:
                raise _io_error("read", exc, number=number, kind=kind) from exc
            break

        if hashlib.sha256(content).hexdigest() != content_hash:
            log.warning("cache_hash_mismatch", number=number, kind=kind, blob=blob_name)
            return None

        try:
            await self._db.execute(
                "UPDATE content_cache SET last_access = ? WHERE rfc_number = ? AND kind = ?",
                (self._next_tick(), number, kind.value),
            )
            await self._db.commit()
        except aiosqlite.Error as exc:
            raise _io_error("touch", exc, number=number, kind=kind) from exc

        log.debug("cache_hit", number=number, kind=kind, size=size)
        return CacheEntry(
            number=number,
            kind=kind,
            content=content,
            content_hash=content_hash,
            size=size,
            fetched_at=fetched_at,
        )

    async def _select_live(self, number: int, kind: CacheKind) -> tuple | None:
        try:
            cursor = await self._db.execute(
                "SELECT content_hash, blob_name, size, fetched_at FROM content_cache "
                "WHERE rfc_number = ? AND kind = ?",
                (number, kind.value),
            )
            return await cursor.fetchone()
        except aiosqlite.Error as exc:
            raise _io_error("read", exc, number=number, kind=kind) from exc

    async def _load_blob(self, blob_name: str) -> bytes:
        """Read a blob while it is pinned against unlinking."""
        self._pins[blob_name] += 1
        try:
            return await asyncio.to_thread(self._blob_path(blob_name).read_bytes)
        finally:
            self._unpin(blob_name)

    async def bookkeeping(self, numbers: Iterable[int]) -> dict[int, dict[str, datetime]]:
        """Map each cached number to ``{kind: fetched_at}`` for its present entries."""
        wanted = list(numbers)
        if not wanted:
            return {}
        placeholders = ", ".join("?" for _ in wanted)
        try:
            cursor = await self._db.execute(
                "SELECT rfc_number, kind, fetched_at FROM content_cache "
                f"WHERE rfc_number IN ({placeholders})",
                wanted,
            )
            rows = await cursor.fetchall()
        except aiosqlite.Error as exc:
            raise _io_error("bookkeeping", exc) from exc

        result: dict[int, dict[str, datetime]] = {}
        for number, kind, fetched_raw in rows:
            result.setdefault(number, {})[kind] = datetime.fromisoformat(fetched_raw)
        return result

    async def stats(self) -> dict:
        try:
            cursor = await self._db.execute(
                "SELECT kind, COUNT(*), COALESCE(SUM(size), 0) FROM content_cache GROUP BY kind"
            )
            rows = await cursor.fetchall()
        except aiosqlite.Error as exc:
            raise _io_error("stats", exc) from exc
        entries = {kind.value: 0 for kind in CacheKind}
        total = 0
        for kind, count, size in rows:
            entries[kind] = count
            total += size
        return {"entries": entries, "total_bytes": total, "max_bytes": self._max_bytes}

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def put(self, number: int, kind: CacheKind, content: bytes | str) -> CacheEntry:
        """Store content atomically, superseding any previous entry."""
        data = content.encode("utf-8") if isinstance(content, str) else content
        content_hash = hashlib.sha256(data).hexdigest()
        blob_name = f"{number}-{kind.value}-{content_hash[:16]}{_BLOB_SUFFIX}"
        now = datetime.now(UTC)

        async with self._locked(number):
            try:
                await asyncio.to_thread(self._write_blob, blob_name, data)
            except OSError as exc:
                raise _io_error("write", exc, number=number, kind=kind) from exc
            # Same content as a superseded entry: the rewritten blob is live again.
            self._pending_unlink.discard(blob_name)

            previous = None
            try:
                cursor = await self._db.execute(
                    "SELECT blob_name FROM content_cache WHERE rfc_number = ? AND kind = ?",
                    (number, kind.value),
                )
                previous = await cursor.fetchone()
                await self._db.execute(
                    "INSERT OR REPLACE INTO content_cache "
                    "(rfc_number, kind, content_hash, blob_name, size, fetched_at, last_access) "
                    "VALUES (?, ?, ?, ?, ?, ?, ?)",
                    (
                        number,
                        kind.value,
                        content_hash,
                        blob_name,
                        len(data),
                        now.isoformat(),
                        self._next_tick(),
                    ),
                )
                await self._db.commit()
            except aiosqlite.Error as exc:
                with suppress(aiosqlite.Error):
                    await self._db.rollback()
                if previous is None or previous[0] != blob_name:
                    self._discard_blob(blob_name)
                raise _io_error("write", exc, number=number, kind=kind) from exc

            if previous is not None and previous[0] != blob_name:
                self._discard_blob(previous[0])

        log.info("cache_put", number=number, kind=kind, size=len(data))
        await self._evict_to_bound(keep=(number, kind))
        return CacheEntry(
            number=number,
            kind=kind,
            content=data,
            content_hash=content_hash,
            size=len(data),
            fetched_at=now,
        )

    async def invalidate(self, number: int, kind: CacheKind) -> bool:
        """Remove one entry. Returns True if something was removed."""
        async with self._locked(number):
            removed = await self._delete_rows(
                "WHERE rfc_number = ? AND kind = ?", (number, kind.value)
            )
        if removed:
            log.info("cache_invalidate", number=number, kind=kind)
        return bool(removed)

    async def purge(self, number: int) -> int:
        """Remove every entry for ``number``. Returns the count removed."""
        async with self._locked(number):
            removed = await self._delete_rows("WHERE rfc_number = ?", (number,))
        return len(removed)

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    async def cleanup_if_due(self, interval_hours: int, grace_days: int = 7) -> None:
        """Run cleanup only if interval_hours have elapsed since the last run.

        Reads and writes ``last_cleanup_at`` from the ``rfcli_metadata`` table.
        Falls through to run cleanup if the metadata row is missing or unreadable.
        """
        try:
            cursor = await self._db.execute(
                "SELECT value FROM rfcli_metadata WHERE key = 'last_cleanup_at'"
            )
            row = await cursor.fetchone()
            if row is not None:
                last_run = datetime.fromisoformat(row[0])
                if datetime.now(UTC) - last_run < timedelta(hours=interval_hours):
                    log.debug("cache_cleanup_skipped", reason="not_due")
                    return
        except aiosqlite.Error:
            log.warning("cache_metadata_read_error", exc_info=True)

        await self.cleanup_expired(grace_days)

        try:
            await self._db.execute(
                "INSERT OR REPLACE INTO rfcli_metadata (key, value) VALUES ('last_cleanup_at', ?)",
                (datetime.now(UTC).isoformat(),),
            )
            await self._db.commit()
        except aiosqlite.Error as exc:
            raise _io_error("cleanup", exc) from exc

    async def cleanup_expired(self, grace_days: int = 7) -> int:
        """Delete entries expired more than ``grace_days`` ago and sweep orphan blobs."""
        cutoff = (datetime.now(UTC) - self._ttl - timedelta(days=grace_days)).isoformat()
        removed = await self._delete_rows("WHERE fetched_at < ?", (cutoff,))
        orphans = await self._sweep_orphans()
        log.info("cache_cleanup_complete", deleted=len(removed), orphans_removed=orphans)
        return len(removed)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    @asynccontextmanager
    async def _locked(self, number: int) -> AsyncIterator[None]:
        """Hold the write lock for ``number``; the lock is dropped once unused."""
        lock = self._locks.get(number)
        if lock is None:
            lock = self._locks[number] = asyncio.Lock()
        self._lock_users[number] += 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[number] -= 1
            if self._lock_users[number] <= 0:
                del self._lock_users[number]
                del self._locks[number]

    def _next_tick(self) -> int:
        self._tick += 1
        return self._tick

    def _blob_path(self, blob_name: str) -> Path:
        return self._blob_dir / blob_name

    def _write_blob(self, blob_name: str, data: bytes) -> None:
        final_path = self._blob_path(blob_name)
        tmp_path = self._blob_dir / f".{blob_name}.{secrets.token_hex(4)}.tmp"
        try:
            _write_bytes_fsync(tmp_path, data)
            os.replace(tmp_path, final_path)
            _fsync_directory(self._blob_dir)
        finally:
            with suppress(OSError):
                tmp_path.unlink(missing_ok=True)

    def _unpin(self, blob_name: str) -> None:
        self._pins[blob_name] -= 1
        if self._pins[blob_name] <= 0:
            del self._pins[blob_name]
            if blob_name in self._pending_unlink:
                self._pending_unlink.discard(blob_name)
                self._discard_blob(blob_name)

    def _discard_blob(self, blob_name: str) -> None:
        if self._pins[blob_name] > 0:
            self._pending_unlink.add(blob_name)
            return
        self._pins.pop(blob_name, None)
        try:
            self._blob_path(blob_name).unlink(missing_ok=True)
        except OSError:
            # Left for the orphan sweep in cleanup_expired.
            log.warning("cache_blob_unlink_error", blob=blob_name, exc_info=True)

    async def _delete_rows(self, where: str, params: tuple) -> list[str]:
        try:
            cursor = await self._db.execute(f"SELECT blob_name FROM content_cache {where}", params)
            blobs = [row[0] for row in await cursor.fetchall()]
            await self._db.execute(f"DELETE FROM content_cache {where}", params)
            await self._db.commit()
        except aiosqlite.Error as exc:
            with suppress(aiosqlite.Error):
                await self._db.rollback()
            raise _io_error("delete", exc) from exc
        for blob_name in blobs:
            self._discard_blob(blob_name)
        return blobs

    async def _evict_to_bound(self, *, keep: tuple[int, CacheKind]) -> None:
        """Drop least-recently-accessed entries until the total fits max_bytes."""
        try:
            cursor = await self._db.execute("SELECT COALESCE(SUM(size), 0) FROM content_cache")
            row = await cursor.fetchone()
            total = int(row[0]) if row else 0
            if total <= self._max_bytes:
                return
            cursor = await self._db.execute(
                "SELECT rfc_number, kind, blob_name, size FROM content_cache "
                "ORDER BY last_access ASC"
            )
            candidates = await cursor.fetchall()
        except aiosqlite.Error as exc:
            raise _io_error("evict", exc) from exc

        for number, kind, blob_name, size in candidates:
            if total <= self._max_bytes:
                break
            if (number, kind) == (keep[0], keep[1].value) or self._pins[blob_name] > 0:
                continue
            await self._delete_rows(
                "WHERE rfc_number = ? AND kind = ? AND blob_name = ?",
                (number, kind, blob_name),
            )
            total -= size
            log.info("cache_evict", number=number, kind=kind, size=size)

        if total > self._max_bytes:
            log.warning("cache_over_bound", total_bytes=total, max_bytes=self._max_bytes)

    async def _sweep_orphans(self) -> int:
        try:
            cursor = await self._db.execute("SELECT blob_name FROM content_cache")
            live = {row[0] for row in await cursor.fetchall()}
        except aiosqlite.Error as exc:
            raise _io_error("sweep", exc) from exc

        removed = 0
        for path in self._blob_dir.glob(f"*{_BLOB_SUFFIX}"):
            if path.name in live or self._pins[path.name] > 0:
                continue
            with suppress(OSError):
                path.unlink()
                removed += 1
        return removed


def _write_bytes_fsync(path: Path, data: bytes) -> None:
    with path.open("wb") as file_obj:
        file_obj.write(data)
        file_obj.flush()
        os.fsync(file_obj.fileno())


def _fsync_directory(path: Path) -> None:
    if sys.platform == "win32":
        return  # Windows does not support fsync on directory handles
    directory_fd = os.open(path, os.O_RDONLY)
    try:
        os.fsync(directory_fd)
    finally:
        os.close(directory_fd)


def _io_error(action: str, exc: Exception, **context: object) -> RfcliError:
    log.error("cache_io_error", action=action, error=str(exc), **context)
    return RfcliError(
        code=ErrorCode.CACHE_IO_ERROR,
        message=f"Cache {action} failed: {exc}",
        suggestion="Check free disk space and permissions on the cache directory.",
        recoverable=False,
    )
