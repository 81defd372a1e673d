"""Catalog Source: the rfc-editor ``rfc-index.txt`` feed and catalog refresh.

The index is plain text. After a free-form preamble, each RFC is one
blank-line separated entry whose first line starts with the zero-padded
number at column zero and whose continuation lines are indented::

    8446 The Transport Layer Security (TLS) Protocol Version 1.3. E.
         Rescorla. August 2018. (Format: HTML, TXT, PDF, XML) (Obsoletes
         RFC5077, RFC5246, RFC6961) (Updates RFC5705, RFC6066) (Status:
         PROPOSED STANDARD) (DOI: 10.17487/RFC8446)

Numbers that were never issued carry the text ``Not Issued.`` and are
skipped.
"""

from __future__ import annotations

import re
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Literal

import structlog
from pydantic import ValidationError

from rfcli.errors import ErrorCode, RfcliError
from rfcli.models.catalog import PublicationDate, RfcRecord, RfcStatus

if TYPE_CHECKING:
    from collections.abc import Iterator

    from rfcli.catalog import CatalogStore
    from rfcli.fetcher import RfcFetcher
    from rfcli.protocols import CatalogSourceProtocol
    from rfcli.state import AppState

log = structlog.get_logger()

CATALOG_INITIAL_BACKOFF_SECONDS = 60
CATALOG_MAX_BACKOFF_SECONDS = 60 * 60
CATALOG_MAX_TRANSIENT_BACKOFF_ATTEMPTS = 8

CatalogRefreshOutcome = Literal["success", "transient_failure", "semantic_failure"]

_MONTHS = (
    "January",
    "February",
    "March",
    "April",
    "May",
    "June",
    "July",
    "August",
    "September",
    "October",
    "November",
    "December",
)

_ENTRY_START_RE = re.compile(r"^(\d{4,5})\s+(\S.*)$")
_ATTRIBUTE_RE = re.compile(
    r"\((Format|Status|Obsoletes|Obsoleted by|Updates|Updated by|Also|DOI):?\s*([^)]*)\)"
)
_DATE_RE = re.compile(
    r"(?:(\d{1,2})\s+)?(" + "|".join(_MONTHS) + r")\s+(\d{4})\.?\s*$"
)
# Start of the author list: ". E. Rescorla", ". S.D. Crocker", ". J-P. Vasseur"
_AUTHORS_RE = re.compile(r"\.\s+(?:[A-Z][a-z]?|[A-Z]-[A-Z])\.")
_RFC_REF_RE = re.compile(r"RFC0*(\d+)")

_STATUS_MAP = {
    "INFORMATIONAL": RfcStatus.INFORMATIONAL,
    "PROPOSED STANDARD": RfcStatus.STANDARDS_TRACK,
    "DRAFT STANDARD": RfcStatus.STANDARDS_TRACK,
    "INTERNET STANDARD": RfcStatus.STANDARDS_TRACK,
    "STANDARD": RfcStatus.STANDARDS_TRACK,
    "BEST CURRENT PRACTICE": RfcStatus.BEST_CURRENT_PRACTICE,
    "EXPERIMENTAL": RfcStatus.EXPERIMENTAL,
    "HISTORIC": RfcStatus.HISTORIC,
}


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------


def _iter_entries(text: str) -> Iterator[tuple[int, str]]:
    """Yield (number, collapsed entry text) for each numbered entry."""
    number: int | None = None
    parts: list[str] = []
    for line in text.splitlines():
        if line[:1].isspace() and number is not None:
            parts.append(line.strip())
            continue
        if number is not None:
            yield number, " ".join(" ".join(parts).split())
            number, parts = None, []
        match = _ENTRY_START_RE.match(line)
        if match:
            number = int(match.group(1))
            parts = [match.group(2)]
    if number is not None:
        yield number, " ".join(" ".join(parts).split())


def _parse_title(head: str) -> str:
    match = _AUTHORS_RE.search(head)
    if match is not None:
        return head[: match.start()].strip()
    # Corporate authors ("IAB.", "IESG.") have no initials to anchor on.
    if ". " in head:
        return head.rsplit(". ", 1)[0].strip()
    return head.rstrip(".").strip()


def _parse_refs(raw: str) -> frozenset[int]:
    return frozenset(int(n) for n in _RFC_REF_RE.findall(raw))


def parse_entry(number: int, text: str) -> RfcRecord | None:
    """Parse one collapsed index entry. Returns None for unissued numbers."""
    if text.startswith("Not Issued"):
        return None

    first_attr = _ATTRIBUTE_RE.search(text)
    head = text[: first_attr.start()] if first_attr else text
    head = head.strip()

    published: PublicationDate | None = None
    date_match = _DATE_RE.search(head)
    if date_match is not None:
        day, month_name, year = date_match.groups()
        published = PublicationDate(
            year=int(year),
            month=_MONTHS.index(month_name) + 1,
            day=int(day) if day else None,
        )
        head = head[: date_match.start()].strip()

    fields: dict[str, object] = {}
    also: list[str] = []
    for name, value in _ATTRIBUTE_RE.findall(text):
        value = value.strip()
        if name == "Status":
            fields["status"] = _STATUS_MAP.get(value.upper(), RfcStatus.UNKNOWN)
        elif name == "Obsoletes":
            fields["obsoletes"] = _parse_refs(value)
        elif name == "Obsoleted by":
            fields["obsoleted_by"] = _parse_refs(value)
        elif name == "Updates":
            fields["updates"] = _parse_refs(value)
        elif name == "Updated by":
            fields["updated_by"] = _parse_refs(value)
        elif name == "Also":
            also.extend(part.strip() for part in value.split(",") if part.strip())

    return RfcRecord(
        number=number,
        title=_parse_title(head),
        published=published,
        also=tuple(also),
        **fields,
    )


def parse_rfc_index(text: str) -> list[RfcRecord]:
    """Parse the full ``rfc-index.txt`` document into records ordered by number."""
    records: dict[int, RfcRecord] = {}
    skipped = 0
    for number, entry in _iter_entries(text):
        try:
            record = parse_entry(number, entry)
        except (ValidationError, ValueError):
            log.debug("rfc_index_entry_invalid", number=number, exc_info=True)
            skipped += 1
            continue
        if record is not None:
            records[number] = record
    log.debug("rfc_index_parsed", records=len(records), skipped=skipped)
    return [records[n] for n in sorted(records)]


# ---------------------------------------------------------------------------
# Source
# ---------------------------------------------------------------------------


class RfcIndexSource:
    """CatalogSourceProtocol backed by the rfc-editor index file."""

    def __init__(self, fetcher: RfcFetcher, url: str) -> None:
        self._fetcher = fetcher
        self._url = url

    async def fetch_records(self) -> list[RfcRecord]:
        text = await self._fetcher.fetch_text(self._url)
        records = parse_rfc_index(text)
        if not records:
            raise RfcliError(
                code=ErrorCode.FETCH_FAILED,
                message=f"No RFC entries found in {self._url}",
                suggestion="Check that catalog.index_url points at rfc-index.txt.",
                recoverable=False,
            )
        return records


# ---------------------------------------------------------------------------
# Refresh
# ---------------------------------------------------------------------------


async def refresh_catalog(catalog: CatalogStore, source: CatalogSourceProtocol) -> int:
    """Upsert every record from ``source`` in one transaction. Returns the count.

    Abstracts are not part of the index feed; ones already learned from
    fetched bodies are carried over onto the refreshed records.
    """
    records = await source.fetch_records()
    abstracts = {
        record.number: record.abstract
        async for record in catalog.list_records()
        if record.abstract
    }
    merged = [
        record.model_copy(update={"abstract": abstracts[record.number]})
        if record.abstract is None and record.number in abstracts
        else record
        for record in records
    ]
    count = await catalog.upsert_many(merged)
    await catalog.mark_refreshed()
    log.info("catalog_refreshed", records=count, version=catalog.version)
    return count


async def catalog_refresh_is_due(catalog: CatalogStore, interval_hours: float) -> bool:
    """Return True if interval_hours have elapsed since the last refresh.

    Falls through to True when the catalog has never been refreshed.
    """
    last_refreshed = await catalog.last_refreshed_at()
    if last_refreshed is None:
        return True
    return datetime.now(UTC) - last_refreshed >= timedelta(hours=interval_hours)


async def check_for_catalog_update(state: AppState) -> CatalogRefreshOutcome:
    """Refresh the catalog and classify the result for the scheduler."""
    try:
        await refresh_catalog(state.catalog, state.source)
    except RfcliError as exc:
        outcome: CatalogRefreshOutcome = (
            "transient_failure" if exc.recoverable else "semantic_failure"
        )
        log.warning("catalog_refresh_failed", code=exc.code, message=exc.message, outcome=outcome)
        return outcome
    return "success"


async def ensure_catalog(state: AppState, *, force: bool = False) -> None:
    """Refresh the catalog when forced, empty, or due.

    A failed refresh of a non-empty catalog is logged and the stale catalog
    is kept; with nothing to fall back on the error propagates.
    """
    interval = state.settings.catalog.refresh_interval_hours
    empty = await state.catalog.count() == 0
    if not (force or empty or await catalog_refresh_is_due(state.catalog, interval)):
        return

    try:
        await refresh_catalog(state.catalog, state.source)
    except RfcliError as exc:
        if force or empty:
            raise
        log.warning("catalog_refresh_skipped", code=exc.code, message=exc.message)
