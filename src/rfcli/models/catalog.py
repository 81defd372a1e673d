from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

_DATE_RE = re.compile(r"^(\d{4})(?:-(\d{2}))?(?:-(\d{2}))?$")


class RfcStatus(StrEnum):
    INFORMATIONAL = "Informational"
    STANDARDS_TRACK = "Standards Track"
    BEST_CURRENT_PRACTICE = "Best Current Practice"
    EXPERIMENTAL = "Experimental"
    HISTORIC = "Historic"
    UNKNOWN = "Unknown"


class PublicationDate(BaseModel):
    """Calendar date with the precision the source supplied."""

    model_config = ConfigDict(frozen=True)

    year: int = Field(ge=1900, le=9999)
    month: int | None = Field(default=None, ge=1, le=12)
    day: int | None = Field(default=None, ge=1, le=31)

    @model_validator(mode="after")
    def _day_needs_month(self) -> PublicationDate:
        if self.day is not None and self.month is None:
            raise ValueError("day given without month")
        return self

    def __str__(self) -> str:
        text = f"{self.year:04d}"
        if self.month is not None:
            text += f"-{self.month:02d}"
        if self.day is not None:
            text += f"-{self.day:02d}"
        return text

    @classmethod
    def parse(cls, text: str) -> PublicationDate:
        match = _DATE_RE.match(text.strip())
        if match is None:
            raise ValueError(f"Invalid publication date: {text!r}")
        year, month, day = match.groups()
        return cls(
            year=int(year),
            month=int(month) if month else None,
            day=int(day) if day else None,
        )


class RfcRecord(BaseModel):
    """Single RFC known to the catalog.

    Relation sets may reference RFCs that have no record of their own.
    """

    model_config = ConfigDict(frozen=True)

    number: int = Field(gt=0)
    title: str
    published: PublicationDate | None = None
    status: RfcStatus = RfcStatus.UNKNOWN
    obsoletes: frozenset[int] = frozenset()
    obsoleted_by: frozenset[int] = frozenset()
    updates: frozenset[int] = frozenset()
    updated_by: frozenset[int] = frozenset()
    also: tuple[str, ...] = ()  # Sub-series designations, e.g. "BCP0014"
    abstract: str | None = None

    @field_validator("title")
    @classmethod
    def validate_title(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("title must not be empty")
        return v


@dataclass(frozen=True)
class CatalogSnapshot:
    """Immutable view of the catalog at a given version, ordered by number."""

    version: int
    records: tuple[RfcRecord, ...] = ()


class CatalogSummary(BaseModel):
    """Listing row: record essentials plus cache bookkeeping."""

    number: int
    title: str
    status: RfcStatus
    published: str | None
    has_body: bool = False
    has_tldr: bool = False
    tldr_cached_at: datetime | None = None
