from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Literal

from pydantic import BaseModel

if TYPE_CHECKING:
    from rfcli.models.catalog import RfcRecord

MatchedField = Literal["title", "excerpt", "number"]


@dataclass(frozen=True)
class IndexEntry:
    """Searchable form of one RfcRecord. Derived, never persisted."""

    record: RfcRecord
    # Lower-cased title, same length as record.title so match positions
    # can highlight the original text.
    haystack: str
    bonuses: tuple[int, ...]
    tokens: frozenset[str]
    excerpt: str = ""
    excerpt_bonuses: tuple[int, ...] = ()

    @property
    def number(self) -> int:
        return self.record.number


@dataclass(frozen=True)
class SearchIndex:
    """Immutable in-memory index built from one catalog snapshot.

    Entries are ordered by RFC number; ``vocabulary`` is the sorted union
    of all tokens (used for "did you mean" suggestions).
    """

    version: int = 0
    entries: tuple[IndexEntry, ...] = ()
    by_number: dict[int, IndexEntry] = field(default_factory=dict)
    vocabulary: tuple[str, ...] = ()
    excerpt_chars: int = 0


class SearchHit(BaseModel):
    """Single ranked result returned by the matcher."""

    number: int
    title: str
    score: int
    matched_field: MatchedField | None  # None in browse mode
    positions: list[int] = []  # Offsets into the matched field
