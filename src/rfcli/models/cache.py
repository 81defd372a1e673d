from __future__ import annotations

from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel


class CacheKind(StrEnum):
    RAW_BODY = "raw_body"
    TLDR = "tldr"


class CacheEntry(BaseModel):
    """A live cached blob for one (number, kind) pair."""

    number: int
    kind: CacheKind
    content: bytes
    content_hash: str  # SHA-256 hex of content
    size: int
    fetched_at: datetime

    @property
    def text(self) -> str:
        return self.content.decode("utf-8", errors="replace")
