from __future__ import annotations

from pydantic import BaseModel, Field, field_validator

from rfcli.models.catalog import CatalogSummary, RfcStatus
from rfcli.models.search import SearchHit

# ---------------------------------------------------------------------------
# search_rfcs
# ---------------------------------------------------------------------------


class SearchRfcsInput(BaseModel):
    query: str = Field(default="", max_length=200)
    limit: int = Field(default=20, ge=1, le=1000)


class SearchRfcsOutput(BaseModel):
    query: str
    matches: list[SearchHit]
    suggestions: list[str] = []


# ---------------------------------------------------------------------------
# get_tldr
# ---------------------------------------------------------------------------


class GetTldrInput(BaseModel):
    number: int = Field(gt=0)


class GetTldrOutput(BaseModel):
    number: int
    title: str | None
    tldr: str


# ---------------------------------------------------------------------------
# list_catalog
# ---------------------------------------------------------------------------


class ListCatalogInput(BaseModel):
    status: RfcStatus | None = None
    offset: int = Field(default=0, ge=0)
    limit: int = Field(default=50, ge=1, le=10000)

    @field_validator("status", mode="before")
    @classmethod
    def coerce_status(cls, v: object) -> object:
        # Accept "standards track", "STANDARDS_TRACK" and friends.
        if isinstance(v, str):
            wanted = v.replace("_", " ").strip().lower()
            for status in RfcStatus:
                if status.value.lower() == wanted:
                    return status
        return v


class ListCatalogOutput(BaseModel):
    total: int
    records: list[CatalogSummary]


# ---------------------------------------------------------------------------
# read_rfc
# ---------------------------------------------------------------------------


class ReadRfcInput(BaseModel):
    number: int = Field(gt=0)
    offset: int = Field(default=1, ge=1)
    limit: int = Field(default=2000, ge=1)


class ReadRfcOutput(BaseModel):
    number: int
    title: str | None
    sections: str
    total_lines: int
    offset: int
    limit: int
    content: str
