"""Tool handler for list_rfcs."""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog

from rfcli.errors import ErrorCode, RfcliError
from rfcli.models.catalog import RfcStatus
from rfcli.models.tools import ListCatalogInput, ListCatalogOutput

if TYPE_CHECKING:
    from rfcli.state import AppState


async def handle(
    state: AppState,
    status: str | None = None,
    offset: int = 0,
    limit: int = 50,
) -> dict:
    """Handle a list_rfcs tool call."""
    log = structlog.get_logger().bind(tool="list_rfcs", status=status)
    log.info("handler_called")

    try:
        validated = ListCatalogInput(status=status, offset=offset, limit=limit)
    except ValueError as exc:
        choices = ", ".join(s.value for s in RfcStatus)
        raise RfcliError(
            code=ErrorCode.VALIDATION_ERROR,
            message=str(exc),
            suggestion=f"Status must be one of: {choices}. Offset >= 0, limit >= 1.",
            recoverable=False,
        ) from exc

    total = await state.catalog.count(validated.status)
    records = await state.catalog.list_summaries(
        status=validated.status,
        offset=validated.offset,
        limit=validated.limit,
    )
    log.info("list_complete", total=total, returned=len(records))

    output = ListCatalogOutput(total=total, records=records)
    return output.model_dump(mode="json")
