"""Tool handler for get_rfc_tldr.

Delegates to the Summary Service, which serves cached TLDRs and coalesces
concurrent requests for the same RFC onto one fetch.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog

from rfcli.errors import ErrorCode, RfcliError
from rfcli.models.tools import GetTldrInput, GetTldrOutput

if TYPE_CHECKING:
    from rfcli.state import AppState


async def handle(number: int, state: AppState) -> dict:
    """Handle a get_rfc_tldr tool call."""
    log = structlog.get_logger().bind(tool="get_rfc_tldr", number=number)
    log.info("handler_called")

    try:
        validated = GetTldrInput(number=number)
    except ValueError as exc:
        raise RfcliError(
            code=ErrorCode.VALIDATION_ERROR,
            message=str(exc),
            suggestion="Provide a positive RFC number, e.g. 8446.",
            recoverable=False,
        ) from exc

    # RFCs missing from a stale catalog can still be summarized.
    record = await state.catalog.find(validated.number)
    tldr = await state.summaries.get_tldr(validated.number)
    log.info("tldr_complete", length=len(tldr))

    output = GetTldrOutput(
        number=validated.number,
        title=record.title if record is not None else None,
        tldr=tldr,
    )
    return output.model_dump(mode="json")
