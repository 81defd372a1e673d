"""Tool handler for read_rfc.

Receives AppState, loads the RFC body through the Summary Service (cache
first, coalesced fetch on a miss), strips page furniture, and returns a
structured dict with a section map and a line window of the content.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog

from rfcli.errors import ErrorCode, RfcliError
from rfcli.models.tools import ReadRfcInput, ReadRfcOutput
from rfcli.text import clean_rfc_text, parse_sections

if TYPE_CHECKING:
    from rfcli.state import AppState


async def handle(number: int, offset: int, limit: int, state: AppState) -> dict:
    """Handle a read_rfc tool call."""
    log = structlog.get_logger().bind(tool="read_rfc", number=number)
    log.info("handler_called")

    try:
        validated = ReadRfcInput(number=number, offset=offset, limit=limit)
    except ValueError as exc:
        raise RfcliError(
            code=ErrorCode.VALIDATION_ERROR,
            message=str(exc),
            suggestion="Provide a positive RFC number, offset >= 1 and limit >= 1.",
            recoverable=False,
        ) from exc

    raw = await state.summaries.get_body(validated.number)
    content = clean_rfc_text(raw.decode("utf-8", errors="replace"))
    record = await state.catalog.find(validated.number)

    return _build_output(
        number=validated.number,
        title=record.title if record is not None else None,
        content=content,
        offset=validated.offset,
        limit=validated.limit,
    )


def _build_output(
    *,
    number: int,
    title: str | None,
    content: str,
    offset: int,
    limit: int,
) -> dict:
    """Apply line windowing and build the output dict."""
    all_lines = content.splitlines()

    # Window: offset is 1-based
    windowed = all_lines[offset - 1 : offset - 1 + limit]

    output = ReadRfcOutput(
        number=number,
        title=title,
        sections=parse_sections(content),
        total_lines=len(all_lines),
        offset=offset,
        limit=limit,
        content="\n".join(windowed),
    )
    return output.model_dump(mode="json")
