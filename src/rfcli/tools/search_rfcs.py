"""Tool handler for search_rfcs.

Receives AppState, makes sure the search index matches the catalog version,
delegates ranking to the matcher, and returns a structured dict. No MCP or
FastMCP imports; server.py handles the MCP wiring.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog

from rfcli.errors import ErrorCode, RfcliError
from rfcli.matcher import search, suggest_terms
from rfcli.models.tools import SearchRfcsInput, SearchRfcsOutput

if TYPE_CHECKING:
    from rfcli.state import AppState


async def handle(query: str, limit: int, state: AppState) -> dict:
    """Handle a search_rfcs tool call."""
    log = structlog.get_logger().bind(tool="search_rfcs", query=query)
    log.info("handler_called")

    # Validate input
    try:
        validated = SearchRfcsInput(query=query, limit=limit)
    except ValueError as exc:
        raise RfcliError(
            code=ErrorCode.VALIDATION_ERROR,
            message=str(exc),
            suggestion="Provide a query of at most 200 characters and a limit between 1 and 1000.",
            recoverable=False,
        ) from exc

    index = await state.index.ensure_fresh(state.catalog)
    matches = search(index, validated.query, validated.limit)

    suggestions: list[str] = []
    if not matches and validated.query.strip():
        suggestions = suggest_terms(
            index,
            validated.query,
            limit=state.settings.search.max_suggestions,
            score_cutoff=state.settings.search.suggestion_cutoff,
        )
    log.info("search_complete", match_count=len(matches), index_version=index.version)

    output = SearchRfcsOutput(query=validated.query, matches=matches, suggestions=suggestions)
    return output.model_dump(mode="json")
