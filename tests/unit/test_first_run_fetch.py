"""Unit tests for the first-run blocking catalog fetch in server.py."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

from rfcli.config import Settings
from rfcli.server import _maybe_blocking_first_run_fetch
from rfcli.state import AppState


def _make_state() -> AppState:
    return AppState(
        settings=Settings(),
        catalog=MagicMock(),
        cache=MagicMock(),
        index=MagicMock(),
        summaries=MagicMock(),
        source=MagicMock(),
    )


def _capture_warnings(mock_log: MagicMock) -> list[dict]:
    captured: list[dict] = []

    def capture_warning(event: str, **kwargs: object) -> None:
        captured.append({"event": event, **kwargs})

    mock_log.warning = capture_warning
    mock_log.info = lambda *a, **kw: None
    return captured


class TestMaybeBlockingFirstRunFetch:
    """Tests for _maybe_blocking_first_run_fetch."""

    async def test_success(self) -> None:
        state = _make_state()
        mock_check = AsyncMock(return_value="success")

        with patch("rfcli.server.check_for_catalog_update", mock_check):
            result = await _maybe_blocking_first_run_fetch(state)

        assert result is True
        mock_check.assert_awaited_once_with(state)

    async def test_timeout_falls_back(self) -> None:
        state = _make_state()

        async def slow_check(_: AppState) -> str:
            await asyncio.sleep(60)
            return "success"

        with (
            patch("rfcli.server.check_for_catalog_update", AsyncMock(side_effect=slow_check)),
            patch("rfcli.server.FIRST_RUN_FETCH_TIMEOUT_SECONDS", 0.01),
            patch("rfcli.server.log") as mock_log,
        ):
            captured = _capture_warnings(mock_log)
            result = await _maybe_blocking_first_run_fetch(state)

        assert result is False
        assert [c["event"] for c in captured] == ["first_run_fetch_timeout", "catalog_empty"]

    async def test_transient_failure_falls_back(self) -> None:
        state = _make_state()
        mock_check = AsyncMock(return_value="transient_failure")

        with (
            patch("rfcli.server.check_for_catalog_update", mock_check),
            patch("rfcli.server.log") as mock_log,
        ):
            captured = _capture_warnings(mock_log)
            result = await _maybe_blocking_first_run_fetch(state)

        assert result is False
        assert [c["event"] for c in captured] == ["catalog_empty"]

    async def test_semantic_failure_falls_back(self) -> None:
        state = _make_state()
        mock_check = AsyncMock(return_value="semantic_failure")

        with patch("rfcli.server.check_for_catalog_update", mock_check):
            result = await _maybe_blocking_first_run_fetch(state)

        assert result is False

    async def test_exception_falls_back(self) -> None:
        state = _make_state()
        mock_check = AsyncMock(side_effect=RuntimeError("network down"))

        with (
            patch("rfcli.server.check_for_catalog_update", mock_check),
            patch("rfcli.server.log") as mock_log,
        ):
            captured = _capture_warnings(mock_log)
            result = await _maybe_blocking_first_run_fetch(state)

        assert result is False
        assert [c["event"] for c in captured] == ["first_run_fetch_error", "catalog_empty"]

    async def test_empty_catalog_warning_explains_what_still_works(self) -> None:
        state = _make_state()
        mock_check = AsyncMock(return_value="transient_failure")

        with (
            patch("rfcli.server.check_for_catalog_update", mock_check),
            patch("rfcli.server.log") as mock_log,
        ):
            captured = _capture_warnings(mock_log)
            await _maybe_blocking_first_run_fetch(state)

        message = captured[-1]["message"]
        assert "search_rfcs and list_rfcs will return nothing" in message
        assert "get_rfc_tldr and read_rfc still work by number" in message
