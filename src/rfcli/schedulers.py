"""Background scheduler coroutines for catalog refresh and cache cleanup."""

from __future__ import annotations

import asyncio
import random
from typing import TYPE_CHECKING

import structlog

from rfcli.source import (
    CATALOG_INITIAL_BACKOFF_SECONDS,
    CATALOG_MAX_BACKOFF_SECONDS,
    CATALOG_MAX_TRANSIENT_BACKOFF_ATTEMPTS,
    catalog_refresh_is_due,
    check_for_catalog_update,
)

if TYPE_CHECKING:
    from rfcli.state import AppState

log = structlog.get_logger()


def _jittered_delay(base_seconds: int) -> float:
    return base_seconds * random.uniform(0.8, 1.2)


async def run_cache_cleanup_scheduler(state: AppState) -> None:
    """Run cache cleanup now (if due) and then on the configured interval."""
    interval_hours = state.settings.cache.cleanup_interval_hours
    grace_days = state.settings.cache.cleanup_grace_days

    while True:
        try:
            await state.cache.cleanup_if_due(interval_hours, grace_days)
        except Exception:
            log.warning("cache_cleanup_scheduler_error", exc_info=True)
        await asyncio.sleep(interval_hours * 3600)


async def run_catalog_refresh_scheduler(state: AppState) -> None:
    """Keep the catalog fresh for a long-running server.

    Refreshes immediately when due, then every ``refresh_interval_hours``.
    Transient failures back off exponentially (with jitter) up to a cap;
    after too many in a row the scheduler waits a full interval.
    """
    refresh_hours = state.settings.catalog.refresh_interval_hours
    interval_seconds = refresh_hours * 3600

    if not await catalog_refresh_is_due(state.catalog, refresh_hours):
        await asyncio.sleep(interval_seconds)

    backoff_seconds = CATALOG_INITIAL_BACKOFF_SECONDS
    consecutive_transient_failures = 0

    while True:
        try:
            outcome = await check_for_catalog_update(state)
        except Exception:
            log.warning("catalog_refresh_scheduler_error", exc_info=True)
            outcome = "semantic_failure"

        if outcome == "success":
            consecutive_transient_failures = 0
            backoff_seconds = CATALOG_INITIAL_BACKOFF_SECONDS
            await asyncio.sleep(interval_seconds)
            continue

        if outcome == "transient_failure":
            consecutive_transient_failures += 1
            if consecutive_transient_failures >= CATALOG_MAX_TRANSIENT_BACKOFF_ATTEMPTS:
                log.warning(
                    "catalog_refresh_transient_retry_suspended",
                    consecutive_failures=consecutive_transient_failures,
                    cooldown_seconds=interval_seconds,
                )
                consecutive_transient_failures = 0
                backoff_seconds = CATALOG_INITIAL_BACKOFF_SECONDS
                await asyncio.sleep(interval_seconds)
                continue

            await asyncio.sleep(_jittered_delay(backoff_seconds))
            backoff_seconds = min(backoff_seconds * 2, CATALOG_MAX_BACKOFF_SECONDS)
            continue

        # semantic failure
        consecutive_transient_failures = 0
        backoff_seconds = CATALOG_INITIAL_BACKOFF_SECONDS
        await asyncio.sleep(interval_seconds)
