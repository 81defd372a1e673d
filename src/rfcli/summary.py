"""Summary Service: cache-first, coalesced fetch → derive → persist pipeline.

Per RFC number the TLDR pipeline moves through::

    idle → cache_check → cache_hit → done
                       → cache_miss → fetching → deriving → persisting → done

with ``fetching`` and ``deriving`` able to end in ``failed``. A failure is
reported to the caller and never written to the cache, so a previously
cached TLDR is never replaced by an empty or partial one.

Concurrent requests for the same (kind, number) attach to a single in-flight
``asyncio.Task``. Each caller awaits it through ``asyncio.shield``, so one
impatient caller cannot cancel work others are still waiting for. The task
is cancelled only when its last waiter goes away or when ``cancel(number)``
is called explicitly; in the latter case remaining waiters see
``RfcliError(CANCELLED)``.
"""

from __future__ import annotations

import asyncio
import random
from collections import OrderedDict
from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING, TypeVar

import structlog

from rfcli.errors import ErrorCode, RfcliError
from rfcli.models.cache import CacheKind
from rfcli.text import extract_abstract

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from rfcli.catalog import CatalogStore
    from rfcli.protocols import CacheProtocol, FetcherProtocol, SummarizerProtocol

log = structlog.get_logger()

T = TypeVar("T")

_RETRYABLE_CODES = frozenset({ErrorCode.FETCH_FAILED, ErrorCode.TIMEOUT})


class TldrState(StrEnum):
    IDLE = "idle"
    CACHE_CHECK = "cache_check"
    CACHE_HIT = "cache_hit"
    CACHE_MISS = "cache_miss"
    FETCHING = "fetching"
    DERIVING = "deriving"
    PERSISTING = "persisting"
    DONE = "done"
    FAILED = "failed"


_FINISHED_STATES = frozenset({TldrState.DONE, TldrState.FAILED})


@dataclass
class _Flight:
    task: asyncio.Task
    waiters: int = 0


def _jittered_delay(base_seconds: float) -> float:
    return base_seconds * random.uniform(0.8, 1.2)


def _is_retryable(exc: RfcliError) -> bool:
    return exc.recoverable and exc.code in _RETRYABLE_CODES


def _cancelled(number: int) -> RfcliError:
    return RfcliError(
        code=ErrorCode.CANCELLED,
        message=f"Request for RFC {number} was cancelled.",
        suggestion="Request it again if you still need it.",
        recoverable=False,
    )


class SummaryService:
    """Serves RFC bodies and TLDRs, consulting the Content Cache first."""

    def __init__(
        self,
        *,
        cache: CacheProtocol,
        fetcher: FetcherProtocol,
        summarizer: SummarizerProtocol,
        catalog: CatalogStore | None = None,
        fetch_timeout_seconds: float = 30.0,
        derive_timeout_seconds: float = 60.0,
        max_retries: int = 2,
        backoff_seconds: float = 0.5,
        max_tracked_states: int = 1024,
    ) -> None:
        self._cache = cache
        self._fetcher = fetcher
        self._summarizer = summarizer
        self._catalog = catalog
        self._fetch_timeout = fetch_timeout_seconds
        self._derive_timeout = derive_timeout_seconds
        self._max_retries = max_retries
        self._backoff = backoff_seconds
        self._in_flight: dict[tuple[str, int], _Flight] = {}
        self._max_tracked_states = max_tracked_states
        # Insertion order is recency; finished numbers are dropped oldest first.
        self._states: OrderedDict[int, TldrState] = OrderedDict()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def get_tldr(self, number: int) -> str:
        """Return the TLDR for ``number``, deriving and caching it on a miss."""
        return await self._coalesce("tldr", number, self._tldr_pipeline)

    async def get_body(self, number: int) -> bytes:
        """Return the raw RFC text for ``number``, fetching and caching it on a miss."""
        return await self._coalesce("body", number, self._body_pipeline)

    def cancel(self, number: int) -> bool:
        """Abandon in-flight work for ``number``. Returns True if anything was running."""
        cancelled = False
        for key, flight in list(self._in_flight.items()):
            if key[1] != number:
                continue
            # Unregister now so a request made after the cancel starts fresh work.
            del self._in_flight[key]
            if not flight.task.done():
                flight.task.cancel()
                cancelled = True
        if cancelled:
            log.info("summary_cancel_requested", number=number)
        return cancelled

    def state_of(self, number: int) -> TldrState:
        return self._states.get(number, TldrState.IDLE)

    def is_in_flight(self, number: int) -> bool:
        return any(key[1] == number for key in self._in_flight)

    # ------------------------------------------------------------------
    # Coalescing
    # ------------------------------------------------------------------

    async def _coalesce(
        self,
        kind: str,
        number: int,
        pipeline: Callable[[int], Awaitable[T]],
    ) -> T:
        key = (kind, number)
        flight = self._in_flight.get(key)
        if flight is None:
            task = asyncio.create_task(pipeline(number), name=f"rfcli-{kind}-{number}")
            flight = _Flight(task=task)
            self._in_flight[key] = flight
            task.add_done_callback(lambda done, key=key: self._forget(key, done))
        else:
            log.debug("summary_coalesced", kind=kind, number=number)

        flight.waiters += 1
        try:
            return await asyncio.shield(flight.task)
        except asyncio.CancelledError:
            current = asyncio.current_task()
            if current is not None and current.cancelling():
                # This caller is being cancelled; stop the work if nobody else wants it.
                if flight.waiters == 1 and not flight.task.done():
                    log.debug("summary_last_waiter_left", kind=kind, number=number)
                    flight.task.cancel()
                raise
            # The shared task itself was cancelled via cancel(number).
            raise _cancelled(number) from None
        finally:
            flight.waiters -= 1

    def _forget(self, key: tuple[str, int], task: asyncio.Task) -> None:
        flight = self._in_flight.get(key)
        if flight is not None and flight.task is task:
            del self._in_flight[key]
        if not task.cancelled():
            task.exception()  # Marks the exception retrieved when no waiter is left

    # ------------------------------------------------------------------
    # Pipelines
    # ------------------------------------------------------------------

    async def _tldr_pipeline(self, number: int) -> str:
        try:
            self._set_state(number, TldrState.CACHE_CHECK)
            cached = await self._cache.get(number, CacheKind.TLDR)
            if cached is not None and cached.text.strip():
                self._set_state(number, TldrState.CACHE_HIT)
                self._set_state(number, TldrState.DONE)
                return cached.text

            self._set_state(number, TldrState.CACHE_MISS)
            self._set_state(number, TldrState.FETCHING)
            raw = await self._coalesce("body", number, self._body_pipeline)

            self._set_state(number, TldrState.DERIVING)
            summary = await self._with_retries(
                lambda: self._summarizer.derive_tldr(raw, number=number),
                number=number,
                stage="derive",
                timeout=self._derive_timeout,
            )
            summary = summary.strip()
            if not summary:
                raise RfcliError(
                    code=ErrorCode.DERIVE_FAILED,
                    message=f"Summarizer produced no text for RFC {number}.",
                    suggestion="Try again, or switch summarizer backend.",
                    recoverable=False,
                )

            self._set_state(number, TldrState.PERSISTING)
            # A half-finished put must not be abandoned by a late cancel.
            await asyncio.shield(self._cache.put(number, CacheKind.TLDR, summary))
            self._set_state(number, TldrState.DONE)
            return summary
        except asyncio.CancelledError:
            self._set_state(number, TldrState.FAILED, reason="cancelled")
            raise
        except RfcliError as exc:
            self._set_state(number, TldrState.FAILED, reason=exc.code)
            raise

    async def _body_pipeline(self, number: int) -> bytes:
        cached = await self._cache.get(number, CacheKind.RAW_BODY)
        if cached is not None:
            return cached.content

        raw = await self._with_retries(
            lambda: self._fetcher.fetch_raw(number),
            number=number,
            stage="fetch",
            timeout=self._fetch_timeout,
        )
        await asyncio.shield(self._cache.put(number, CacheKind.RAW_BODY, raw))
        await self._enrich_abstract(number, raw)
        return raw

    async def _enrich_abstract(self, number: int, raw: bytes) -> None:
        """Copy the body's Abstract onto a catalog record that lacks one."""
        if self._catalog is None:
            return
        try:
            record = await self._catalog.find(number)
            if record is None or record.abstract:
                return
            abstract = extract_abstract(raw.decode("utf-8", errors="replace"))
            if abstract is None:
                return
            await self._catalog.upsert(record.model_copy(update={"abstract": abstract}))
        except RfcliError as exc:
            # The body is already cached; a missing excerpt only affects search.
            log.warning("abstract_enrich_failed", number=number, code=exc.code)
            return
        log.info("abstract_enriched", number=number, length=len(abstract))

    # ------------------------------------------------------------------
    # Retry / timeout
    # ------------------------------------------------------------------

    async def _with_retries(
        self,
        operation: Callable[[], Awaitable[T]],
        *,
        number: int,
        stage: str,
        timeout: float,
    ) -> T:
        """Run ``operation`` under ``timeout``, retrying transient failures."""
        attempt = 0
        while True:
            try:
                async with asyncio.timeout(timeout):
                    return await operation()
            except TimeoutError as exc:
                if attempt >= self._max_retries:
                    raise RfcliError(
                        code=ErrorCode.TIMEOUT,
                        message=f"RFC {number} {stage} did not finish within {timeout:g}s.",
                        suggestion="Try again later, or raise the configured timeout.",
                        recoverable=True,
                    ) from exc
                failure = "timeout"
            except RfcliError as exc:
                if not _is_retryable(exc) or attempt >= self._max_retries:
                    raise
                failure = exc.code

            attempt += 1
            delay = _jittered_delay(self._backoff * 2 ** (attempt - 1))
            log.info(
                "summary_retry",
                number=number,
                stage=stage,
                attempt=attempt,
                failure=failure,
                delay_seconds=round(delay, 3),
            )
            await asyncio.sleep(delay)

    def _set_state(self, number: int, state: TldrState, **context: object) -> None:
        self._states[number] = state
        self._states.move_to_end(number)
        if len(self._states) > self._max_tracked_states:
            self._forget_oldest_finished_state()
        log.debug("tldr_state", number=number, state=state, **context)

    def _forget_oldest_finished_state(self) -> None:
        for number, state in self._states.items():
            if state in _FINISHED_STATES:
                break
        else:
            return
        del self._states[number]
