"""HTTP access to the RFC Editor.

All network I/O for RFC text and the RFC index goes through a single
RfcFetcher instance. The Fetcher receives an httpx.AsyncClient via
constructor injection; the runtime owns the client lifecycle.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import httpx
import structlog

from rfcli.errors import ErrorCode, RfcliError

if TYPE_CHECKING:
    from rfcli.config import FetcherSettings

log = structlog.get_logger()

_TRANSIENT_STATUSES = frozenset({408, 429})


def build_http_client(settings: FetcherSettings) -> httpx.AsyncClient:
    """Create the shared httpx client. Called once at startup."""
    return httpx.AsyncClient(
        follow_redirects=True,
        max_redirects=3,
        timeout=httpx.Timeout(settings.fetch_timeout_seconds, connect=5.0),
        headers={"User-Agent": settings.user_agent},
        limits=httpx.Limits(
            max_connections=10,
            max_keepalive_connections=5,
        ),
    )


class RfcFetcher:
    """Fetches RFC plain text from an rfc-editor.org style mirror."""

    def __init__(self, client: httpx.AsyncClient, base_url: str) -> None:
        self._client = client
        self._base_url = base_url.rstrip("/")

    def rfc_url(self, number: int) -> str:
        return f"{self._base_url}/rfc{number}.txt"

    async def fetch_raw(self, number: int) -> bytes:
        """Fetch the plain-text body of RFC ``number``."""
        try:
            response = await self._get(self.rfc_url(number))
        except RfcliError as exc:
            if exc.code == ErrorCode.RFC_NOT_FOUND:
                raise RfcliError(
                    code=ErrorCode.RFC_NOT_FOUND,
                    message=f"RFC {number} has no plain-text version at {self.rfc_url(number)}",
                    suggestion="Check the RFC number; some numbers were never issued.",
                    recoverable=False,
                ) from exc
            raise
        return response.content

    async def fetch_text(self, url: str) -> str:
        """Fetch an arbitrary text document (e.g. the RFC index)."""
        response = await self._get(url)
        return response.text

    async def _get(self, url: str) -> httpx.Response:
        """GET ``url``, mapping transport and HTTP failures to RfcliError."""
        try:
            response = await self._client.get(url)
        except httpx.TimeoutException as exc:
            raise RfcliError(
                code=ErrorCode.TIMEOUT,
                message=f"Timed out fetching {url}",
                suggestion="The RFC Editor may be slow right now. Try again shortly.",
                recoverable=True,
            ) from exc
        except httpx.HTTPError as exc:
            raise RfcliError(
                code=ErrorCode.FETCH_FAILED,
                message=f"Network error fetching {url}: {exc}",
                suggestion="Check your internet connection and try again.",
                recoverable=True,
            ) from exc

        if not response.is_success:
            status = response.status_code
            if status == 404:
                raise RfcliError(
                    code=ErrorCode.RFC_NOT_FOUND,
                    message=f"HTTP 404 fetching {url}",
                    suggestion="The requested document does not exist at this URL.",
                    recoverable=False,
                )
            transient = status >= 500 or status in _TRANSIENT_STATUSES
            raise RfcliError(
                code=ErrorCode.FETCH_FAILED,
                message=f"HTTP {status} fetching {url}",
                suggestion=(
                    "The RFC Editor may be temporarily unavailable."
                    if transient
                    else "The request was rejected; check the configured base URL."
                ),
                recoverable=transient,
            )

        log.info(
            "fetch_complete",
            url=url,
            status_code=response.status_code,
            content_length=len(response.content),
        )
        return response
