"""TLDR derivation backends.

GroqSummarizer asks an OpenAI-compatible chat-completions endpoint for a
terminal-friendly summary of the first few hundred lines of the cleaned RFC.
ExtractiveSummarizer works offline by taking the opening sentences of the
RFC's Abstract. Both raise ``DERIVE_FAILED`` rather than return blank text,
so an empty summary can never reach the cache.
"""

from __future__ import annotations

import os
from typing import TYPE_CHECKING

import httpx
import structlog

from rfcli.errors import ErrorCode, RfcliError
from rfcli.text import clean_rfc_text, extract_abstract, first_sentences

if TYPE_CHECKING:
    from rfcli.config import SummarizerSettings
    from rfcli.protocols import SummarizerProtocol

log = structlog.get_logger()

SYSTEM_PROMPT = (
    "You are a Senior Systems Engineer. Summarize the RFC for a terminal UI. "
    "DO NOT use Markdown bolding (no asterisks). Use a simple 'TITLE: description' "
    "format for bullets. Keep the elevator pitch at the top."
)

_FILLER_PREFIXES = ("here is", "here's")


def tidy_summary(text: str) -> str:
    """Drop conversational filler and Markdown bolding from a model reply."""
    lines: list[str] = []
    for line in text.splitlines():
        trimmed = line.strip()
        if not trimmed:
            continue
        lower = trimmed.lower()
        if lower.startswith(_FILLER_PREFIXES) or "summary of rfc" in lower:
            continue
        lines.append(trimmed.replace("**", ""))
    return "\n".join(lines)


def _derive_failed(message: str, suggestion: str, *, recoverable: bool = False) -> RfcliError:
    return RfcliError(
        code=ErrorCode.DERIVE_FAILED,
        message=message,
        suggestion=suggestion,
        recoverable=recoverable,
    )


class GroqSummarizer:
    """Summarizes via Groq Cloud (or any OpenAI-compatible endpoint)."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        api_url: str,
        api_key: str | None,
        model: str,
        context_lines: int = 300,
    ) -> None:
        self._client = client
        self._api_url = api_url
        self._api_key = api_key
        self._model = model
        self._context_lines = context_lines

    async def derive_tldr(self, raw: bytes, *, number: int | None = None) -> str:
        if not self._api_key:
            raise _derive_failed(
                "No API key configured for the Groq summarizer.",
                "Set GROQ_API_KEY (or RFCLI__SUMMARIZER__API_KEY), "
                "or use RFCLI__SUMMARIZER__BACKEND=extractive.",
            )

        cleaned = clean_rfc_text(raw.decode("utf-8", errors="replace"))
        context = "\n".join(cleaned.splitlines()[: self._context_lines])
        label = f"RFC {number}" if number is not None else "this RFC"
        payload = {
            "model": self._model,
            "messages": [
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": f"Summarize {label}:\n\n{context}"},
            ],
        }

        try:
            response = await self._client.post(
                self._api_url,
                json=payload,
                headers={"Authorization": f"Bearer {self._api_key}"},
            )
        except httpx.TimeoutException as exc:
            raise RfcliError(
                code=ErrorCode.TIMEOUT,
                message=f"Timed out waiting for the summarizer ({self._model})",
                suggestion="Try again, or pick a faster model with --model.",
                recoverable=True,
            ) from exc
        except httpx.HTTPError as exc:
            raise _derive_failed(
                f"Network error calling the summarizer: {exc}",
                "Check your internet connection and try again.",
                recoverable=True,
            ) from exc

        if not response.is_success:
            raise _derive_failed(
                f"Summarizer returned HTTP {response.status_code}",
                "Check the API key and model name.",
                recoverable=response.status_code >= 500 or response.status_code == 429,
            )

        try:
            content = response.json()["choices"][0]["message"]["content"]
            if not isinstance(content, str):
                raise TypeError("content is not a string")
        except (ValueError, KeyError, IndexError, TypeError) as exc:
            log.warning("summarizer_bad_response", body=response.text[:500])
            raise _derive_failed(
                "Summarizer response did not contain a summary.",
                "The model may be unavailable; try another with --model.",
            ) from exc

        summary = tidy_summary(content)
        if not summary:
            raise _derive_failed(
                "Summarizer returned an empty summary.",
                "Try again, or use the extractive backend.",
            )
        log.info("summary_derived", backend="groq", model=self._model, number=number)
        return summary


class ExtractiveSummarizer:
    """Offline summarizer: the first sentences of the RFC's Abstract."""

    def __init__(self, *, sentences: int = 3) -> None:
        self._sentences = sentences

    async def derive_tldr(self, raw: bytes, *, number: int | None = None) -> str:
        abstract = extract_abstract(raw.decode("utf-8", errors="replace"))
        if abstract is None:
            label = f"RFC {number}" if number is not None else "This RFC"
            raise _derive_failed(
                f"{label} has no Abstract section to summarize.",
                "Configure an API key to use the Groq summarizer instead.",
            )
        sentences = first_sentences(abstract, self._sentences)
        log.info("summary_derived", backend="extractive", number=number)
        return "\n".join(f"- {sentence}" for sentence in sentences)


def build_summarizer(
    settings: SummarizerSettings,
    client: httpx.AsyncClient,
) -> SummarizerProtocol:
    """Pick the summarizer backend.

    ``auto`` uses Groq when an API key is available, extractive otherwise.
    """
    api_key = settings.api_key or os.environ.get("GROQ_API_KEY")
    use_groq = settings.backend == "groq" or (settings.backend == "auto" and bool(api_key))

    if use_groq:
        log.debug("summarizer_selected", backend="groq", model=settings.model)
        return GroqSummarizer(
            client,
            api_url=settings.api_url,
            api_key=api_key,
            model=settings.model,
            context_lines=settings.context_lines,
        )
    log.debug("summarizer_selected", backend="extractive")
    return ExtractiveSummarizer(sentences=settings.abstract_sentences)
