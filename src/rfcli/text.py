"""Plain-text RFC helpers.

RFC bodies are paginated plain text: form feeds, page footers carrying
``[Page N]`` and running headers starting ``RFC NNNN``. Body text is indented;
section headings sit at column zero. These helpers strip the page furniture,
extract the Abstract and build a section map with 1-based line numbers for
windowed reading via the ``read_rfc`` tool.
"""

from __future__ import annotations

import re

_PAGE_FURNITURE_RE = re.compile(r"(?m)^.*\[Page \d+\].*$|^RFC \d+.*$")
_BLANK_RUN_RE = re.compile(r"\n{3,}")

_NUMBERED_HEADING_RE = re.compile(r"^(?:\d+(?:\.\d+)*\.?|Appendix [A-Z](?:\.\d+)*\.?)\s+\S")
_UNNUMBERED_HEADING_RE = re.compile(
    r"^(?:Abstract|Status of This Memo|Copyright Notice|Table of Contents|"
    r"Acknowledge?ments|Contributors|References|Index|Author'?s'? Address(?:es)?)\s*$",
    re.IGNORECASE,
)
_SENTENCE_END_RE = re.compile(r"(?<=[.!?])\s+(?=[A-Z(\"'])")


def clean_rfc_text(raw_text: str) -> str:
    """Remove page breaks, footers and running headers; squeeze blank runs."""
    text = raw_text.replace("\r\n", "\n").replace("\x0c", "")
    text = _PAGE_FURNITURE_RE.sub("", text)
    return _BLANK_RUN_RE.sub("\n\n", text)


def parse_sections(content: str) -> str:
    """Extract a plain-text section map from cleaned RFC text.

    Returns one line per heading in the format ``"<lineno>: <heading line>"``,
    joined by newlines. Returns an empty string if no headings are found.
    Indented lines (body text, table of contents entries) never count.
    """
    lines: list[str] = []
    for lineno, line in enumerate(content.splitlines(), start=1):
        if not line or line[0].isspace():
            continue
        stripped = line.rstrip()
        if _NUMBERED_HEADING_RE.match(stripped) or _UNNUMBERED_HEADING_RE.match(stripped):
            lines.append(f"{lineno}: {stripped}")
    return "\n".join(lines)


def extract_abstract(text: str) -> str | None:
    """Return the Abstract section as a single whitespace-collapsed paragraph."""
    collected: list[str] = []
    inside = False
    for line in clean_rfc_text(text).splitlines():
        if not inside:
            if line.strip().lower() == "abstract" and not line[:1].isspace():
                inside = True
            continue
        if line and not line[0].isspace():
            break  # Next column-zero heading ends the section
        collected.append(line.strip())

    abstract = " ".join(" ".join(collected).split())
    return abstract or None


def first_sentences(paragraph: str, count: int) -> list[str]:
    """Split a paragraph into sentences and return the first ``count``."""
    sentences = [s.strip() for s in _SENTENCE_END_RE.split(paragraph) if s.strip()]
    return sentences[:count]
