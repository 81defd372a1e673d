"""Fuzzy subsequence matcher.

Pure business logic: receives a SearchIndex, returns ranked SearchHits.
No knowledge of AppState, storage or I/O.

A candidate matches when every query character appears in order (not
necessarily contiguous) in its title, or failing that in its excerpt.
Candidates without such a subsequence are excluded outright. Among matches,
the score rewards contiguous runs, word-boundary starts and letter/digit
transitions, and penalises gaps, a late first match and long candidates.

Scoring is an affine-gap dynamic program over (query char, candidate char).
Each query character is confined to the window between its greedy-forward
and greedy-backward positions, so work stays within query × candidate and
stops early when the remaining query can no longer fit.

``search`` keeps only the best ``limit`` hits seen so far. Every query has
a score ceiling that depends on its characters alone, so a candidate whose
ceiling (less its length penalty) cannot beat the weakest kept hit is
skipped without running the dynamic program.
"""

from __future__ import annotations

import heapq
import re
from typing import TYPE_CHECKING

from rapidfuzz import fuzz, process

from rfcli.errors import ErrorCode, RfcliError
from rfcli.models.search import SearchHit

if TYPE_CHECKING:
    from rfcli.models.search import IndexEntry, MatchedField, SearchIndex

SCORE_MATCH = 16
BONUS_BOUNDARY = 10
BONUS_TRANSITION = 6  # letter→digit or digit→letter, e.g. "tls|13", "rfc|8446"
BONUS_CONSECUTIVE = 8
FIRST_CHAR_MULTIPLIER = 2
PENALTY_GAP_START = 3
PENALTY_GAP_EXTENSION = 1
MAX_LEADING_PENALTY = 12
LENGTH_PENALTY_DIVISOR = 16
PENALTY_EXCERPT = 24
BONUS_EXACT_TOKEN = 24
BONUS_NUMBER_EXACT = 1000
BONUS_NUMBER_PREFIX = 500

_QUERY_CHARS_RE = re.compile(r"[a-z0-9]")


def normalise_query(raw: str) -> str:
    """Lower-case and keep only ASCII letters and digits.

    Separators carry no information for subsequence matching:
    "TLS 1.3" and "tls13" are the same query.
    """
    return "".join(_QUERY_CHARS_RE.findall(raw.lower()))


def boundary_bonuses(text: str) -> tuple[int, ...]:
    """Per-character bonus for starting a match at that position."""
    bonuses: list[int] = []
    prev = ""
    for ch in text:
        if not ch.isalnum():
            bonus = 0
        elif not prev.isalnum():
            bonus = BONUS_BOUNDARY
        elif prev.isdigit() != ch.isdigit():
            bonus = BONUS_TRANSITION
        else:
            bonus = 0
        bonuses.append(bonus)
        prev = ch
    return tuple(bonuses)


def _window(query: str, text: str) -> tuple[list[int], list[int]] | None:
    """Earliest and latest feasible position for each query character.

    Returns None when ``query`` is not a subsequence of ``text``.
    """
    if len(query) > len(text):
        return None

    lower: list[int] = []
    pos = 0
    for ch in query:
        idx = text.find(ch, pos)
        if idx < 0:
            return None
        lower.append(idx)
        pos = idx + 1

    upper = [0] * len(query)
    end = len(text)
    for i in range(len(query) - 1, -1, -1):
        end = text.rfind(query[i], 0, end)
        upper[i] = end
    return lower, upper


def score_field(
    query: str,
    text: str,
    bonuses: tuple[int, ...],
) -> tuple[int, list[int]] | None:
    """Best alignment score of ``query`` within ``text`` and its match positions.

    ``query`` must already be normalised. Returns None when there is no
    subsequence match.
    """
    window = _window(query, text)
    if window is None:
        return None
    return _align(query, text, bonuses, window)


def _align(
    query: str,
    text: str,
    bonuses: tuple[int, ...],
    window: tuple[list[int], list[int]],
) -> tuple[int, list[int]] | None:
    lower, upper = window
    n = len(text)

    prev_row: list[int | None] = [None] * n
    for j in range(lower[0], upper[0] + 1):
        if text[j] == query[0]:
            prev_row[j] = (
                SCORE_MATCH + bonuses[j] * FIRST_CHAR_MULTIPLIER - min(j, MAX_LEADING_PENALTY)
            )

    # links[i - 1][j]: where query[i - 1] sits when query[i] is matched at j
    links: list[list[int]] = []
    for i in range(1, len(query)):
        row: list[int | None] = [None] * n
        link = [-1] * n
        # Best predecessor k <= j - 2, already charged for the gap up to j.
        carry: int | None = None
        carry_from = -1

        for j in range(lower[i - 1] + 1, upper[i] + 1):
            before = prev_row[j - 1]
            if j >= lower[i] and text[j] == query[i]:
                best: int | None = None
                source = -1
                if before is not None:
                    best = before + BONUS_CONSECUTIVE
                    source = j - 1
                if carry is not None and (best is None or carry > best):
                    best = carry
                    source = carry_from
                if best is not None:
                    row[j] = best + SCORE_MATCH + bonuses[j]
                    link[j] = source

            if carry is not None:
                carry -= PENALTY_GAP_EXTENSION
            if before is not None and (carry is None or before - PENALTY_GAP_START > carry):
                carry = before - PENALTY_GAP_START
                carry_from = j - 1

        links.append(link)
        prev_row = row

    best_score: int | None = None
    end = -1
    for j in range(lower[-1], upper[-1] + 1):
        score = prev_row[j]
        if score is not None and (best_score is None or score > best_score):
            best_score = score
            end = j
    if best_score is None:
        return None

    positions = [end]
    for link in reversed(links):
        end = link[end]
        positions.append(end)
    positions.reverse()

    return best_score - n // LENGTH_PENALTY_DIVISOR, positions


def query_ceiling(query: str) -> int:
    """Highest alignment score ``query`` can reach in any text, before the length penalty.

    The first character scores at most a doubled word-boundary start at
    position 0. Each later one either extends a run (plus a transition bonus
    when the letter/digit class flips) or opens a gap onto a word boundary.
    """
    if not query:
        return 0
    ceiling = SCORE_MATCH + BONUS_BOUNDARY * FIRST_CHAR_MULTIPLIER
    for prev, ch in zip(query, query[1:]):
        run = BONUS_CONSECUTIVE
        if prev.isdigit() != ch.isdigit():
            run += BONUS_TRANSITION
        ceiling += SCORE_MATCH + max(run, BONUS_BOUNDARY - PENALTY_GAP_START)
    return ceiling


def _numeric_part(query: str) -> str | None:
    """The RFC number a query names, for "8446", "08446" or "rfc8446"."""
    digits = query[3:] if query.startswith("rfc") else query
    if not digits.isdigit():
        return None
    return digits.lstrip("0") or "0"


def _number_hit(
    entry: IndexEntry, numeric: str | None
) -> tuple[int, MatchedField, list[int]] | None:
    if numeric is None:
        return None
    digits = str(entry.number)
    if digits == numeric:
        bonus = BONUS_NUMBER_EXACT
    elif digits.startswith(numeric):
        # Closer numbers first: "844" prefers 8440 over 84400.
        bonus = BONUS_NUMBER_PREFIX - (len(digits) - len(numeric))
    else:
        return None
    return bonus, "number", list(range(len(numeric)))


def _can_win(ceiling: int, floor: int | None, number_hit: tuple | None) -> bool:
    """Whether a field capped at ``ceiling`` can still decide the entry's result."""
    if floor is not None and ceiling <= floor:
        return False
    return number_hit is None or ceiling >= number_hit[0]


def _score_entry(
    entry: IndexEntry,
    query: str,
    numeric: str | None,
    *,
    ceiling: int | None = None,
    floor: int | None = None,
) -> tuple[int, MatchedField, list[int]] | None:
    """Best result for ``entry``, or None.

    When ``floor`` is given, a field whose ceiling cannot beat it is not
    aligned; the entry then yields at most its number hit.
    """
    if ceiling is None:
        ceiling = query_ceiling(query)
    number_hit = _number_hit(entry, numeric)
    token_bonus = BONUS_EXACT_TOKEN if query in entry.tokens else 0
    best: tuple[int, MatchedField, list[int]] | None = None

    # A title match, when there is one, decides over the excerpt.
    window = _window(query, entry.haystack)
    if window is not None:
        cap = ceiling + token_bonus - len(entry.haystack) // LENGTH_PENALTY_DIVISOR
        if _can_win(cap, floor, number_hit):
            title = _align(query, entry.haystack, entry.bonuses, window)
            if title is not None:
                best = (title[0] + token_bonus, "title", title[1])
    elif entry.excerpt:
        cap = (
            ceiling
            + token_bonus
            - PENALTY_EXCERPT
            - len(entry.excerpt) // LENGTH_PENALTY_DIVISOR
        )
        if _can_win(cap, floor, number_hit):
            excerpt = score_field(query, entry.excerpt, entry.excerpt_bonuses)
            if excerpt is not None:
                best = (excerpt[0] + token_bonus - PENALTY_EXCERPT, "excerpt", excerpt[1])

    if number_hit is not None and (best is None or number_hit[0] > best[0]):
        best = number_hit
    return best


def search(index: SearchIndex, query: str, limit: int) -> list[SearchHit]:
    """Rank index entries against ``query``.

    Results are ordered by descending score, ties by ascending RFC number.
    An empty (or separator-only) query browses the catalog by number.
    """
    if limit < 1:
        raise RfcliError(
            code=ErrorCode.VALIDATION_ERROR,
            message=f"limit must be at least 1, got {limit}",
            suggestion="Ask for one or more results.",
            recoverable=False,
        )

    normalised = normalise_query(query)
    if not normalised:
        return [
            SearchHit(number=entry.number, title=entry.record.title, score=0, matched_field=None)
            for entry in index.entries[:limit]
        ]

    numeric = _numeric_part(normalised)
    ceiling = query_ceiling(normalised)
    # Min-heap of the best ``limit`` hits. Entries arrive in ascending number
    # order, so a later entry must score strictly higher to displace a tie.
    kept: list[tuple[int, int, MatchedField, list[int], IndexEntry]] = []
    for entry in index.entries:
        floor = kept[0][0] if len(kept) == limit else None
        result = _score_entry(entry, normalised, numeric, ceiling=ceiling, floor=floor)
        if result is None:
            continue
        score, matched_field, positions = result
        item = (score, -entry.number, matched_field, positions, entry)
        if floor is None:
            heapq.heappush(kept, item)
        elif score > floor:
            heapq.heapreplace(kept, item)

    kept.sort(key=lambda item: (-item[0], -item[1]))
    return [
        SearchHit(
            number=entry.number,
            title=entry.record.title,
            score=score,
            matched_field=matched_field,
            positions=positions,
        )
        for score, _, matched_field, positions, entry in kept
    ]


def suggest_terms(
    index: SearchIndex,
    query: str,
    *,
    limit: int = 3,
    score_cutoff: int = 70,
) -> list[str]:
    """Indexed tokens that look like a typo'd ``query`` ("did you mean").

    Uses Levenshtein similarity, which tolerates substitutions that a
    subsequence match cannot ("secruity" → "security").
    """
    normalised = normalise_query(query)
    if not normalised or not index.vocabulary:
        return []
    results = process.extract(
        normalised,
        index.vocabulary,
        scorer=fuzz.ratio,
        limit=limit,
        score_cutoff=score_cutoff,
    )
    return [term for term, _score, _idx in results if term != normalised]
