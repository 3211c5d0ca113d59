"""Fuzzy name matching for files, projects and section headings.

``similarity`` is the single scoring function; callers only rely on the
contract of ``best_match``: the best candidate at or above the threshold,
otherwise None.
"""

from __future__ import annotations

import re
from collections.abc import Callable, Iterable
from difflib import SequenceMatcher
from typing import TypeVar

T = TypeVar("T")

DEFAULT_THRESHOLD = 0.6

_NON_WORD_RE = re.compile(r"[\W_]+", re.UNICODE)
_EXT_RE = re.compile(r"\.(md|markdown|txt|pdf|docx|html?)$", re.IGNORECASE)


def normalize_name(name: str) -> str:
    """Lowercase, drop a document extension and collapse punctuation to spaces."""
    name = _EXT_RE.sub("", name.strip())
    return _NON_WORD_RE.sub(" ", name.lower()).strip()


def similarity(a: str, b: str) -> float:
    """Return a similarity score in [0, 1] between two names.

    Exact normalized equality scores 1.0. Otherwise the SequenceMatcher
    ratio, raised to at least 0.85 when one name contains the other.
    """
    na, nb = normalize_name(a), normalize_name(b)
    if not na or not nb:
        return 0.0
    if na == nb:
        return 1.0
    score = SequenceMatcher(None, na, nb).ratio()
    if na in nb or nb in na:
        score = max(score, 0.85)
    return score


def best_match(
    query: str,
    candidates: Iterable[T],
    key: Callable[[T], str] = str,  # type: ignore[assignment]
    threshold: float = DEFAULT_THRESHOLD,
) -> T | None:
    """Return the candidate whose ``key`` is most similar to *query*.

    Ties keep the earliest candidate. Returns None if nothing reaches
    *threshold*.
    """
    best: T | None = None
    best_score = threshold
    for candidate in candidates:
        score = similarity(query, key(candidate))
        if score > best_score or (best is None and score >= threshold):
            best, best_score = candidate, score
    return best
