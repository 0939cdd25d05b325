"""
Typo-tolerant matching for free-response answers.

Answers are normalized (accents stripped, whitespace collapsed, optionally
lower-cased) and compared by Levenshtein similarity. Shorter answers need a
lower ratio to pass, since one typo costs them proportionally more.
"""

from __future__ import annotations

import re
import unicodedata
from dataclasses import dataclass
from typing import Iterable, Optional

_WHITESPACE = re.compile(r"\s+")


@dataclass(frozen=True)
class FreeResponseMatch:
    is_correct: bool
    similarity: float
    matched_answer: Optional[str] = None


def normalize_string(value: str, case_sensitive: bool = False) -> str:
    decomposed = unicodedata.normalize("NFD", value)
    stripped = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    collapsed = _WHITESPACE.sub(" ", stripped).strip()
    return collapsed if case_sensitive else collapsed.lower()


def levenshtein_distance(a: str, b: str) -> int:
    """Minimum number of single-character insertions, deletions or substitutions."""
    if a == b:
        return 0
    if not a:
        return len(b)
    if not b:
        return len(a)
    if len(a) < len(b):
        a, b = b, a

    previous = list(range(len(b) + 1))
    for i, ca in enumerate(a, start=1):
        current = [i]
        for j, cb in enumerate(b, start=1):
            cost = 0 if ca == cb else 1
            current.append(min(
                previous[j] + 1,         # deletion
                current[j - 1] + 1,      # insertion
                previous[j - 1] + cost,  # substitution
            ))
        previous = current
    return previous[-1]


def similarity_ratio(a: str, b: str) -> float:
    """1 - distance / longer length; two empty strings are identical."""
    longest = max(len(a), len(b))
    if longest == 0:
        return 1.0
    return 1.0 - levenshtein_distance(a, b) / longest


def similarity_threshold(length: int) -> float:
    if length <= 5:
        return 0.80
    if length <= 10:
        return 0.85
    return 0.90


def check_free_response_answer(
    submitted: str,
    correct_answer: str,
    alternative_answers: Iterable[str] = (),
    case_sensitive: bool = False,
    allow_typos: bool = True,
) -> FreeResponseMatch:
    answer = normalize_string(submitted, case_sensitive)
    if not answer:
        return FreeResponseMatch(is_correct=False, similarity=0.0)

    candidates = [correct_answer, *alternative_answers]
    best = FreeResponseMatch(is_correct=False, similarity=0.0)

    for candidate in candidates:
        if not candidate:
            continue
        target = normalize_string(candidate, case_sensitive)
        if not target:
            continue
        if answer == target:
            return FreeResponseMatch(is_correct=True, similarity=1.0, matched_answer=candidate)
        if not allow_typos:
            continue

        ratio = similarity_ratio(answer, target)
        threshold = similarity_threshold(len(target))
        if ratio >= threshold and ratio > best.similarity:
            best = FreeResponseMatch(is_correct=True, similarity=ratio, matched_answer=candidate)
        elif not best.is_correct and ratio > best.similarity:
            best = FreeResponseMatch(is_correct=False, similarity=ratio)

    return best
