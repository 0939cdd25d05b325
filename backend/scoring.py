"""
Point calculation for every question type.

All functions are pure. Speed is measured as ``time_remaining / time_limit``
with ``time_remaining`` clipped into ``[0, time_limit]``, and every result is
rounded half-up to an integer.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Iterable, Optional

from fuzzy_match import check_free_response_answer
from models import AnswerKeyEntry, NO_ANSWER_INDEX, POLL_TYPES

MIN_POINTS = 100
MAX_POINTS = 1000
SPEED_POINTS = 900
HALF_POINTS = 500
WRONG_SELECTION_PENALTY = 0.2
DEFAULT_SLIDER_ERROR_PERCENT = 5


@dataclass(frozen=True)
class ScoringResult:
    points: int
    is_correct: bool
    is_partially_correct: bool = False


@dataclass(frozen=True)
class SubmittedAnswer:
    answer_index: Optional[int] = None
    answer_indices: Optional[list[int]] = None
    slider_value: Optional[float] = None
    text_answer: Optional[str] = None

    def is_blank(self) -> bool:
        """No payload, or only the no-answer sentinels (-1 / empty selection)."""
        return (
            self.answer_index in (None, NO_ANSWER_INDEX)
            and not self.answer_indices
            and self.slider_value is None
            and not self.text_answer
        )


NO_SCORE = ScoringResult(points=0, is_correct=False)


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def speed_fraction(time_remaining: float, time_limit: float) -> float:
    if time_limit <= 0:
        raise ValueError(f"time limit must be positive, got {time_limit}")
    clipped = min(max(time_remaining, 0.0), float(time_limit))
    return clipped / time_limit


def score_single_choice(
    answer_index: Optional[int],
    correct_answer_index: int,
    time_remaining: float,
    time_limit: float,
) -> ScoringResult:
    if answer_index is None or answer_index == NO_ANSWER_INDEX or answer_index != correct_answer_index:
        return NO_SCORE
    return ScoringResult(points=_speed_points(time_remaining, time_limit), is_correct=True)


def _speed_points(time_remaining: float, time_limit: float) -> int:
    raw = MIN_POINTS + round_half_up(speed_fraction(time_remaining, time_limit) * SPEED_POINTS)
    return max(MIN_POINTS, min(MAX_POINTS, raw))


def score_multiple_choice(
    answer_indices: Optional[Iterable[int]],
    correct_answer_indices: Iterable[int],
    time_remaining: float,
    time_limit: float,
) -> ScoringResult:
    """Partial credit: fraction of correct options picked, minus 0.2 per wrong pick.

    The speed half is awarded for any non-empty selection, even when the
    penalty wipes out the accuracy half.
    """
    correct = set(correct_answer_indices)
    if not correct:
        raise ValueError("multiple-choice question has no correct answers")
    selected = set(answer_indices or ())
    if not selected:
        return NO_SCORE

    right = len(selected & correct)
    wrong = len(selected - correct)
    multiplier = max(0.0, right / len(correct) - WRONG_SELECTION_PENALTY * wrong)

    speed = speed_fraction(time_remaining, time_limit)
    points = round_half_up(HALF_POINTS * multiplier) + round_half_up(HALF_POINTS * speed)
    is_correct = right == len(correct) and wrong == 0
    return ScoringResult(
        points=points,
        is_correct=is_correct,
        is_partially_correct=not is_correct and multiplier > 0,
    )


def slider_threshold(min_value: float, max_value: float, acceptable_error: Optional[float] = None) -> float:
    if acceptable_error is not None:
        return acceptable_error
    return (max_value - min_value) * DEFAULT_SLIDER_ERROR_PERCENT / 100


def score_slider(
    slider_value: Optional[float],
    correct_value: float,
    min_value: float,
    max_value: float,
    time_remaining: float,
    time_limit: float,
    acceptable_error: Optional[float] = None,
) -> ScoringResult:
    """Quadratic proximity score over the whole range; correctness uses the threshold."""
    value_range = max_value - min_value
    if value_range <= 0:
        raise ValueError(f"slider range must be positive, got [{min_value}, {max_value}]")
    if slider_value is None or math.isnan(slider_value):
        return NO_SCORE

    distance = abs(slider_value - correct_value)
    accuracy = max(0.0, 1.0 - distance / value_range)
    speed = speed_fraction(time_remaining, time_limit)
    points = round_half_up(HALF_POINTS * accuracy * accuracy) + round_half_up(HALF_POINTS * speed)
    is_correct = distance <= slider_threshold(min_value, max_value, acceptable_error)
    return ScoringResult(points=points, is_correct=is_correct)


def score_free_response(
    text_answer: Optional[str],
    correct_answer: str,
    alternative_answers: Iterable[str],
    time_remaining: float,
    time_limit: float,
    case_sensitive: bool = False,
    allow_typos: bool = True,
) -> ScoringResult:
    if not text_answer:
        return NO_SCORE
    match = check_free_response_answer(
        text_answer,
        correct_answer,
        alternative_answers,
        case_sensitive=case_sensitive,
        allow_typos=allow_typos,
    )
    if not match.is_correct:
        return NO_SCORE
    return ScoringResult(points=_speed_points(time_remaining, time_limit), is_correct=True)


def score_poll() -> ScoringResult:
    return NO_SCORE


def calculate_score(
    question_type: str,
    answer: SubmittedAnswer,
    key: AnswerKeyEntry,
    time_remaining: float,
    time_limit: Optional[float] = None,
) -> ScoringResult:
    """Score one submission against the answer key.

    Raises ValueError for an unknown question type or an answer key that is
    missing the fields its type needs.
    """
    time_limit = key.timeLimit if time_limit is None else time_limit

    if question_type in POLL_TYPES:
        return score_poll()
    if question_type == 'single-choice':
        if key.correctAnswerIndex is None:
            raise ValueError("single-choice answer key has no correctAnswerIndex")
        return score_single_choice(answer.answer_index, key.correctAnswerIndex, time_remaining, time_limit)
    if question_type == 'multiple-choice':
        if not key.correctAnswerIndices:
            raise ValueError("multiple-choice answer key has no correctAnswerIndices")
        return score_multiple_choice(answer.answer_indices, key.correctAnswerIndices, time_remaining, time_limit)
    if question_type == 'slider':
        if key.correctValue is None or key.minValue is None or key.maxValue is None:
            raise ValueError("slider answer key needs correctValue, minValue and maxValue")
        return score_slider(
            answer.slider_value,
            key.correctValue,
            key.minValue,
            key.maxValue,
            time_remaining,
            time_limit,
            acceptable_error=key.acceptableError,
        )
    if question_type == 'free-response':
        if not key.correctAnswer:
            raise ValueError("free-response answer key has no correctAnswer")
        return score_free_response(
            answer.text_answer,
            key.correctAnswer,
            key.alternativeAnswers,
            time_remaining,
            time_limit,
            case_sensitive=key.caseSensitive,
            allow_typos=key.allowTypos,
        )
    raise ValueError(f"Unknown question type: {question_type}")
