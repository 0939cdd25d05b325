"""
Request validation for answer submission and result computation.

Each check raises a categorical ``GameError``; none of them touch the store.
"""

from __future__ import annotations

import math
from typing import Optional

from config import MAX_TEXT_ANSWER_LENGTH
from errors import FailedPreconditionError, InvalidArgumentError
from models import (
    AnswerKeyEntry,
    Game,
    MULTI_INDEX_TYPES,
    NO_ANSWER_INDEX,
    QUESTION_TYPES,
    SINGLE_INDEX_TYPES,
    SubmitAnswerRequest,
)
from scoring import SubmittedAnswer

_PAYLOAD_FIELD = {
    'single-choice': 'answerIndex',
    'poll-single': 'answerIndex',
    'multiple-choice': 'answerIndices',
    'poll-multiple': 'answerIndices',
    'slider': 'sliderValue',
    'free-response': 'textAnswer',
}


def is_timeout(request: SubmitAnswerRequest, answer: SubmittedAnswer) -> bool:
    """An explicit timeout: zero time left and nothing (or only a sentinel) submitted."""
    return answer.is_blank() and request.timeRemaining == 0


def validate_basic_fields(request: SubmitAnswerRequest, answer: SubmittedAnswer) -> None:
    if not request.gameId or not isinstance(request.gameId, str):
        raise InvalidArgumentError("gameId is required")
    if not request.playerId or not isinstance(request.playerId, str):
        raise InvalidArgumentError("playerId is required")
    if request.questionIndex is None:
        raise InvalidArgumentError("questionIndex is required")
    if request.questionIndex < 0:
        raise InvalidArgumentError("questionIndex cannot be negative")
    if request.questionType not in QUESTION_TYPES:
        raise InvalidArgumentError(
            f"Invalid question type: {request.questionType}",
            details={"allowed": list(QUESTION_TYPES)},
        )
    if request.timeRemaining is None:
        raise InvalidArgumentError("timeRemaining is required")

    if is_timeout(request, answer):
        return
    field = _PAYLOAD_FIELD[request.questionType]
    if getattr(request, field) is None:
        raise InvalidArgumentError(f"{field} is required for {request.questionType} questions")


def validate_time_remaining(time_remaining: float, time_limit: Optional[float] = None) -> None:
    if math.isnan(time_remaining) or math.isinf(time_remaining):
        raise InvalidArgumentError("timeRemaining must be a finite number")
    if time_remaining < 0:
        raise InvalidArgumentError("timeRemaining cannot be negative")
    if time_limit is not None and time_remaining > time_limit:
        raise InvalidArgumentError(
            f"timeRemaining ({time_remaining}) exceeds the question time limit ({time_limit})"
        )


def validate_game_state(game: Game, question_index: int) -> None:
    if game.state != 'question':
        raise FailedPreconditionError(
            f"Game is not accepting answers (state: {game.state})",
            details={"state": game.state},
        )
    if game.currentQuestionIndex != question_index:
        raise FailedPreconditionError(
            f"Question {question_index} is not the current question ({game.currentQuestionIndex})",
            details={"currentQuestionIndex": game.currentQuestionIndex},
        )


def validate_answer_key(key: AnswerKeyEntry) -> None:
    issues = key.problems()
    if issues:
        raise InvalidArgumentError(
            f"Question is misconfigured: {'; '.join(issues)}",
            details={"problems": issues},
        )


def _check_index(idx: int, option_count: int) -> None:
    if idx < 0 or (option_count and idx >= option_count):
        raise InvalidArgumentError(f"Answer index {idx} is out of range")


def validate_answer_shape(key: AnswerKeyEntry, answer: SubmittedAnswer, timeout: bool) -> None:
    """Structural checks on the payload against the question it answers."""
    if timeout:
        return
    qtype = key.type

    if qtype in SINGLE_INDEX_TYPES:
        idx = answer.answer_index
        if idx == NO_ANSWER_INDEX and qtype == 'single-choice':
            return
        _check_index(idx, key.optionCount)

    elif qtype in MULTI_INDEX_TYPES:
        indices = answer.answer_indices or []
        if not indices:
            raise InvalidArgumentError("Select at least one option")
        for idx in indices:
            _check_index(idx, key.optionCount)

    elif qtype == 'slider':
        value = answer.slider_value
        if math.isnan(value) or math.isinf(value):
            raise InvalidArgumentError("sliderValue must be a finite number")
        if key.minValue is not None and key.maxValue is not None:
            if not (key.minValue <= value <= key.maxValue):
                raise InvalidArgumentError(
                    f"sliderValue {value} is outside [{key.minValue}, {key.maxValue}]"
                )

    elif qtype == 'free-response':
        if len(answer.text_answer) > MAX_TEXT_ANSWER_LENGTH:
            raise InvalidArgumentError(
                f"textAnswer is longer than {MAX_TEXT_ANSWER_LENGTH} characters"
            )


def validate_compute_request(game_id: Optional[str], question_index: Optional[int]) -> None:
    if not game_id or not isinstance(game_id, str):
        raise InvalidArgumentError("gameId is required")
    if question_index is None:
        raise InvalidArgumentError("questionIndex is required")
    if question_index < 0:
        raise InvalidArgumentError("questionIndex cannot be negative")
