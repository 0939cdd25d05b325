"""Consecutive-correct-answer streaks."""

from __future__ import annotations

from typing import Iterable, Sequence

from models import POLL_TYPES, PlayerAnswer


def next_streak(question_type: str, is_correct: bool, current_streak: int) -> int:
    # Polls neither extend nor break a streak
    if question_type in POLL_TYPES:
        return current_streak
    return current_streak + 1 if is_correct else 0


def replay_streak(
    answers: Iterable[PlayerAnswer],
    question_types: Sequence[str],
    upto_index: int,
) -> int:
    """Rebuild a streak from the answer records of questions ``0..upto_index``.

    A scored question with no answer record counts as a timeout. Replaying the
    same records always gives the same value, so result computation can run
    any number of times.
    """
    by_index = {a.questionIndex: a for a in answers}
    streak = 0
    for idx in range(min(upto_index + 1, len(question_types))):
        answer = by_index.get(idx)
        streak = next_streak(question_types[idx], answer is not None and answer.isCorrect, streak)
    return streak
