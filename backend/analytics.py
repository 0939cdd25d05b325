"""
Post-game analytics.

Built once a game has ended, purely from the quiz and the player answer
records, and stored at ``games/{id}/aggregates/analytics`` for the host's
dashboard.
"""

from __future__ import annotations

import math
from typing import Optional, Sequence

from errors import FailedPreconditionError, InvalidArgumentError, NotFoundError
from leaderboard import load_players, ranking_key
from logger import get_logger, log_game_event
from models import (
    AnswerDistributionEntry,
    FreeResponseEntry,
    GameAnalytics,
    GameAnalyticsSummary,
    LeaderboardWithStats,
    MULTI_INDEX_TYPES,
    POLL_TYPES,
    Player,
    PlayerAnswer,
    PositionHistoryEntry,
    Question,
    QuestionRate,
    QuestionStats,
    Quiz,
    SINGLE_INDEX_TYPES,
    ScoreBin,
    SliderDistribution,
)
from store import analytics_path, quiz_path
from submission import load_game

logger = get_logger("QuizRush.analytics")

POSITION_TRACK_SIZE = 20  # players ever ranked this high get a position history
FREE_RESPONSE_TOP = 20
SCORE_BIN_TARGET = 10


def _percent(part: int, whole: int) -> float:
    return part / whole * 100 if whole else 0.0


def _mean(values: Sequence[float]) -> float:
    return sum(values) / len(values) if values else 0.0


def _response_time(answer: PlayerAnswer, questions: Sequence[Question]) -> Optional[float]:
    if answer.wasTimeout or answer.questionIndex >= len(questions):
        return None
    limit = questions[answer.questionIndex].timeLimit
    return max(0.0, limit - min(answer.timeRemaining, limit))


def _option_distribution(question: Question, answers: list[PlayerAnswer]) -> list[AnswerDistributionEntry]:
    counts = [0] * len(question.options)
    for a in answers:
        if question.type in SINGLE_INDEX_TYPES:
            picked = {a.answerIndex} if a.answerIndex is not None else set()
        else:
            picked = set(a.answerIndices or ())
        for idx in picked:
            if 0 <= idx < len(counts):
                counts[idx] += 1

    if question.type == 'single-choice':
        correct = {question.correctAnswerIndex}
    elif question.type == 'multiple-choice':
        correct = set(question.correctAnswerIndices or ())
    else:
        correct = set()
    return [
        AnswerDistributionEntry(label=label, count=counts[i], isCorrect=i in correct)
        for i, label in enumerate(question.options)
    ]


def _free_response_distribution(answers: list[PlayerAnswer]) -> list[FreeResponseEntry]:
    grouped: dict[str, FreeResponseEntry] = {}
    for a in answers:
        text = (a.textAnswer or "").strip()
        if not text:
            continue
        entry = grouped.setdefault(text, FreeResponseEntry(text=text, count=0, isCorrect=a.isCorrect))
        entry.count += 1
    ranked = sorted(grouped.values(), key=lambda e: (-e.count, e.text))
    return ranked[:FREE_RESPONSE_TOP]


def build_question_stats(questions: Sequence[Question], players: Sequence[Player]) -> list[QuestionStats]:
    stats = []
    for index, question in enumerate(questions):
        answers = [a for a in (p.answer_for(index) for p in players) if a is not None]
        real = [a for a in answers if not a.wasTimeout]
        scored = question.type not in POLL_TYPES
        correct_count = sum(1 for a in answers if a.isCorrect) if scored else 0

        entry = QuestionStats(
            questionIndex=index,
            questionText=question.text,
            questionType=question.type,
            totalAnswered=len(real),
            totalTimeout=len(answers) - len(real),
            timeoutRate=_percent(len(players) - len(real), len(players)),
            correctCount=correct_count,
            correctRate=_percent(correct_count, len(real)) if scored else 0.0,
            avgResponseTime=_mean([_response_time(a, questions) for a in real]),
            avgPoints=sum(a.points for a in answers) / len(real) if real else 0.0,
        )
        if question.type in SINGLE_INDEX_TYPES | MULTI_INDEX_TYPES:
            entry.answerDistribution = _option_distribution(question, answers)
        elif question.type == 'slider':
            entry.sliderDistribution = SliderDistribution(
                correctValue=question.correctValue or 0,
                minValue=question.minValue or 0,
                maxValue=question.maxValue if question.maxValue is not None else 100,
                playerValues=[a.sliderValue for a in real if a.sliderValue is not None],
            )
        elif question.type == 'free-response':
            entry.freeResponseDistribution = _free_response_distribution(real)
        stats.append(entry)
    return stats


def build_position_history(question_count: int, players: Sequence[Player]) -> list[PositionHistoryEntry]:
    """Rank after every question for each player who was ever in the top positions."""
    positions: dict[str, list[int]] = {p.id: [] for p in players}
    tracked: set[str] = set()

    for index in range(question_count):
        standings = [
            p.model_copy(update={"score": sum(a.points for a in p.answers if a.questionIndex <= index)})
            for p in players
        ]
        for rank, p in enumerate(sorted(standings, key=ranking_key), start=1):
            positions[p.id].append(rank)
            if rank <= POSITION_TRACK_SIZE:
                tracked.add(p.id)

    return [
        PositionHistoryEntry(playerId=p.id, playerName=p.name, positions=positions[p.id], finalScore=p.score)
        for p in sorted(players, key=ranking_key)
        if p.id in tracked
    ]


def build_score_distribution(players: Sequence[Player]) -> list[ScoreBin]:
    """Histogram of final scores in roughly ten round-numbered bins; empty bins are dropped."""
    scores = [p.score for p in players]
    high = max(scores + [0])
    low = min(scores + [0])
    span = high - low
    if span == 0:
        return [ScoreBin(minScore=low, maxScore=high, count=len(scores))]

    size = math.ceil(span / SCORE_BIN_TARGET)
    if size > 100:
        size = math.ceil(size / 100) * 100
    elif size > 10:
        size = math.ceil(size / 10) * 10

    bins = []
    for start in range(low // size * size, high + 1, size):
        end = start + size
        count = sum(1 for s in scores if start <= s < end)
        if count or end > high:
            bins.append(ScoreBin(minScore=start, maxScore=end - 1, count=count))
    return bins


def build_full_leaderboard(players: Sequence[Player], questions: Sequence[Question]) -> list[LeaderboardWithStats]:
    entries = []
    for rank, player in enumerate(sorted(players, key=ranking_key), start=1):
        scored = [a for a in player.answers if a.questionType not in POLL_TYPES]
        correct = sum(1 for a in scored if a.isCorrect)
        timeouts = sum(1 for a in player.answers if a.wasTimeout)
        times = [t for t in (_response_time(a, questions) for a in player.answers) if t is not None]
        entries.append(LeaderboardWithStats(
            playerId=player.id,
            playerName=player.name,
            rank=rank,
            finalScore=player.score,
            correctAnswers=correct,
            totalAnswered=len(player.answers) - timeouts,
            timeouts=timeouts,
            accuracy=_percent(correct, len(scored)),
            avgResponseTime=_mean(times),
        ))
    return entries


def compute_summary(
    question_stats: Sequence[QuestionStats],
    leaderboard: Sequence[LeaderboardWithStats],
) -> GameAnalyticsSummary:
    summary = GameAnalyticsSummary(
        avgScore=_mean([e.finalScore for e in leaderboard]),
        avgAccuracy=_mean([e.accuracy for e in leaderboard]),
        avgTimeoutRate=_mean([q.timeoutRate for q in question_stats]),
    )
    scored = [q for q in question_stats if q.questionType not in POLL_TYPES and q.totalAnswered > 0]
    if scored:
        by_rate = sorted(scored, key=lambda q: q.correctRate)
        summary.hardestQuestion = QuestionRate(index=by_rate[0].questionIndex, correctRate=by_rate[0].correctRate)
        summary.easiestQuestion = QuestionRate(index=by_rate[-1].questionIndex, correctRate=by_rate[-1].correctRate)
    return summary


def compute_game_analytics(store, game_id: Optional[str]) -> GameAnalytics:
    """Build and store the analytics document for an ended game."""
    if not game_id:
        raise InvalidArgumentError("gameId is required")
    game = load_game(store, game_id)
    if game.state != 'ended':
        raise FailedPreconditionError(
            "Analytics can only be generated for ended games",
            details={"state": game.state},
        )
    quiz_data = store.get(quiz_path(game.quizId))
    if quiz_data is None:
        raise NotFoundError(f"Quiz {game.quizId} not found")
    quiz = Quiz.model_validate(quiz_data)
    players = load_players(store, game_id)
    if not players:
        raise FailedPreconditionError("No players participated in this game")

    question_stats = build_question_stats(quiz.questions, players)
    full_leaderboard = build_full_leaderboard(players, quiz.questions)
    analytics = GameAnalytics(
        gameId=game_id,
        quizId=quiz.id,
        quizTitle=quiz.title,
        totalQuestions=len(quiz.questions),
        totalPlayers=len(players),
        questionStats=question_stats,
        positionHistory=build_position_history(len(quiz.questions), players),
        scoreDistribution=build_score_distribution(players),
        fullLeaderboard=full_leaderboard,
        summary=compute_summary(question_stats, full_leaderboard),
    )
    store.set(analytics_path(game_id), analytics.model_dump())

    logger.info(f"📈 Analytics for game {game.gamePin}: {len(players)} players, {len(quiz.questions)} questions")
    log_game_event("analytics_computed", game_id=game_id, data={
        "total_players": len(players),
        "total_questions": len(quiz.questions),
    })
    return analytics
