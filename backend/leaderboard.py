"""
Leaderboard aggregate maintenance.

One document per game (``games/{id}/aggregates/leaderboard``) holds the top-N
players, per-question response counters and every player's rank, so clients
never have to read all player documents.
"""

from __future__ import annotations

import time
from typing import Iterable, Optional, Sequence

from config import DEFAULT_LEADERBOARD_SIZE
from logger import get_logger, log_game_event
from models import (
    GameLeaderboard,
    LeaderboardEntry,
    MULTI_INDEX_TYPES,
    Player,
    PlayerRankInfo,
    SINGLE_INDEX_TYPES,
)
from scoring import SubmittedAnswer
from store import leaderboard_path, player_path, players_collection
from streak import replay_streak

logger = get_logger("QuizRush.leaderboard")

COUNTER_MAX_ATTEMPTS = 25  # every answer in the game writes this one document


def ranking_key(player: Player):
    return (-player.score, player.name.lower(), player.id)


def tally_answer_counts(
    question_type: str,
    answers: Iterable[SubmittedAnswer],
    option_count: int = 0,
) -> list[int]:
    """Per-option response counts. Sliders and free text are not tallied."""
    counts = [0] * option_count

    def bump(idx: int) -> None:
        if idx < 0:
            return
        if idx >= len(counts):
            counts.extend([0] * (idx + 1 - len(counts)))
        counts[idx] += 1

    for answer in answers:
        if question_type in SINGLE_INDEX_TYPES:
            if answer.answer_index is not None:
                bump(answer.answer_index)
        elif question_type in MULTI_INDEX_TYPES:
            for idx in set(answer.answer_indices or ()):
                bump(idx)
    return counts


def build_leaderboard(
    players: Sequence[Player],
    question_index: int,
    question_types: Sequence[str],
    top_n: int = DEFAULT_LEADERBOARD_SIZE,
    option_count: int = 0,
) -> GameLeaderboard:
    """Pure rebuild of the aggregate from player records."""
    ranked = sorted(players, key=ranking_key)
    total = len(ranked)
    question_type = question_types[question_index] if question_index < len(question_types) else None

    streaks: dict[str, int] = {}
    submitted: list[SubmittedAnswer] = []
    answered: list[str] = []
    for player in ranked:
        streaks[player.id] = replay_streak(player.answers, question_types, question_index)
        record = player.answer_for(question_index)
        if record is not None:
            answered.append(player.id)
            submitted.append(SubmittedAnswer(
                answer_index=record.answerIndex,
                answer_indices=record.answerIndices,
                slider_value=record.sliderValue,
                text_answer=record.textAnswer,
            ))

    top_players = []
    for rank, player in enumerate(ranked[:top_n], start=1):
        record = player.answer_for(question_index)
        top_players.append(LeaderboardEntry(
            id=player.id,
            name=player.name,
            score=player.score,
            currentStreak=streaks[player.id],
            lastQuestionPoints=record.points if record else 0,
            rank=rank,
        ))

    return GameLeaderboard(
        questionIndex=question_index,
        topPlayers=top_players,
        totalPlayers=total,
        totalAnswered=len(answered),
        answerCounts=tally_answer_counts(question_type, submitted, option_count) if question_type else [],
        answeredPlayerIds=answered,
        playerRanks={
            p.id: PlayerRankInfo(rank=rank, totalPlayers=total)
            for rank, p in enumerate(ranked, start=1)
        },
        playerStreaks=streaks,
    )


def initialize(store, game_id: str, player_count: int, option_count: int = 0) -> GameLeaderboard:
    board = GameLeaderboard(
        totalPlayers=player_count,
        answerCounts=[0] * option_count,
        lastUpdated=time.time(),
    )
    store.set(leaderboard_path(game_id), board.model_dump())
    return board


def reset_for_new_question(store, game_id: str, question_index: int, option_count: int = 0) -> bool:
    """Clear per-question counters. Returns False when there is no aggregate yet."""
    path = leaderboard_path(game_id)

    def _reset(txn) -> bool:
        if txn.get(path) is None:
            return False
        txn.update(path, {
            "questionIndex": question_index,
            "totalAnswered": 0,
            "answerCounts": [0] * option_count,
            "answeredPlayerIds": [],
            "lastUpdated": time.time(),
        })
        return True

    existed = store.run_transaction(_reset)
    if not existed:
        logger.info(f"ℹ️ No leaderboard aggregate for game {game_id}; nothing to reset")
    return existed


def record_response(
    store,
    game_id: str,
    player_id: str,
    question_index: int,
    question_type: str,
    answer: SubmittedAnswer,
) -> GameLeaderboard:
    """Count a player's response for the current question, at most once.

    A results rebuild between the answer commit and this call already counts
    the player, so the increment is skipped in that case.
    """
    path = leaderboard_path(game_id)

    def _record(txn) -> GameLeaderboard:
        snap = txn.get(path)
        board = GameLeaderboard.model_validate(snap) if snap else GameLeaderboard()
        if board.questionIndex != question_index:
            board.questionIndex = question_index
            board.totalAnswered = 0
            board.answerCounts = []
            board.answeredPlayerIds = []
        if player_id in board.answeredPlayerIds:
            return board

        counts = list(board.answerCounts)
        for idx, n in enumerate(tally_answer_counts(question_type, [answer])):
            if idx >= len(counts):
                counts.extend([0] * (idx + 1 - len(counts)))
            counts[idx] += n

        board.totalAnswered += 1
        board.answerCounts = counts
        board.answeredPlayerIds = [*board.answeredPlayerIds, player_id]
        board.lastUpdated = time.time()
        txn.set(path, board.model_dump())
        return board

    return store.run_transaction(_record, max_attempts=COUNTER_MAX_ATTEMPTS)


def load_players(store, game_id: str) -> list[Player]:
    return [Player.model_validate(data) for _, data in store.list(players_collection(game_id))]


def rank_of(store, game_id: str, score: int) -> tuple[int, int]:
    """1-based rank for ``score`` and the player count, from two count queries.

    Players on equal scores share a rank here; the aggregate breaks ties.
    """
    collection = players_collection(game_id)
    higher = store.count(collection, where=("score", ">", score))
    return higher + 1, store.count(collection)


def _repair_player(store, game_id: str, player_id: str, question_types: Sequence[str],
                   streak_upto: Optional[int]) -> Optional[Player]:
    """Bring score and streak in line with the player's answer records."""
    path = player_path(game_id, player_id)

    def _repair(txn) -> Optional[Player]:
        snap = txn.get(path)
        if snap is None:
            return None
        player = Player.model_validate(snap)
        fixes = {}
        expected_score = sum(a.points for a in player.answers)
        if player.score != expected_score:
            fixes["score"] = expected_score
        if streak_upto is not None:
            expected_streak = replay_streak(player.answers, question_types, streak_upto)
            if player.currentStreak != expected_streak:
                fixes["currentStreak"] = expected_streak
        if fixes:
            logger.warning(f"🔧 Repairing player {player_id} in game {game_id}: {fixes}")
            txn.update(path, fixes)
            player = player.model_copy(update=fixes)
        return player

    return store.run_transaction(_repair)


def recompute(
    store,
    game_id: str,
    question_index: int,
    question_types: Sequence[str],
    *,
    top_n: int = DEFAULT_LEADERBOARD_SIZE,
    option_count: int = 0,
    is_current_question: bool = True,
) -> GameLeaderboard:
    """Rebuild the aggregate for ``question_index`` and write it wholesale.

    Safe to call repeatedly: player streaks are replayed from answer records,
    never incremented, and scores are only ever reset to the sum of their
    answer points. Player streaks are only rewritten when the question is
    the game's current one.
    """
    streak_upto = question_index if is_current_question else None
    players = []
    for player in load_players(store, game_id):
        expected_streak = replay_streak(player.answers, question_types, question_index)
        needs_repair = player.score != sum(a.points for a in player.answers) or (
            streak_upto is not None and player.currentStreak != expected_streak
        )
        if needs_repair:
            player = _repair_player(store, game_id, player.id, question_types, streak_upto)
            if player is None:
                continue
        players.append(player)

    board = build_leaderboard(players, question_index, question_types, top_n, option_count)
    board.lastUpdated = time.time()
    store.set(leaderboard_path(game_id), board.model_dump())

    log_game_event("results_computed", game_id=game_id, data={
        "question_index": question_index,
        "total_players": board.totalPlayers,
        "total_answered": board.totalAnswered,
    })
    return board
