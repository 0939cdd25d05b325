"""
Answer submission: validate, score, and record exactly one answer per
(player, question).

The answer record, score and streak are written in a single transaction that
re-reads the player and game documents, so concurrent duplicates (a retry
racing a timeout auto-submit, say) can never both be scored.
"""

from __future__ import annotations

from typing import Optional

from errors import FailedPreconditionError, GameError, InvalidArgumentError, NotFoundError
from leaderboard import rank_of, record_response
from logger import get_logger, log_game_event
from models import (
    AnswerKey,
    AnswerKeyEntry,
    Game,
    Player,
    PlayerAnswer,
    SubmitAnswerRequest,
    SubmitAnswerResult,
)
from scoring import ScoringResult, SubmittedAnswer, calculate_score
from store import answer_key_path, game_path, player_path
from streak import next_streak, replay_streak
from validation import (
    is_timeout,
    validate_answer_key,
    validate_answer_shape,
    validate_basic_fields,
    validate_game_state,
    validate_time_remaining,
)

logger = get_logger("QuizRush.submission")


def submitted_answer(request: SubmitAnswerRequest) -> SubmittedAnswer:
    return SubmittedAnswer(
        answer_index=request.answerIndex,
        answer_indices=request.answerIndices,
        slider_value=request.sliderValue,
        text_answer=request.textAnswer,
    )


def load_game(store, game_id: str) -> Game:
    data = store.get(game_path(game_id))
    if data is None:
        raise NotFoundError(f"Game {game_id} not found")
    return Game.model_validate(data)


def resolve_answer_key(store, game_id: str, question_index: int,
                       request: SubmitAnswerRequest) -> AnswerKeyEntry:
    """The stored answer key wins; request metadata is only a fallback."""
    data = store.get(answer_key_path(game_id))
    if data is None:
        logger.warning(f"⚠️ Game {game_id} has no stored answer key; using request metadata")
        return request.client_answer_key()

    key = AnswerKey.model_validate(data)
    if question_index >= len(key.questions):
        raise NotFoundError(f"Question {question_index} does not exist in game {game_id}")
    entry = key.questions[question_index]
    if request.questionType != entry.type:
        raise InvalidArgumentError(
            f"questionType {request.questionType} does not match question {question_index} ({entry.type})"
        )
    return entry


def submit_answer(store, request: SubmitAnswerRequest) -> SubmitAnswerResult:
    answer = submitted_answer(request)

    # 1-2. Request shape
    validate_basic_fields(request, answer)
    validate_time_remaining(request.timeRemaining)
    game_id, player_id, question_index = request.gameId, request.playerId, request.questionIndex

    # 3. Game state
    game = load_game(store, game_id)
    validate_game_state(game, question_index)

    # 4-5. Player
    player_data = store.get(player_path(game_id, player_id))
    if player_data is None:
        raise NotFoundError(f"Player {player_id} not found in game {game_id}")
    if Player.model_validate(player_data).has_answered(question_index):
        raise FailedPreconditionError("Already answered this question")

    # 6. Payload against the answer key
    key = resolve_answer_key(store, game_id, question_index, request)
    validate_answer_key(key)
    validate_time_remaining(request.timeRemaining, key.timeLimit)
    timeout = is_timeout(request, answer)
    validate_answer_shape(key, answer, timeout)

    result = calculate_score(key.type, answer, key, request.timeRemaining, key.timeLimit)
    new_score, new_streak = _record_answer(
        store, game_id, player_id, question_index, key, request, result, timeout
    )

    logger.info(
        f"✅ Player {player_id} answered Q{question_index + 1} in game {game_id}: "
        f"{result.points} pts (correct={result.is_correct}, timeout={timeout})"
    )
    log_game_event("answer_submitted", game_id=game_id, player_id=player_id, data={
        "question_index": question_index,
        "question_type": key.type,
        "points": result.points,
        "is_correct": result.is_correct,
        "is_partially_correct": result.is_partially_correct,
        "timeout": timeout,
        "time_remaining": request.timeRemaining,
    })

    # Aggregate counters are best-effort; results computation rebuilds them anyway
    try:
        record_response(store, game_id, player_id, question_index, key.type, answer)
    except GameError as e:
        logger.warning(f"⚠️ Could not update leaderboard counters for game {game_id}: {e}")

    rank: Optional[int] = None
    total_players: Optional[int] = None
    try:
        rank, total_players = rank_of(store, game_id, new_score)
    except GameError as e:
        logger.warning(f"⚠️ Could not compute rank for player {player_id}: {e}")

    return SubmitAnswerResult(
        success=True,
        isCorrect=result.is_correct,
        isPartiallyCorrect=result.is_partially_correct,
        points=result.points,
        newScore=new_score,
        currentStreak=new_streak,
        rank=rank,
        totalPlayers=total_players,
    )


def _record_answer(
    store,
    game_id: str,
    player_id: str,
    question_index: int,
    key: AnswerKeyEntry,
    request: SubmitAnswerRequest,
    result: ScoringResult,
    timeout: bool,
) -> tuple[int, int]:
    gpath = game_path(game_id)
    ppath = player_path(game_id, player_id)

    def _apply(txn) -> tuple[int, int]:
        game_data = txn.get(gpath)
        player_data = txn.get(ppath)
        # The game may have been cancelled or moved on since the first read
        if game_data is None:
            raise NotFoundError(f"Game {game_id} not found")
        if player_data is None:
            raise NotFoundError(f"Player {player_id} not found in game {game_id}")
        game = Game.model_validate(game_data)
        validate_game_state(game, question_index)
        player = Player.model_validate(player_data)
        if player.has_answered(question_index):
            raise FailedPreconditionError("Already answered this question")

        question_types = game.question_types()
        if question_index < len(question_types):
            previous = replay_streak(player.answers, question_types, question_index - 1)
        else:
            previous = player.currentStreak
        streak = next_streak(key.type, result.is_correct, previous)

        record = PlayerAnswer(
            questionIndex=question_index,
            questionType=key.type,
            answerIndex=request.answerIndex,
            answerIndices=request.answerIndices,
            sliderValue=request.sliderValue,
            textAnswer=request.textAnswer,
            points=result.points,
            isCorrect=result.is_correct,
            isPartiallyCorrect=result.is_partially_correct,
            wasTimeout=timeout,
            timeRemaining=request.timeRemaining,
            streak=streak,
        )
        new_score = player.score + result.points
        txn.update(ppath, {
            "score": new_score,
            "currentStreak": streak,
            "answers": [*player_data.get("answers", []), record.model_dump()],
        })
        return new_score, streak

    return store.run_transaction(_apply)
