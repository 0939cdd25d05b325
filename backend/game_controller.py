"""
Game lifecycle: lobby -> preparing -> question -> leaderboard -> (preparing | ended).

Every transition is a compare-and-swap on the game document inside a store
transaction. Result computation is idempotent, so a host double-click, a
timer firing alongside the host, or a manual retry can never double-score.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Callable, Iterable, Optional

from config import DEFAULT_LEADERBOARD_SIZE, get_settings
from errors import (
    FailedPreconditionError,
    InvalidArgumentError,
    NotFoundError,
    PermissionDeniedError,
)
from leaderboard import initialize, load_players, recompute, reset_for_new_question
from logger import get_logger, log_game_event
from models import (
    AnswerKey,
    CHOICE_TYPES,
    Game,
    GameLeaderboard,
    GameSettings,
    Player,
    Question,
    Quiz,
    generate_game_pin,
    generate_id,
    generate_token,
)
from store import (
    answer_key_path,
    game_path,
    host_path,
    leaderboard_path,
    name_claim_path,
    pin_path,
    player_path,
    quiz_path,
)
from submission import load_game
from validation import validate_compute_request

logger = get_logger("QuizRush.controller")

MAX_PIN_ATTEMPTS = 10
RESULT_STATES = ('question', 'leaderboard', 'ended')


@dataclass
class TransitionResult:
    game: Game
    results_error: Optional[str] = None


def _option_count(game: Game, question_index: int) -> int:
    if question_index < len(game.questions):
        question = game.questions[question_index]
        if question.type in CHOICE_TYPES:
            return len(question.options)
    return 0


def _leaderboard_size(game: Game) -> int:
    return game.settings.leaderboardSize or get_settings().leaderboard_size or DEFAULT_LEADERBOARD_SIZE


def _transition(
    store,
    game_id: str,
    allowed: Iterable[str],
    changes: Callable[[Game], dict],
) -> Game:
    """Apply ``changes(game)`` if the game is in one of the ``allowed`` states."""
    allowed = tuple(allowed)
    path = game_path(game_id)

    def _apply(txn) -> Game:
        data = txn.get(path)
        if data is None:
            raise NotFoundError(f"Game {game_id} not found")
        game = Game.model_validate(data)
        if game.state not in allowed:
            raise FailedPreconditionError(
                f"Cannot do that while the game is in state '{game.state}'",
                details={"state": game.state, "expected": list(allowed)},
            )
        fields = changes(game)
        if fields:
            txn.update(path, fields)
        return game.model_copy(update=fields)

    return store.run_transaction(_apply)


# --- Lobby ---

def create_game(
    store,
    questions: list[Question],
    host_id: str = "host",
    settings: Optional[GameSettings] = None,
    title: str = "",
) -> tuple[Game, str]:
    """Store the quiz and open a lobby. Returns the game and its host token."""
    if not questions:
        raise InvalidArgumentError("A game needs at least one question")

    quiz = Quiz(id=generate_id(), hostId=host_id, title=title, questions=questions)
    store.set(quiz_path(quiz.id), quiz.model_dump())

    game_id = generate_id()
    host_token = generate_token()

    for _ in range(MAX_PIN_ATTEMPTS):
        pin = generate_game_pin()

        def _claim(txn, pin=pin) -> bool:
            if txn.get(pin_path(pin)) is not None:
                return False
            txn.set(pin_path(pin), {"gameId": game_id, "createdAt": time.time()})
            return True

        if store.run_transaction(_claim):
            break
    else:
        raise FailedPreconditionError("Could not allocate a unique game PIN, try again")

    game = Game(
        id=game_id,
        quizId=quiz.id,
        hostId=host_id,
        gamePin=pin,
        questionCount=len(questions),
        settings=settings or GameSettings(),
    )
    store.set(host_path(game_id), {"hostToken": host_token})
    store.set(game_path(game_id), game.model_dump())

    logger.info(f"🎮 Game created: {pin} ({game_id}) with {len(questions)} questions")
    log_game_event("game_created", game_id=game_id, data={
        "game_pin": pin,
        "question_count": len(questions),
        "settings": game.settings.model_dump(),
    })
    return game, host_token


def verify_host(store, game_id: str, host_token: Optional[str]) -> None:
    data = store.get(host_path(game_id))
    if data is None:
        raise NotFoundError(f"Game {game_id} not found")
    if not host_token or host_token != data.get("hostToken"):
        raise PermissionDeniedError("Invalid host token")


def join_game(store, game_pin: str, name: str) -> tuple[Game, Player]:
    name = (name or "").strip()
    if not name:
        raise InvalidArgumentError("Nickname is required")

    pin_data = store.get(pin_path(game_pin.strip().upper()))
    if pin_data is None:
        raise NotFoundError("Game not found")
    game_id = pin_data["gameId"]
    player = Player(id=generate_id(), name=name)
    claim = name_claim_path(game_id, name)

    def _join(txn) -> Game:
        data = txn.get(game_path(game_id))
        taken = txn.get(claim)
        if data is None:
            raise NotFoundError("Game not found")
        game = Game.model_validate(data)
        if game.state != 'lobby':
            raise FailedPreconditionError("Game already started")
        if taken is not None:
            raise FailedPreconditionError("Nickname already taken")
        txn.set(claim, {"playerId": player.id, "name": name})
        txn.set(player_path(game_id, player.id), player.model_dump())
        return game

    game = store.run_transaction(_join)
    logger.info(f"👤 Player '{name}' joined game {game.gamePin}")
    log_game_event("player_joined", game_id=game_id, player_id=player.id, data={"name": name})
    return game, player


# --- Host transitions ---

def start_game(store, game_id: str) -> Game:
    """lobby -> preparing: publish sanitized questions and lock in the answer key."""
    game = load_game(store, game_id)
    quiz_data = store.get(quiz_path(game.quizId))
    if quiz_data is None:
        raise NotFoundError(f"Quiz {game.quizId} not found")
    quiz = Quiz.model_validate(quiz_data)

    answer_key = AnswerKey(questions=[q.answer_key() for q in quiz.questions])
    sanitized = [q.sanitized().model_dump() for q in quiz.questions]

    def _start(txn) -> Game:
        data = txn.get(game_path(game_id))
        if data is None:
            raise NotFoundError(f"Game {game_id} not found")
        current = Game.model_validate(data)
        if current.state != 'lobby':
            raise FailedPreconditionError(f"Game already started (state: {current.state})")
        fields = {
            "state": "preparing",
            "currentQuestionIndex": 0,
            "questionCount": len(sanitized),
            "questions": sanitized,
            "questionStartTime": None,
        }
        txn.set(answer_key_path(game_id), answer_key.model_dump())
        txn.update(game_path(game_id), fields)
        return Game.model_validate({**data, **fields})

    game = store.run_transaction(_start)
    player_count = len(load_players(store, game_id))
    initialize(store, game_id, player_count, _option_count(game, 0))

    logger.info(f"🚀 Game {game.gamePin} started with {player_count} players")
    log_game_event("game_started", game_id=game_id, data={"player_count": player_count})
    return game


def start_question(store, game_id: str) -> Game:
    """preparing -> question, stamped with the server clock."""
    game = _transition(store, game_id, ('preparing',), lambda g: {
        "state": "question",
        "questionStartTime": time.time(),
    })
    reset_for_new_question(store, game_id, game.currentQuestionIndex,
                           _option_count(game, game.currentQuestionIndex))
    logger.info(f"❓ Game {game.gamePin}: question {game.currentQuestionIndex + 1} started")
    log_game_event("question_started", game_id=game_id, data={
        "question_index": game.currentQuestionIndex,
    })
    return game


def _compute_safely(store, game: Game, question_index: int) -> Optional[str]:
    try:
        compute_question_results(store, game.id, question_index)
    except Exception as e:
        logger.error(
            f"❌ Results computation failed for game {game.id} Q{question_index + 1}: {e}",
            exc_info=True,
        )
        return str(e) or e.__class__.__name__
    return None


def finish_question(store, game_id: str) -> TransitionResult:
    """question -> leaderboard. Results first; the state advances even if they fail."""
    game = load_game(store, game_id)
    if game.state not in ('question', 'leaderboard'):
        raise FailedPreconditionError(
            f"No question to finish (state: {game.state})",
            details={"state": game.state},
        )
    index = game.currentQuestionIndex
    results_error = _compute_safely(store, game, index)

    def _finish(g: Game) -> dict:
        if g.currentQuestionIndex != index:
            raise FailedPreconditionError("The game moved to another question")
        return {} if g.state == 'leaderboard' else {"state": "leaderboard"}

    game = _transition(store, game_id, ('question', 'leaderboard'), _finish)
    logger.info(f"🏁 Game {game.gamePin}: question {index + 1} finished")
    log_game_event("question_finished", game_id=game_id, data={
        "question_index": index,
        "results_error": results_error,
    })
    return TransitionResult(game=game, results_error=results_error)


def next_question(store, game_id: str) -> TransitionResult:
    """leaderboard -> preparing (next index) or, after the last question, -> ended."""
    game = load_game(store, game_id)
    if game.state != 'leaderboard':
        raise FailedPreconditionError(
            f"Show the leaderboard before moving on (state: {game.state})",
            details={"state": game.state},
        )
    index = game.currentQuestionIndex

    def _guard(g: Game) -> None:
        if g.currentQuestionIndex != index:
            raise FailedPreconditionError("The game moved to another question")

    if game.is_last_question():
        results_error = _compute_safely(store, game, index)

        def _end(g: Game) -> dict:
            _guard(g)
            return {"state": "ended"}

        game = _transition(store, game_id, ('leaderboard',), _end)
        logger.info(f"🏆 Game {game.gamePin} ended")
        log_game_event("game_ended", game_id=game_id, data={"results_error": results_error})
        return TransitionResult(game=game, results_error=results_error)

    def _advance(g: Game) -> dict:
        _guard(g)
        return {
            "state": "preparing",
            "currentQuestionIndex": index + 1,
            "questionStartTime": None,
        }

    game = _transition(store, game_id, ('leaderboard',), _advance)
    reset_for_new_question(store, game_id, index + 1, _option_count(game, index + 1))
    log_game_event("question_advanced", game_id=game_id, data={"question_index": index + 1})
    return TransitionResult(game=game)


def compute_question_results(
    store,
    game_id: Optional[str],
    question_index: Optional[int],
    question_type: Optional[str] = None,
) -> GameLeaderboard:
    """Idempotent rebuild of the leaderboard aggregate for one question."""
    validate_compute_request(game_id, question_index)
    game = load_game(store, game_id)
    if game.state not in RESULT_STATES:
        raise FailedPreconditionError(
            f"Results are not available in state '{game.state}'",
            details={"state": game.state},
        )
    if question_index > game.currentQuestionIndex:
        raise FailedPreconditionError(
            f"Question {question_index} has not been asked yet",
            details={"currentQuestionIndex": game.currentQuestionIndex},
        )
    if question_index >= len(game.questions):
        raise NotFoundError(f"Question {question_index} does not exist in game {game_id}")
    if question_type is not None and question_type != game.questions[question_index].type:
        raise InvalidArgumentError(
            f"questionType {question_type} does not match question {question_index}"
        )

    board = recompute(
        store,
        game_id,
        question_index,
        game.question_types(),
        top_n=_leaderboard_size(game),
        option_count=_option_count(game, question_index),
        is_current_question=question_index == game.currentQuestionIndex,
    )
    logger.info(
        f"📊 Game {game.gamePin}: results for Q{question_index + 1} "
        f"({board.totalAnswered}/{board.totalPlayers} answered)"
    )
    return board


def all_players_answered(store, game_id: str, question_index: int) -> bool:
    data = store.get(leaderboard_path(game_id))
    if data is None:
        return False
    board = GameLeaderboard.model_validate(data)
    return (
        board.questionIndex == question_index
        and board.totalPlayers > 0
        and board.totalAnswered >= board.totalPlayers
    )


# --- Teardown ---

def cancel_game(store, game_id: str) -> int:
    game = load_game(store, game_id)
    removed = store.delete_tree(game_path(game_id))
    store.delete(pin_path(game.gamePin))
    store.delete(quiz_path(game.quizId))
    logger.info(f"🗑️ Game {game.gamePin} cancelled ({removed} documents removed)")
    log_game_event("game_cancelled", game_id=game_id, data={"documents_removed": removed})
    return removed


def cleanup_old_games(store, retention_days: Optional[int] = None, now: Optional[float] = None) -> list[str]:
    """Delete games created more than ``retention_days`` ago. Returns their ids."""
    retention_days = retention_days or get_settings().retention_days
    cutoff = (now or time.time()) - retention_days * 24 * 60 * 60
    removed = []
    for game_id, data in store.list("games"):
        created_at = data.get("createdAt")
        if created_at is None or created_at >= cutoff:
            continue
        store.delete_tree(game_path(game_id))
        if data.get("gamePin"):
            store.delete(pin_path(data["gamePin"]))
        if data.get("quizId"):
            store.delete(quiz_path(data["quizId"]))
        removed.append(game_id)

    if removed:
        logger.info(f"🧹 Cleaned up {len(removed)} games older than {retention_days} days")
        log_game_event("games_cleaned_up", data={"count": len(removed), "retention_days": retention_days})
    return removed
