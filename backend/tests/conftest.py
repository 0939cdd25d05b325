"""Shared fixtures: an in-memory store and helpers to drive a game."""

import os
import tempfile

# Keep test logs out of the source tree; must be set before config is imported
os.environ.setdefault("QUIZ_LOG_DIR", tempfile.mkdtemp(prefix="quizrush-logs-"))
os.environ["QUIZ_STORE_BACKEND"] = "memory"

import pytest

from game_controller import create_game, finish_question, join_game, next_question, start_game, start_question
from models import GameSettings, Question, SubmitAnswerRequest
from store import MemoryDocumentStore
from submission import load_game, submit_answer


# ── Question set ────────────────────────────────────────────


def sample_questions() -> list[Question]:
    return [
        Question(type="single-choice", text="2 + 2?", options=["3", "4", "5", "22"],
                 correctAnswerIndex=1),
        Question(type="multiple-choice", text="Primes?", options=["2", "4", "5", "9"],
                 correctAnswerIndices=[0, 2]),
        Question(type="single-choice", text="Capital of Italy?", options=["Milan", "Rome", "Turin"],
                 correctAnswerIndex=1, timeLimit=20),
        Question(type="slider", text="Boiling point of water (C)?", minValue=0, maxValue=200,
                 correctValue=100),
        Question(type="free-response", text="Capital of France?", correctAnswer="Paris",
                 alternativeAnswers=["City of Light"]),
        Question(type="poll-single", text="Favourite colour?", options=["Red", "Green", "Blue"]),
    ]


QUESTION_TYPES = [q.type for q in sample_questions()]


# ── Fixtures ─────────────────────────────────────────────────


@pytest.fixture
def store():
    return MemoryDocumentStore()


@pytest.fixture
def new_game(store):
    """Create a game in the lobby with the given players. Returns (game, host_token, player_ids)."""

    def _new_game(players=("Alice", "Bob"), settings=None, questions=None):
        game, host_token = create_game(store, questions or sample_questions(), "host-1",
                                       settings or GameSettings())
        player_ids = [join_game(store, game.gamePin, name)[1].id for name in players]
        return game, host_token, player_ids

    return _new_game


@pytest.fixture
def running_game(store, new_game):
    """A started game with question 0 open for answers."""

    def _running_game(players=("Alice", "Bob"), settings=None, questions=None):
        game, host_token, player_ids = new_game(players, settings, questions)
        start_game(store, game.id)
        start_question(store, game.id)
        return load_game(store, game.id), host_token, player_ids

    return _running_game


@pytest.fixture
def advance_to(store):
    """Move a running game forward until ``index`` is open for answers."""

    def _advance_to(game_id, index):
        game = load_game(store, game_id)
        while game.currentQuestionIndex < index:
            if game.state == "question":
                finish_question(store, game_id)
            next_question(store, game_id)
            start_question(store, game_id)
            game = load_game(store, game_id)
        return game

    return _advance_to


@pytest.fixture
def answer(store):
    """Submit an answer through the real submission handler."""

    def _answer(game_id, player_id, question_index, question_type=None, time_remaining=10, **payload):
        request = SubmitAnswerRequest(
            gameId=game_id,
            playerId=player_id,
            questionIndex=question_index,
            questionType=question_type or QUESTION_TYPES[question_index],
            timeRemaining=time_remaining,
            **payload,
        )
        return submit_answer(store, request)

    return _answer
