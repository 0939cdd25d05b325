"""Tests for validation: submission and answer-key checks."""

import pytest
from pydantic import ValidationError

from errors import FailedPreconditionError, InvalidArgumentError
from models import AnswerKeyEntry, Game, Question, SubmitAnswerRequest
from scoring import SubmittedAnswer
from submission import submitted_answer
from validation import (
    is_timeout,
    validate_answer_key,
    validate_answer_shape,
    validate_basic_fields,
    validate_compute_request,
    validate_game_state,
    validate_time_remaining,
)


# ── Helpers ──────────────────────────────────────────────────


def _request(**overrides) -> SubmitAnswerRequest:
    fields = {
        "gameId": "g1",
        "playerId": "p1",
        "questionIndex": 0,
        "questionType": "single-choice",
        "timeRemaining": 10,
        "answerIndex": 1,
    }
    fields.update(overrides)
    return SubmitAnswerRequest(**fields)


def _check_basic(request):
    validate_basic_fields(request, submitted_answer(request))


def _game(state="question", index=0) -> Game:
    return Game(id="g1", quizId="q1", hostId="h", gamePin="ABCDEF", state=state,
                currentQuestionIndex=index, questionCount=3)


# ── Basic fields ─────────────────────────────────────────────


class TestBasicFields:

    def test_valid_request_passes(self):
        _check_basic(_request())

    @pytest.mark.parametrize("field", ["gameId", "playerId", "questionIndex", "timeRemaining"])
    def test_missing_required_field(self, field):
        with pytest.raises(InvalidArgumentError) as exc_info:
            _check_basic(_request(**{field: None}))
        assert field in exc_info.value.message

    def test_negative_question_index(self):
        with pytest.raises(InvalidArgumentError):
            _check_basic(_request(questionIndex=-1))

    def test_unknown_question_type(self):
        with pytest.raises(InvalidArgumentError) as exc_info:
            _check_basic(_request(questionType="essay"))
        assert exc_info.value.code == "invalid-argument"

    def test_payload_must_match_type(self):
        with pytest.raises(InvalidArgumentError) as exc_info:
            _check_basic(_request(questionType="slider", answerIndex=None, sliderValue=None))
        assert "sliderValue" in exc_info.value.message

    def test_explicit_timeout_needs_no_payload(self):
        request = _request(answerIndex=None, timeRemaining=0)
        _check_basic(request)
        assert is_timeout(request, submitted_answer(request)) is True

    def test_missing_payload_with_time_left_is_not_a_timeout(self):
        with pytest.raises(InvalidArgumentError):
            _check_basic(_request(answerIndex=None, timeRemaining=5))


class TestTimeRemaining:

    def test_within_limit(self):
        validate_time_remaining(0, 20)
        validate_time_remaining(20, 20)

    def test_negative(self):
        with pytest.raises(InvalidArgumentError):
            validate_time_remaining(-0.1, 20)

    def test_exceeds_limit(self):
        with pytest.raises(InvalidArgumentError):
            validate_time_remaining(20.5, 20)

    def test_not_finite(self):
        with pytest.raises(InvalidArgumentError):
            validate_time_remaining(float("nan"))


class TestGameState:

    def test_open_question_passes(self):
        validate_game_state(_game(), 0)

    @pytest.mark.parametrize("state", ["lobby", "preparing", "leaderboard", "ended"])
    def test_wrong_state(self, state):
        with pytest.raises(FailedPreconditionError):
            validate_game_state(_game(state=state), 0)

    def test_stale_question_index(self):
        with pytest.raises(FailedPreconditionError) as exc_info:
            validate_game_state(_game(index=2), 1)
        assert exc_info.value.details["currentQuestionIndex"] == 2


# ── Answer shape ─────────────────────────────────────────────


class TestAnswerShape:

    single = AnswerKeyEntry(type="single-choice", correctAnswerIndex=0, optionCount=4)
    multi = AnswerKeyEntry(type="multiple-choice", correctAnswerIndices=[0], optionCount=4)
    poll = AnswerKeyEntry(type="poll-single", optionCount=3)
    slider = AnswerKeyEntry(type="slider", minValue=0, maxValue=10, correctValue=5)
    free = AnswerKeyEntry(type="free-response", correctAnswer="x")

    def test_single_choice_index_bounds(self):
        validate_answer_shape(self.single, SubmittedAnswer(answer_index=3), False)
        validate_answer_shape(self.single, SubmittedAnswer(answer_index=-1), False)
        with pytest.raises(InvalidArgumentError):
            validate_answer_shape(self.single, SubmittedAnswer(answer_index=4), False)

    def test_poll_has_no_sentinel(self):
        with pytest.raises(InvalidArgumentError):
            validate_answer_shape(self.poll, SubmittedAnswer(answer_index=-1), False)

    def test_multi_select_needs_a_choice(self):
        with pytest.raises(InvalidArgumentError):
            validate_answer_shape(self.multi, SubmittedAnswer(answer_indices=[]), False)
        validate_answer_shape(self.multi, SubmittedAnswer(answer_indices=[]), True)

    def test_multi_select_index_bounds(self):
        with pytest.raises(InvalidArgumentError):
            validate_answer_shape(self.multi, SubmittedAnswer(answer_indices=[0, 7]), False)

    def test_slider_range(self):
        validate_answer_shape(self.slider, SubmittedAnswer(slider_value=10), False)
        with pytest.raises(InvalidArgumentError):
            validate_answer_shape(self.slider, SubmittedAnswer(slider_value=10.5), False)

    def test_free_text_length(self):
        validate_answer_shape(self.free, SubmittedAnswer(text_answer="a" * 200), False)
        with pytest.raises(InvalidArgumentError):
            validate_answer_shape(self.free, SubmittedAnswer(text_answer="a" * 201), False)


# ── Answer keys & question config ────────────────────────────


class TestAnswerKeys:

    def test_misconfigured_key_is_invalid_argument(self):
        with pytest.raises(InvalidArgumentError) as exc_info:
            validate_answer_key(AnswerKeyEntry(type="slider", minValue=5, maxValue=5, correctValue=5))
        assert exc_info.value.details["problems"]

    def test_polls_need_no_correct_answer(self):
        validate_answer_key(AnswerKeyEntry(type="poll-multiple", optionCount=2))

    @pytest.mark.parametrize("fields", [
        {"type": "single-choice", "options": ["a"], "correctAnswerIndex": 0},
        {"type": "single-choice", "options": ["a", "b"], "correctAnswerIndex": 2},
        {"type": "multiple-choice", "options": ["a", "b"], "correctAnswerIndices": []},
        {"type": "slider", "minValue": 10, "maxValue": 0, "correctValue": 5},
        {"type": "slider", "minValue": 0, "maxValue": 10, "correctValue": 11},
        {"type": "free-response", "correctAnswer": "   "},
    ])
    def test_invalid_questions_are_rejected(self, fields):
        with pytest.raises(ValidationError):
            Question(text="?", **fields)

    def test_sanitized_question_has_no_answer(self):
        q = Question(type="slider", text="?", minValue=0, maxValue=10, correctValue=7, acceptableError=1)
        dumped = q.sanitized().model_dump()
        assert "correctValue" not in dumped
        assert "acceptableError" not in dumped
        assert dumped["minValue"] == 0
        assert q.answer_key().correctValue == 7


def test_compute_request_needs_game_and_index():
    validate_compute_request("g1", 0)
    with pytest.raises(InvalidArgumentError):
        validate_compute_request(None, 0)
    with pytest.raises(InvalidArgumentError):
        validate_compute_request("g1", None)
    with pytest.raises(InvalidArgumentError):
        validate_compute_request("g1", -2)
