"""Tests for submission: preconditions, scoring and the one-answer-per-question guarantee."""

import threading
from concurrent.futures import ThreadPoolExecutor

import pytest

from errors import FailedPreconditionError, GameError, InvalidArgumentError, NotFoundError
from game_controller import cancel_game, finish_question
from models import Player, SubmitAnswerRequest
from store import answer_key_path, leaderboard_path, player_path
from submission import submit_answer


def _player(store, game_id, player_id) -> Player:
    return Player.model_validate(store.get(player_path(game_id, player_id)))


# ── Happy paths ──────────────────────────────────────────────


class TestSubmitAnswer:

    def test_end_to_end_single_choice_on_question_three(self, store, running_game, advance_to, answer):
        game, _, (alice, _) = running_game()
        advance_to(game.id, 2)
        before = _player(store, game.id, alice).score

        result = answer(game.id, alice, 2, answerIndex=1, time_remaining=15)

        assert result.success is True
        assert result.isCorrect is True
        assert result.points == 775
        assert result.newScore == before + 775
        assert _player(store, game.id, alice).score == before + 775

    def test_answer_record_is_written(self, store, running_game, answer):
        game, _, (alice, _) = running_game()
        answer(game.id, alice, 0, answerIndex=1, time_remaining=20)

        player = _player(store, game.id, alice)
        record = player.answer_for(0)
        assert record.answerIndex == 1
        assert record.points == 1000
        assert record.isCorrect is True
        assert record.wasTimeout is False
        assert record.streak == 1
        assert player.currentStreak == 1

    def test_wrong_answer_scores_zero_and_resets_streak(self, store, running_game, answer):
        game, _, (alice, _) = running_game()
        result = answer(game.id, alice, 0, answerIndex=0)
        assert result.points == 0
        assert result.isCorrect is False
        assert result.currentStreak == 0

    def test_explicit_timeout(self, store, running_game, answer):
        game, _, (alice, _) = running_game()
        result = answer(game.id, alice, 0, time_remaining=0)
        assert result.points == 0
        assert result.isCorrect is False
        assert _player(store, game.id, alice).answer_for(0).wasTimeout is True

    def test_result_includes_rank(self, store, running_game, answer):
        game, _, (alice, bob) = running_game()
        answer(game.id, alice, 0, answerIndex=0)
        result = answer(game.id, bob, 0, answerIndex=1, time_remaining=20)
        assert result.rank == 1
        assert result.totalPlayers == 2

    def test_equal_scores_share_a_rank(self, store, running_game, answer):
        game, _, (alice, bob, cara) = running_game(players=("Alice", "Bob", "Cara"))
        answer(game.id, cara, 0, answerIndex=1, time_remaining=25)
        first = answer(game.id, alice, 0, answerIndex=1, time_remaining=20)
        second = answer(game.id, bob, 0, answerIndex=1, time_remaining=20)
        assert first.newScore == second.newScore
        assert first.rank == second.rank == 2
        assert second.totalPlayers == 3

    def test_leaderboard_counters_are_updated(self, store, running_game, answer):
        game, _, (alice, bob) = running_game()
        answer(game.id, alice, 0, answerIndex=1)
        answer(game.id, bob, 0, answerIndex=3)
        board = store.get(leaderboard_path(game.id))
        assert board["totalAnswered"] == 2
        assert board["answerCounts"] == [0, 1, 0, 1]

    def test_streak_builds_across_questions(self, store, running_game, advance_to, answer):
        game, _, (alice, _) = running_game()
        answer(game.id, alice, 0, answerIndex=1)
        advance_to(game.id, 1)
        assert answer(game.id, alice, 1, answerIndices=[0, 2]).currentStreak == 2
        advance_to(game.id, 2)
        assert answer(game.id, alice, 2, answerIndex=1).currentStreak == 3
        advance_to(game.id, 3)
        assert answer(game.id, alice, 3, sliderValue=0).currentStreak == 0

    def test_poll_keeps_the_streak(self, store, running_game, advance_to, answer):
        game, _, (alice, _) = running_game()
        answer(game.id, alice, 0, answerIndex=1)
        advance_to(game.id, 4)
        assert answer(game.id, alice, 4, textAnswer="paris").currentStreak == 1
        advance_to(game.id, 5)
        result = answer(game.id, alice, 5, answerIndex=2)
        assert result.points == 0
        assert result.currentStreak == 1


# ── Preconditions ────────────────────────────────────────────


class TestPreconditions:

    def test_unknown_game(self, store, answer):
        with pytest.raises(NotFoundError):
            answer("missing", "p1", 0, answerIndex=1)

    def test_unknown_player(self, running_game, answer):
        game, _, _ = running_game()
        with pytest.raises(NotFoundError):
            answer(game.id, "ghost", 0, answerIndex=1)

    def test_question_not_open(self, store, new_game, answer):
        game, _, (alice, _) = new_game()
        with pytest.raises(FailedPreconditionError):
            answer(game.id, alice, 0, answerIndex=1)

    def test_stale_question_index(self, running_game, answer):
        game, _, (alice, _) = running_game()
        with pytest.raises(FailedPreconditionError):
            answer(game.id, alice, 1, answerIndices=[0])

    def test_after_question_finished(self, store, running_game, answer):
        game, _, (alice, _) = running_game()
        finish_question(store, game.id)
        with pytest.raises(FailedPreconditionError):
            answer(game.id, alice, 0, answerIndex=1)

    def test_duplicate_answer(self, store, running_game, answer):
        game, _, (alice, _) = running_game()
        answer(game.id, alice, 0, answerIndex=1)
        with pytest.raises(FailedPreconditionError):
            answer(game.id, alice, 0, answerIndex=1)
        assert len(_player(store, game.id, alice).answers) == 1

    def test_time_remaining_over_limit(self, running_game, answer):
        game, _, (alice, _) = running_game()
        with pytest.raises(InvalidArgumentError):
            answer(game.id, alice, 0, answerIndex=1, time_remaining=21)

    def test_out_of_range_index(self, running_game, answer):
        game, _, (alice, _) = running_game()
        with pytest.raises(InvalidArgumentError):
            answer(game.id, alice, 0, answerIndex=4)

    def test_declared_type_must_match_the_question(self, running_game, answer):
        game, _, (alice, _) = running_game()
        with pytest.raises(InvalidArgumentError):
            answer(game.id, alice, 0, question_type="poll-single", answerIndex=1)

    def test_cancelled_game(self, store, running_game, answer):
        game, host_token, (alice, _) = running_game()
        cancel_game(store, game.id)
        with pytest.raises(NotFoundError):
            answer(game.id, alice, 0, answerIndex=1)

    def test_rejections_do_not_change_state(self, store, running_game, answer):
        game, _, (alice, _) = running_game()
        before = store.get(player_path(game.id, alice))
        with pytest.raises(GameError):
            answer(game.id, alice, 0, answerIndex=9)
        assert store.get(player_path(game.id, alice)) == before


# ── Answer key authority ─────────────────────────────────────


class TestAnswerKey:

    def test_client_supplied_key_is_ignored_when_stored_key_exists(self, store, running_game, answer):
        game, _, (alice, _) = running_game()
        result = answer(game.id, alice, 0, answerIndex=3, correctAnswerIndex=3)
        assert result.isCorrect is False
        assert result.points == 0

    def test_time_limit_comes_from_the_stored_key(self, store, running_game, answer):
        game, _, (alice, _) = running_game()
        result = answer(game.id, alice, 0, answerIndex=1, time_remaining=10, questionTimeLimit=10)
        assert result.points == 550

    def test_request_metadata_is_used_without_a_stored_key(self, store, running_game, answer):
        game, _, (alice, _) = running_game()
        store.delete(answer_key_path(game.id))
        result = answer(game.id, alice, 0, answerIndex=2, correctAnswerIndex=2,
                        questionTimeLimit=30, time_remaining=30)
        assert result.isCorrect is True
        assert result.points == 1000

    def test_incomplete_request_metadata_is_invalid(self, store, running_game, answer):
        game, _, (alice, _) = running_game()
        store.delete(answer_key_path(game.id))
        with pytest.raises(InvalidArgumentError):
            answer(game.id, alice, 0, answerIndex=2)


# ── Concurrency ──────────────────────────────────────────────


class TestConcurrentSubmissions:

    def test_duplicate_submissions_score_once(self, store, running_game):
        game, _, (alice, _) = running_game()
        request = SubmitAnswerRequest(gameId=game.id, playerId=alice, questionIndex=0,
                                      questionType="single-choice", answerIndex=1, timeRemaining=20)
        barrier = threading.Barrier(4)

        def submit(_):
            barrier.wait()
            try:
                return submit_answer(store, request)
            except FailedPreconditionError as e:
                return e

        with ThreadPoolExecutor(max_workers=4) as pool:
            outcomes = list(pool.map(submit, range(4)))

        failures = [o for o in outcomes if isinstance(o, Exception)]
        assert len(failures) == 3
        assert all(isinstance(e, FailedPreconditionError) for e in failures)
        player = _player(store, game.id, alice)
        assert len(player.answers) == 1
        assert player.score == 1000

    def test_different_players_do_not_block_each_other(self, store, running_game, answer):
        names = [f"P{i}" for i in range(10)]
        game, _, player_ids = running_game(players=names)

        def submit(pid):
            return answer(game.id, pid, 0, answerIndex=1, time_remaining=20)

        with ThreadPoolExecutor(max_workers=10) as pool:
            results = list(pool.map(submit, player_ids))

        assert all(r.points == 1000 for r in results)
        board = store.get(leaderboard_path(game.id))
        assert board["totalAnswered"] == 10
        assert board["answerCounts"][1] == 10
