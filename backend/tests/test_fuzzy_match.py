"""Tests for fuzzy_match: free-response normalization and typo tolerance."""

import pytest

from fuzzy_match import (
    check_free_response_answer,
    levenshtein_distance,
    normalize_string,
    similarity_ratio,
    similarity_threshold,
)


@pytest.mark.parametrize("a, b, expected", [
    ("kitten", "sitting", 3),
    ("flaw", "lawn", 2),
    ("", "abc", 3),
    ("abc", "", 3),
    ("same", "same", 0),
])
def test_levenshtein_distance(a, b, expected):
    assert levenshtein_distance(a, b) == expected
    assert levenshtein_distance(b, a) == expected


def test_similarity_ratio():
    assert similarity_ratio("", "") == 1.0
    assert similarity_ratio("abcd", "abcd") == 1.0
    assert similarity_ratio("abcd", "abce") == 0.75


def test_normalize_strips_accents_and_whitespace():
    assert normalize_string("  Crème   Brûlée ") == "creme brulee"
    assert normalize_string("  Crème   Brûlée ", case_sensitive=True) == "Creme Brulee"


def test_threshold_depends_on_answer_length():
    assert similarity_threshold(5) == 0.80
    assert similarity_threshold(6) == 0.85
    assert similarity_threshold(10) == 0.85
    assert similarity_threshold(11) == 0.90


class TestCheckFreeResponseAnswer:

    def test_exact_match_reports_the_matched_answer(self):
        match = check_free_response_answer("paris", "Paris")
        assert match.is_correct is True
        assert match.similarity == 1.0
        assert match.matched_answer == "Paris"

    def test_best_alternative_wins(self):
        match = check_free_response_answer("Big Apple", "New York City", ["Big Apple", "NYC"])
        assert match.is_correct is True
        assert match.matched_answer == "Big Apple"

    def test_one_typo_in_a_long_answer(self):
        assert check_free_response_answer("Mississipi River", "Mississippi River").is_correct is True

    def test_too_many_typos_in_a_short_answer(self):
        match = check_free_response_answer("Rone", "Rome!")
        assert match.is_correct is False
        assert 0 < match.similarity < 0.8

    def test_empty_submission_is_never_correct(self):
        assert check_free_response_answer("   ", "Paris").is_correct is False

    def test_blank_accepted_answers_are_skipped(self):
        assert check_free_response_answer("Paris", "", ["", "Paris"]).is_correct is True
