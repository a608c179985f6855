"""Unit tests for edit distance and spelling correction."""

import pytest

from record_search.search.fuzzy import best_correction, get_max_edit_distance, levenshtein_distance


@pytest.mark.parametrize(
    ("s1", "s2", "expected"),
    [("kitten", "sitting", 3), ("", "abc", 3), ("abc", "", 3), ("same", "same", 0), ("flaw", "lawn", 2)],
)
def test_levenshtein_distance(s1, s2, expected):
    assert levenshtein_distance(s1, s2) == expected


def test_levenshtein_distance_stops_past_max():
    assert levenshtein_distance("kitten", "sitting", max_distance=1) == 2
    assert levenshtein_distance("a", "abcdef", max_distance=2) == 3


@pytest.mark.parametrize(("length", "expected"), [(1, 0), (2, 0), (3, 1), (5, 1), (6, 2), (12, 2)])
def test_max_edit_distance_by_length(length, expected):
    assert get_max_edit_distance(length) == expected


def test_best_correction_picks_closest_word():
    vocabulary = ["bicycle", "tricycle", "motorcycle"]

    assert best_correction("bicycel", vocabulary) == "bicycle"
    assert best_correction("Bicycel", vocabulary) == "bicycle"


def test_best_correction_ties_go_to_alphabetical_first():
    assert best_correction("cat", ["cut", "bat", "cot"]) == "bat"


def test_best_correction_none_cases():
    assert best_correction("", ["car"]) is None
    assert best_correction("ca", ["car"]) is None
    assert best_correction("zebra", ["car", "bike"]) is None
    assert best_correction("car", ["car"]) is None
