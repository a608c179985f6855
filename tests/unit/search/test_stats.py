"""Unit tests for BM25 weighting helpers."""

import math

from record_search.search.stats import CorpusStats, bm25, calculate_idf, term_weight


def test_average_length():
    assert CorpusStats(document_count=4, total_length=10).average_length == 2.5
    assert CorpusStats(document_count=0, total_length=0).average_length == 0.0


def test_idf_is_higher_for_rarer_terms():
    assert calculate_idf(1, 100) > calculate_idf(50, 100) > 0
    assert calculate_idf(1, 0) == 0.0


def test_bm25_saturates_and_penalises_long_documents():
    assert bm25(0, 10, 10.0) == 0.0
    assert bm25(2, 10, 10.0) > bm25(1, 10, 10.0)
    assert bm25(1, 5, 10.0) > bm25(1, 20, 10.0)
    # length ratio is capped at 4x
    assert math.isclose(bm25(1, 400, 10.0), bm25(1, 40, 10.0))


def test_term_weight_combines_idf_and_bm25():
    stats = CorpusStats(document_count=10, total_length=100)

    assert term_weight(0, 10, 1, stats) == 0.0
    assert math.isclose(term_weight(1, 10, 1, stats), calculate_idf(1, 10) * bm25(1, 10, 10.0))
