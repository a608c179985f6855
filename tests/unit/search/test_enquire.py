"""Unit tests for ranking, sorting and collapsing matches."""

import pytest

from record_search.search.documents import DocumentBuilder
from record_search.search.enquire import Enquire, percent_for
from record_search.search.index_store import ReadableIndex, WritableIndex
from record_search.search.query import TermQuery


@pytest.fixture
def reader(tmp_path, registry, make_article):
    builder = DocumentBuilder(registry)
    articles = [
        make_article(1, "red car", topic="cars"),
        make_article(2, "red red red car", topic="cars"),
        make_article(3, "blue car", topic="bikes"),
        make_article(4, "red bike"),
    ]
    path = tmp_path / "index"
    with WritableIndex(path) as writer:
        for article in articles:
            writer.replace_document(builder.build("Article", article))
    with ReadableIndex(path) as snapshot:
        yield snapshot


def _keys(mset):
    return [match.doc_key for match in mset]


def test_percent_for():
    assert percent_for(0.0, 0.0) == 100
    assert percent_for(1.0, 4.0) == 25
    assert percent_for(0.001, 100.0) == 1
    assert percent_for(4.0, 4.0) == 100


def test_relevance_order_breaks_ties_by_key(reader):
    enquire = Enquire(reader)
    enquire.set_query(TermQuery("red"))

    mset = enquire.get_mset(0, 10)

    assert _keys(mset) == ["Article-2", "Article-1", "Article-4"]
    assert mset.matches_estimated == 3
    assert mset.matches[0].percent == 100
    assert mset.matches[1].weight == mset.matches[2].weight
    assert 0 < mset.matches[1].percent < 100


def test_windows(reader):
    enquire = Enquire(reader)
    enquire.set_query(TermQuery("red"))

    assert _keys(enquire.get_mset(1, 1)) == ["Article-1"]
    assert _keys(enquire.get_mset(1, -1)) == ["Article-1", "Article-4"]
    assert len(enquire.get_mset(5, 10)) == 0
    assert enquire.get_mset(5, 10).matches_estimated == 3


def test_sort_by_value_then_relevance(reader):
    enquire = Enquire(reader)
    enquire.set_query(TermQuery("red"))

    enquire.set_sort_by_value_then_relevance(0)
    assert _keys(enquire.get_mset(0, 10)) == ["Article-1", "Article-2", "Article-4"]

    enquire.set_sort_by_value_then_relevance(0, ascending=False)
    assert _keys(enquire.get_mset(0, 10)) == ["Article-4", "Article-2", "Article-1"]

    enquire.set_sort_by_relevance()
    assert _keys(enquire.get_mset(0, 10)) == ["Article-2", "Article-1", "Article-4"]


def test_collapse_keeps_best_match_per_value(reader):
    enquire = Enquire(reader)
    enquire.set_query(TermQuery("red"))
    enquire.set_collapse_key(2)

    mset = enquire.get_mset(0, 10)

    assert _keys(mset) == ["Article-2", "Article-4"]
    assert [match.collapse_count for match in mset] == [1, 0]
    assert mset.matches_estimated == 2


def test_collapse_estimate_scales_from_scanned_window(reader):
    enquire = Enquire(reader)
    enquire.set_query(TermQuery("red"))
    enquire.set_collapse_key(2)

    mset = enquire.get_mset(0, 1)

    assert _keys(mset) == ["Article-2"]
    assert mset.matches_estimated == 3


def test_no_matches_and_missing_query(reader):
    enquire = Enquire(reader)
    with pytest.raises(RuntimeError):
        enquire.get_mset(0, 10)

    enquire.set_query(TermQuery("purple"))
    mset = enquire.get_mset(0, 10)

    assert len(mset) == 0
    assert mset.matches_estimated == 0
