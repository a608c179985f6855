"""Unit tests for the query engine and Search objects."""

from datetime import date

import pytest

from record_search.domain.model import QuerySpec
from record_search.errors import ConfigurationError, NotInitializedError
from record_search.search.index_store import ReadableIndex


@pytest.fixture
def indexed(indexer, store, make_article):
    """Index a small corpus and return the store."""

    def _index(*records, entity_type="Article"):
        for record in records:
            store.save(entity_type, record)
        report = indexer.update_index()
        assert report.ok
        return store

    return _index


def _keys(search):
    return [result.document_key for result in search.results]


def test_red_car_blue_bike_scenario(engine, indexed, make_article):
    indexed(make_article(1, "red car"), make_article(2, "blue bike"))

    search = engine.execute(QuerySpec(entity_types=("Article",), query_string='"red"'))

    assert _keys(search) == ["Article-1"]
    assert search.matches_estimated == 1
    assert search.results[0].record["title"] == "red car"
    assert search.results[0].percent == 100


def test_unquoted_words_match_stemmed_forms(engine, indexed, make_article):
    indexed(make_article(1, "bikes for sale"), make_article(2, "car for sale"))

    assert _keys(engine.search("Article", "bike")) == ["Article-1"]
    assert _keys(engine.search("Article", "sale")) == ["Article-1", "Article-2"]


def test_query_is_scoped_to_entity_types(engine, indexed, make_article):
    indexed(make_article(1, "red car"))
    indexed({"id": 1, "article_id": 1, "body": "red paint", "visible": True}, entity_type="Comment")

    assert _keys(engine.search("Article", "red")) == ["Article-1"]
    assert _keys(engine.search("Comment", "red")) == ["Comment-1"]
    assert sorted(_keys(engine.search(["Article", "Comment"], "red"))) == ["Article-1", "Comment-1"]


def test_unknown_sort_field_is_rejected(engine, indexed, make_article):
    indexed(make_article(1, "red car"))

    with pytest.raises(ConfigurationError, match="nonexistent"):
        engine.search("Article", "red", sort_by="nonexistent")
    with pytest.raises(ConfigurationError):
        engine.search("Article", "red", collapse_by="nonexistent")


def test_unknown_entity_type_is_rejected(engine, indexed, make_article):
    indexed(make_article(1, "red car"))

    with pytest.raises(ConfigurationError):
        engine.search("Widget", "red")


def test_index_never_built(engine):
    with pytest.raises(NotInitializedError, match="rebuild"):
        engine.search("Article", "red")


def test_sort_by_value(engine, indexed, make_article):
    indexed(
        make_article(1, "car one", rating=3),
        make_article(2, "car two", rating=10),
        make_article(3, "car six", rating=1),
    )

    ascending = engine.search("Article", "car", sort_by="rating")
    descending = engine.search("Article", "car", sort_by="rating", sort_ascending=False)

    assert _keys(ascending) == ["Article-3", "Article-1", "Article-2"]
    assert _keys(descending) == ["Article-2", "Article-1", "Article-3"]


def test_collapse_counts_suppressed_duplicates(engine, indexed, make_article):
    indexed(
        make_article(1, "car one", topic="cars"),
        make_article(2, "car two", topic="cars"),
        make_article(3, "car six", topic="boats"),
        make_article(4, "car ten"),
    )

    search = engine.search("Article", "car", collapse_by="topic")

    counts = {result.document_key: result.collapse_count for result in search.results}
    assert counts == {"Article-1": 1, "Article-3": 0, "Article-4": 0}
    assert search.matches_estimated == 3


def test_offset_and_limit(engine, indexed, make_article):
    indexed(*(make_article(n, f"car number {n}") for n in range(1, 6)))

    page = engine.search("Article", "car", offset=1, limit=2, sort_by="rating")

    assert _keys(page) == ["Article-2", "Article-3"]
    assert page.matches_estimated == 5
    assert len(page) == 2


def test_prefixed_terms_and_boolean_filters(engine, indexed, make_article):
    indexed(
        make_article(1, "red car", author="alice"),
        make_article(2, "red bike", author="bob"),
    )

    assert _keys(engine.search("Article", "red author:bob")) == ["Article-2"]
    assert _keys(engine.search(["Article"], "red modelid:Article-1")) == ["Article-1"]
    assert sorted(_keys(engine.search("Article", "model:Article"))) == ["Article-1", "Article-2"]


def test_love_hate_and_boolean_operators(engine, indexed, make_article):
    indexed(
        make_article(1, "red car"),
        make_article(2, "red bike"),
        make_article(3, "blue car"),
    )

    assert _keys(engine.search("Article", "red -bike")) == ["Article-1"]
    assert sorted(_keys(engine.search("Article", "bike OR blue"))) == ["Article-2", "Article-3"]
    assert _keys(engine.search("Article", "car NOT blue")) == ["Article-1"]
    assert _keys(engine.search("Article", "-red")) == ["Article-3"]


def test_phrase_does_not_span_fields(engine, indexed, make_article):
    indexed(make_article(1, "big red", body="car wash"), make_article(2, "a red car", body="wash"))

    assert _keys(engine.search("Article", '"red car"')) == ["Article-2"]


def test_wildcard_and_date_range(engine, indexed, make_article):
    indexed(
        make_article(1, "carpet", published_on=date(2023, 5, 1)),
        make_article(2, "cartoon", published_on=date(2024, 2, 1)),
        make_article(3, "boat", published_on=date(2024, 3, 1)),
    )

    assert sorted(_keys(engine.search("Article", "car*"))) == ["Article-1", "Article-2"]
    assert sorted(_keys(engine.search("Article", "2024-01-01..2024-12-31"))) == ["Article-2", "Article-3"]
    assert _keys(engine.search("Article", "car* published:20240101..")) == ["Article-2"]


def test_empty_query_matches_all_of_the_types(engine, indexed, make_article):
    indexed(make_article(1, "red car"), make_article(2, "blue bike"))

    assert sorted(_keys(engine.search("Article", ""))) == ["Article-1", "Article-2"]


def test_spelling_correction(engine, indexed, make_article):
    indexed(make_article(1, "bicycle repairs"))

    search = engine.search("Article", "bicycel")

    assert search.spelling_correction == "bicycle"
    assert search.corrected_query_string == "bicycle"
    unchanged = engine.search("Article", "bicycle")
    assert unchanged.spelling_correction is None
    assert unchanged.corrected_query_string == ""


def test_known_words_load_no_spelling_candidates(engine, indexed, make_article, monkeypatch):
    indexed(make_article(1, "red car"))
    lookups = []
    original = ReadableIndex.spelling_candidates

    def _spy(self, length, max_distance):
        lookups.append((length, max_distance))
        return original(self, length, max_distance)

    monkeypatch.setattr(ReadableIndex, "spelling_candidates", _spy)

    for _ in range(5):
        assert _keys(engine.search("Article", "red")) == ["Article-1"]
    assert lookups == []

    assert engine.search("Article", "rad").spelling_correction == "red"
    assert lookups == [(3, 1)]


def test_description_and_log_description(engine, indexed, make_article):
    indexed(make_article(1, "red car"))

    search = engine.search("Article", '"red"')

    assert search.description == "Query((MArticle AND red))"
    assert search.log_description == 'Search: "red"'
    assert search.runtime >= 0


def test_words_to_highlight(engine, indexed, make_article):
    indexed(make_article(1, "red car"))

    search = engine.search("Article", 'red AND "fast car" author:bob 2020..2021 path/to NOT slow')

    assert search.words_to_highlight() == ["red", "fast", "car", "slow"]


def test_results_are_hydrated_once(engine, indexed, store, make_article):
    indexed(make_article(1, "red car"), make_article(2, "red bike"))
    search = engine.search("Article", "red")
    before = len(store.lookups("fetch_by_ids"))

    first = search.results
    second = search.results

    assert first is second
    assert len(store.lookups("fetch_by_ids")) == before + 1


def test_vanished_record_hydrates_as_none(engine, indexed, store, make_article):
    indexed(make_article(1, "red car"), make_article(2, "red bike"))
    store._records["Article"].pop("2")

    search = engine.search("Article", "red")

    assert {result.document_key: result.record is None for result in search.results} == {
        "Article-1": False,
        "Article-2": True,
    }
    assert [record["id"] for record in engine.find("Article", "red")] == [1]


def test_eager_loaded_relation_comes_with_records(engine, indexed, make_article):
    indexed({"id": 5, "article_id": 1, "body": "great", "visible": True}, entity_type="Comment")
    indexed(make_article(1, "red car"))

    search = engine.search("Article", "red")

    assert [comment["id"] for comment in search.results[0].record["comments"]] == [5]


def test_search_related_scopes_by_owner(engine, indexed, make_article):
    indexed(
        {"id": 1, "article_id": 1, "body": "great read", "visible": True},
        {"id": 2, "article_id": 2, "body": "great photos", "visible": True},
        {"id": 3, "article_id": 1, "body": "meh", "visible": True},
        entity_type="Comment",
    )

    assert _keys(engine.search_related("Article", 1, "comments", "great")) == ["Comment-1"]
    assert sorted(_keys(engine.search_related("Article", 1, "comments"))) == ["Comment-1", "Comment-3"]
    with pytest.raises(ConfigurationError):
        engine.search_related("Article", 1, "tags", "great")


def test_reader_needs_reopen_after_more_indexing(engine, indexed, context, make_article):
    indexed(make_article(1, "red car"))
    assert _keys(engine.search("Article", "red")) == ["Article-1"]

    indexed(make_article(2, "red bike"))
    assert _keys(engine.search("Article", "red")) == ["Article-1"]

    context.reopen_reader()
    assert sorted(_keys(engine.search("Article", "red"))) == ["Article-1", "Article-2"]
