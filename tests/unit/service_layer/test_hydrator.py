"""Unit tests for result hydration."""

from record_search.domain.model import SearchResult
from record_search.service_layer.hydrator import ResultHydrator


def _result(key, weight=1.0):
    return SearchResult(document_key=key, percent=100, weight=weight)


def test_hydration_preserves_rank_order_across_types(registry, store):
    store.save("Article", {"id": 1, "title": "one"})
    store.save("Article", {"id": 3, "title": "three"})
    store.save("Comment", {"id": 2, "article_id": 1, "body": "two"})
    hydrator = ResultHydrator(registry, store)

    hydrated = hydrator.hydrate([_result("Article-1"), _result("Comment-2"), _result("Article-3")])

    assert [result.document_key for result in hydrated] == ["Article-1", "Comment-2", "Article-3"]
    assert [result.record.get("title") or result.record.get("body") for result in hydrated] == [
        "one",
        "two",
        "three",
    ]


def test_one_batched_fetch_per_entity_type(registry, store):
    for entity_id in (1, 3, 5):
        store.save("Article", {"id": entity_id})
    store.save("Comment", {"id": 2, "article_id": 1})
    hydrator = ResultHydrator(registry, store)

    hydrator.hydrate([_result("Article-5"), _result("Comment-2"), _result("Article-1"), _result("Article-3")])

    lookups = store.lookups("fetch_by_ids")
    assert sorted(entity_type for entity_type, _ in lookups) == ["Article", "Comment"]
    assert dict(lookups)["Article"] == ("5", "1", "3")


def test_missing_records_become_none_without_reordering(registry, store):
    store.save("Article", {"id": 1})
    hydrator = ResultHydrator(registry, store)

    hydrated = hydrator.hydrate([_result("Article-2"), _result("Article-1")])

    assert [result.document_key for result in hydrated] == ["Article-2", "Article-1"]
    assert hydrated[0].record is None
    assert hydrated[1].record == {"id": 1, "comments": []}


def test_ids_containing_separator_split_at_first_dash(registry, store):
    store.save("Comment", {"id": "2024-01-abc", "article_id": 1})
    hydrator = ResultHydrator(registry, store)

    hydrated = hydrator.hydrate([_result("Comment-2024-01-abc")])

    assert hydrated[0].entity_type == "Comment"
    assert hydrated[0].entity_id == "2024-01-abc"
    assert hydrated[0].record["id"] == "2024-01-abc"


def test_empty_page_fetches_nothing(registry, store):
    assert ResultHydrator(registry, store).hydrate([]) == []
    assert store.lookups("fetch_by_ids") == []
