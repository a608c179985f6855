"""Conftest for unit tests - marks every test as a unit test and provides the shared fixtures."""

from __future__ import annotations

from datetime import date

import pytest

from record_search.adapters.record_store import FakeRecordStore
from record_search.context import IndexContext
from record_search.registry import EntityDeclaration, RelationScope, Registry, TermMapping, ValueMapping, ValueType
from record_search.service_layer.indexer import IncrementalIndexer
from record_search.service_layer.job_queue import JobQueue
from record_search.service_layer.search_service import QueryEngine


ARTICLE = EntityDeclaration(
    entity_type="Article",
    terms=(TermMapping(field="author", prefix="A", name="author"),),
    values=(
        ValueMapping(field="published_on", slot=0, name="published", value_type=ValueType.DATE),
        ValueMapping(field="rating", slot=1, name="rating", value_type=ValueType.NUMBER),
        ValueMapping(field="topic", slot=2, name="topic", value_type=ValueType.STRING),
    ),
    texts=("title", "body"),
    condition=lambda record: not record.get("hidden"),
    eager_load=("comments",),
    relations=(RelationScope(name="comments", target_type="Comment", prefix_name="article"),),
)

COMMENT = EntityDeclaration(
    entity_type="Comment",
    terms=(TermMapping(field="article_id", prefix="R", name="article"),),
    values=(ValueMapping(field="published_on", slot=0, name="published", value_type=ValueType.DATE),),
    texts=("body",),
    condition="visible",
)


def pytest_collection_modifyitems(config, items):
    """Automatically mark all tests in the unit directory as unit tests."""
    for item in items:
        if "unit" in str(item.fspath):
            item.add_marker(pytest.mark.unit)


@pytest.fixture
def registry() -> Registry:
    return Registry([ARTICLE, COMMENT])


@pytest.fixture
def queue(tmp_path) -> JobQueue:
    return JobQueue(tmp_path / "records.sqlite")


@pytest.fixture
def store(queue) -> FakeRecordStore:
    fake = FakeRecordStore(queue)
    fake.register_relation("Article", "comments", "Comment", "article_id")
    return fake


@pytest.fixture
def index_path(tmp_path):
    return tmp_path / "search-index" / "test"


@pytest.fixture
def context(registry, index_path):
    with IndexContext(registry, index_path) as ctx:
        yield ctx


@pytest.fixture
def indexer(context, queue, store) -> IncrementalIndexer:
    return IncrementalIndexer(context, queue, store)


@pytest.fixture
def engine(context, store) -> QueryEngine:
    return QueryEngine(context, store)


def _article(entity_id: int, title: str, body: str = "", **fields) -> dict:
    record = {
        "id": entity_id,
        "title": title,
        "body": body,
        "author": fields.pop("author", "alice"),
        "published_on": fields.pop("published_on", date(2024, 1, entity_id % 28 + 1)),
        "rating": fields.pop("rating", entity_id),
        "topic": fields.pop("topic", None),
    }
    record.update(fields)
    return record


@pytest.fixture
def make_article():
    """Build an Article record; unspecified fields get deterministic defaults."""
    return _article
