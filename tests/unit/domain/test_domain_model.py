"""Unit tests for domain value objects."""

from datetime import datetime, timezone

from pydantic import ValidationError
import pytest

from record_search.domain.model import IndexJob, QuerySpec, SearchResult, document_key, split_document_key


def test_document_key_round_trip():
    assert document_key("Article", 12) == "Article-12"
    assert split_document_key("Article-12") == ("Article", "12")
    # ids may contain the separator, types never do
    assert split_document_key("Article-a-b") == ("Article", "a-b")


@pytest.mark.parametrize("key", ["Article", "-12", "Article-", ""])
def test_malformed_document_keys(key):
    with pytest.raises(ValueError):
        split_document_key(key)


def test_index_job_document_key():
    job = IndexJob(id=1, entity_type="Comment", entity_id="7", action="update", created_at=datetime.now(timezone.utc))

    assert job.document_key == "Comment-7"


def test_query_spec_defaults_and_coercion():
    spec = QuerySpec(entity_types="Article")

    assert spec.entity_types == ("Article",)
    assert spec.query_string == ""
    assert (spec.offset, spec.limit) == (0, -1)


@pytest.mark.parametrize(
    "options",
    [
        {"entity_types": []},
        {"entity_types": ["Article"], "offset": -1},
        {"entity_types": ["Article"], "limit": -2},
    ],
)
def test_query_spec_validation(options):
    with pytest.raises(ValidationError):
        QuerySpec(**options)


def test_query_spec_is_frozen():
    spec = QuerySpec(entity_types=["Article"])

    with pytest.raises(ValidationError):
        spec.offset = 3


def test_search_result_splits_its_key():
    result = SearchResult(document_key="Article-3", percent=80, weight=1.5)

    assert (result.entity_type, result.entity_id) == ("Article", "3")
    assert result.record is None
    assert result.model_copy(update={"record": {"id": 3}}).record == {"id": 3}
