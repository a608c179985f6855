"""Domain layer: jobs, query options and ranked results."""

from record_search.domain.model import (
    IndexJob,
    JobAction,
    QuerySpec,
    SearchResult,
    document_key,
    split_document_key,
)


__all__ = [
    "IndexJob",
    "JobAction",
    "QuerySpec",
    "SearchResult",
    "document_key",
    "split_document_key",
]
