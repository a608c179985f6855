"""record-search - keep a full-text index in sync with application records.

Records change, a job is queued, the incremental indexer applies queued jobs
to the live index (or the rebuilder replaces it wholesale), and the query
engine serves ranked searches whose hits are joined back to the records.
"""

from record_search.adapters.record_store import AbstractRecordStore, FakeRecordStore, SqliteRecordStore
from record_search.config import Settings
from record_search.context import IndexContext
from record_search.domain.model import IndexJob, JobAction, QuerySpec, SearchResult
from record_search.errors import (
    ConcurrentWriterError,
    ConfigurationError,
    NotInitializedError,
    PerJobError,
    RebuildPathConflictError,
    RecordSearchError,
    UnknownJobActionError,
)
from record_search.registry import EntityDeclaration, Registry, RelationScope, TermMapping, ValueMapping, ValueType
from record_search.service_layer.hydrator import ResultHydrator
from record_search.service_layer.indexer import IncrementalIndexer, JobFailure, UpdateReport
from record_search.service_layer.job_queue import JobQueue
from record_search.service_layer.rebuilder import RebuildReport, Rebuilder, rebuild_index
from record_search.service_layer.search_service import QueryEngine, Search


__version__ = "0.1.0"

__all__ = [
    "AbstractRecordStore",
    "ConcurrentWriterError",
    "ConfigurationError",
    "EntityDeclaration",
    "FakeRecordStore",
    "IncrementalIndexer",
    "IndexContext",
    "IndexJob",
    "JobAction",
    "JobFailure",
    "JobQueue",
    "NotInitializedError",
    "PerJobError",
    "QueryEngine",
    "QuerySpec",
    "RebuildPathConflictError",
    "RebuildReport",
    "Rebuilder",
    "RecordSearchError",
    "Registry",
    "RelationScope",
    "ResultHydrator",
    "Search",
    "SearchResult",
    "Settings",
    "SqliteRecordStore",
    "TermMapping",
    "UnknownJobActionError",
    "UpdateReport",
    "ValueMapping",
    "ValueType",
    "__version__",
    "rebuild_index",
]
