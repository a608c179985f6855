"""Exception hierarchy shared by the indexer, rebuilder and query engine."""

from __future__ import annotations


class RecordSearchError(Exception):
    """Base class for every error raised by record_search."""


class ConfigurationError(RecordSearchError):
    """Invalid entity declarations or query options.

    Raised before any index mutation or query execution takes place.
    """


class NotInitializedError(RecordSearchError):
    """The search index has never been built at the configured path."""

    def __init__(self, path: object) -> None:
        super().__init__(
            f"Search index not found at {path}; build it first with `record-search rebuild-index <types...>`"
        )
        self.path = path


class ConcurrentWriterError(RecordSearchError):
    """A second writable index handle was requested while one is open."""


class RebuildPathConflictError(RecordSearchError):
    """A directory without the index sentinel occupies a rebuild work path.

    Never resolved automatically: an operator must inspect and remove it.
    """


class UnknownJobActionError(RecordSearchError):
    """A queued job carries an action the indexer does not understand."""


class PerJobError(RecordSearchError):
    """A single queued job failed; the rest of the batch carried on."""

    def __init__(self, job_id: int, action: str, document_key: str, cause: BaseException) -> None:
        super().__init__(f"index job {job_id} ({action} {document_key}) failed: {cause}")
        self.job_id = job_id
        self.action = action
        self.document_key = document_key
        self.cause = cause
