"""Full offline rebuild of the index, activated by directory swap.

The new index is written to ``P.new`` while the live index at ``P`` keeps
serving readers. Activation moves ``P`` aside to ``P.tmp``, moves ``P.new``
into place and deletes ``P.tmp``. Directories are only ever deleted when
they carry the index sentinel.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
import logging
from pathlib import Path
import shutil
import time

from record_search.adapters.record_store import AbstractRecordStore
from record_search.context import IndexContext, has_open_writers
from record_search.errors import ConcurrentWriterError, RebuildPathConflictError
from record_search.observability.metrics import REBUILD_LATENCY, REBUILT_DOCUMENTS
from record_search.observability.tracing import create_span, start_operation
from record_search.search.documents import DocumentBuilder
from record_search.search.index_store import WritableIndex, WriterGuard, is_index_dir
from record_search.service_layer.job_queue import JobQueue


logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 1000


@dataclass
class RebuildReport:
    """Outcome of a completed rebuild."""

    entity_types: tuple[str, ...]
    documents: dict[str, int] = field(default_factory=dict)
    skipped: dict[str, int] = field(default_factory=dict)
    cleared_jobs: int = 0
    elapsed_seconds: float = 0.0

    @property
    def total_documents(self) -> int:
        return sum(self.documents.values())


def _remove_index_dir(path: Path) -> None:
    """Delete ``path`` if it exists, refusing anything that is not an index."""
    if not path.exists():
        return
    if not is_index_dir(path):
        raise RebuildPathConflictError(
            f"{path} exists but is not a search index (no sentinel file); remove it manually before rebuilding"
        )
    shutil.rmtree(path)


class Rebuilder:
    """Rebuilds the whole index from the record store."""

    def __init__(
        self,
        context: IndexContext,
        queue: JobQueue,
        store: AbstractRecordStore,
        *,
        batch_size: int = DEFAULT_BATCH_SIZE,
    ) -> None:
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        self.context = context
        self.queue = queue
        self.store = store
        self.batch_size = batch_size
        self.builder = DocumentBuilder(context.registry, id_field=store.id_field)

    def rebuild_index(self, entity_types: Iterable[str], verbose: bool = False) -> RebuildReport:
        """Rebuild the index from scratch with every record of ``entity_types``.

        Entity types left out are absent from the rebuilt index. Queued jobs
        are dropped because the rebuild supersedes them. Readers opened before
        activation keep seeing the old index until they reopen.

        Raises:
            ConfigurationError: No or undeclared entity types; nothing was touched.
            ConcurrentWriterError: A writable index is open in this process, or
                another process holds the live index's writer lock.
            RebuildPathConflictError: ``P.new`` or ``P.tmp`` exists without the sentinel.
        """
        types = self.context.registry.require(entity_types)
        if has_open_writers():
            raise ConcurrentWriterError("rebuild_index must not be called while a writable index is open")

        start_operation("rebuild_index")
        started = time.perf_counter()
        report = RebuildReport(entity_types=types)
        outcome = "error"
        try:
            with create_span("record_search.rebuild_index", attributes={"entity_types": ",".join(types)}) as span:
                # incremental runs against P fail fast while this is held
                with WriterGuard(self.context.path):
                    self._build(types, report, verbose=verbose)
                    self._activate()
                span.set_attribute("documents.indexed", report.total_documents)
            outcome = "success"
        finally:
            report.elapsed_seconds = time.perf_counter() - started
            REBUILD_LATENCY.labels(outcome=outcome).observe(report.elapsed_seconds)

        logger.info(
            "Rebuilt index at %s: %d documents (%s) in %.2fs",
            self.context.path,
            report.total_documents,
            ", ".join(f"{name}={count}" for name, count in report.documents.items()),
            report.elapsed_seconds,
        )
        return report

    def _build(self, types: tuple[str, ...], report: RebuildReport, *, verbose: bool) -> None:
        live = self.context.path
        if live.exists() and not is_index_dir(live):
            raise RebuildPathConflictError(f"{live} exists but is not a search index (no sentinel file)")
        new_path = self.context.new_path
        _remove_index_dir(new_path)
        with WritableIndex(new_path) as index:
            report.cleared_jobs = self.queue.clear_all()
            for entity_type in types:
                indexed, skipped = self._index_type(index, entity_type, verbose=verbose)
                report.documents[entity_type] = indexed
                report.skipped[entity_type] = skipped
                REBUILT_DOCUMENTS.labels(entity_type=entity_type).inc(indexed)
            index.flush(checkpoint=True)

    def _index_type(self, index: WritableIndex, entity_type: str, *, verbose: bool) -> tuple[int, int]:
        total = self.store.count(entity_type)
        logger.info("Rebuilding %s: %d records", entity_type, total)
        indexed = skipped = 0
        offset = 0
        while True:
            batch = self.store.fetch_page(entity_type, offset, self.batch_size)
            if not batch:
                break
            for record in batch:
                document = self.builder.build(entity_type, record)
                if document is None:
                    skipped += 1
                    continue
                index.replace_document(document)
                indexed += 1
            offset += len(batch)
            if verbose:
                logger.info("Rebuilding %s: %d/%d records", entity_type, offset, total)
            if len(batch) < self.batch_size:
                break
        return indexed, skipped

    def _activate(self) -> None:
        live, new, tmp = self.context.path, self.context.new_path, self.context.tmp_path
        _remove_index_dir(tmp)
        if live.exists():
            shutil.move(str(live), str(tmp))
        shutil.move(str(new), str(live))
        _remove_index_dir(tmp)
        logger.debug("Activated rebuilt index %s -> %s", new, live)


def rebuild_index(
    context: IndexContext,
    queue: JobQueue,
    store: AbstractRecordStore,
    entity_types: Iterable[str],
    *,
    verbose: bool = False,
    batch_size: int = DEFAULT_BATCH_SIZE,
) -> RebuildReport:
    """Convenience wrapper around ``Rebuilder.rebuild_index``."""
    return Rebuilder(context, queue, store, batch_size=batch_size).rebuild_index(entity_types, verbose=verbose)
