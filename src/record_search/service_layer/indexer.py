"""Incremental indexing: drain the job queue into the live index.

Each job is processed inside its own claim transaction. A job that fails is
logged, reported and left queued for the next run; the rest of the batch
carries on.
"""

from __future__ import annotations

from dataclasses import dataclass, field
import logging
import time

from record_search.adapters.record_store import AbstractRecordStore
from record_search.context import IndexContext
from record_search.domain.model import IndexJob, JobAction
from record_search.errors import PerJobError, UnknownJobActionError
from record_search.observability.metrics import INDEX_JOBS, QUEUE_DEPTH, UPDATE_LATENCY
from record_search.observability.tracing import create_span, start_operation
from record_search.search.documents import DocumentBuilder
from record_search.search.index_store import WritableIndex
from record_search.service_layer.job_queue import JobClaim, JobQueue


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class JobFailure:
    """A job that raised; it stays queued and is retried by the next run."""

    job_id: int
    action: str
    document_key: str
    error: PerJobError


@dataclass
class UpdateReport:
    """Outcome of one ``update_index`` run."""

    processed: int = 0
    skipped: int = 0
    failures: list[JobFailure] = field(default_factory=list)
    elapsed_seconds: float = 0.0

    @property
    def ok(self) -> bool:
        return not self.failures


class IncrementalIndexer:
    """Applies queued update/destroy jobs to the index through the context's writer."""

    def __init__(self, context: IndexContext, queue: JobQueue, store: AbstractRecordStore) -> None:
        self.context = context
        self.queue = queue
        self.store = store
        self.builder = DocumentBuilder(context.registry, id_field=store.id_field)

    def update_index(self, flush_each_job: bool = False, verbose: bool = False) -> UpdateReport:
        """Process every job queued when the run starts.

        Args:
            flush_each_job: Commit the index after each job, before its queue row
                is deleted, so a crash never loses an applied change.
            verbose: Log every job at INFO instead of DEBUG.

        Returns:
            UpdateReport with processed/skipped counts and per-job failures.
        """
        start_operation("update_index")
        started = time.perf_counter()
        report = UpdateReport()
        job_ids = self.queue.pending_ids()
        QUEUE_DEPTH.labels(index=str(self.context.path)).set(len(job_ids))
        if not job_ids:
            logger.debug("No index jobs queued")
            return report

        outcome = "success"
        with create_span("record_search.update_index", attributes={"jobs.pending": len(job_ids)}) as span:
            index = self.context.writable()
            try:
                for job_id in job_ids:
                    self._run_job(job_id, index, report, flush_each_job=flush_each_job, verbose=verbose)
                if not flush_each_job:
                    index.flush()
            except Exception:
                outcome = "error"
                raise
            finally:
                report.elapsed_seconds = time.perf_counter() - started
                if outcome == "success" and report.failures:
                    outcome = "partial"
                UPDATE_LATENCY.labels(outcome=outcome).observe(report.elapsed_seconds)
            span.set_attribute("jobs.processed", report.processed)
            span.set_attribute("jobs.failed", len(report.failures))

        log = logger.warning if report.failures else logger.info
        log(
            "Index update finished: %d processed, %d skipped, %d failed in %.2fs",
            report.processed,
            report.skipped,
            len(report.failures),
            report.elapsed_seconds,
        )
        return report

    def _run_job(
        self,
        job_id: int,
        index: WritableIndex,
        report: UpdateReport,
        *,
        flush_each_job: bool,
        verbose: bool,
    ) -> None:
        action = "unknown"
        document_key = ""
        try:
            with self.queue.claim(job_id) as claim:
                if claim is None:
                    # replaced or removed since the snapshot
                    report.skipped += 1
                    INDEX_JOBS.labels(action="none", status="skipped").inc()
                    return
                job = claim.job
                action = job.action
                document_key = job.document_key
                if verbose:
                    logger.info("Indexing job %d: %s %s", job.id, job.action, document_key)
                else:
                    logger.debug("Indexing job %d: %s %s", job.id, job.action, document_key)
                self._apply(claim, index)
                action = job.action
                if flush_each_job:
                    index.flush()
        except Exception as exc:
            error = PerJobError(job_id, action, document_key, exc)
            logger.exception(
                "Index job %d failed",
                job_id,
                extra={"job_id": job_id, "action": action, "document_key": document_key},
            )
            report.failures.append(JobFailure(job_id=job_id, action=action, document_key=document_key, error=error))
            INDEX_JOBS.labels(action=_metric_action(action), status="failed").inc()
            return
        report.processed += 1
        INDEX_JOBS.labels(action=_metric_action(action), status="processed").inc()

    def _apply(self, claim: JobClaim, index: WritableIndex) -> None:
        job = claim.job
        if job.action == JobAction.UPDATE.value:
            record = self.store.get(job.entity_type, job.entity_id)
            if record is None:
                logger.debug("Record for %s no longer exists; removing it from the index", job.document_key)
                claim.convert_to_destroy()
                self._destroy(job, index)
                return
            document = self.builder.build(job.entity_type, record)
            if document is None:
                self._destroy(job, index)
                return
            index.replace_document(document)
        elif job.action == JobAction.DESTROY.value:
            self._destroy(job, index)
        else:
            raise UnknownJobActionError(f"Unknown index job action '{job.action}' for job {job.id}")

    def _destroy(self, job: IndexJob, index: WritableIndex) -> None:
        index.delete_document(job.document_key)


def _metric_action(action: str) -> str:
    if action in (JobAction.UPDATE.value, JobAction.DESTROY.value):
        return action
    return "unknown"
