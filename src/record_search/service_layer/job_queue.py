"""Durable queue of "this record changed" jobs, stored in SQLite.

At most one job is pending per (entity_type, entity_id). Enqueuing for a key
that already has a job replaces it with a single ``INSERT OR REPLACE``: the
old row is deleted and the new one inserted, with a fresh id, atomically.
Because the id changes, an indexing run that took its snapshot before the
replacement skips the old id and the newer job waits for the next run.
"""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import closing, contextmanager
from datetime import datetime, timezone
import logging
from pathlib import Path
import sqlite3

from record_search.adapters.database import connect
from record_search.domain.model import IndexJob, JobAction


logger = logging.getLogger(__name__)

_SCHEMA = """
    CREATE TABLE IF NOT EXISTS index_jobs (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        entity_type TEXT NOT NULL,
        entity_id TEXT NOT NULL,
        action TEXT NOT NULL,
        created_at TEXT NOT NULL,
        UNIQUE (entity_type, entity_id)
    );
"""

_SELECT_JOB = "SELECT id, entity_type, entity_id, action, created_at FROM index_jobs"


def _row_to_job(row: sqlite3.Row) -> IndexJob:
    return IndexJob(
        id=int(row["id"]),
        entity_type=row["entity_type"],
        entity_id=row["entity_id"],
        action=row["action"],
        created_at=datetime.fromisoformat(row["created_at"]),
    )


class JobClaim:
    """A job locked for processing inside its claim transaction."""

    def __init__(self, job: IndexJob) -> None:
        self.job = job
        self.converted = False

    def convert_to_destroy(self) -> None:
        """Turn an ``update`` whose record vanished into a ``destroy``; allowed once."""
        if self.converted:
            raise RuntimeError(f"index job {self.job.id} was already converted to destroy")
        self.job.action = JobAction.DESTROY.value
        self.converted = True


class JobQueue:
    """SQLite-backed job queue; may share the record store's database file."""

    def __init__(self, db_path: str | Path) -> None:
        self.db_path = Path(db_path)
        with closing(connect(self.db_path)) as conn, conn:
            conn.executescript(_SCHEMA)

    def _connect(self) -> sqlite3.Connection:
        return connect(self.db_path)

    def enqueue(
        self,
        entity_type: str,
        entity_id: object,
        action: JobAction | str,
        *,
        conn: sqlite3.Connection | None = None,
    ) -> int:
        """Queue ``action`` for the entity, replacing any job already queued for it.

        With ``conn`` the insert joins the caller's transaction, so a record
        write and its job commit or roll back together.

        Returns:
            The id of the queued job.
        """
        action = JobAction(action)
        params = (entity_type, str(entity_id), action.value, datetime.now(timezone.utc).isoformat())
        statement = "INSERT OR REPLACE INTO index_jobs (entity_type, entity_id, action, created_at) VALUES (?, ?, ?, ?)"
        if conn is not None:
            return int(conn.execute(statement, params).lastrowid)
        with closing(self._connect()) as own_conn, own_conn:
            return int(own_conn.execute(statement, params).lastrowid)

    def mark_needs_index(self, entity_type: str, entity_id: object, *, conn: sqlite3.Connection | None = None) -> int:
        return self.enqueue(entity_type, entity_id, JobAction.UPDATE, conn=conn)

    def mark_needs_destroy(
        self, entity_type: str, entity_id: object, *, conn: sqlite3.Connection | None = None
    ) -> int:
        return self.enqueue(entity_type, entity_id, JobAction.DESTROY, conn=conn)

    def pending_ids(self) -> list[int]:
        """Snapshot of queued job ids, oldest first."""
        with closing(self._connect()) as conn:
            return [int(row["id"]) for row in conn.execute("SELECT id FROM index_jobs ORDER BY id")]

    def get(self, job_id: int) -> IndexJob | None:
        with closing(self._connect()) as conn:
            row = conn.execute(f"{_SELECT_JOB} WHERE id = ?", (job_id,)).fetchone()
        return _row_to_job(row) if row else None

    def jobs(self) -> list[IndexJob]:
        with closing(self._connect()) as conn:
            return [_row_to_job(row) for row in conn.execute(f"{_SELECT_JOB} ORDER BY id")]

    def count(self) -> int:
        with closing(self._connect()) as conn:
            return int(conn.execute("SELECT COUNT(*) FROM index_jobs").fetchone()[0])

    def clear_all(self) -> int:
        """Drop every queued job; a full rebuild supersedes them."""
        with closing(self._connect()) as conn:
            try:
                conn.execute("BEGIN IMMEDIATE")
                count = int(conn.execute("SELECT COUNT(*) FROM index_jobs").fetchone()[0])
                conn.execute("DELETE FROM index_jobs")
                conn.commit()
            except Exception:
                conn.rollback()
                raise
        if count:
            logger.info("Cleared %d queued index jobs", count)
        return count

    def discard(self, job_id: int) -> bool:
        """Remove one job without processing it, e.g. a job that fails on every run."""
        with closing(self._connect()) as conn, conn:
            deleted = conn.execute("DELETE FROM index_jobs WHERE id = ?", (job_id,)).rowcount
        if deleted:
            logger.warning("Discarded index job %d without processing it", job_id)
        return bool(deleted)

    @contextmanager
    def claim(self, job_id: int) -> Iterator[JobClaim | None]:
        """Lock job ``job_id`` for processing.

        Yields None when the job no longer exists. When the block exits
        normally the job row is deleted and the deletion committed; when it
        raises, the transaction rolls back and the job stays queued.
        """
        conn = self._connect()
        try:
            conn.execute("BEGIN IMMEDIATE")
            row = conn.execute(f"{_SELECT_JOB} WHERE id = ?", (job_id,)).fetchone()
            if row is None:
                conn.rollback()
                yield None
                return
            yield JobClaim(_row_to_job(row))
            conn.execute("DELETE FROM index_jobs WHERE id = ?", (job_id,))
            conn.commit()
        except BaseException:
            conn.rollback()
            raise
        finally:
            conn.close()
