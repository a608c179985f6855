"""SQLite-backed index storage.

An index lives in a directory holding ``index.sqlite`` and the ``iamindex``
sentinel file. The sentinel is what marks a directory as ours before the
rebuilder deletes or moves it.

Only one ``WritableIndex`` may be open per path. The guard is twofold: a
process-wide registry of open writer paths, and a ``filelock`` lock file
beside the directory (``<path>.lock``) so a writer in another process fails
fast too. Readers hold a read transaction open as their snapshot, so WAL
mode keeps them on the data as of their last open or ``reopen()``.
"""

from __future__ import annotations

from array import array
from collections.abc import Iterable
from datetime import datetime, timezone
import logging
from pathlib import Path
import sqlite3
import threading

from filelock import FileLock, Timeout

from record_search.errors import ConcurrentWriterError, NotInitializedError
from record_search.search.documents import IndexDocument
from record_search.search.models import Posting
from record_search.search.sqlite_pragmas import apply_read_pragmas, apply_write_pragmas
from record_search.search.stats import CorpusStats


logger = logging.getLogger(__name__)

DB_FILENAME = "index.sqlite"
SENTINEL_FILENAME = "iamindex"
LOCK_SUFFIX = ".lock"
FORMAT_VERSION = "1"

_MAX_CHAR = chr(0x10FFFF)

_SCHEMA = """
    CREATE TABLE IF NOT EXISTS metadata (
        key TEXT PRIMARY KEY,
        value TEXT
    );

    CREATE TABLE IF NOT EXISTS documents (
        doc_key TEXT PRIMARY KEY,
        length INTEGER NOT NULL
    ) WITHOUT ROWID;

    CREATE TABLE IF NOT EXISTS postings (
        term TEXT NOT NULL,
        doc_key TEXT NOT NULL,
        wdf INTEGER NOT NULL,
        positions_blob BLOB,
        PRIMARY KEY (term, doc_key)
    ) WITHOUT ROWID;

    CREATE TABLE IF NOT EXISTS doc_values (
        doc_key TEXT NOT NULL,
        slot INTEGER NOT NULL,
        value TEXT NOT NULL,
        PRIMARY KEY (doc_key, slot)
    ) WITHOUT ROWID;

    CREATE INDEX IF NOT EXISTS idx_postings_doc_key ON postings(doc_key);
    CREATE INDEX IF NOT EXISTS idx_doc_values_slot_value ON doc_values(slot, value);
"""


def is_index_dir(path: Path) -> bool:
    """True when ``path`` is a directory carrying the index sentinel."""
    return path.is_dir() and (path / SENTINEL_FILENAME).is_file()


def lock_path_for(path: Path) -> Path:
    return path.with_name(path.name + LOCK_SUFFIX)


_open_writers: set[str] = set()
_open_writers_lock = threading.Lock()


def open_writer_paths() -> frozenset[str]:
    """Paths with a writer guard currently held by this process."""
    with _open_writers_lock:
        return frozenset(_open_writers)


class WriterGuard:
    """Exclusive right to write the index at ``path``, in and across processes."""

    def __init__(self, path: Path) -> None:
        self.path = Path(path)
        self._key = str(self.path.resolve())
        self._file_lock = FileLock(str(lock_path_for(self.path)))
        self._held = False

    def acquire(self) -> WriterGuard:
        with _open_writers_lock:
            if self._key in _open_writers:
                raise ConcurrentWriterError(f"A writable index is already open for {self.path} in this process")
            self.path.parent.mkdir(parents=True, exist_ok=True)
            try:
                self._file_lock.acquire(timeout=0)
            except Timeout as exc:
                raise ConcurrentWriterError(
                    f"Another process holds the writer lock {self._file_lock.lock_file}"
                ) from exc
            _open_writers.add(self._key)
            self._held = True
        return self

    def release(self) -> None:
        with _open_writers_lock:
            if not self._held:
                return
            self._file_lock.release()
            _open_writers.discard(self._key)
            self._held = False

    @property
    def held(self) -> bool:
        return self._held

    def __enter__(self) -> WriterGuard:
        return self.acquire()

    def __exit__(self, *exc_info: object) -> None:
        self.release()


class WritableIndex:
    """The single writable handle for an index directory.

    Changes accumulate in one write transaction until ``flush()``; every
    document replace or delete runs in its own savepoint so a failing
    document never leaves half its postings behind.
    """

    def __init__(self, path: str | Path, *, guard: WriterGuard | None = None) -> None:
        self.path = Path(path)
        self._owns_guard = guard is None
        self._guard = guard or WriterGuard(self.path).acquire()
        try:
            self.path.mkdir(parents=True, exist_ok=True)
            (self.path / SENTINEL_FILENAME).touch(exist_ok=True)
            self._conn = sqlite3.connect(self.path / DB_FILENAME, isolation_level=None, cached_statements=0)
            apply_write_pragmas(self._conn)
            self._conn.executescript(_SCHEMA)
            self._conn.execute(
                "INSERT OR IGNORE INTO metadata (key, value) VALUES (?, ?), (?, ?)",
                ("format_version", FORMAT_VERSION, "created_at", datetime.now(timezone.utc).isoformat()),
            )
        except BaseException:
            if self._owns_guard:
                self._guard.release()
            raise
        self._closed = False

    def _begin(self) -> None:
        if not self._conn.in_transaction:
            self._conn.execute("BEGIN IMMEDIATE")

    def replace_document(self, document: IndexDocument) -> None:
        """Store ``document``, replacing any document with the same key."""
        self._begin()
        self._conn.execute("SAVEPOINT replace_document")
        try:
            self._delete_rows(document.key)
            self._conn.execute(
                "INSERT INTO documents (doc_key, length) VALUES (?, ?)",
                (document.key, document.length),
            )
            self._conn.executemany(
                "INSERT INTO postings (term, doc_key, wdf, positions_blob) VALUES (?, ?, ?, ?)",
                (
                    (term, document.key, wdf, _encode_positions(document.positions.get(term)))
                    for term, wdf in document.wdf.items()
                ),
            )
            self._conn.executemany(
                "INSERT INTO doc_values (doc_key, slot, value) VALUES (?, ?, ?)",
                ((document.key, slot, value) for slot, value in document.values.items() if value != ""),
            )
        except BaseException:
            self._conn.execute("ROLLBACK TO replace_document")
            self._conn.execute("RELEASE replace_document")
            raise
        self._conn.execute("RELEASE replace_document")

    def delete_document(self, key: str) -> None:
        """Remove the document stored under ``key``; a missing document is not an error."""
        self._begin()
        self._delete_rows(key)

    def _delete_rows(self, key: str) -> None:
        self._conn.execute("DELETE FROM postings WHERE doc_key = ?", (key,))
        self._conn.execute("DELETE FROM doc_values WHERE doc_key = ?", (key,))
        self._conn.execute("DELETE FROM documents WHERE doc_key = ?", (key,))

    def doc_count(self) -> int:
        return int(self._conn.execute("SELECT COUNT(*) FROM documents").fetchone()[0])

    def flush(self, *, checkpoint: bool = False) -> None:
        """Commit pending changes; with ``checkpoint`` also fold the WAL into the main file."""
        if self._conn.in_transaction:
            self._conn.execute("COMMIT")
        if checkpoint:
            self._conn.execute("PRAGMA optimize")
            self._conn.execute("PRAGMA wal_checkpoint(TRUNCATE)")

    def close(self) -> None:
        if self._closed:
            return
        try:
            self.flush()
        finally:
            try:
                self._conn.close()
            except sqlite3.Error as close_error:
                logger.warning("Failed to close index connection for %s: %s", self.path, close_error)
            if self._owns_guard:
                self._guard.release()
            self._closed = True

    def discard(self) -> None:
        """Roll back uncommitted changes and close."""
        if self._closed:
            return
        if self._conn.in_transaction:
            self._conn.execute("ROLLBACK")
        self.close()

    @property
    def closed(self) -> bool:
        return self._closed

    def __enter__(self) -> WritableIndex:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if exc_type is None:
            self.close()
        else:
            self.discard()


class ReadableIndex:
    """Read-only snapshot of an index directory."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self._conn: sqlite3.Connection | None = None
        self._stats: CorpusStats | None = None
        self._candidates: dict[tuple[int, int], list[str]] = {}
        self._open()

    def _open(self) -> None:
        db_path = self.path / DB_FILENAME
        if not is_index_dir(self.path) or not db_path.is_file():
            raise NotInitializedError(self.path)
        conn = sqlite3.connect(db_path, isolation_level=None, check_same_thread=False, cached_statements=64)
        try:
            apply_read_pragmas(conn)
            conn.execute("BEGIN")
            row = conn.execute("SELECT COUNT(*), COALESCE(SUM(length), 0) FROM documents").fetchone()
        except sqlite3.Error:
            conn.close()
            raise
        self._conn = conn
        self._candidates = {}
        self._stats = CorpusStats(document_count=int(row[0]), total_length=int(row[1]))

    def reopen(self) -> None:
        """Drop the current snapshot and see the latest committed index."""
        self.close()
        self._open()

    def close(self) -> None:
        if self._conn is None:
            return
        try:
            if self._conn.in_transaction:
                self._conn.execute("COMMIT")
        finally:
            self._conn.close()
            self._conn = None
            self._stats = None
            self._candidates = {}

    @property
    def conn(self) -> sqlite3.Connection:
        if self._conn is None:
            raise RuntimeError(f"Index reader for {self.path} is closed")
        return self._conn

    @property
    def stats(self) -> CorpusStats:
        if self._stats is None:
            raise RuntimeError(f"Index reader for {self.path} is closed")
        return self._stats

    def doc_count(self) -> int:
        return self.stats.document_count

    def postings(self, term: str, *, include_positions: bool = False) -> list[Posting]:
        """Postings for ``term`` joined with document lengths."""
        if include_positions:
            query = (
                "SELECT p.doc_key, p.wdf, d.length, p.positions_blob FROM postings p "
                "JOIN documents d ON d.doc_key = p.doc_key WHERE p.term = ?"
            )
        else:
            query = (
                "SELECT p.doc_key, p.wdf, d.length FROM postings p "
                "JOIN documents d ON d.doc_key = p.doc_key WHERE p.term = ?"
            )
        postings: list[Posting] = []
        for row in self.conn.execute(query, (term,)):
            positions = array("I")
            if include_positions and row[3]:
                positions.frombytes(row[3])
            postings.append(Posting(doc_key=row[0], wdf=int(row[1] or 0), positions=positions, doc_length=int(row[2])))
        return postings

    def terms_with_prefix(self, prefix: str) -> list[str]:
        cursor = self.conn.execute(
            "SELECT DISTINCT term FROM postings WHERE term >= ? AND term < ? ORDER BY term",
            (prefix, prefix + _MAX_CHAR),
        )
        return [row[0] for row in cursor]

    def has_term(self, term: str) -> bool:
        row = self.conn.execute("SELECT 1 FROM postings WHERE term = ? LIMIT 1", (term,)).fetchone()
        return row is not None

    def spelling_candidates(self, length: int, max_distance: int) -> list[str]:
        """Unprefixed free-text terms within ``max_distance`` characters of ``length``.

        Results are cached for the lifetime of the snapshot.
        """
        bounds = (max(1, length - max_distance), length + max_distance)
        cached = self._candidates.get(bounds)
        if cached is None:
            cursor = self.conn.execute(
                "SELECT DISTINCT term FROM postings WHERE length(term) BETWEEN ? AND ? ORDER BY term", bounds
            )
            cached = [row[0] for row in cursor if not row[0][0].isupper()]
            self._candidates[bounds] = cached
        return cached

    def all_doc_keys(self) -> list[str]:
        return [row[0] for row in self.conn.execute("SELECT doc_key FROM documents")]

    def values_for(self, keys: Iterable[str], slot: int) -> dict[str, str]:
        """Value stored in ``slot`` for each of ``keys`` that has one."""
        return self._fetch_by_keys(
            "SELECT doc_key, value FROM doc_values WHERE slot = ? AND doc_key IN ({})", keys, slot
        )

    def docs_in_value_range(self, slot: int, low: str | None, high: str | None) -> list[str]:
        """Keys of documents whose ``slot`` value lies within [low, high]; None leaves an end open."""
        clauses = ["slot = ?"]
        params: list[object] = [slot]
        if low is not None:
            clauses.append("value >= ?")
            params.append(low)
        if high is not None:
            clauses.append("value <= ?")
            params.append(high)
        query = f"SELECT doc_key FROM doc_values WHERE {' AND '.join(clauses)}"
        return [row[0] for row in self.conn.execute(query, params)]

    def _fetch_by_keys(self, template: str, keys: Iterable[str], *leading: object) -> dict:
        keys = list(keys)
        result: dict = {}
        # stay under SQLite's host parameter limit
        for start in range(0, len(keys), 500):
            chunk = keys[start : start + 500]
            placeholders = ", ".join("?" for _ in chunk)
            for row in self.conn.execute(template.format(placeholders), (*leading, *chunk)):
                result[row[0]] = row[1]
        return result

    def __enter__(self) -> ReadableIndex:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


def _encode_positions(positions: array | None) -> bytes | None:
    if not positions:
        return None
    return positions.tobytes()
