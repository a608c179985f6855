"""SQLite connections for the record store and the index job queue."""

from __future__ import annotations

import logging
from pathlib import Path
import sqlite3
import time

from record_search.errors import RecordSearchError
from record_search.search.sqlite_pragmas import apply_write_pragmas


logger = logging.getLogger(__name__)

_MAX_CONNECT_RETRIES = 3
_RETRY_DELAY_SECONDS = 0.5


class DatabaseCriticalError(RecordSearchError):
    """The record database could not be opened after retrying."""


def connect(db_path: Path) -> sqlite3.Connection:
    """Connect to SQLite, retrying transient failures with exponential backoff.

    Connections use WAL so index readers and queue writers do not block
    each other, and a 30s busy timeout so concurrent enqueuers queue up on
    SQLite's write lock instead of failing.
    """
    last_error: sqlite3.Error | None = None

    for attempt in range(_MAX_CONNECT_RETRIES):
        try:
            db_path.parent.mkdir(parents=True, exist_ok=True)
            conn = sqlite3.connect(db_path, check_same_thread=False, cached_statements=0)
            apply_write_pragmas(conn)
            conn.row_factory = sqlite3.Row
            return conn
        except sqlite3.Error as exc:
            last_error = exc
            if attempt < _MAX_CONNECT_RETRIES - 1:
                delay = _RETRY_DELAY_SECONDS * (2**attempt)
                logger.warning(
                    "SQLite connect attempt %d/%d failed for %s: %s. Retrying in %.1fs...",
                    attempt + 1,
                    _MAX_CONNECT_RETRIES,
                    db_path,
                    exc,
                    delay,
                )
                time.sleep(delay)
            else:
                logger.warning(
                    "SQLite connect attempt %d/%d failed for %s: %s. No retries left.",
                    attempt + 1,
                    _MAX_CONNECT_RETRIES,
                    db_path,
                    exc,
                )

    raise DatabaseCriticalError(
        f"Unable to open database at {db_path} after {_MAX_CONNECT_RETRIES} attempts: {last_error}"
    )
