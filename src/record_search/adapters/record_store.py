"""Record store implementations.

The indexer, rebuilder and hydrator only need batched lookups by id, a row
count and ordered pagination. ``SqliteRecordStore`` keeps records as JSON
documents; when the job queue lives in the same database file, saving a
record and queueing its index job happen in one transaction.
``FakeRecordStore`` keeps everything in memory and counts lookups, for tests.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Iterable, Mapping, Sequence
from contextlib import closing
from dataclasses import dataclass
import logging
from pathlib import Path
import sqlite3
from typing import Any

import orjson

from record_search.adapters.database import connect
from record_search.errors import ConfigurationError
from record_search.service_layer.job_queue import JobQueue


logger = logging.getLogger(__name__)

Record = dict[str, Any]

_SCHEMA = """
    CREATE TABLE IF NOT EXISTS records (
        entity_type TEXT NOT NULL,
        id TEXT NOT NULL,
        payload TEXT NOT NULL,
        PRIMARY KEY (entity_type, id)
    ) WITHOUT ROWID;
"""

# stay under SQLite's host parameter limit
_IN_CHUNK = 500


class AbstractRecordStore(ABC):
    """Backing store of the application records that get indexed."""

    id_field = "id"

    @abstractmethod
    def fetch_by_ids(self, entity_type: str, ids: Iterable[str], *, eager_load: Sequence[str] = ()) -> list[Any]:
        """Fetch the records with the given ids in one batch; missing ids are left out."""
        raise NotImplementedError

    @abstractmethod
    def get(self, entity_type: str, entity_id: str) -> Any | None:
        """Return one record, or None when it does not exist."""
        raise NotImplementedError

    @abstractmethod
    def count(self, entity_type: str) -> int:
        raise NotImplementedError

    @abstractmethod
    def fetch_page(self, entity_type: str, offset: int, limit: int) -> list[Any]:
        """Records ordered by primary id, for batched full scans."""
        raise NotImplementedError

    def record_id(self, record: Any) -> str:
        if isinstance(record, Mapping):
            return str(record[self.id_field])
        return str(getattr(record, self.id_field))


@dataclass(frozen=True)
class _Relation:
    target_type: str
    foreign_key: str


def _sort_key(entity_id: str) -> tuple[int, int, str]:
    if entity_id.lstrip("-").isdigit():
        return (0, int(entity_id), entity_id)
    return (1, 0, entity_id)


class SqliteRecordStore(AbstractRecordStore):
    """Records stored as JSON documents in SQLite, one table for all entity types."""

    def __init__(self, db_path: str | Path, *, queue: JobQueue | None = None) -> None:
        self.db_path = Path(db_path)
        self.queue = queue
        # jobs only join the record transaction when both live in one database file
        self._shares_queue_db = queue is not None and queue.db_path.resolve() == self.db_path.resolve()
        self._relations: dict[tuple[str, str], _Relation] = {}
        with closing(connect(self.db_path)) as conn, conn:
            conn.executescript(_SCHEMA)

    def _connect(self) -> sqlite3.Connection:
        return connect(self.db_path)

    def _job_conn(self, conn: sqlite3.Connection) -> sqlite3.Connection | None:
        return conn if self._shares_queue_db else None

    def register_relation(self, entity_type: str, name: str, target_type: str, foreign_key: str) -> None:
        """Declare a one-to-many relation that ``fetch_by_ids`` can eager-load under ``name``."""
        self._relations[(entity_type, name)] = _Relation(target_type=target_type, foreign_key=foreign_key)

    def save(self, entity_type: str, record: Mapping[str, Any]) -> Record:
        """Insert or update a record and queue it for indexing.

        When the queue shares this database file the job commits in the same
        transaction as the record; otherwise it is queued on the queue's own
        connection before the record commits.
        """
        if record.get(self.id_field) is None:
            raise ValueError(f"{entity_type} record has no '{self.id_field}'")
        entity_id = str(record[self.id_field])
        payload = orjson.dumps(dict(record), default=str).decode("utf-8")
        with closing(self._connect()) as conn, conn:
            conn.execute(
                "INSERT OR REPLACE INTO records (entity_type, id, payload) VALUES (?, ?, ?)",
                (entity_type, entity_id, payload),
            )
            if self.queue is not None:
                self.queue.mark_needs_index(entity_type, entity_id, conn=self._job_conn(conn))
        return dict(record)

    def delete(self, entity_type: str, entity_id: object) -> bool:
        """Delete a record and queue its removal from the index, as ``save`` queues updates."""
        with closing(self._connect()) as conn, conn:
            deleted = conn.execute(
                "DELETE FROM records WHERE entity_type = ? AND id = ?", (entity_type, str(entity_id))
            ).rowcount
            if deleted and self.queue is not None:
                self.queue.mark_needs_destroy(entity_type, entity_id, conn=self._job_conn(conn))
        return bool(deleted)

    def get(self, entity_type: str, entity_id: str) -> Record | None:
        with closing(self._connect()) as conn:
            row = conn.execute(
                "SELECT payload FROM records WHERE entity_type = ? AND id = ?", (entity_type, str(entity_id))
            ).fetchone()
        return orjson.loads(row["payload"]) if row else None

    def count(self, entity_type: str) -> int:
        with closing(self._connect()) as conn:
            row = conn.execute("SELECT COUNT(*) FROM records WHERE entity_type = ?", (entity_type,)).fetchone()
        return int(row[0])

    def fetch_page(self, entity_type: str, offset: int, limit: int) -> list[Record]:
        with closing(self._connect()) as conn:
            rows = conn.execute(
                """
                SELECT payload FROM records WHERE entity_type = ?
                ORDER BY CAST(id AS INTEGER), id
                LIMIT ? OFFSET ?
                """,
                (entity_type, limit, offset),
            ).fetchall()
        return [orjson.loads(row["payload"]) for row in rows]

    def fetch_by_ids(self, entity_type: str, ids: Iterable[str], *, eager_load: Sequence[str] = ()) -> list[Record]:
        wanted = list(dict.fromkeys(str(entity_id) for entity_id in ids))
        if not wanted:
            return []
        records: list[Record] = []
        with closing(self._connect()) as conn:
            for start in range(0, len(wanted), _IN_CHUNK):
                chunk = wanted[start : start + _IN_CHUNK]
                placeholders = ", ".join("?" for _ in chunk)
                rows = conn.execute(
                    f"SELECT payload FROM records WHERE entity_type = ? AND id IN ({placeholders})",
                    (entity_type, *chunk),
                )
                records.extend(orjson.loads(row["payload"]) for row in rows)
            for name in eager_load:
                self._attach_relation(conn, entity_type, name, records)
        return records

    def _attach_relation(self, conn: sqlite3.Connection, entity_type: str, name: str, records: list[Record]) -> None:
        relation = self._relations.get((entity_type, name))
        if relation is None:
            raise ConfigurationError(f"No relation '{name}' registered for eager loading {entity_type}")
        owner_ids = [self.record_id(record) for record in records]
        children: dict[str, list[Record]] = {owner_id: [] for owner_id in owner_ids}
        path = f"$.{relation.foreign_key}"
        for start in range(0, len(owner_ids), _IN_CHUNK):
            chunk = owner_ids[start : start + _IN_CHUNK]
            placeholders = ", ".join("?" for _ in chunk)
            rows = conn.execute(
                f"""
                SELECT payload, CAST(json_extract(payload, ?) AS TEXT) AS owner_id FROM records
                WHERE entity_type = ? AND CAST(json_extract(payload, ?) AS TEXT) IN ({placeholders})
                ORDER BY CAST(id AS INTEGER), id
                """,
                (path, relation.target_type, path, *chunk),
            )
            for row in rows:
                children[row["owner_id"]].append(orjson.loads(row["payload"]))
        for record in records:
            record[name] = children[self.record_id(record)]


class FakeRecordStore(AbstractRecordStore):
    """In-memory record store for tests; records lookups in ``calls``."""

    def __init__(self, queue: JobQueue | None = None) -> None:
        self.queue = queue
        self._records: dict[str, dict[str, Record]] = {}
        self._relations: dict[tuple[str, str], _Relation] = {}
        self.calls: list[tuple[str, str, tuple]] = []

    def register_relation(self, entity_type: str, name: str, target_type: str, foreign_key: str) -> None:
        self._relations[(entity_type, name)] = _Relation(target_type=target_type, foreign_key=foreign_key)

    def save(self, entity_type: str, record: Mapping[str, Any]) -> Record:
        stored = dict(record)
        entity_id = self.record_id(stored)
        self._records.setdefault(entity_type, {})[entity_id] = stored
        if self.queue is not None:
            self.queue.mark_needs_index(entity_type, entity_id)
        return stored

    def delete(self, entity_type: str, entity_id: object) -> bool:
        removed = self._records.get(entity_type, {}).pop(str(entity_id), None)
        if removed is not None and self.queue is not None:
            self.queue.mark_needs_destroy(entity_type, entity_id)
        return removed is not None

    def get(self, entity_type: str, entity_id: str) -> Record | None:
        self.calls.append(("get", entity_type, (str(entity_id),)))
        record = self._records.get(entity_type, {}).get(str(entity_id))
        return dict(record) if record is not None else None

    def count(self, entity_type: str) -> int:
        return len(self._records.get(entity_type, {}))

    def fetch_page(self, entity_type: str, offset: int, limit: int) -> list[Record]:
        self.calls.append(("fetch_page", entity_type, (offset, limit)))
        records = self._records.get(entity_type, {})
        ordered = sorted(records, key=_sort_key)
        return [dict(records[entity_id]) for entity_id in ordered[offset : offset + limit]]

    def fetch_by_ids(self, entity_type: str, ids: Iterable[str], *, eager_load: Sequence[str] = ()) -> list[Record]:
        wanted = tuple(dict.fromkeys(str(entity_id) for entity_id in ids))
        self.calls.append(("fetch_by_ids", entity_type, wanted))
        records = self._records.get(entity_type, {})
        found = [dict(records[entity_id]) for entity_id in wanted if entity_id in records]
        for name in eager_load:
            relation = self._relations.get((entity_type, name))
            if relation is None:
                raise ConfigurationError(f"No relation '{name}' registered for eager loading {entity_type}")
            targets = self._records.get(relation.target_type, {})
            for record in found:
                owner_id = self.record_id(record)
                record[name] = [
                    dict(child)
                    for child_id, child in sorted(targets.items(), key=lambda item: _sort_key(item[0]))
                    if str(child.get(relation.foreign_key)) == owner_id
                ]
        return found

    def lookups(self, kind: str) -> list[tuple[str, tuple]]:
        return [(entity_type, args) for call_kind, entity_type, args in self.calls if call_kind == kind]
