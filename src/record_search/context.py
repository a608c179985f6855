"""The explicit handle bundling the registry with the index it describes.

``IndexContext`` owns at most one writable handle and one reader for the live
index path. It replaces process-global database handles: callers create one,
pass it to the indexer, rebuilder and query engine, and close it when done.
"""

from __future__ import annotations

import logging
from pathlib import Path

from record_search.registry import Registry
from record_search.search.index_store import ReadableIndex, WritableIndex, open_writer_paths


logger = logging.getLogger(__name__)

NEW_SUFFIX = ".new"
TMP_SUFFIX = ".tmp"


def has_open_writers() -> bool:
    """True while any writable index is open in this process."""
    return bool(open_writer_paths())


class IndexContext:
    """Registry plus reader/writer lifecycle for one index path ``P``.

    The rebuilder works in ``P.new`` and moves the old index aside to
    ``P.tmp`` while activating; neither is ever opened through the context.
    """

    def __init__(self, registry: Registry, index_path: str | Path) -> None:
        self.registry = registry
        self.path = Path(index_path)
        self._writer: WritableIndex | None = None
        self._reader: ReadableIndex | None = None

    @property
    def new_path(self) -> Path:
        return self.path.with_name(self.path.name + NEW_SUFFIX)

    @property
    def tmp_path(self) -> Path:
        return self.path.with_name(self.path.name + TMP_SUFFIX)

    def writable(self) -> WritableIndex:
        """The single writable handle for ``P``, opened on first use and reused afterwards."""
        if self._writer is None or self._writer.closed:
            self._writer = WritableIndex(self.path)
            logger.debug("Opened writable index at %s", self.path)
        return self._writer

    def close_writer(self) -> None:
        if self._writer is not None:
            self._writer.close()
            self._writer = None

    def reader(self) -> ReadableIndex:
        """Reader snapshot of ``P``; raises NotInitializedError when no index was ever built."""
        if self._reader is None:
            self._reader = ReadableIndex(self.path)
        return self._reader

    def reopen_reader(self) -> ReadableIndex:
        """Pick up changes committed since the reader's snapshot, e.g. after a rebuild."""
        if self._reader is None:
            return self.reader()
        self._reader.reopen()
        return self._reader

    def close_reader(self) -> None:
        if self._reader is not None:
            self._reader.close()
            self._reader = None

    def close(self) -> None:
        try:
            self.close_writer()
        finally:
            self.close_reader()

    def __enter__(self) -> IndexContext:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()
