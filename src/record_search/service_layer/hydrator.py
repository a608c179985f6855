"""Join ranked index hits back to application records."""

from __future__ import annotations

from collections.abc import Sequence
import logging
from typing import Any

from record_search.adapters.record_store import AbstractRecordStore
from record_search.domain.model import SearchResult, split_document_key
from record_search.registry import Registry


logger = logging.getLogger(__name__)


class ResultHydrator:
    """Loads the records behind a ranked page with one batched fetch per entity type."""

    def __init__(self, registry: Registry, store: AbstractRecordStore) -> None:
        self.registry = registry
        self.store = store

    def hydrate(self, results: Sequence[SearchResult]) -> list[SearchResult]:
        """Return ``results`` in the same order with ``record`` attached.

        A record deleted since it was indexed comes back as None rather than
        shifting the ranking.
        """
        ids_by_type: dict[str, list[str]] = {}
        for result in results:
            entity_type, entity_id = split_document_key(result.document_key)
            ids_by_type.setdefault(entity_type, []).append(entity_id)

        records: dict[tuple[str, str], Any] = {}
        for entity_type, ids in ids_by_type.items():
            eager_load = self.registry.entity(entity_type).eager_load
            for record in self.store.fetch_by_ids(entity_type, ids, eager_load=eager_load):
                records[(entity_type, self.store.record_id(record))] = record

        hydrated = [
            result.model_copy(update={"record": records.get(split_document_key(result.document_key))})
            for result in results
        ]
        missing = sum(1 for result in hydrated if result.record is None)
        if missing:
            logger.debug("%d of %d search results have no record; the index is behind the store", missing, len(hydrated))
        return hydrated
