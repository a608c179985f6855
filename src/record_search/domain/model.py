"""Domain model - jobs, query options and search results.

Value objects are immutable (frozen pydantic models), mirroring how search
responses are modelled elsewhere in the package. ``IndexJob`` is a plain
slotted dataclass because it is materialised straight from queue rows.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


KEY_SEPARATOR = "-"


class JobAction(str, Enum):
    """Actions a queued index job may request."""

    UPDATE = "update"
    DESTROY = "destroy"


def document_key(entity_type: str, entity_id: object) -> str:
    """Return the index document key for an entity."""
    return f"{entity_type}{KEY_SEPARATOR}{entity_id}"


def split_document_key(key: str) -> tuple[str, str]:
    """Split a document key into (entity_type, entity_id).

    Entity types never contain the separator, so the first occurrence splits.
    """
    entity_type, separator, entity_id = key.partition(KEY_SEPARATOR)
    if not separator or not entity_type or not entity_id:
        raise ValueError(f"Malformed document key: {key!r}")
    return entity_type, entity_id


@dataclass(slots=True)
class IndexJob:
    """A pending "this record changed" event.

    ``action`` keeps the raw stored text so that unknown actions reach the
    indexer and are reported instead of failing at load time.
    """

    id: int
    entity_type: str
    entity_id: str
    action: str
    created_at: datetime

    @property
    def document_key(self) -> str:
        return document_key(self.entity_type, self.entity_id)


class QuerySpec(BaseModel):
    """Options for a single query against the index."""

    model_config = ConfigDict(frozen=True)

    entity_types: tuple[str, ...] = Field(min_length=1)
    query_string: str = ""
    offset: int = Field(default=0, ge=0)
    limit: int = Field(default=-1, ge=-1)
    sort_by: str | None = None
    sort_ascending: bool = True
    collapse_by: str | None = None

    @field_validator("entity_types", mode="before")
    @classmethod
    def _coerce_entity_types(cls, value: Any) -> Any:
        if isinstance(value, str):
            return (value,)
        return value


class SearchResult(BaseModel):
    """One ranked hit, optionally joined to its application record.

    ``record`` stays None until hydration, and also afterwards when the record
    was deleted but the index does not reflect that yet.
    """

    model_config = ConfigDict(frozen=True)

    document_key: str
    percent: int
    weight: float
    collapse_count: int = 0
    record: Any = None

    @property
    def entity_type(self) -> str:
        return split_document_key(self.document_key)[0]

    @property
    def entity_id(self) -> str:
        return split_document_key(self.document_key)[1]
