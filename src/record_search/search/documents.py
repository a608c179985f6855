"""Turning application records into index documents.

A document carries two boolean marker terms (``M<type>`` and ``I<key>``),
positional terms for every declared term field and free-text field, a
stemmed ``Z`` term for every indexed word, and the encoded value slots.
"""

from __future__ import annotations

from array import array
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
import struct
from typing import Any

from record_search.domain.model import document_key
from record_search.registry import (
    ID_MARKER_PREFIX,
    STEM_PREFIX,
    TYPE_MARKER_PREFIX,
    Registry,
    ValueType,
)
from record_search.search.analyzers import AnalyzerPipeline, should_stem, stem, word_analyzer


# Positions skipped between fields so phrases never span two of them
FIELD_POSITION_GAP = 100

_DATE_FORMAT = "%Y%m%d"


@dataclass
class IndexDocument:
    """Engine-side unit for one record, keyed by its document key."""

    key: str
    positions: dict[str, array] = field(default_factory=dict)
    wdf: dict[str, int] = field(default_factory=dict)
    values: dict[int, str] = field(default_factory=dict)
    length: int = 0

    @property
    def id_term(self) -> str:
        return ID_MARKER_PREFIX + self.key

    def add_boolean_term(self, term: str) -> None:
        self.wdf.setdefault(term, 0)

    def add_posting(self, term: str, position: int) -> None:
        self.positions.setdefault(term, array("I")).append(position)
        self.wdf[term] = self.wdf.get(term, 0) + 1

    def add_term(self, term: str, wdf_inc: int = 1) -> None:
        self.wdf[term] = self.wdf.get(term, 0) + wdf_inc

    @property
    def terms(self) -> list[str]:
        return sorted(self.wdf)


class TermGenerator:
    """Feeds analysed text into an IndexDocument, tracking the term position."""

    def __init__(self, document: IndexDocument, analyzer: AnalyzerPipeline | None = None) -> None:
        self.document = document
        self.analyzer = analyzer or word_analyzer()
        self.termpos = 0

    def increase_termpos(self, delta: int = FIELD_POSITION_GAP) -> None:
        self.termpos += delta

    def index_text(self, text: str, prefix: str = "") -> None:
        for token in self.analyzer(text):
            self.termpos += 1
            self.document.add_posting(prefix + token.text, self.termpos)
            self.document.length += 1
            if should_stem(token.text):
                self.document.add_term(STEM_PREFIX + prefix + stem(token.text))


def sortable_serialise(number: float) -> str:
    """Encode a number so that string order matches numeric order."""
    packed = struct.pack(">d", float(number))
    (bits,) = struct.unpack(">Q", packed)
    if bits & 0x8000000000000000:
        bits = ~bits & 0xFFFFFFFFFFFFFFFF
    else:
        bits |= 0x8000000000000000
    return f"{bits:016x}"


def encode_date(value: Any) -> str:
    if isinstance(value, str):
        # ISO strings come back from JSON-backed record stores
        value = datetime.fromisoformat(value)
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc)
        return value.strftime(_DATE_FORMAT)
    if isinstance(value, date):
        return value.strftime(_DATE_FORMAT)
    raise TypeError(f"Only date or datetime values are supported for date slots, got {type(value).__name__}")


def encode_value(value: Any, value_type: ValueType) -> str:
    """Encode a field value for storage in a value slot."""
    if value is None:
        return ""
    if value_type is ValueType.DATE:
        return encode_date(value)
    if value_type is ValueType.NUMBER:
        if isinstance(value, bool):
            value = int(value)
        return sortable_serialise(float(value))
    return str(value)


def field_value(record: Any, name: str) -> Any:
    """Read ``name`` from a mapping or an attribute, calling it if callable."""
    if isinstance(record, Mapping):
        value = record.get(name)
    else:
        value = getattr(record, name, None)
    if callable(value):
        value = value()
    return value


def _text(value: Any) -> str:
    if value is None:
        return ""
    return str(value)


class DocumentBuilder:
    """Build index documents for records as declared in the registry."""

    def __init__(self, registry: Registry, id_field: str = "id") -> None:
        self.registry = registry
        self.id_field = id_field

    def should_index(self, entity_type: str, record: Any) -> bool:
        condition = self.registry.entity(entity_type).condition
        if condition is None:
            return True
        if isinstance(condition, str):
            return bool(field_value(record, condition))
        predicate: Callable[[Any], bool] = condition
        return bool(predicate(record))

    def key_for(self, entity_type: str, record: Any) -> str:
        return document_key(entity_type, field_value(record, self.id_field))

    def build(self, entity_type: str, record: Any) -> IndexDocument | None:
        """Return the document for ``record``, or None when its predicate says to leave it out."""
        declaration = self.registry.entity(entity_type)
        if not self.should_index(entity_type, record):
            return None

        document = IndexDocument(key=self.key_for(entity_type, record))
        document.add_boolean_term(TYPE_MARKER_PREFIX + entity_type)
        document.add_boolean_term(document.id_term)

        generator = TermGenerator(document)
        for term in declaration.terms:
            generator.increase_termpos()
            generator.index_text(_text(field_value(record, term.field)), term.prefix)
        for value in declaration.values:
            value_type = self.registry.value_slot(value.slot).value_type
            document.values[value.slot] = encode_value(field_value(record, value.field), value_type)
        for text_field in declaration.texts:
            generator.increase_termpos()
            generator.index_text(_text(field_value(record, text_field)))
        return document
