"""Entity declarations and the immutable registry built from them.

Every searchable entity type declares which of its fields become prefixed
terms, which become numbered value slots and which are indexed as free text.
The registry validates all declarations together, once, and is then handed
to the indexer, the rebuilder and the query engine. It is never mutated.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from enum import Enum
import re
from types import MappingProxyType
from typing import Any

from record_search.errors import ConfigurationError


TYPE_MARKER_PREFIX = "M"
ID_MARKER_PREFIX = "I"
STEM_PREFIX = "Z"

# Query-parser names of the two boolean marker prefixes
TYPE_MARKER_NAME = "model"
ID_MARKER_NAME = "modelid"

_PREFIX_PATTERN = re.compile(r"^[A-Z]{1,3}$")
_NAME_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


class ValueType(str, Enum):
    """Types understood by value slot encoders and range processors."""

    DATE = "date"
    STRING = "string"
    NUMBER = "number"


@dataclass(frozen=True)
class TermMapping:
    """Index ``field`` as terms carrying ``prefix``; searchable as ``name:word``."""

    field: str
    prefix: str
    name: str


@dataclass(frozen=True)
class ValueMapping:
    """Store ``field`` in value slot ``slot``; sortable and collapsible as ``name``."""

    field: str
    slot: int
    name: str
    value_type: ValueType | str


@dataclass(frozen=True)
class RelationScope:
    """Searching ``owner.<name>`` means searching ``target_type`` scoped by ``prefix_name:<owner id>``."""

    name: str
    target_type: str
    prefix_name: str


Predicate = Callable[[Any], bool]


@dataclass(frozen=True)
class EntityDeclaration:
    """Static search declaration for one entity type.

    Args:
        entity_type: Name stored in document keys and type markers (no ``-``).
        terms: Fields indexed as prefixed terms.
        values: Fields stored in value slots.
        texts: Fields indexed as unprefixed free text.
        condition: Field name or callable; a false result keeps the record out of the index.
        eager_load: Relation names the record store loads along with hydrated records.
        relations: Explicit relation scopes usable with ``QueryEngine.search_related``.
    """

    entity_type: str
    terms: tuple[TermMapping, ...] = ()
    values: tuple[ValueMapping, ...] = ()
    texts: tuple[str, ...] = ()
    condition: str | Predicate | None = None
    eager_load: tuple[str, ...] = ()
    relations: tuple[RelationScope, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class ValueSlot:
    """Resolved value slot shared by every entity type that declares it."""

    slot: int
    name: str
    value_type: ValueType


class Registry:
    """Validated, read-only view over all entity declarations."""

    def __init__(self, declarations: Iterable[EntityDeclaration]) -> None:
        entities: dict[str, EntityDeclaration] = {}
        names_by_prefix: dict[str, str] = {}
        prefixes_by_name: dict[str, str] = {}
        slots: dict[int, ValueSlot] = {}
        slots_by_name: dict[str, int] = {}
        value_order: list[int] = []

        for declaration in declarations:
            entity_type = declaration.entity_type
            if not entity_type or "-" in entity_type:
                raise ConfigurationError(f"Entity type '{entity_type}' must be non-empty and must not contain '-'")
            if entity_type in entities:
                raise ConfigurationError(f"Entity type '{entity_type}' declared twice")

            for term in declaration.terms:
                _validate_term(term, names_by_prefix, prefixes_by_name)
                names_by_prefix[term.prefix] = term.name
                prefixes_by_name[term.name] = term.prefix

            for value in declaration.values:
                resolved = _validate_value(value, slots, slots_by_name)
                if resolved.slot not in slots:
                    value_order.append(resolved.slot)
                slots[resolved.slot] = resolved
                slots_by_name[resolved.name] = resolved.slot

            entities[entity_type] = declaration

        if not entities:
            raise ConfigurationError("No searchable entity types declared")

        for declaration in entities.values():
            for relation in declaration.relations:
                if relation.target_type not in entities:
                    raise ConfigurationError(
                        f"Relation '{declaration.entity_type}.{relation.name}' targets undeclared "
                        f"entity type '{relation.target_type}'"
                    )
                if relation.prefix_name not in prefixes_by_name:
                    raise ConfigurationError(
                        f"Relation '{declaration.entity_type}.{relation.name}' scopes by unknown "
                        f"term prefix '{relation.prefix_name}'"
                    )

        self._entities: Mapping[str, EntityDeclaration] = MappingProxyType(entities)
        self._names_by_prefix: Mapping[str, str] = MappingProxyType(names_by_prefix)
        self._prefixes_by_name: Mapping[str, str] = MappingProxyType(prefixes_by_name)
        self._slots: Mapping[int, ValueSlot] = MappingProxyType(slots)
        self._slots_by_name: Mapping[str, int] = MappingProxyType(slots_by_name)
        self._value_order: tuple[int, ...] = tuple(value_order)

    @property
    def entity_types(self) -> tuple[str, ...]:
        return tuple(self._entities)

    def __contains__(self, entity_type: object) -> bool:
        return entity_type in self._entities

    def entity(self, entity_type: str) -> EntityDeclaration:
        """Return the declaration for ``entity_type`` or raise ConfigurationError."""
        try:
            return self._entities[entity_type]
        except KeyError:
            raise ConfigurationError(f"Entity type '{entity_type}' is not declared as searchable") from None

    def require(self, entity_types: Iterable[str]) -> tuple[str, ...]:
        """Validate a non-empty collection of entity type names."""
        resolved = tuple(dict.fromkeys(entity_types))
        if not resolved:
            raise ConfigurationError("At least one entity type is required")
        for entity_type in resolved:
            self.entity(entity_type)
        return resolved

    def prefix_for(self, name: str) -> str | None:
        """Return the term prefix code bound to a query-parser prefix name."""
        return self._prefixes_by_name.get(name)

    @property
    def prefixes_by_name(self) -> Mapping[str, str]:
        return self._prefixes_by_name

    def slot_for(self, name: str) -> int:
        """Return the value slot for a sortable/collapsible name."""
        try:
            return self._slots_by_name[name]
        except KeyError:
            raise ConfigurationError(
                f"Couldn't find value named '{name}'; known values: {sorted(self._slots_by_name)}"
            ) from None

    def value_slot(self, slot: int) -> ValueSlot:
        return self._slots[slot]

    def value_slot_named(self, name: str) -> ValueSlot | None:
        slot = self._slots_by_name.get(name)
        return self._slots[slot] if slot is not None else None

    @property
    def range_slots(self) -> tuple[ValueSlot, ...]:
        """Value slots in first-declared order, as tried by the range parser."""
        return tuple(self._slots[slot] for slot in self._value_order)

    def relation(self, owner_type: str, name: str) -> RelationScope:
        for relation in self.entity(owner_type).relations:
            if relation.name == name:
                return relation
        raise ConfigurationError(f"Entity type '{owner_type}' declares no searchable relation '{name}'")


def _validate_term(term: TermMapping, names_by_prefix: dict[str, str], prefixes_by_name: dict[str, str]) -> None:
    if not _PREFIX_PATTERN.match(term.prefix or ""):
        raise ConfigurationError(f"Use up to 3 single capital letters for term code, got '{term.prefix}'")
    if term.prefix in (TYPE_MARKER_PREFIX, ID_MARKER_PREFIX):
        raise ConfigurationError("M and I are reserved for use as the model/id term")
    if term.prefix.startswith(STEM_PREFIX):
        raise ConfigurationError("Z is reserved for stemming terms")
    if term.name in (TYPE_MARKER_NAME, ID_MARKER_NAME):
        raise ConfigurationError("model and modelid are reserved for use as the model/id prefixes")
    if not _NAME_PATTERN.match(term.name or ""):
        raise ConfigurationError(f"Term prefix name '{term.name}' must be an identifier")
    known_name = names_by_prefix.get(term.prefix)
    if known_name is not None and known_name != term.name:
        raise ConfigurationError(
            f"Already have code '{term.prefix}' in another entity type but with different prefix '{known_name}'"
        )
    known_prefix = prefixes_by_name.get(term.name)
    if known_prefix is not None and known_prefix != term.prefix:
        raise ConfigurationError(
            f"Already have prefix '{term.name}' in another entity type but with different code '{known_prefix}'"
        )


def _validate_value(value: ValueMapping, slots: dict[int, ValueSlot], slots_by_name: dict[str, int]) -> ValueSlot:
    if isinstance(value.slot, bool) or not isinstance(value.slot, int) or value.slot < 0:
        raise ConfigurationError(f"Value index '{value.slot}' must be a non-negative integer")
    try:
        value_type = ValueType(value.value_type)
    except ValueError:
        raise ConfigurationError(f"Unknown value type '{value.value_type}'") from None
    if not _NAME_PATTERN.match(value.name or ""):
        raise ConfigurationError(f"Value name '{value.name}' must be an identifier")

    known = slots.get(value.slot)
    if known is not None:
        if known.name != value.name:
            raise ConfigurationError(
                f"Already have value index '{value.slot}' in another entity type but with different "
                f"prefix '{known.name}'"
            )
        if known.value_type is not value_type:
            raise ConfigurationError(
                f"Value index '{value.slot}' declared as both '{known.value_type.value}' and '{value_type.value}'"
            )
    known_slot = slots_by_name.get(value.name)
    if known_slot is not None and known_slot != value.slot:
        raise ConfigurationError(f"Value name '{value.name}' already bound to value index '{known_slot}'")
    return ValueSlot(slot=value.slot, name=value.name, value_type=value_type)
