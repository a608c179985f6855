"""Parser for the boolean/phrase query syntax accepted by searches.

Supported syntax:

* implicit AND between terms; ``AND``, ``OR``, ``NOT``, ``XOR`` (upper case)
  and parentheses when ``BOOLEAN`` is set;
* ``"quoted phrases"`` when ``PHRASE`` is set; punctuated words such as
  ``e-mail`` also become phrases;
* ``+required`` and ``-excluded`` when ``LOVEHATE`` is set;
* ``prefix*`` when ``WILDCARD`` is set;
* ``name:value`` for declared term prefixes, and the boolean filters
  ``model:<type>`` and ``modelid:<type>-<id>``;
* ``lo..hi`` value ranges, optionally ``name:lo..hi``.

Lower-case words outside phrases match stemmed terms; capitalised words,
phrases and wildcards match the exact words. A query that does not parse is
parsed again with every operator treated as a plain word.
"""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass
from datetime import date
from enum import IntFlag
import logging
import math
import re
from typing import Protocol

from record_search.registry import (
    ID_MARKER_NAME,
    ID_MARKER_PREFIX,
    STEM_PREFIX,
    TYPE_MARKER_NAME,
    TYPE_MARKER_PREFIX,
    Registry,
    ValueType,
)
from record_search.search.analyzers import RegexTokenizer, should_stem, stem
from record_search.search.documents import sortable_serialise
from record_search.search.fuzzy import best_correction, get_max_edit_distance
from record_search.search.query import (
    AndNotQuery,
    AndQuery,
    FilterQuery,
    MatchAll,
    MatchNothing,
    OrQuery,
    PhraseQuery,
    Query,
    TermQuery,
    ValueRangeQuery,
    WildcardQuery,
    XorQuery,
    combine,
)


logger = logging.getLogger(__name__)


class QueryFlags(IntFlag):
    BOOLEAN = 1
    PHRASE = 2
    LOVEHATE = 4
    WILDCARD = 16
    SPELLING_CORRECTION = 128

    @classmethod
    def all(cls) -> QueryFlags:
        return cls.BOOLEAN | cls.PHRASE | cls.LOVEHATE | cls.WILDCARD | cls.SPELLING_CORRECTION


class Vocabulary(Protocol):
    """Term lookups used for spelling correction."""

    def has_term(self, term: str) -> bool: ...

    def spelling_candidates(self, length: int, max_distance: int) -> list[str]: ...


_OPERATORS = frozenset({"AND", "OR", "NOT", "XOR"})
_BOOLEAN_PREFIXES = {TYPE_MARKER_NAME: TYPE_MARKER_PREFIX, ID_MARKER_NAME: ID_MARKER_PREFIX}

_LEXEME = re.compile(
    r"""
    \s*(?:
        (?P<lparen>\()
      | (?P<rparen>\))
      | (?P<sign>[+-])?
        (?:(?P<name>[A-Za-z_][A-Za-z0-9_]*):)?
        (?:"(?P<phrase>[^"]*)"?|(?P<chunk>[^\s()"]+))
    )
    """,
    re.VERBOSE,
)

_DATE_PATTERN = re.compile(r"^(\d{4})([-/]?)(\d{2})\2(\d{2})$")

_TOKENIZER = RegexTokenizer()


class _QuerySyntaxError(ValueError):
    pass


@dataclass(frozen=True)
class _Lexeme:
    kind: str
    text: str = ""
    sign: str = ""
    name: str | None = None
    quoted: bool = False
    start: int = 0


@dataclass(frozen=True)
class _Item:
    query: Query
    sign: str = ""
    filter_prefix: str | None = None


class QueryParser:
    """Turns a query string into a ``Query`` using the registry's prefixes and value slots.

    ``corrected_query_string`` holds the spelling-corrected form of the last
    parsed string, or an empty string when nothing was corrected.
    """

    def __init__(self, registry: Registry, vocabulary: Vocabulary | None = None) -> None:
        self.registry = registry
        self._vocabulary = vocabulary
        self.corrected_query_string = ""
        self._corrections: list[tuple[int, int, str]] = []
        self._flags = QueryFlags(0)
        self._lexemes: list[_Lexeme] = []
        self._pos = 0

    def parse_query(self, query_string: str, flags: QueryFlags | None = None) -> Query:
        flags = QueryFlags.all() if flags is None else flags
        try:
            query = self._parse(query_string, flags)
        except _QuerySyntaxError as exc:
            logger.debug("Reparsing %r without operators: %s", query_string, exc)
            query = self._parse(query_string, flags & QueryFlags.SPELLING_CORRECTION)
        self.corrected_query_string = _apply_corrections(query_string, self._corrections)
        return query

    def _parse(self, query_string: str, flags: QueryFlags) -> Query:
        self._flags = flags
        self._corrections = []
        self._lexemes = list(self._lex(query_string))
        self._pos = 0
        if not self._lexemes:
            return MatchNothing()
        query = self._parse_or()
        if self._pos != len(self._lexemes):
            raise _QuerySyntaxError(f"unexpected {self._lexemes[self._pos].text!r}")
        return query

    # lexing

    def _lex(self, text: str) -> Iterator[_Lexeme]:
        boolean = QueryFlags.BOOLEAN in self._flags
        pos = 0
        while pos < len(text):
            match = _LEXEME.match(text, pos)
            if match is None or match.end() == pos:
                break
            pos = match.end()
            if match.group("lparen") or match.group("rparen"):
                if boolean:
                    yield _Lexeme(kind=match.group("lparen") or match.group("rparen"), start=match.start())
                continue
            sign = match.group("sign") or ""
            name = match.group("name")
            quoted = match.group("phrase") is not None
            body = match.group("phrase") if quoted else match.group("chunk")
            start = match.start("phrase") if quoted else match.start("chunk")
            if boolean and not sign and not name and not quoted and body in _OPERATORS:
                yield _Lexeme(kind="op", text=body, start=start)
                continue
            if sign and QueryFlags.LOVEHATE not in self._flags:
                sign = ""
            yield _Lexeme(kind="item", text=body, sign=sign, name=name, quoted=quoted, start=start)

    def _peek(self) -> _Lexeme | None:
        return self._lexemes[self._pos] if self._pos < len(self._lexemes) else None

    def _peek_op(self, *ops: str) -> bool:
        lexeme = self._peek()
        return lexeme is not None and lexeme.kind == "op" and lexeme.text in ops

    # grammar: or > xor > and/not > implicit group

    def _parse_or(self) -> Query:
        queries = [self._parse_xor()]
        while self._peek_op("OR"):
            self._pos += 1
            queries.append(self._parse_xor())
        return combine(OrQuery, queries)

    def _parse_xor(self) -> Query:
        queries = [self._parse_and()]
        while self._peek_op("XOR"):
            self._pos += 1
            queries.append(self._parse_and())
        return combine(XorQuery, queries)

    def _parse_and(self) -> Query:
        left = self._parse_group()
        while self._peek_op("AND", "NOT"):
            operator = self._lexemes[self._pos].text
            self._pos += 1
            if operator == "AND" and self._peek_op("NOT"):
                self._pos += 1
                operator = "NOT"
            right = self._parse_group()
            left = AndNotQuery((left, right)) if operator == "NOT" else combine(AndQuery, (left, right))
        return left

    def _parse_group(self) -> Query:
        items: list[_Item] = []
        consumed = False
        while True:
            lexeme = self._peek()
            if lexeme is None or lexeme.kind in ("op", ")"):
                break
            self._pos += 1
            consumed = True
            if lexeme.kind == "(":
                inner = self._parse_or()
                if self._peek() is None or self._peek().kind != ")":
                    raise _QuerySyntaxError("unbalanced parentheses")
                self._pos += 1
                items.append(_Item(inner))
                continue
            item = self._item(lexeme)
            if item is not None:
                items.append(item)
        if not consumed:
            lexeme = self._peek()
            raise _QuerySyntaxError(f"expected a term before {lexeme.text if lexeme else 'end of query'!r}")
        if not items:
            return MatchNothing()
        return _combine_group(items)

    # items

    def _item(self, lexeme: _Lexeme) -> _Item | None:
        text = lexeme.text
        name = lexeme.name
        if name is not None:
            if name in _BOOLEAN_PREFIXES and text:
                return _Item(TermQuery(_BOOLEAN_PREFIXES[name] + text, boolean=True), lexeme.sign, name)
            value_slot = self.registry.value_slot_named(name)
            if value_slot is not None and not lexeme.quoted and ".." in text:
                encoded = _encode_range(text, value_slot.value_type)
                if encoded is not None:
                    return _Item(ValueRangeQuery(value_slot.slot, *encoded), lexeme.sign)
            prefix = self.registry.prefix_for(name)
            if prefix is None:
                spell_offset = None if lexeme.quoted else lexeme.start - len(name) - 1
                return self._words_item(f"{name}:{text}", "", lexeme, spell_offset=spell_offset)
            return self._words_item(text, prefix, lexeme, spell_offset=None)
        if not lexeme.quoted and ".." in text:
            range_query = self._range_query(text)
            if range_query is not None:
                return _Item(range_query, lexeme.sign)
        return self._words_item(text, "", lexeme, spell_offset=lexeme.start)

    def _range_query(self, text: str) -> Query | None:
        for value_slot in self.registry.range_slots:
            encoded = _encode_range(text, value_slot.value_type)
            if encoded is not None:
                return ValueRangeQuery(value_slot.slot, *encoded)
        return None

    def _words_item(self, text: str, prefix: str, lexeme: _Lexeme, spell_offset: int | None) -> _Item | None:
        wildcard = (
            QueryFlags.WILDCARD in self._flags and not lexeme.quoted and text.endswith("*") and len(text) > 1
        )
        if wildcard:
            text = text.rstrip("*")
        tokens = list(_TOKENIZER(text))
        if not tokens:
            return None
        words = [token.text for token in tokens]
        if wildcard and len(words) == 1:
            return _Item(WildcardQuery(prefix + words[0].lower()), lexeme.sign)
        if spell_offset is not None and QueryFlags.SPELLING_CORRECTION in self._flags:
            self._collect_corrections(tokens, spell_offset)

        phrase = QueryFlags.PHRASE in self._flags and (lexeme.quoted or len(words) > 1)
        if phrase:
            terms = tuple(prefix + word.lower() for word in words)
            query: Query = TermQuery(terms[0]) if len(terms) == 1 else PhraseQuery(terms)
            return _Item(query, lexeme.sign)
        return _Item(combine(AndQuery, (self._word_query(word, prefix) for word in words)), lexeme.sign)

    def _word_query(self, word: str, prefix: str) -> Query:
        lower = word.lower()
        if should_stem(word):
            return TermQuery(STEM_PREFIX + prefix + stem(lower))
        return TermQuery(prefix + lower)

    # spelling

    def _collect_corrections(self, tokens, offset: int) -> None:
        source = self._vocabulary
        if source is None:
            return
        for token in tokens:
            lower = token.text.lower()
            max_distance = get_max_edit_distance(len(lower))
            if max_distance == 0 or source.has_term(lower):
                continue
            correction = best_correction(lower, source.spelling_candidates(len(lower), max_distance))
            if correction is not None:
                self._corrections.append((offset + token.start_char, offset + token.end_char, correction))


def _combine_group(items: list[_Item]) -> Query:
    required = [item.query for item in items if item.sign != "-" and item.filter_prefix is None]
    excluded = [item.query for item in items if item.sign == "-"]
    filters: dict[str, list[Query]] = {}
    for item in items:
        if item.filter_prefix is not None and item.sign != "-":
            filters.setdefault(item.filter_prefix, []).append(item.query)

    query = combine(AndQuery, required)
    if filters:
        filter_query = combine(AndQuery, (combine(OrQuery, terms) for terms in filters.values()))
        query = filter_query if isinstance(query, MatchNothing) else FilterQuery((query, filter_query))
    if excluded:
        if isinstance(query, MatchNothing):
            query = MatchAll()
        query = AndNotQuery((query, *excluded))
    return query


def _apply_corrections(query_string: str, corrections: list[tuple[int, int, str]]) -> str:
    if not corrections:
        return ""
    corrected = query_string
    for start, end, replacement in sorted(corrections, reverse=True):
        corrected = corrected[:start] + replacement + corrected[end:]
    return corrected


def _encode_range(text: str, value_type: ValueType) -> tuple[str | None, str | None] | None:
    """Encode both ends of ``lo..hi`` for ``value_type``, or None when the type rejects them."""
    low, separator, high = text.partition("..")
    if not separator or ".." in high or (not low and not high):
        return None
    encoded: list[str | None] = []
    for end in (low, high):
        if not end:
            encoded.append(None)
            continue
        value = _encode_range_end(end, value_type)
        if value is None:
            return None
        encoded.append(value)
    return encoded[0], encoded[1]


def _encode_range_end(text: str, value_type: ValueType) -> str | None:
    if value_type is ValueType.DATE:
        match = _DATE_PATTERN.match(text)
        if not match:
            return None
        year, _, month, day = match.groups()
        try:
            return date(int(year), int(month), int(day)).strftime("%Y%m%d")
        except ValueError:
            return None
    if value_type is ValueType.NUMBER:
        try:
            number = float(text)
        except ValueError:
            return None
        if not math.isfinite(number):
            return None
        return sortable_serialise(number)
    return text
