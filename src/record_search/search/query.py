"""Query tree evaluated against a ``ReadableIndex`` snapshot.

Every node yields a mapping of document key to BM25 weight. Boolean nodes
(type markers, ``model:``/``modelid:`` filters, value ranges) contribute a
weight of zero, so they restrict a match set without reordering it.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from typing import Protocol

from record_search.search.models import Posting
from record_search.search.stats import CorpusStats, term_weight


class IndexReader(Protocol):
    """The slice of ``ReadableIndex`` the query tree reads from."""

    @property
    def stats(self) -> CorpusStats: ...

    def postings(self, term: str, *, include_positions: bool = False) -> list[Posting]: ...

    def terms_with_prefix(self, prefix: str) -> list[str]: ...

    def all_doc_keys(self) -> list[str]: ...

    def docs_in_value_range(self, slot: int, low: str | None, high: str | None) -> list[str]: ...


Matches = dict[str, float]


class Query(ABC):
    """Base class of query tree nodes."""

    @abstractmethod
    def match(self, reader: IndexReader) -> Matches:
        """Return the weight of every matching document, keyed by document key."""

    @abstractmethod
    def describe(self) -> str:
        """Structural description used for diagnostics."""

    def terms(self) -> list[str]:
        return []

    @property
    def description(self) -> str:
        return f"Query({self.describe()})"

    def __str__(self) -> str:
        return self.description


@dataclass(frozen=True)
class TermQuery(Query):
    term: str
    boolean: bool = False

    def match(self, reader: IndexReader) -> Matches:
        postings = reader.postings(self.term)
        if self.boolean:
            return dict.fromkeys((posting.doc_key for posting in postings), 0.0)
        stats = reader.stats
        term_freq = len(postings)
        return {
            posting.doc_key: term_weight(posting.wdf, posting.doc_length, term_freq, stats) for posting in postings
        }

    def describe(self) -> str:
        return self.term

    def terms(self) -> list[str]:
        return [self.term]


@dataclass(frozen=True)
class PhraseQuery(Query):
    """Terms appearing at consecutive positions."""

    phrase_terms: tuple[str, ...]

    def match(self, reader: IndexReader) -> Matches:
        if not self.phrase_terms:
            return {}
        by_term = [
            {posting.doc_key: posting for posting in reader.postings(term, include_positions=True)}
            for term in self.phrase_terms
        ]
        candidates = set(by_term[0])
        for postings in by_term[1:]:
            candidates &= postings.keys()
        stats = reader.stats
        matches: Matches = {}
        for doc_key in candidates:
            chain = [postings[doc_key] for postings in by_term]
            if not _consecutive(chain):
                continue
            matches[doc_key] = sum(
                term_weight(posting.wdf, posting.doc_length, len(postings), stats)
                for posting, postings in zip(chain, by_term, strict=True)
            )
        return matches

    def describe(self) -> str:
        return "(" + f" PHRASE {len(self.phrase_terms)} ".join(self.phrase_terms) + ")"

    def terms(self) -> list[str]:
        return list(self.phrase_terms)


def _consecutive(chain: Sequence[Posting]) -> bool:
    later = [set(posting.positions) for posting in chain[1:]]
    for start in chain[0].positions:
        if all(start + offset + 1 in positions for offset, positions in enumerate(later)):
            return True
    return False


@dataclass(frozen=True)
class WildcardQuery(Query):
    """Any indexed term starting with ``prefix``."""

    prefix: str

    def match(self, reader: IndexReader) -> Matches:
        expanded = [TermQuery(term) for term in reader.terms_with_prefix(self.prefix)]
        return OrQuery(tuple(expanded)).match(reader)

    def describe(self) -> str:
        return f"WILDCARD SYNONYM {self.prefix}"


@dataclass(frozen=True)
class ValueRangeQuery(Query):
    slot: int
    low: str | None
    high: str | None

    def match(self, reader: IndexReader) -> Matches:
        return dict.fromkeys(reader.docs_in_value_range(self.slot, self.low, self.high), 0.0)

    def describe(self) -> str:
        if self.high is None:
            return f"VALUE_GE {self.slot} {self.low}"
        if self.low is None:
            return f"VALUE_LE {self.slot} {self.high}"
        return f"VALUE_RANGE {self.slot} {self.low} {self.high}"


@dataclass(frozen=True)
class MatchAll(Query):
    def match(self, reader: IndexReader) -> Matches:
        return dict.fromkeys(reader.all_doc_keys(), 0.0)

    def describe(self) -> str:
        return "<alldocuments>"


@dataclass(frozen=True)
class MatchNothing(Query):
    """The empty query, as parsed from an empty query string; dropped when combined."""

    def match(self, reader: IndexReader) -> Matches:
        return {}

    def describe(self) -> str:
        return ""


@dataclass(frozen=True)
class _Compound(Query):
    subqueries: tuple[Query, ...] = field(default_factory=tuple)

    operator = ""

    def describe(self) -> str:
        parts = [sub.describe() for sub in self.subqueries]
        return "(" + f" {self.operator} ".join(part for part in parts if part) + ")"

    def terms(self) -> list[str]:
        collected: list[str] = []
        for sub in self.subqueries:
            collected.extend(sub.terms())
        return collected


class AndQuery(_Compound):
    operator = "AND"

    def match(self, reader: IndexReader) -> Matches:
        if not self.subqueries:
            return {}
        results = [sub.match(reader) for sub in self.subqueries]
        results.sort(key=len)
        keys = set(results[0])
        for result in results[1:]:
            keys &= result.keys()
        return {key: sum(result[key] for result in results) for key in keys}


class OrQuery(_Compound):
    operator = "OR"

    def match(self, reader: IndexReader) -> Matches:
        matches: Matches = {}
        for sub in self.subqueries:
            for key, weight in sub.match(reader).items():
                matches[key] = matches.get(key, 0.0) + weight
        return matches


class XorQuery(_Compound):
    """Documents matched by an odd number of subqueries."""

    operator = "XOR"

    def match(self, reader: IndexReader) -> Matches:
        hits: dict[str, int] = {}
        matches: Matches = {}
        for sub in self.subqueries:
            for key, weight in sub.match(reader).items():
                hits[key] = hits.get(key, 0) + 1
                matches[key] = matches.get(key, 0.0) + weight
        return {key: weight for key, weight in matches.items() if hits[key] % 2 == 1}


class AndNotQuery(_Compound):
    """First subquery minus the documents matched by any of the others."""

    operator = "AND_NOT"

    def match(self, reader: IndexReader) -> Matches:
        if not self.subqueries:
            return {}
        matches = self.subqueries[0].match(reader)
        for sub in self.subqueries[1:]:
            for key in sub.match(reader):
                matches.pop(key, None)
        return matches

    def terms(self) -> list[str]:
        return self.subqueries[0].terms() if self.subqueries else []


class FilterQuery(_Compound):
    """First subquery, restricted to documents matching the rest, weights from the first only."""

    operator = "FILTER"

    def match(self, reader: IndexReader) -> Matches:
        if not self.subqueries:
            return {}
        matches = self.subqueries[0].match(reader)
        for sub in self.subqueries[1:]:
            allowed = sub.match(reader)
            matches = {key: weight for key, weight in matches.items() if key in allowed}
        return matches


def combine(operator: type[_Compound], queries: Iterable[Query]) -> Query:
    """Build ``operator`` over ``queries``, collapsing trivial cases."""
    subqueries = tuple(query for query in queries if not isinstance(query, MatchNothing))
    if not subqueries:
        return MatchNothing()
    if len(subqueries) == 1:
        return subqueries[0]
    return operator(subqueries)
