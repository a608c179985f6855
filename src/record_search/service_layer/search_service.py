"""Query engine: parse, rank and hydrate searches across entity types."""

from __future__ import annotations

from collections.abc import Iterable
from functools import cached_property
import logging
import re
import time
from typing import Any

from record_search.adapters.record_store import AbstractRecordStore
from record_search.context import IndexContext
from record_search.domain.model import QuerySpec, SearchResult
from record_search.observability.metrics import SEARCH_LATENCY
from record_search.observability.tracing import create_span
from record_search.registry import TYPE_MARKER_PREFIX
from record_search.search.enquire import Enquire, MatchSet
from record_search.search.query import AndQuery, OrQuery, Query, TermQuery, combine
from record_search.search.query_parser import QueryFlags, QueryParser
from record_search.service_layer.hydrator import ResultHydrator


logger = logging.getLogger(__name__)

DEFAULT_LOOKAHEAD = 100

_NON_WORD = re.compile(r"[^\w:./_]")
_HAS_SYNTAX = re.compile(r"[:./]")
_OPERATOR = re.compile(r"^(AND|NOT|OR|XOR)$")


class Search:
    """One executed query; results are hydrated on first access and cached."""

    def __init__(
        self,
        spec: QuerySpec,
        query: Query,
        matches: MatchSet,
        corrected_query_string: str,
        hydrator: ResultHydrator,
        runtime: float,
    ) -> None:
        self.spec = spec
        self.query = query
        self.matches = matches
        self.corrected_query_string = corrected_query_string
        self._hydrator = hydrator
        self.runtime = runtime

    @property
    def query_string(self) -> str:
        return self.spec.query_string

    @property
    def matches_estimated(self) -> int:
        return self.matches.matches_estimated

    @property
    def description(self) -> str:
        return self.query.description

    @property
    def spelling_correction(self) -> str | None:
        """The query string with misspelt words corrected, or None when nothing was corrected."""
        return self.corrected_query_string or None

    def words_to_highlight(self) -> list[str]:
        """Plain words of the query string, for highlighting in result excerpts.

        Prefixed terms, ranges, paths and boolean operators are left out.
        """
        words = _NON_WORD.sub(" ", self.query_string).split()
        return [word for word in words if not _HAS_SYNTAX.search(word) and not _OPERATOR.match(word)]

    @cached_property
    def results(self) -> list[SearchResult]:
        page = [
            SearchResult(
                document_key=match.doc_key,
                percent=match.percent,
                weight=match.weight,
                collapse_count=match.collapse_count,
            )
            for match in self.matches
        ]
        return self._hydrator.hydrate(page)

    @property
    def log_description(self) -> str:
        return f"Search: {self.query_string}"

    def __len__(self) -> int:
        return len(self.matches)


class QueryEngine:
    """Runs searches against the context's index snapshot."""

    def __init__(
        self,
        context: IndexContext,
        store: AbstractRecordStore,
        *,
        lookahead: int = DEFAULT_LOOKAHEAD,
    ) -> None:
        self.context = context
        self.store = store
        self.lookahead = lookahead
        self.hydrator = ResultHydrator(context.registry, store)

    def execute(self, spec: QuerySpec) -> Search:
        """Run ``spec`` and return the ranked page.

        Raises:
            ConfigurationError: Unknown entity type, sort or collapse name.
            NotInitializedError: No index has been built yet.
        """
        registry = self.context.registry
        entity_types = registry.require(spec.entity_types)
        sort_slot = registry.slot_for(spec.sort_by) if spec.sort_by else None
        collapse_slot = registry.slot_for(spec.collapse_by) if spec.collapse_by else None

        reader = self.context.reader()
        started = time.perf_counter()
        with create_span(
            "record_search.search",
            attributes={"entity_types": ",".join(entity_types), "query.length": len(spec.query_string)},
        ) as span:
            parser = QueryParser(registry, vocabulary=reader)
            parsed = parser.parse_query(spec.query_string, QueryFlags.all())
            type_filter = combine(OrQuery, [TermQuery(TYPE_MARKER_PREFIX + name, boolean=True) for name in entity_types])
            query = combine(AndQuery, [type_filter, parsed])

            enquire = Enquire(reader)
            enquire.set_query(query)
            if sort_slot is None:
                enquire.set_sort_by_relevance()
            else:
                enquire.set_sort_by_value_then_relevance(sort_slot, ascending=spec.sort_ascending)
            enquire.set_collapse_key(collapse_slot)
            matches = enquire.get_mset(spec.offset, spec.limit, self.lookahead)
            span.set_attribute("matches.estimated", matches.matches_estimated)

        runtime = time.perf_counter() - started
        SEARCH_LATENCY.labels(sorted=str(sort_slot is not None).lower()).observe(runtime)
        search = Search(
            spec=spec,
            query=query,
            matches=matches,
            corrected_query_string=parser.corrected_query_string,
            hydrator=self.hydrator,
            runtime=runtime,
        )
        logger.debug("%s (%d matches, %.4fs)", search.log_description, search.matches_estimated, runtime)
        return search

    def search(self, entity_types: Iterable[str] | str, query_string: str, **options: Any) -> Search:
        spec = QuerySpec(entity_types=_as_tuple(entity_types), query_string=query_string, **options)
        return self.execute(spec)

    def find(self, entity_types: Iterable[str] | str, query_string: str, **options: Any) -> list[Any]:
        """Records matching the query, in rank order, leaving out records that vanished."""
        search = self.search(entity_types, query_string, **options)
        return [result.record for result in search.results if result.record is not None]

    def search_related(
        self,
        owner_type: str,
        owner_id: object,
        relation: str,
        query_string: str = "",
        **options: Any,
    ) -> Search:
        """Search ``owner.relation`` as declared by the owner's ``RelationScope``."""
        scope = self.context.registry.relation(owner_type, relation)
        scoped = f"{scope.prefix_name}:{owner_id} {query_string}".strip()
        return self.search(scope.target_type, scoped, **options)


def _as_tuple(entity_types: Iterable[str] | str) -> tuple[str, ...]:
    if isinstance(entity_types, str):
        return (entity_types,)
    return tuple(entity_types)
