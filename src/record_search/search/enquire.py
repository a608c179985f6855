"""Ranking, sorting and collapsing of query matches."""

from __future__ import annotations

from dataclasses import dataclass

from record_search.search.index_store import ReadableIndex
from record_search.search.query import Query


@dataclass(frozen=True)
class Match:
    doc_key: str
    weight: float
    percent: int
    collapse_count: int = 0


@dataclass(frozen=True)
class MatchSet:
    matches: list[Match]
    matches_estimated: int

    def __len__(self) -> int:
        return len(self.matches)

    def __iter__(self):
        return iter(self.matches)


def percent_for(weight: float, max_weight: float) -> int:
    if max_weight <= 0:
        return 100
    return max(1, min(100, round(weight / max_weight * 100)))


class Enquire:
    """Runs one query against a reader snapshot and returns a ranked window."""

    def __init__(self, reader: ReadableIndex) -> None:
        self.reader = reader
        self.query: Query | None = None
        self.sort_slot: int | None = None
        self.sort_ascending = True
        self.collapse_slot: int | None = None

    def set_query(self, query: Query) -> None:
        self.query = query

    def set_sort_by_relevance(self) -> None:
        self.sort_slot = None

    def set_sort_by_value_then_relevance(self, slot: int, ascending: bool = True) -> None:
        self.sort_slot = slot
        self.sort_ascending = ascending

    def set_collapse_key(self, slot: int | None) -> None:
        self.collapse_slot = slot

    def get_mset(self, offset: int, limit: int, check_at_least: int = 0) -> MatchSet:
        """Return matches ``offset`` to ``offset + limit``; a negative limit means no limit.

        Collapsing looks ``check_at_least`` matches past the requested window.
        When that covers every match the estimate is exact, otherwise it is
        scaled from the part scanned.
        """
        if self.query is None:
            raise RuntimeError("No query set")
        weights = self.query.match(self.reader)
        if not weights:
            return MatchSet(matches=[], matches_estimated=0)

        ranked = sorted(weights, key=lambda key: (-weights[key], key))
        if self.sort_slot is not None:
            values = self.reader.values_for(ranked, self.sort_slot)
            ranked.sort(key=lambda key: values.get(key, ""), reverse=not self.sort_ascending)

        total = len(ranked)
        window = total if limit < 0 else min(total, offset + limit + max(check_at_least, 0))
        scanned = ranked[:window]
        collapse_counts: dict[str, int] = {}
        estimated = total
        if self.collapse_slot is not None:
            scanned, collapse_counts = self._collapse(scanned)
            if window >= total:
                estimated = len(scanned)
            else:
                estimated = max(len(scanned), round(len(scanned) * total / window))

        max_weight = max(weights.values())
        end = len(scanned) if limit < 0 else offset + limit
        matches = [
            Match(
                doc_key=key,
                weight=weights[key],
                percent=percent_for(weights[key], max_weight),
                collapse_count=collapse_counts.get(key, 0),
            )
            for key in scanned[offset:end]
        ]
        return MatchSet(matches=matches, matches_estimated=estimated)

    def _collapse(self, ranked: list[str]) -> tuple[list[str], dict[str, int]]:
        values = self.reader.values_for(ranked, self.collapse_slot)
        kept: list[str] = []
        representative: dict[str, str] = {}
        counts: dict[str, int] = {}
        for key in ranked:
            value = values.get(key, "")
            if not value:
                kept.append(key)
                continue
            first = representative.get(value)
            if first is None:
                representative[value] = key
                kept.append(key)
            else:
                counts[first] = counts.get(first, 0) + 1
        return kept, counts
