"""Statistical helpers for BM25 style weighting.

The functions here stay independent of the storage backend so the query tree
can weight postings without knowing where they came from.
"""

from __future__ import annotations

from dataclasses import dataclass
import math


@dataclass(frozen=True)
class CorpusStats:
    """Document count and total positional length of an index snapshot."""

    document_count: int
    total_length: int

    @property
    def average_length(self) -> float:
        if self.document_count == 0:
            return 0.0
        return self.total_length / self.document_count


def calculate_idf(term_freq: int, total_docs: int, *, floor: float = 1e-6) -> float:
    """Return inverse document frequency with small-sample smoothing.

    Uses a floored IDF so weights never go negative, which matters for tiny
    corpora where a term can appear in most documents.
    """

    if total_docs <= 0:
        return 0.0
    df = max(0, min(term_freq, total_docs))
    numerator = total_docs - df + 0.5
    denominator = df + 0.5
    ratio = max(numerator / denominator, floor)
    raw_idf = math.log(ratio + floor) + 1.0
    return max(raw_idf, floor)


def bm25(wdf: int, doc_length: int, avg_doc_length: float, *, k1: float = 1.2, b: float = 0.75) -> float:
    """Compute the BM25 term weight without IDF.

    The dl/avgdl ratio is capped at 4x so very long records are not
    penalised out of the ranking entirely.
    """

    if wdf <= 0:
        return 0.0
    max_length_ratio = 4.0
    raw_ratio = doc_length / max(avg_doc_length, 1e-9)
    normalized_length = min(raw_ratio, max_length_ratio)
    denominator = wdf + k1 * (1 - b + b * normalized_length)
    return (wdf * (k1 + 1)) / denominator


def term_weight(wdf: int, doc_length: int, term_freq: int, stats: CorpusStats) -> float:
    """Full BM25 contribution of one term occurrence set in one document."""
    if wdf <= 0:
        return 0.0
    return calculate_idf(term_freq, stats.document_count) * bm25(wdf, doc_length, stats.average_length)
