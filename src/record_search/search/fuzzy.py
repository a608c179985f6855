"""Edit-distance helpers behind query spelling correction.

Smart defaults (no per-deployment config needed):
- No correction for very short words (1-2 chars)
- Max edit distance of 1 for short words (3-5 chars)
- Max edit distance of 2 for longer words (6+ chars)
"""

from __future__ import annotations

from collections.abc import Iterable


def levenshtein_distance(s1: str, s2: str, max_distance: int | None = None) -> int:
    """Calculate the Levenshtein (edit) distance between two strings.

    With ``max_distance`` set, returns ``max_distance + 1`` as soon as the
    distance is known to exceed it.

    Examples:
        >>> levenshtein_distance("kitten", "sitting")
        3
        >>> levenshtein_distance("", "abc")
        3
    """
    if not s1:
        return len(s2)
    if not s2:
        return len(s1)

    if len(s1) > len(s2):
        s1, s2 = s2, s1

    m, n = len(s1), len(s2)

    if max_distance is not None and abs(m - n) > max_distance:
        return max_distance + 1

    prev_row = list(range(m + 1))
    curr_row = [0] * (m + 1)

    for j in range(1, n + 1):
        curr_row[0] = j
        row_min = curr_row[0]
        for i in range(1, m + 1):
            cost = 0 if s1[i - 1] == s2[j - 1] else 1
            curr_row[i] = min(
                prev_row[i] + 1,  # deletion
                curr_row[i - 1] + 1,  # insertion
                prev_row[i - 1] + cost,  # substitution
            )
            row_min = min(row_min, curr_row[i])

        if max_distance is not None and row_min > max_distance:
            return max_distance + 1

        prev_row, curr_row = curr_row, prev_row

    return prev_row[m]


def get_max_edit_distance(term_length: int) -> int:
    """Maximum edit distance allowed when correcting a word of this length."""
    if term_length <= 2:
        return 0
    if term_length <= 5:
        return 1
    return 2


def best_correction(word: str, vocabulary: Iterable[str]) -> str | None:
    """Return the closest vocabulary word to ``word``, or None.

    Ties on distance go to the alphabetically first candidate so corrections
    are deterministic.
    """
    if not word:
        return None
    query_lower = word.lower()
    max_distance = get_max_edit_distance(len(query_lower))
    if max_distance == 0:
        return None

    best: tuple[int, str] | None = None
    for term in vocabulary:
        if term == query_lower or abs(len(term) - len(query_lower)) > max_distance:
            continue
        distance = levenshtein_distance(query_lower, term, max_distance)
        if distance > max_distance:
            continue
        candidate = (distance, term)
        if best is None or candidate < best:
            best = candidate
    return best[1] if best else None
