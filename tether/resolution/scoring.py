"""Merging and ranking of candidates from several search sources."""

from typing import Any, Dict, Iterable, List

from rapidfuzz import fuzz

from tether.resolution.models import SOURCE_PRIORITY, Candidate
from tether.resolution.utils import normalize_key


def string_similarity(left: str, right: str) -> float:
    """Fuzzy similarity of two strings in [0, 1], ignoring case and spacing.

    Takes the better of the plain edit ratio and the token-set ratio, so
    reordered words ("Doe John" / "John Doe") still score high.
    """
    a = normalize_key(left)
    b = normalize_key(right)
    if not a or not b:
        return 0.0
    if a == b:
        return 1.0
    return max(fuzz.ratio(a, b), fuzz.token_set_ratio(a, b)) / 100.0


def _outranks(challenger: Candidate, current: Candidate) -> bool:
    if challenger.score != current.score:
        return challenger.score > current.score
    return SOURCE_PRIORITY[challenger.source] < SOURCE_PRIORITY[current.source]


class SimilarityScorer:
    """Dedupes candidates by id and ranks them.

    For each id the best candidate wins: highest score, then highest-priority
    source. The result is sorted by score descending, source priority and id
    ascending, and does not depend on the order the inputs arrive in.
    """

    def merge(self, *candidate_lists: Iterable[Candidate]) -> List[Candidate]:
        best: Dict[Any, Candidate] = {}
        for candidates in candidate_lists:
            for candidate in candidates:
                current = best.get(candidate.id)
                if current is None or _outranks(candidate, current):
                    best[candidate.id] = candidate
        return sorted(best.values(), key=Candidate.sort_key)
