"""Semantic candidate lookup with graceful degradation."""

from typing import TYPE_CHECKING, Any, Dict, List, Mapping, Optional, Tuple

import numpy as np

from tether.records.base import matches_filters
from tether.resolution.config import ResolutionConfig
from tether.resolution.models import SOURCE_SEMANTIC, Candidate
from tether.resolution.utils import _record_resolution_event

if TYPE_CHECKING:
    from tether.records.base import RecordStore
    from tether.semantic.base import SemanticIndex


def distance_to_score(distance: float) -> float:
    """Cosine distance to a similarity clipped into [0, 1]."""
    return float(np.clip(1.0 - float(distance), 0.0, 1.0))


class SemanticCandidateSource:
    """Adapter from semantic indexes to ranked candidates.

    Indexes are optional per record type. Every failure, whether the index
    is missing, times out or returns garbage, is recorded as an event and
    turned into "no candidates", so callers can always fall back to text
    search. Hits are hydrated from the record store; entries whose record no
    longer exists are dropped.

    Args:
        store: Record store used to hydrate hits
        indexes: Semantic index per record type
        config: Resolution configuration (``semantic_top_k``)
    """

    def __init__(
        self,
        store: "RecordStore",
        indexes: Optional[Mapping[str, "SemanticIndex"]] = None,
        config: Optional[ResolutionConfig] = None,
    ):
        self.store = store
        self.indexes: Dict[str, "SemanticIndex"] = dict(indexes or {})
        self.config = config or ResolutionConfig()

    def is_enabled(self, record_type: str) -> bool:
        return record_type in self.indexes

    def search_with_status(
        self,
        record_type: str,
        value: str,
        *,
        filters: Optional[Mapping[str, Any]] = None,
    ) -> Tuple[List[Candidate], bool]:
        """Return ``(candidates, available)``; never raises."""
        index = self.indexes.get(record_type)
        if index is None:
            return [], False

        try:
            hits = index.query(
                value,
                top_k=self.config.semantic_top_k,
                metadata_filter={"record_type": record_type},
            )
            best: Dict[Any, Candidate] = {}
            for hit in hits:
                metadata = hit.get("metadata") or {}
                record_id = metadata.get("record_id")
                distance = hit.get("distance")
                if record_id is None or distance is None:
                    continue
                record = self.store.get(record_type, record_id)
                if record is None or not matches_filters(record.data, filters):
                    continue
                candidate = Candidate(
                    record.id, record.data, distance_to_score(distance), SOURCE_SEMANTIC
                )
                current = best.get(record.id)
                if current is None or candidate.score > current.score:
                    best[record.id] = candidate
        except Exception as exc:
            _record_resolution_event(
                "semantic.search.unavailable",
                {"record_type": record_type, "error": str(exc)},
            )
            return [], False

        candidates = sorted(best.values(), key=Candidate.sort_key)
        _record_resolution_event(
            "semantic.search.complete",
            {"record_type": record_type, "result_count": len(candidates)},
        )
        return candidates, True

    def search(
        self,
        record_type: str,
        value: str,
        *,
        filters: Optional[Mapping[str, Any]] = None,
    ) -> List[Candidate]:
        candidates, _ = self.search_with_status(record_type, value, filters=filters)
        return candidates

    def index_record(self, record_type: str, record_id: Any, text: str) -> Optional[str]:
        """Add a stored record to its type's index; returns the uid or None."""
        index = self.indexes.get(record_type)
        if index is None or not text:
            return None
        try:
            return index.add(
                text,
                {"record_type": record_type, "record_id": record_id},
                uid=f"{record_type}:{record_id}",
            )
        except Exception as exc:
            _record_resolution_event(
                "semantic.index.error",
                {"record_type": record_type, "record_id": record_id, "error": str(exc)},
            )
            return None
