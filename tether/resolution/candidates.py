"""Textual candidate lookup against the record store."""

from typing import TYPE_CHECKING, Any, List, Mapping, Optional, Sequence

from tether.errors import RecordStoreUnavailable, TransientSearchFailure, UnknownRecordType
from tether.resolution.config import ResolutionConfig
from tether.resolution.models import SOURCE_EXACT, SOURCE_PARTIAL, Candidate
from tether.resolution.scoring import string_similarity
from tether.resolution.utils import (
    _record_resolution_event,
    is_email_field_name,
    looks_like_email,
    normalize_key,
)

if TYPE_CHECKING:
    from tether.records.base import RecordStore

# Fuzzy partial scores stay below an exact match.
MAX_PARTIAL_SCORE = 0.99


def order_search_fields(search_fields: Sequence[str], value: str) -> List[str]:
    """Search email fields first when the value looks like an email address."""
    fields = list(dict.fromkeys(search_fields))
    if not looks_like_email(value):
        return fields
    email_first = [name for name in fields if is_email_field_name(name)]
    return email_first + [name for name in fields if not is_email_field_name(name)]


class CandidateStore:
    """Exact and partial text matching over one record store.

    An exact match is a case-insensitive, whitespace-insensitive equality
    and always scores 1.0. Any other substring match scores
    ``partial_match_score``, or its fuzzy similarity in ``fuzzy`` mode.
    """

    def __init__(self, store: "RecordStore", config: Optional[ResolutionConfig] = None):
        self.store = store
        self.config = config or ResolutionConfig()

    def _partial_score(self, record_type: str, value: str, stored: Any) -> float:
        if self.config.partial_scoring == "fuzzy":
            return min(MAX_PARTIAL_SCORE, string_similarity(value, str(stored)))
        return self.config.thresholds_for(record_type).partial_match_score

    def search(
        self,
        record_type: str,
        field: str,
        value: str,
        *,
        filters: Optional[Mapping[str, Any]] = None,
    ) -> List[Candidate]:
        """Return candidates whose ``field`` contains ``value``.

        Raises:
            UnknownRecordType: The store does not hold ``record_type``
            RecordStoreUnavailable: The store could not be queried
        """
        try:
            rows = self.store.search(
                record_type,
                field,
                value,
                filters=filters,
                limit=self.config.candidate_limit,
            )
        except (UnknownRecordType, TransientSearchFailure):
            raise
        except Exception as exc:
            _record_resolution_event(
                "candidates.search.error",
                {"record_type": record_type, "field": field, "error": str(exc)},
            )
            raise RecordStoreUnavailable(str(exc)) from exc

        wanted = normalize_key(value)
        candidates = []
        for row in rows:
            stored = row.data.get(field)
            if stored is None:
                continue
            if normalize_key(stored) == wanted:
                candidates.append(Candidate(row.id, row.data, 1.0, SOURCE_EXACT))
            else:
                score = self._partial_score(record_type, value, stored)
                candidates.append(Candidate(row.id, row.data, score, SOURCE_PARTIAL))
        return candidates

    def search_fields(
        self,
        record_type: str,
        search_fields: Sequence[str],
        value: str,
        *,
        filters: Optional[Mapping[str, Any]] = None,
    ) -> List[Candidate]:
        """Search every configured field; results may repeat ids across fields."""
        candidates: List[Candidate] = []
        for field in order_search_fields(search_fields, value):
            candidates.extend(self.search(record_type, field, value, filters=filters))
        _record_resolution_event(
            "candidates.search.complete",
            {
                "record_type": record_type,
                "fields": list(search_fields),
                "result_count": len(candidates),
            },
        )
        return candidates
