"""
RecordStore: Abstract base class for record persistence backends.

The resolution engine only needs a narrow slice of a persistence layer:
case-insensitive text search, lookup by id, conflict-checked creation and
partial updates. Backends implement that slice; everything else about the
host application's storage stays out of view.
"""

from __future__ import annotations

import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from tether.observability import get_event_recorder

RECORDS_RECORDER = get_event_recorder("records")

_WHITESPACE = re.compile(r"\s+")


def _record_store_event(name: str, payload: Dict[str, Any]) -> None:
    RECORDS_RECORDER.record(name=name, payload=payload)


def normalize_text(value: Any) -> str:
    """Case- and whitespace-insensitive form used for matching and uniqueness."""
    return _WHITESPACE.sub(" ", str(value).strip()).casefold()


def matches_filters(data: Mapping[str, Any], filters: Optional[Mapping[str, Any]]) -> bool:
    if not filters:
        return True
    return all(data.get(key) == expected for key, expected in filters.items())


@dataclass(frozen=True)
class StoredRecord:
    """A persisted record: its id and field-map."""

    id: Any
    record_type: str
    data: Dict[str, Any] = field(default_factory=dict)


class RecordStore(ABC):
    """
    Abstract base class for record store backends.

    Implementations must raise ``UnknownRecordType`` for record types they do
    not hold, and ``RecordStoreUnavailable`` when the underlying storage cannot
    serve a request. "No rows" is never an error.
    """

    @abstractmethod
    def record_types(self) -> List[str]:
        """Return the record types this store accepts."""
        pass

    def has_record_type(self, record_type: str) -> bool:
        return record_type in self.record_types()

    @abstractmethod
    def search(
        self,
        record_type: str,
        field: str,
        value: str,
        *,
        filters: Optional[Mapping[str, Any]] = None,
        limit: Optional[int] = None,
    ) -> List[StoredRecord]:
        """
        Case-insensitive substring search on one field.

        Args:
            record_type: Record type to search
            field: Field whose value is matched
            value: Text that must occur within the field value
            filters: Optional equality constraints on other fields
            limit: Maximum number of rows to return

        Returns:
            Matching records, exact (normalized equality) matches first, each
            group ordered by id ascending. ``limit`` applies after this
            ordering, so exact matches are never cut off by partial ones.
        """
        pass

    @abstractmethod
    def get(self, record_type: str, record_id: Any) -> Optional[StoredRecord]:
        """Return one record, or None when the id is unknown."""
        pass

    @abstractmethod
    def create(self, record_type: str, data: Mapping[str, Any]) -> Any:
        """Insert a record without any uniqueness check and return its id."""
        pass

    @abstractmethod
    def create_if_absent(
        self,
        record_type: str,
        unique_field: str,
        data: Mapping[str, Any],
        *,
        scope: Optional[Mapping[str, Any]] = None,
    ) -> Tuple[Any, bool]:
        """
        Conflict-checked insert.

        Inserts ``data`` unless a record of the same type already holds the
        same normalized value in ``unique_field``. With ``scope``, only
        records whose fields equal every ``scope`` entry conflict, so "Acme"
        in workspace 1 does not block "Acme" in workspace 2.

        Returns:
            ``(id, True)`` for a new record, ``(existing_id, False)`` on conflict
        """
        pass

    @abstractmethod
    def update(
        self,
        record_type: str,
        record_id: Any,
        updates: Mapping[str, Any],
        *,
        remove: Sequence[str] = (),
    ) -> bool:
        """
        Update fields of a record in place.

        Returns:
            True if the record was updated, False if it does not exist
        """
        pass

    def close(self) -> None:
        """Release backend resources."""

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False
