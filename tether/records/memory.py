"""In-process record store, used by tests and small embedded deployments."""

from __future__ import annotations

import copy
from threading import RLock
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from tether.errors import UnknownRecordType
from tether.records.base import (
    RecordStore,
    StoredRecord,
    _record_store_event,
    matches_filters,
    normalize_text,
)


class MemoryRecordStore(RecordStore):
    """
    Dictionary-backed RecordStore.

    Ids are integers starting at 1 per record type. A single re-entrant lock
    serializes writes, which makes ``create_if_absent`` atomic across threads.

    Example:
        >>> store = MemoryRecordStore(["customer"])
        >>> store.create_if_absent("customer", "name", {"name": "Acme"})
        (1, True)
        >>> store.create_if_absent("customer", "name", {"name": "ACME "})
        (1, False)
    """

    def __init__(self, record_types: Iterable[str] = ()) -> None:
        self._lock = RLock()
        self._records: Dict[str, Dict[int, Dict[str, Any]]] = {}
        self._next_ids: Dict[str, int] = {}
        for record_type in record_types:
            self.add_record_type(record_type)

    def add_record_type(self, record_type: str) -> None:
        with self._lock:
            self._records.setdefault(record_type, {})
            self._next_ids.setdefault(record_type, 1)

    def record_types(self) -> List[str]:
        with self._lock:
            return sorted(self._records)

    def _table(self, record_type: str) -> Dict[int, Dict[str, Any]]:
        table = self._records.get(record_type)
        if table is None:
            raise UnknownRecordType(record_type)
        return table

    def search(
        self,
        record_type: str,
        field: str,
        value: str,
        *,
        filters: Optional[Mapping[str, Any]] = None,
        limit: Optional[int] = None,
    ) -> List[StoredRecord]:
        needle = normalize_text(value)
        exact: List[StoredRecord] = []
        partial: List[StoredRecord] = []
        with self._lock:
            table = self._table(record_type)
            for record_id in sorted(table):
                data = table[record_id]
                stored = data.get(field)
                if stored is None:
                    continue
                normalized = normalize_text(stored)
                if needle not in normalized or not matches_filters(data, filters):
                    continue
                bucket = exact if normalized == needle else partial
                bucket.append(StoredRecord(record_id, record_type, copy.deepcopy(data)))
        results = exact + partial
        return results[:limit] if limit else results

    def get(self, record_type: str, record_id: Any) -> Optional[StoredRecord]:
        with self._lock:
            data = self._table(record_type).get(record_id)
            if data is None:
                return None
            return StoredRecord(record_id, record_type, copy.deepcopy(data))

    def _insert(self, record_type: str, data: Mapping[str, Any]) -> int:
        table = self._table(record_type)
        record_id = self._next_ids[record_type]
        self._next_ids[record_type] = record_id + 1
        table[record_id] = copy.deepcopy(dict(data))
        return record_id

    def create(self, record_type: str, data: Mapping[str, Any]) -> Any:
        with self._lock:
            record_id = self._insert(record_type, data)
        _record_store_event(
            "memory.create.complete",
            {"record_type": record_type, "record_id": record_id},
        )
        return record_id

    def find_by_unique(
        self,
        record_type: str,
        unique_field: str,
        value: Any,
        scope: Optional[Mapping[str, Any]] = None,
    ) -> Optional[int]:
        key = normalize_text(value)
        with self._lock:
            for record_id, data in sorted(self._table(record_type).items()):
                stored = data.get(unique_field)
                if stored is None or normalize_text(stored) != key:
                    continue
                if matches_filters(data, scope):
                    return record_id
        return None

    def create_if_absent(
        self,
        record_type: str,
        unique_field: str,
        data: Mapping[str, Any],
        *,
        scope: Optional[Mapping[str, Any]] = None,
    ) -> Tuple[Any, bool]:
        with self._lock:
            existing = self.find_by_unique(
                record_type, unique_field, data.get(unique_field), scope
            )
            if existing is not None:
                _record_store_event(
                    "memory.create.conflict",
                    {
                        "record_type": record_type,
                        "unique_field": unique_field,
                        "existing_id": existing,
                    },
                )
                return existing, False
            record_id = self._insert(record_type, data)
        _record_store_event(
            "memory.create.complete",
            {"record_type": record_type, "record_id": record_id},
        )
        return record_id, True

    def update(
        self,
        record_type: str,
        record_id: Any,
        updates: Mapping[str, Any],
        *,
        remove: Sequence[str] = (),
    ) -> bool:
        with self._lock:
            data = self._table(record_type).get(record_id)
            if data is None:
                return False
            for key in remove:
                data.pop(key, None)
            data.update(copy.deepcopy(dict(updates)))
        _record_store_event(
            "memory.update.complete",
            {"record_type": record_type, "record_id": record_id, "fields": sorted(updates)},
        )
        return True

    def count(self, record_type: str) -> int:
        with self._lock:
            return len(self._table(record_type))

    def all(self, record_type: str) -> List[StoredRecord]:
        with self._lock:
            return [
                StoredRecord(record_id, record_type, copy.deepcopy(data))
                for record_id, data in sorted(self._table(record_type).items())
            ]
