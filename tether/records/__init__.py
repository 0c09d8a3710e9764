"""
Record store backends.

Provides the RecordStore abstract base class plus an in-memory backend and a
SQLAlchemy backend that serves any database URL.
"""

from tether.records.base import RecordStore, StoredRecord, normalize_text
from tether.records.memory import MemoryRecordStore
from tether.records.sql import SQLRecordStore

__all__ = [
    "MemoryRecordStore",
    "RecordStore",
    "SQLRecordStore",
    "StoredRecord",
    "normalize_text",
]
