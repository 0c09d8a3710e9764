"""Exception hierarchy for Tether."""

from typing import Any, Dict, Optional


class TetherError(Exception):
    """Base error for all Tether failures."""


class ConfigurationError(TetherError):
    """Raised when configuration values or files are invalid."""


class UnknownRecordType(TetherError):
    """Raised when a record type is not registered with the store."""

    def __init__(self, record_type: str) -> None:
        super().__init__(f"Unknown record type: {record_type}")
        self.record_type = record_type


class TransientSearchFailure(TetherError):
    """Raised when a search backend times out or cannot be reached."""


class RecordStoreUnavailable(TransientSearchFailure):
    """Raised when the record store cannot serve a read or write."""


class SemanticIndexUnavailable(TransientSearchFailure):
    """Raised by semantic index backends; never escapes the semantic adapter."""


class CreationConflict(TetherError):
    """Raised when a conflict-checked insert finds an existing record."""

    def __init__(self, record_type: str, existing_id: Any) -> None:
        super().__init__(
            f"{record_type} record already exists with id {existing_id!r}"
        )
        self.record_type = record_type
        self.existing_id = existing_id


class CreationValidationFailure(TetherError):
    """Raised when a synthesized record violates its record type's constraints."""

    def __init__(self, message: str, detail: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.detail = dict(detail or {})


__all__ = [
    "ConfigurationError",
    "CreationConflict",
    "CreationValidationFailure",
    "RecordStoreUnavailable",
    "SemanticIndexUnavailable",
    "TetherError",
    "TransientSearchFailure",
    "UnknownRecordType",
]
