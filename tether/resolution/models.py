"""Data models for resolution."""

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, ClassVar, Dict, Iterator, List, Mapping, Optional, Tuple

from tether.resolution.utils import is_email_field_name

SOURCE_SEMANTIC = "semantic"
SOURCE_EXACT = "exact"
SOURCE_PARTIAL = "partial"

# Lower value wins when scores tie.
SOURCE_PRIORITY: Dict[str, int] = {
    SOURCE_SEMANTIC: 0,
    SOURCE_EXACT: 1,
    SOURCE_PARTIAL: 2,
}


def id_sort_key(record_id: Any) -> Tuple[int, float, str]:
    """Ascending order for ids that may be integers or strings."""
    if isinstance(record_id, bool):
        return (1, 0.0, str(record_id))
    if isinstance(record_id, (int, float)):
        return (0, float(record_id), "")
    return (1, 0.0, str(record_id))


@dataclass(frozen=True)
class Candidate:
    """A stored record proposed as the referent of a textual value.

    Attributes:
        id: Record id in the record store
        data: Field-map of the stored record
        score: Similarity in [0, 1]
        source: 'semantic', 'exact' or 'partial'
    """
    id: Any
    data: Dict[str, Any]
    score: float
    source: str

    def __post_init__(self) -> None:
        if not 0.0 <= self.score <= 1.0:
            raise ValueError(f"Candidate score must be within [0, 1], got {self.score}")
        if self.source not in SOURCE_PRIORITY:
            raise ValueError(f"Unknown candidate source: {self.source!r}")

    def sort_key(self) -> Tuple[float, int, Tuple[int, float, str]]:
        return (-self.score, SOURCE_PRIORITY[self.source], id_sort_key(self.id))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "data": dict(self.data),
            "score": self.score,
            "source": self.source,
        }


@dataclass(frozen=True)
class FieldResolutionSpec:
    """Static resolution settings for one relationship field.

    Attributes:
        record_type: Target record type the text should resolve to
        search_fields: Ordered fields of the target record to search
        create_if_missing: Whether a new record may be synthesized
        defaults: Field values applied to synthesized records
        override_defaults: Let ``defaults`` overwrite type-inferred values
        sub_specs: Relationship specs applied to a newly created record
        source_field: Explicit key in the enclosing field-map holding the text
        primary_field: Field of the new record that receives the text
        required: Whether an unresolved value blocks the caller
        filters: Equality constraints candidates must satisfy
        display_fields: Extra fields shown when asking a human to choose
        friendly_name: Human label for prompts
    """
    record_type: str
    search_fields: Tuple[str, ...] = ("name",)
    create_if_missing: bool = False
    defaults: Mapping[str, Any] = field(default_factory=dict)
    override_defaults: bool = False
    sub_specs: Mapping[str, "FieldResolutionSpec"] = field(default_factory=dict)
    source_field: Optional[str] = None
    primary_field: Optional[str] = None
    required: bool = False
    filters: Mapping[str, Any] = field(default_factory=dict)
    display_fields: Tuple[str, ...] = ()
    friendly_name: Optional[str] = None

    def __post_init__(self) -> None:
        if not self.record_type:
            raise ValueError("FieldResolutionSpec requires a record_type")
        search_fields = tuple(self.search_fields)
        if not search_fields:
            raise ValueError(f"{self.record_type}: search_fields cannot be empty")
        if self.primary_field and self.primary_field not in search_fields:
            search_fields = search_fields + (self.primary_field,)
        object.__setattr__(self, "search_fields", search_fields)
        object.__setattr__(self, "display_fields", tuple(self.display_fields))

    @property
    def primary_search_field(self) -> str:
        """Field that receives the raw value on a synthesized record.

        An explicit ``primary_field`` wins; otherwise the first search field
        that is not an email field, falling back to the first search field.
        """
        if self.primary_field:
            return self.primary_field
        for name in self.search_fields:
            if not is_email_field_name(name):
                return name
        return self.search_fields[0]

    def without_sub_specs(self) -> "FieldResolutionSpec":
        return replace(self, sub_specs={})

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "FieldResolutionSpec":
        """Build a spec from a plain mapping, e.g. one loaded from a config file."""
        record_type = data.get("record_type") or data.get("model")
        if not record_type:
            raise ValueError("Relationship config requires 'record_type'")
        search_fields = data.get("search_fields")
        if search_fields is None:
            search_fields = [data.get("search_field", "name")]
        sub_specs = {
            name: cls.from_dict(sub) for name, sub in (data.get("sub_specs") or {}).items()
        }
        return cls(
            record_type=record_type,
            search_fields=tuple(search_fields),
            create_if_missing=bool(data.get("create_if_missing", False)),
            defaults=dict(data.get("defaults") or {}),
            override_defaults=bool(data.get("override_defaults", False)),
            sub_specs=sub_specs,
            source_field=data.get("field") or data.get("source_field"),
            primary_field=data.get("primary_field"),
            required=bool(data.get("required", False)),
            filters=dict(data.get("filters") or {}),
            display_fields=tuple(data.get("display_fields") or ()),
            friendly_name=data.get("friendly_name"),
        )


@dataclass(frozen=True)
class ArrayFieldSpec:
    """An array of structured items whose sub-fields reference other records."""

    item_specs: Mapping[str, FieldResolutionSpec]
    required: bool = False


@dataclass
class ResolutionContext:
    """Live input for resolving one value; discarded after one decision."""

    value: str
    spec: FieldResolutionSpec
    field_map: Mapping[str, Any]
    field_path: str
    source_key: Optional[str] = None
    depth: int = 0


class UnresolvedReason(str, Enum):
    NO_MATCH = "no_match"
    MISSING_VALUE = "missing_value"
    SEARCH_UNAVAILABLE = "search_unavailable"
    UNKNOWN_RECORD_TYPE = "unknown_record_type"
    CREATION_FAILED = "creation_failed"
    CREATION_RACE_EXHAUSTED = "creation_race_exhausted"
    RESOLVER_FAILED = "resolver_failed"
    RESOLUTION_ERROR = "resolution_error"


class ResolutionDecision:
    """Base class for the outcome of resolving one value."""

    kind: ClassVar[str] = ""

    @property
    def resolved_id(self) -> Optional[Any]:
        return None

    @property
    def is_resolved(self) -> bool:
        return self.resolved_id is not None

    def to_dict(self) -> Dict[str, Any]:
        raise NotImplementedError


@dataclass(frozen=True)
class Reused(ResolutionDecision):
    id: Any
    score: Optional[float] = None
    source: Optional[str] = None
    chosen: bool = False

    kind: ClassVar[str] = "reused"

    @property
    def resolved_id(self) -> Any:
        return self.id

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind,
            "id": self.id,
            "score": self.score,
            "source": self.source,
            "chosen": self.chosen,
        }


@dataclass(frozen=True)
class AwaitingChoice(ResolutionDecision):
    candidates: Tuple[Candidate, ...]

    kind: ClassVar[str] = "awaiting_choice"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind,
            "candidates": [candidate.to_dict() for candidate in self.candidates],
        }


@dataclass(frozen=True)
class Created(ResolutionDecision):
    id: Any
    data: Dict[str, Any]

    kind: ClassVar[str] = "created"

    @property
    def resolved_id(self) -> Any:
        return self.id

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind, "id": self.id, "data": dict(self.data)}


@dataclass(frozen=True)
class Unresolved(ResolutionDecision):
    reason: UnresolvedReason
    detail: Dict[str, Any] = field(default_factory=dict)

    kind: ClassVar[str] = "unresolved"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind,
            "reason": self.reason.value,
            "detail": dict(self.detail),
        }


class _CreateNewChoice:
    """Choice value telling the engine to skip search and create a record."""

    _instance: Optional["_CreateNewChoice"] = None

    def __new__(cls) -> "_CreateNewChoice":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "CREATE_NEW"


CREATE_NEW = _CreateNewChoice()


@dataclass(frozen=True)
class LogEntry:
    field_path: str
    decision: ResolutionDecision
    timestamp: datetime
    required: bool = False

    @property
    def is_blocking(self) -> bool:
        if not self.required:
            return False
        return isinstance(self.decision, (AwaitingChoice, Unresolved))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "field_path": self.field_path,
            "decision": self.decision.to_dict(),
            "timestamp": self.timestamp.isoformat(),
            "required": self.required,
        }


class ResolutionLog:
    """Append-only record of every decision made during one resolution pass."""

    def __init__(self) -> None:
        self._entries: List[LogEntry] = []

    def record(
        self,
        field_path: str,
        decision: ResolutionDecision,
        *,
        required: bool = False,
        timestamp: Optional[datetime] = None,
    ) -> LogEntry:
        entry = LogEntry(
            field_path=field_path,
            decision=decision,
            timestamp=timestamp or datetime.now(timezone.utc),
            required=required,
        )
        self._entries.append(entry)
        return entry

    @property
    def entries(self) -> Tuple[LogEntry, ...]:
        return tuple(self._entries)

    def __iter__(self) -> Iterator[LogEntry]:
        return iter(tuple(self._entries))

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, field_path: str) -> Optional[ResolutionDecision]:
        """Return the latest decision recorded for ``field_path``."""
        for entry in reversed(self._entries):
            if entry.field_path == field_path:
                return entry.decision
        return None

    def paths(self) -> List[str]:
        return [entry.field_path for entry in self._entries]

    def pending_choices(self) -> Dict[str, AwaitingChoice]:
        return {
            entry.field_path: entry.decision
            for entry in self._entries
            if isinstance(entry.decision, AwaitingChoice)
        }

    def blocking_entries(self) -> List[LogEntry]:
        return [entry for entry in self._entries if entry.is_blocking]

    @property
    def is_blocked(self) -> bool:
        return any(entry.is_blocking for entry in self._entries)

    def to_list(self) -> List[Dict[str, Any]]:
        return [entry.to_dict() for entry in self._entries]
