"""
Record-type metadata and the registry used to look it up.

A ``RecordTypeSchema`` describes the fields of one record type: their types,
which are required, literal or temporal defaults, enum options, and which
fields reference other record types. The ``RecordTypeRegistry`` is the
strategy table the resolution engine consults instead of inspecting record
classes at runtime.

Example:
    >>> registry = RecordTypeRegistry()
    >>> registry.register(RecordTypeSchema.from_dict("customer", {
    ...     "fields": {
    ...         "name": {"type": "string", "required": True},
    ...         "email": {"type": "email"},
    ...         "category_id": {"type": "relationship", "record_type": "category"},
    ...     },
    ... }))
"""

from __future__ import annotations

import json
import logging
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import (
    Any,
    Callable,
    Dict,
    Iterable,
    List,
    Mapping,
    Optional,
    Protocol,
    Tuple,
    runtime_checkable,
)

import yaml

from tether.errors import ConfigurationError, UnknownRecordType
from tether.resolution.models import (
    ArrayFieldSpec,
    FieldResolutionSpec,
    ResolutionContext,
)

FIELD_TYPES = (
    "string",
    "text",
    "email",
    "boolean",
    "integer",
    "number",
    "date",
    "datetime",
    "enum",
    "relationship",
    "array",
)
TEMPORAL_DEFAULTS = ("today", "now")
SUPPORTED_SUFFIXES = {".yaml", ".yml", ".json", ".toml"}

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class FieldSchema:
    """Metadata for one field of a record type."""

    name: str
    type: str = "string"
    required: bool = False
    default: Any = None
    options: Tuple[Any, ...] = ()
    relationship: Optional[FieldResolutionSpec] = None
    item_structure: Optional[Mapping[str, FieldResolutionSpec]] = None
    unique: bool = False

    def __post_init__(self) -> None:
        if self.type not in FIELD_TYPES:
            raise ConfigurationError(f"Field {self.name!r} has unknown type {self.type!r}")
        if self.type == "enum" and not self.options:
            raise ConfigurationError(f"Enum field {self.name!r} declares no options")
        object.__setattr__(self, "options", tuple(self.options))

    @property
    def has_default(self) -> bool:
        return self.default is not None

    @property
    def is_temporal_default(self) -> bool:
        return isinstance(self.default, str) and self.default.lower() in TEMPORAL_DEFAULTS

    @classmethod
    def from_dict(cls, name: str, data: Mapping[str, Any]) -> "FieldSchema":
        field_type = data.get("type", "string")
        relationship = None
        item_structure = None
        try:
            if field_type == "relationship":
                relationship = FieldResolutionSpec.from_dict(data)
            elif field_type == "array" and data.get("item_structure"):
                item_structure = {}
                for sub_name, sub in data["item_structure"].items():
                    if sub.get("type", "relationship") == "relationship":
                        item_structure[sub_name] = FieldResolutionSpec.from_dict(sub)
        except ValueError as exc:
            raise ConfigurationError(f"Field {name!r}: {exc}") from exc
        return cls(
            name=name,
            type=field_type,
            required=bool(data.get("required", False)),
            default=data.get("default"),
            options=tuple(data.get("options") or ()),
            relationship=relationship,
            item_structure=item_structure,
            unique=bool(data.get("unique", False)),
        )


@dataclass(frozen=True)
class RecordTypeSchema:
    """Field metadata for one record type.

    Attributes:
        name: Record type name, as used by the record store
        fields: FieldSchema keyed by field name
        semantic: Whether the record type is semantically indexed
        index_fields: Fields concatenated into the text sent to the semantic index
    """
    name: str
    fields: Mapping[str, FieldSchema] = field(default_factory=dict)
    semantic: bool = False
    index_fields: Tuple[str, ...] = ()

    def field_schema(self, name: str) -> Optional[FieldSchema]:
        return self.fields.get(name)

    def required_fields(self) -> List[FieldSchema]:
        return [schema for schema in self.fields.values() if schema.required]

    def email_fields(self) -> List[str]:
        return [
            name for name, schema in self.fields.items()
            if schema.type == "email" or "email" in name.lower()
        ]

    def field_specs(self) -> Dict[str, FieldResolutionSpec]:
        """Relationship specs declared on this record type, keyed by field name."""
        specs: Dict[str, FieldResolutionSpec] = {}
        for name, schema in self.fields.items():
            if schema.relationship is not None:
                specs[name] = schema.relationship
        return specs

    def array_specs(self) -> Dict[str, ArrayFieldSpec]:
        specs: Dict[str, ArrayFieldSpec] = {}
        for name, schema in self.fields.items():
            if schema.item_structure:
                specs[name] = ArrayFieldSpec(
                    item_specs=dict(schema.item_structure),
                    required=schema.required,
                )
        return specs

    def index_text(self, data: Mapping[str, Any]) -> str:
        """Text sent to the semantic index for a stored record."""
        names = self.index_fields or tuple(
            name for name, schema in self.fields.items()
            if schema.type in ("string", "text", "email")
        )
        parts = [str(data[name]) for name in names if data.get(name) not in (None, "")]
        return " ".join(parts)

    @classmethod
    def from_dict(cls, name: str, data: Mapping[str, Any]) -> "RecordTypeSchema":
        fields = {
            field_name: FieldSchema.from_dict(field_name, field_data)
            for field_name, field_data in (data.get("fields") or {}).items()
        }
        return cls(
            name=name,
            fields=fields,
            semantic=bool(data.get("semantic", False)),
            index_fields=tuple(data.get("index_fields") or ()),
        )


@runtime_checkable
class HasFieldSpecs(Protocol):
    """Anything that can describe its own relationship fields."""

    def field_specs(self) -> Dict[str, FieldResolutionSpec]:
        ...

    def array_specs(self) -> Dict[str, ArrayFieldSpec]:
        ...


@runtime_checkable
class Resolvable(Protocol):
    """Custom resolver for one record type.

    Returns the id of the record ``value`` refers to, or None when it
    cannot tell.
    """

    def resolve(self, value: str, context: ResolutionContext) -> Optional[Any]:
        ...


ResolverFunction = Callable[[str, ResolutionContext], Optional[Any]]


class _FunctionResolver:
    __slots__ = ("_func",)

    def __init__(self, func: ResolverFunction) -> None:
        self._func = func

    def resolve(self, value: str, context: ResolutionContext) -> Optional[Any]:
        return self._func(value, context)


class RecordTypeRegistry:
    """Schemas and custom resolvers keyed by record type."""

    def __init__(self, schemas: Optional[Iterable[RecordTypeSchema]] = None) -> None:
        self._schemas: Dict[str, RecordTypeSchema] = {}
        self._resolvers: Dict[str, Resolvable] = {}
        for schema in schemas or ():
            self.register(schema)

    def register(self, schema: RecordTypeSchema) -> RecordTypeSchema:
        self._schemas[schema.name] = schema
        return schema

    def register_resolver(self, record_type: str, resolver: Any) -> None:
        """Attach a custom resolver object or ``(value, context) -> id`` callable."""
        if isinstance(resolver, Resolvable):
            self._resolvers[record_type] = resolver
        elif callable(resolver):
            self._resolvers[record_type] = _FunctionResolver(resolver)
        else:
            raise ConfigurationError(
                f"Resolver for {record_type!r} must define resolve() or be callable"
            )

    def get(self, record_type: str) -> Optional[RecordTypeSchema]:
        return self._schemas.get(record_type)

    def require(self, record_type: str) -> RecordTypeSchema:
        schema = self._schemas.get(record_type)
        if schema is None:
            raise UnknownRecordType(record_type)
        return schema

    def resolver_for(self, record_type: str) -> Optional[Resolvable]:
        return self._resolvers.get(record_type)

    def names(self) -> List[str]:
        return sorted(self._schemas)

    def semantic_types(self) -> List[str]:
        return sorted(name for name, schema in self._schemas.items() if schema.semantic)

    def __contains__(self, record_type: object) -> bool:
        return record_type in self._schemas

    def __len__(self) -> int:
        return len(self._schemas)


def _load_raw_definitions(path: Path) -> Mapping[str, Any]:
    suffix = path.suffix.lower()
    if suffix not in SUPPORTED_SUFFIXES:
        raise ConfigurationError(f"Unsupported record type file: {path}")
    LOGGER.debug("Loading record type file: %s", path)
    with path.open("rb") as file_obj:
        if suffix in {".yaml", ".yml"}:
            data = yaml.safe_load(file_obj)
        elif suffix == ".json":
            data = json.load(file_obj)
        else:
            data = tomllib.load(file_obj)

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigurationError(f"Record type file {path} has unsupported structure: {type(data)!r}")
    if isinstance(data.get("record_types"), dict):
        return data["record_types"]
    return data


def load_record_type_file(path: Path | str) -> List[RecordTypeSchema]:
    """Read record type definitions from a YAML, JSON or TOML file.

    The file maps record type names to definitions, either at the top level
    or under a ``record_types`` key.
    """
    path = Path(path).expanduser()
    if not path.exists():
        raise ConfigurationError(f"Record type file not found: {path}")
    return [
        RecordTypeSchema.from_dict(name, definition or {})
        for name, definition in _load_raw_definitions(path).items()
    ]
