"""
Tether: entity resolution for records extracted from natural language.

Given a field-map such as ``{"customer": "John Doe", "items": [...]}`` and
resolution specs for its relationship fields, Tether replaces each textual
reference with a record id: reusing a confident match, asking a human when
the match is ambiguous, or creating the record when nothing matches.

Key Features:
- Exact, partial and semantic candidate search with deterministic ranking
- Threshold policy that never merges on medium confidence
- Record synthesis with schema defaults and required-field inference
- Nested array items and one level of relationships on created records
- Conflict-checked creation safe under concurrent sessions
- Event recorder with logging and SQLAlchemy persistence

Example:
    >>> from tether import FieldResolutionSpec, MemoryRecordStore, ResolutionSession
    >>> session = ResolutionSession.create(MemoryRecordStore(["customer"]))
    >>> field_map, log = session.resolve(
    ...     {"customer": "Acme"},
    ...     {"customer_id": FieldResolutionSpec("customer", create_if_missing=True)},
    ... )
"""

from tether.configuration import (
    ObservabilitySettings,
    SemanticIndexSettings,
    TetherConfig,
    apply_env_overrides,
    default_config,
    load_config_from_file,
    render_default_config,
)
from tether.errors import (
    ConfigurationError,
    CreationConflict,
    CreationValidationFailure,
    RecordStoreUnavailable,
    SemanticIndexUnavailable,
    TetherError,
    TransientSearchFailure,
    UnknownRecordType,
)
from tether.factory import create_session
from tether.records import MemoryRecordStore, RecordStore, SQLRecordStore, StoredRecord
from tether.resolution import (
    CREATE_NEW,
    ArrayFieldSpec,
    AwaitingChoice,
    Candidate,
    Created,
    DecisionPolicy,
    FieldResolutionSpec,
    ResolutionConfig,
    ResolutionEngine,
    ResolutionLog,
    ResolutionSession,
    Reused,
    Unresolved,
    UnresolvedReason,
    describe_choice,
    parse_choice_reply,
)
from tether.schema import FieldSchema, RecordTypeRegistry, RecordTypeSchema, load_record_type_file
from tether.semantic import ChromaSemanticIndex, InMemorySemanticIndex, SemanticIndex

__version__ = "0.1.0"

__all__ = [
    "CREATE_NEW",
    "ArrayFieldSpec",
    "AwaitingChoice",
    "Candidate",
    "ChromaSemanticIndex",
    "ConfigurationError",
    "Created",
    "CreationConflict",
    "CreationValidationFailure",
    "DecisionPolicy",
    "FieldResolutionSpec",
    "FieldSchema",
    "InMemorySemanticIndex",
    "MemoryRecordStore",
    "ObservabilitySettings",
    "RecordStore",
    "RecordStoreUnavailable",
    "RecordTypeRegistry",
    "RecordTypeSchema",
    "ResolutionConfig",
    "ResolutionEngine",
    "ResolutionLog",
    "ResolutionSession",
    "Reused",
    "SQLRecordStore",
    "SemanticIndex",
    "SemanticIndexSettings",
    "SemanticIndexUnavailable",
    "StoredRecord",
    "TetherConfig",
    "TetherError",
    "TransientSearchFailure",
    "UnknownRecordType",
    "Unresolved",
    "UnresolvedReason",
    "apply_env_overrides",
    "create_session",
    "default_config",
    "describe_choice",
    "load_record_type_file",
    "load_config_from_file",
    "parse_choice_reply",
    "render_default_config",
]
