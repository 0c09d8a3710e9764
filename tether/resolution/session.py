"""Top-level entry point: resolve every reference in one field-map."""

import copy
from typing import TYPE_CHECKING, Any, Dict, Mapping, Optional, Tuple, Union

from tether.resolution.config import ResolutionConfig
from tether.resolution.discovery import SpecMap, discover_field_specs
from tether.resolution.engine import ResolutionEngine
from tether.resolution.models import ArrayFieldSpec, FieldResolutionSpec, ResolutionLog
from tether.resolution.semantic import SemanticCandidateSource
from tether.resolution.synthesis import RecordSynthesizer
from tether.resolution.utils import _record_resolution_event

if TYPE_CHECKING:
    from tether.records.base import RecordStore
    from tether.schema import RecordTypeRegistry
    from tether.semantic.base import SemanticIndex


class ResolutionSession:
    """Resolves the relationship and array fields of field-maps.

    The input field-map is never mutated: ``resolve`` works on a deep copy
    and returns it with the decision log. Relationship fields are resolved
    first, then array fields.

    Example:
        >>> session = ResolutionSession.create(MemoryRecordStore(["customer"]))
        >>> field_map, log = session.resolve(
        ...     {"name": "john@example.com"},
        ...     {"customer_id": FieldResolutionSpec(
        ...         "customer", search_fields=("email", "name"), create_if_missing=True)},
        ... )
        >>> field_map
        {'customer_id': 1}
    """

    def __init__(self, engine: ResolutionEngine):
        self.engine = engine

    @classmethod
    def create(
        cls,
        store: "RecordStore",
        *,
        registry: Optional["RecordTypeRegistry"] = None,
        semantic_indexes: Optional[Mapping[str, "SemanticIndex"]] = None,
        config: Optional[ResolutionConfig] = None,
        context_fields: Optional[Mapping[str, Any]] = None,
    ) -> "ResolutionSession":
        """Wire an engine from its collaborators."""
        config = config or ResolutionConfig()
        semantic = None
        if semantic_indexes:
            semantic = SemanticCandidateSource(store, semantic_indexes, config)
        synthesizer = RecordSynthesizer(
            registry,
            context_fields=context_fields,
            normalize_names=config.normalize_created_names,
        )
        engine = ResolutionEngine(
            store,
            semantic=semantic,
            registry=registry,
            config=config,
            synthesizer=synthesizer,
        )
        return cls(engine)

    @property
    def registry(self) -> Optional["RecordTypeRegistry"]:
        return self.engine.registry

    def resolve(
        self,
        field_map: Mapping[str, Any],
        specs: Mapping[str, Union[FieldResolutionSpec, ArrayFieldSpec]],
        choices: Optional[Mapping[str, Any]] = None,
    ) -> Tuple[Dict[str, Any], ResolutionLog]:
        """Resolve ``field_map`` against ``specs``.

        Args:
            field_map: Extracted values, typically text for relationship fields
            specs: FieldResolutionSpec for relationship fields and
                ArrayFieldSpec for array-of-items fields, keyed by field name
            choices: Answers to earlier AwaitingChoice decisions keyed by
                field path: a record id, or ``CREATE_NEW``

        Returns:
            ``(resolved copy of field_map, ResolutionLog)``
        """
        result = copy.deepcopy(dict(field_map))
        log = ResolutionLog()
        field_specs = {
            name: spec for name, spec in specs.items() if isinstance(spec, FieldResolutionSpec)
        }
        array_specs = {
            name: spec for name, spec in specs.items() if isinstance(spec, ArrayFieldSpec)
        }

        self.engine.resolve_field_map(result, field_specs, log, choices=choices)
        self.engine.nested.resolve(result, array_specs, log, choices=choices)

        _record_resolution_event(
            "session.complete",
            {
                "fields": sorted(field_specs),
                "array_fields": sorted(array_specs),
                "decisions": len(log),
                "pending_choices": sorted(log.pending_choices()),
                "blocked": log.is_blocked,
            },
        )
        return result, log

    def discover_specs(
        self,
        record_type: str,
        field_map: Optional[Mapping[str, Any]] = None,
    ) -> SpecMap:
        """Relationship and array specs for ``record_type`` from the registry.

        Raises:
            UnknownRecordType: ``record_type`` is not registered
            ValueError: The session has no registry
        """
        if self.registry is None:
            raise ValueError("discover_specs requires a RecordTypeRegistry")
        schema = self.registry.require(record_type)
        return discover_field_specs(schema, registry=self.registry, field_map=field_map)

    def resolve_record(
        self,
        record_type: str,
        field_map: Mapping[str, Any],
        choices: Optional[Mapping[str, Any]] = None,
    ) -> Tuple[Dict[str, Any], ResolutionLog]:
        """Resolve a field-map destined for ``record_type`` using its declared specs."""
        return self.resolve(field_map, self.discover_specs(record_type, field_map), choices)
