"""Orchestrator resolving one textual value to a record id.

For each value the engine searches (record store and, where configured, the
semantic index), ranks the merged candidates, applies the threshold policy
and then reuses, asks, or creates. Records it creates may have their own
relationship fields resolved one level deep.
"""

from concurrent.futures import ThreadPoolExecutor
from typing import TYPE_CHECKING, Any, Dict, List, Mapping, Optional, Sequence, Tuple

from tether.errors import (
    CreationConflict,
    CreationValidationFailure,
    TransientSearchFailure,
    UnknownRecordType,
)
from tether.resolution.candidates import CandidateStore
from tether.resolution.config import ResolutionConfig
from tether.resolution.discovery import select_search_source
from tether.resolution.models import (
    CREATE_NEW,
    AwaitingChoice,
    Candidate,
    Created,
    FieldResolutionSpec,
    ResolutionContext,
    ResolutionDecision,
    ResolutionLog,
    Reused,
    Unresolved,
    UnresolvedReason,
)
from tether.resolution.nested import NestedArrayResolver
from tether.resolution.policy import DecisionPolicy, PolicyAction
from tether.resolution.scoring import SimilarityScorer
from tether.resolution.synthesis import RecordSynthesizer
from tether.resolution.utils import _record_resolution_event, extract_text, join_path

if TYPE_CHECKING:
    from tether.records.base import RecordStore
    from tether.resolution.semantic import SemanticCandidateSource
    from tether.schema import RecordTypeRegistry


class ResolutionEngine:
    """Resolves textual references to record ids.

    Args:
        store: Record store searched and written to
        semantic: Optional semantic candidate source
        registry: Optional record type schemas and custom resolvers
        config: Resolution configuration (uses defaults if not provided)
        synthesizer: Optional RecordSynthesizer; built from ``registry``
            and ``config`` when omitted
    """

    def __init__(
        self,
        store: "RecordStore",
        *,
        semantic: Optional["SemanticCandidateSource"] = None,
        registry: Optional["RecordTypeRegistry"] = None,
        config: Optional[ResolutionConfig] = None,
        synthesizer: Optional[RecordSynthesizer] = None,
        scorer: Optional[SimilarityScorer] = None,
    ):
        self.store = store
        self.semantic = semantic
        self.registry = registry
        self.config = config or ResolutionConfig()
        self.candidates = CandidateStore(store, self.config)
        self.synthesizer = synthesizer or RecordSynthesizer(
            registry,
            normalize_names=self.config.normalize_created_names,
        )
        self.scorer = scorer or SimilarityScorer()
        self.nested = NestedArrayResolver(self)

    def policy_for(self, record_type: str) -> DecisionPolicy:
        return DecisionPolicy.from_config(self.config, record_type)

    # ========== Field-map level ==========

    def resolve_field_map(
        self,
        field_map: Dict[str, Any],
        specs: Mapping[str, FieldResolutionSpec],
        log: ResolutionLog,
        *,
        prefix: str = "",
        depth: int = 0,
        choices: Optional[Mapping[str, Any]] = None,
    ) -> Dict[str, Any]:
        """Resolve every spec'd field of ``field_map`` in place and return it."""
        choices = choices or {}
        for field_name, spec in specs.items():
            path = join_path(prefix, field_name)
            self.resolve_field(
                field_map,
                field_name,
                spec,
                log,
                path=path,
                depth=depth,
                choice=choices.get(path),
            )
        return field_map

    def resolve_field(
        self,
        field_map: Dict[str, Any],
        field_name: str,
        spec: FieldResolutionSpec,
        log: ResolutionLog,
        *,
        path: Optional[str] = None,
        depth: int = 0,
        choice: Any = None,
    ) -> Optional[ResolutionDecision]:
        """Resolve one relationship field of ``field_map`` in place.

        Fields that already hold a non-text id are left alone and nothing is
        logged. A missing value is logged only for required fields.
        """
        path = path or field_name
        current = field_map.get(field_name)
        if current is not None and not isinstance(current, str):
            return None

        source_key = select_search_source(field_name, spec, field_map)
        value = extract_text(field_map, source_key)
        if value is None and (choice is None or choice is CREATE_NEW):
            if spec.required:
                decision = Unresolved(UnresolvedReason.MISSING_VALUE, {"field": field_name})
                log.record(path, decision, required=True)
                return decision
            return None

        context = ResolutionContext(
            value=value or "",
            spec=spec,
            field_map=field_map,
            field_path=path,
            source_key=source_key,
            depth=depth,
        )
        decision = self.resolve(context, log, choice=choice)
        self._apply(field_map, field_name, source_key, decision)
        return decision

    @staticmethod
    def _apply(
        field_map: Dict[str, Any],
        field_name: str,
        source_key: Optional[str],
        decision: ResolutionDecision,
    ) -> None:
        if decision.resolved_id is not None:
            field_map[field_name] = decision.resolved_id
            if source_key is not None and source_key != field_name:
                field_map.pop(source_key, None)
        elif isinstance(decision, Unresolved) and source_key == field_name:
            field_map.pop(field_name, None)

    # ========== Single value ==========

    def resolve(
        self,
        context: ResolutionContext,
        log: Optional[ResolutionLog] = None,
        choice: Any = None,
    ) -> ResolutionDecision:
        """Resolve one value; the decision is appended to ``log`` when given.

        ``choice`` resumes an earlier AwaitingChoice: a record id is reused
        without searching, ``CREATE_NEW`` goes straight to creation.
        """
        if choice is CREATE_NEW:
            decision = self._create(context, log, attempt=0)
        elif choice is not None:
            decision = self._use_choice(context, choice)
        else:
            decision = self._resolve_unprompted(context, log)

        if log is not None:
            log.record(context.field_path, decision, required=context.spec.required)
        self._emit_decision(context, decision)
        return decision

    def _emit_decision(self, context: ResolutionContext, decision: ResolutionDecision) -> None:
        payload: Dict[str, Any] = {
            "field_path": context.field_path,
            "record_type": context.spec.record_type,
            "depth": context.depth,
        }
        if isinstance(decision, Reused):
            payload.update({"id": decision.id, "score": decision.score, "chosen": decision.chosen})
        elif isinstance(decision, Created):
            payload["id"] = decision.id
        elif isinstance(decision, AwaitingChoice):
            payload["candidate_ids"] = [candidate.id for candidate in decision.candidates]
        elif isinstance(decision, Unresolved):
            payload.update({"reason": decision.reason.value, "detail": dict(decision.detail)})
        _record_resolution_event(f"field.{decision.kind}", payload)

    def _use_choice(self, context: ResolutionContext, choice: Any) -> ResolutionDecision:
        record_type = context.spec.record_type
        try:
            record = self.store.get(record_type, choice)
        except UnknownRecordType:
            return Unresolved(UnresolvedReason.UNKNOWN_RECORD_TYPE, {"record_type": record_type})
        except TransientSearchFailure as exc:
            return Unresolved(UnresolvedReason.SEARCH_UNAVAILABLE, {"error": str(exc)})
        if record is None:
            return Unresolved(UnresolvedReason.NO_MATCH, {"chosen_id": choice})
        return Reused(id=record.id, chosen=True)

    def _resolve_unprompted(
        self,
        context: ResolutionContext,
        log: Optional[ResolutionLog],
    ) -> ResolutionDecision:
        spec = context.spec
        resolver = self.registry.resolver_for(spec.record_type) if self.registry else None
        if resolver is None:
            return self._search_and_decide(context, log, attempt=0)

        try:
            record_id = resolver.resolve(context.value, context)
        except Exception as exc:
            _record_resolution_event(
                "resolver.error",
                {"record_type": spec.record_type, "error": str(exc)},
            )
            return Unresolved(UnresolvedReason.RESOLVER_FAILED, {"error": str(exc)})
        if record_id is not None:
            return Reused(id=record_id)
        if spec.create_if_missing:
            return self._create(context, log, attempt=0)
        return Unresolved(UnresolvedReason.NO_MATCH, {"value": context.value})

    def _search_and_decide(
        self,
        context: ResolutionContext,
        log: Optional[ResolutionLog],
        attempt: int,
    ) -> ResolutionDecision:
        spec = context.spec
        try:
            candidates = self.search(spec, context.value)
        except UnknownRecordType as exc:
            return Unresolved(UnresolvedReason.UNKNOWN_RECORD_TYPE, {"record_type": exc.record_type})
        except TransientSearchFailure as exc:
            return Unresolved(UnresolvedReason.SEARCH_UNAVAILABLE, {"error": str(exc)})

        outcome = self.policy_for(spec.record_type).decide(candidates, spec.create_if_missing)
        if outcome.action is PolicyAction.REUSE:
            top = outcome.top
            return Reused(id=top.id, score=top.score, source=top.source)
        if outcome.action is PolicyAction.ASK:
            return AwaitingChoice(candidates=outcome.candidates)
        if outcome.action is PolicyAction.CREATE:
            return self._create(context, log, attempt)
        return Unresolved(
            UnresolvedReason.NO_MATCH,
            {"value": context.value, "best_score": outcome.best_score},
        )

    # ========== Searching ==========

    def search(self, spec: FieldResolutionSpec, value: str) -> List[Candidate]:
        """Merged, ranked candidates from the record store and semantic index.

        Raises:
            UnknownRecordType: The store does not hold the record type
            TransientSearchFailure: The store failed and no semantic index
                answered in its place
        """
        if self.config.parallel_search and self.semantic is not None:
            with ThreadPoolExecutor(max_workers=2) as executor:
                semantic_future = executor.submit(self._semantic_search, spec, value)
                store_future = executor.submit(self._store_search, spec, value)
                semantic_hits, semantic_available = semantic_future.result()
                store_hits, store_error = store_future.result()
        else:
            semantic_hits, semantic_available = self._semantic_search(spec, value)
            store_hits, store_error = self._store_search(spec, value)

        if store_error is not None:
            if not semantic_available:
                raise store_error
            _record_resolution_event(
                "search.store_fallback",
                {"record_type": spec.record_type, "error": str(store_error)},
            )
        return self.scorer.merge(semantic_hits, store_hits)

    def _semantic_search(self, spec: FieldResolutionSpec, value: str) -> Tuple[List[Candidate], bool]:
        if self.semantic is None:
            return [], False
        return self.semantic.search_with_status(spec.record_type, value, filters=spec.filters)

    def _store_search(
        self,
        spec: FieldResolutionSpec,
        value: str,
    ) -> Tuple[List[Candidate], Optional[TransientSearchFailure]]:
        try:
            hits = self.candidates.search_fields(
                spec.record_type, spec.search_fields, value, filters=spec.filters
            )
        except TransientSearchFailure as exc:
            return [], exc
        return hits, None

    # ========== Creating ==========

    def _create(
        self,
        context: ResolutionContext,
        log: Optional[ResolutionLog],
        attempt: int,
    ) -> ResolutionDecision:
        spec = context.spec
        record_type = spec.record_type
        try:
            data = self.synthesizer.build(context.value, spec)
            self.synthesizer.validate(data, spec)
        except CreationValidationFailure as exc:
            return Unresolved(UnresolvedReason.CREATION_FAILED, {"error": str(exc), **exc.detail})

        unique_field = spec.primary_search_field
        try:
            record_id, created = self.store.create_if_absent(
                record_type, unique_field, data, scope=dict(spec.filters) or None
            )
        except UnknownRecordType:
            return Unresolved(UnresolvedReason.UNKNOWN_RECORD_TYPE, {"record_type": record_type})
        except CreationConflict as exc:
            record_id, created = exc.existing_id, False
        except Exception as exc:
            _record_resolution_event(
                "create.error",
                {"record_type": record_type, "field_path": context.field_path, "error": str(exc)},
            )
            return Unresolved(UnresolvedReason.CREATION_FAILED, {"error": str(exc)})

        if not created:
            _record_resolution_event(
                "create.conflict",
                {
                    "record_type": record_type,
                    "field_path": context.field_path,
                    "existing_id": record_id,
                    "attempt": attempt,
                },
            )
            if attempt >= self.config.max_creation_retries:
                return Unresolved(
                    UnresolvedReason.CREATION_RACE_EXHAUSTED,
                    {"existing_id": record_id, "attempts": attempt + 1},
                )
            return self._search_and_decide(context, log, attempt + 1)

        self._index_created(record_type, record_id, data)
        if spec.sub_specs and context.depth == 0 and log is not None:
            data = self._resolve_own_relationships(context, record_id, data, log)
        return Created(id=record_id, data=data)

    def _index_created(self, record_type: str, record_id: Any, data: Mapping[str, Any]) -> None:
        if self.semantic is None or not self.semantic.is_enabled(record_type):
            return
        schema = self.registry.get(record_type) if self.registry else None
        if schema is not None:
            text = schema.index_text(data)
        else:
            text = " ".join(str(value) for value in data.values() if isinstance(value, str))
        self.semantic.index_record(record_type, record_id, text)

    def _resolve_own_relationships(
        self,
        context: ResolutionContext,
        record_id: Any,
        data: Dict[str, Any],
        log: ResolutionLog,
    ) -> Dict[str, Any]:
        """Resolve the new record's relationship fields and store the ids.

        Sub-specs of sub-specs are ignored, so creation chains stop here.
        """
        sub_specs = {
            name: sub_spec.without_sub_specs()
            for name, sub_spec in context.spec.sub_specs.items()
        }
        resolved = self.resolve_field_map(
            dict(data),
            sub_specs,
            log,
            prefix=context.field_path,
            depth=context.depth + 1,
        )
        updates = {key: value for key, value in resolved.items() if data.get(key) != value}
        removed: Sequence[str] = [key for key in data if key not in resolved]
        if not updates and not removed:
            return data

        record_type = context.spec.record_type
        try:
            self.store.update(record_type, record_id, updates, remove=removed)
        except Exception as exc:
            _record_resolution_event(
                "sub_resolution.update_error",
                {"record_type": record_type, "record_id": record_id, "error": str(exc)},
            )
            # The links were never stored; supersede the sub-decisions so the
            # log does not report relationships the parent record lacks.
            for key in sub_specs:
                if key not in updates:
                    continue
                log.record(
                    join_path(context.field_path, key),
                    Unresolved(
                        UnresolvedReason.RESOLUTION_ERROR,
                        {
                            "error": str(exc),
                            "error_type": type(exc).__name__,
                            "parent_id": record_id,
                            "resolved_id": updates[key],
                        },
                    ),
                    required=sub_specs[key].required,
                )
            return data
        return resolved
