"""Tests for the resolution engine."""

import threading

import pytest

from tether.errors import RecordStoreUnavailable, SemanticIndexUnavailable
from tether.records import MemoryRecordStore
from tether.resolution import (
    CREATE_NEW,
    AwaitingChoice,
    Created,
    FieldResolutionSpec,
    ResolutionConfig,
    ResolutionEngine,
    ResolutionLog,
    Reused,
    SemanticCandidateSource,
    UnresolvedReason,
)
from tether.schema import FieldSchema, RecordTypeRegistry, RecordTypeSchema
from tether.semantic import InMemorySemanticIndex, create_ngram_embedding_function

RECORD_TYPES = ("customer", "category", "product", "invoice")


def _resolve(engine, field_map, field_name, spec, **kwargs):
    log = ResolutionLog()
    decision = engine.resolve_field(field_map, field_name, spec, log, **kwargs)
    return decision, log


class TestReuseAndCreate:
    """Search, decide, create."""

    def test_creates_then_reuses_email_reference(self, engine, memory_store, customer_spec):
        first_map = {"name": "john@example.com"}

        first, log = _resolve(engine, first_map, "customer_id", customer_spec)

        assert isinstance(first, Created)
        assert first.id == 1
        assert first.data == {"name": "john@example.com", "email": "john@example.com"}
        assert first_map == {"customer_id": 1}
        assert log.get("customer_id") == first

        second_map = {"name": "john@example.com"}
        second, _ = _resolve(engine, second_map, "customer_id", customer_spec)

        assert isinstance(second, Reused)
        assert second.id == 1
        assert second.score == 1.0
        assert second.source == "exact"
        assert second_map == {"customer_id": 1}
        assert memory_store.count("customer") == 1

    def test_reuse_performs_no_writes(self, engine, memory_store, customer_spec, mocker):
        memory_store.create("customer", {"name": "Acme", "email": "ops@acme.io"})
        create_spy = mocker.spy(memory_store, "create_if_absent")
        update_spy = mocker.spy(memory_store, "update")

        for _ in range(3):
            decision, _ = _resolve(engine, {"customer_id": "Acme"}, "customer_id", customer_spec)
            assert decision == Reused(id=1, score=1.0, source="exact")

        assert create_spy.call_count == 0
        assert update_spy.call_count == 0

    def test_medium_confidence_asks(self, engine, memory_store, customer_spec):
        memory_store.create("customer", {"name": "John Doe"})
        config = ResolutionConfig(partial_match_score=0.8)
        asking_engine = ResolutionEngine(memory_store, config=config)
        field_map = {"customer": "John"}

        decision, log = _resolve(asking_engine, field_map, "customer_id", customer_spec)

        assert isinstance(decision, AwaitingChoice)
        assert [c.id for c in decision.candidates] == [1]
        assert field_map == {"customer": "John"}
        assert list(log.pending_choices()) == ["customer_id"]
        assert memory_store.count("customer") == 1

    def test_low_confidence_without_create_is_no_match(self, engine, memory_store):
        memory_store.create("product", {"name": "Widget Deluxe"})
        spec = FieldResolutionSpec("product")
        field_map = {"product_id": "Widget"}

        decision, _ = _resolve(engine, field_map, "product_id", spec)

        assert decision.reason is UnresolvedReason.NO_MATCH
        assert decision.detail["best_score"] == 0.6
        assert field_map == {}

    def test_existing_ids_are_left_alone(self, engine, customer_spec):
        field_map = {"customer_id": 12, "customer": "Acme"}

        decision, log = _resolve(engine, field_map, "customer_id", customer_spec)

        assert decision is None
        assert len(log) == 0
        assert field_map == {"customer_id": 12, "customer": "Acme"}

    def test_missing_value_logged_only_when_required(self, engine, customer_spec):
        optional, optional_log = _resolve(engine, {}, "customer_id", customer_spec)
        required_spec = FieldResolutionSpec("customer", required=True)
        required, required_log = _resolve(engine, {}, "customer_id", required_spec)

        assert optional is None
        assert len(optional_log) == 0
        assert required.reason is UnresolvedReason.MISSING_VALUE
        assert required_log.is_blocked

    def test_explicit_source_field(self, engine):
        spec = FieldResolutionSpec("product", source_field="product_label", create_if_missing=True)
        field_map = {"product_label": "Widget"}

        decision, _ = _resolve(engine, field_map, "product_id", spec)

        assert isinstance(decision, Created)
        assert field_map == {"product_id": 1}


    @pytest.mark.parametrize("store_name", ["memory_store", "sql_store"])
    def test_exact_match_behind_many_partial_matches_is_reused(self, request, store_name):
        store = request.getfixturevalue(store_name)
        config = ResolutionConfig()
        for index in range(config.candidate_limit):
            store.create("customer", {"name": f"Acme {index}"})
        exact_id = store.create("customer", {"name": "Acme"})
        engine = ResolutionEngine(store, config=config)
        spec = FieldResolutionSpec("customer", create_if_missing=True)

        decision, _ = _resolve(engine, {"customer": "Acme"}, "customer_id", spec)

        assert decision == Reused(id=exact_id, score=1.0, source="exact")

    @pytest.mark.parametrize("store_name", ["memory_store", "sql_store"])
    def test_same_name_in_another_scope_is_created(self, request, store_name):
        store = request.getfixturevalue(store_name)
        other_scope_id = store.create("customer", {"name": "Acme", "workspace_id": 1})
        engine = ResolutionEngine(store)
        spec = FieldResolutionSpec("customer", filters={"workspace_id": 2}, create_if_missing=True)

        created, _ = _resolve(engine, {"customer": "Acme"}, "customer_id", spec)
        reused, _ = _resolve(engine, {"customer": "acme"}, "customer_id", spec)

        assert isinstance(created, Created)
        assert created.id != other_scope_id
        assert created.data == {"name": "Acme", "workspace_id": 2}
        assert reused == Reused(id=created.id, score=1.0, source="exact")


class TestFailures:
    """Every failure is a decision, not an exception."""

    def test_unknown_record_type(self, engine):
        spec = FieldResolutionSpec("supplier", create_if_missing=True)
        field_map = {"supplier_id": "Acme", "note": "keep"}

        decision, _ = _resolve(engine, field_map, "supplier_id", spec)

        assert decision.reason is UnresolvedReason.UNKNOWN_RECORD_TYPE
        assert decision.detail == {"record_type": "supplier"}
        assert field_map == {"note": "keep"}

    def test_store_outage_without_semantic_is_search_unavailable(self, engine, memory_store, customer_spec, mocker):
        mocker.patch.object(memory_store, "search", side_effect=ConnectionError("down"))

        decision, _ = _resolve(engine, {"customer": "Acme"}, "customer_id", customer_spec)

        assert decision.reason is UnresolvedReason.SEARCH_UNAVAILABLE

    def test_store_outage_falls_back_to_semantic(self, memory_store, customer_spec, mocker):
        memory_store.create("customer", {"name": "Acme"})
        index = InMemorySemanticIndex(create_ngram_embedding_function())
        index.add("Acme", {"record_type": "customer", "record_id": 1})
        semantic = SemanticCandidateSource(memory_store, {"customer": index})
        engine = ResolutionEngine(memory_store, semantic=semantic)
        mocker.patch.object(memory_store, "search", side_effect=RecordStoreUnavailable("down"))

        decision, _ = _resolve(engine, {"customer": "Acme"}, "customer_id", customer_spec)

        assert isinstance(decision, Reused)
        assert decision.source == "semantic"

    @pytest.mark.parametrize("value", ["Acme", "acme ltd", "Acme L", "Globex", "nobody"])
    def test_semantic_outage_matches_store_only_resolution(self, memory_store, mocker, value):
        for name in ("Acme", "Acme Ltd", "Globex Corporation"):
            memory_store.create("customer", {"name": name})
        index = InMemorySemanticIndex(create_ngram_embedding_function())
        mocker.patch.object(index, "query", side_effect=SemanticIndexUnavailable("timeout"))
        failing = ResolutionEngine(
            memory_store, semantic=SemanticCandidateSource(memory_store, {"customer": index})
        )
        store_only = ResolutionEngine(memory_store)
        spec = FieldResolutionSpec("customer", search_fields=("email", "name"))

        assert failing.search(spec, value) == store_only.search(spec, value)
        failing_decision, _ = _resolve(failing, {"customer": value}, "customer_id", spec)
        store_decision, _ = _resolve(store_only, {"customer": value}, "customer_id", spec)
        assert failing_decision == store_decision
        assert index.query.called

    def test_validation_failure_is_creation_failed(self, memory_store):
        registry = RecordTypeRegistry([
            RecordTypeSchema("ticket", {
                "subject": FieldSchema("subject", required=True),
                "body": FieldSchema("body", type="text", required=True),
            }),
        ])
        memory_store.add_record_type("ticket")
        engine = ResolutionEngine(memory_store, registry=registry)
        spec = FieldResolutionSpec("ticket", search_fields=("subject",), create_if_missing=True)

        decision, _ = _resolve(engine, {"ticket_id": "Printer jam"}, "ticket_id", spec)

        assert decision.reason is UnresolvedReason.CREATION_FAILED
        assert decision.detail["missing"] == ["body"]
        assert memory_store.count("ticket") == 0

    def test_store_write_error_is_creation_failed(self, engine, memory_store, mocker):
        mocker.patch.object(memory_store, "create_if_absent", side_effect=RuntimeError("read only"))
        spec = FieldResolutionSpec("product", create_if_missing=True)

        decision, _ = _resolve(engine, {"product_id": "Widget"}, "product_id", spec)

        assert decision.reason is UnresolvedReason.CREATION_FAILED
        assert decision.detail == {"error": "read only"}

    def test_custom_resolver_error(self, memory_store):
        registry = RecordTypeRegistry()

        def broken(value, context):
            raise LookupError("crm offline")

        registry.register_resolver("customer", broken)
        engine = ResolutionEngine(memory_store, registry=registry)

        decision, _ = _resolve(engine, {"customer": "Acme"}, "customer_id", FieldResolutionSpec("customer"))

        assert decision.reason is UnresolvedReason.RESOLVER_FAILED


class _BarrierStore(MemoryRecordStore):
    """Holds every writer until all of them have searched and decided to create."""

    def __init__(self, record_types, parties):
        super().__init__(record_types)
        self.barrier = threading.Barrier(parties, timeout=5)

    def create_if_absent(self, record_type, unique_field, data, *, scope=None):
        self.barrier.wait()
        return super().create_if_absent(record_type, unique_field, data, scope=scope)


class _AlwaysTakenStore(MemoryRecordStore):
    """Reports every creation as lost to a concurrent writer."""

    def create_if_absent(self, record_type, unique_field, data, *, scope=None):
        return 42, False


class TestConcurrentCreation:
    """Conflict handling when sessions race to create the same record."""

    def test_racing_sessions_converge_on_one_record(self, customer_spec):
        parties = 6
        store = _BarrierStore(RECORD_TYPES, parties)
        engine = ResolutionEngine(store)
        decisions = [None] * parties

        def worker(position):
            field_map = {"customer": "Acme Ltd"}
            decisions[position], _ = _resolve(engine, field_map, "customer_id", customer_spec)

        threads = [threading.Thread(target=worker, args=(i,)) for i in range(parties)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert store.count("customer") == 1
        assert {decision.resolved_id for decision in decisions} == {1}
        assert sum(isinstance(decision, Created) for decision in decisions) == 1
        assert sum(isinstance(decision, Reused) for decision in decisions) == parties - 1

    def test_bounded_retries(self, customer_spec):
        engine = ResolutionEngine(_AlwaysTakenStore(RECORD_TYPES))

        decision, _ = _resolve(engine, {"customer": "Acme"}, "customer_id", customer_spec)

        assert decision.reason is UnresolvedReason.CREATION_RACE_EXHAUSTED
        assert decision.detail == {"existing_id": 42, "attempts": 2}

    def test_zero_retries(self, customer_spec):
        config = ResolutionConfig(max_creation_retries=0)
        engine = ResolutionEngine(_AlwaysTakenStore(RECORD_TYPES), config=config)

        decision, _ = _resolve(engine, {"customer": "Acme"}, "customer_id", customer_spec)

        assert decision.detail["attempts"] == 1


class TestChoices:
    """Resuming after a human answered an AwaitingChoice."""

    def test_chosen_id_is_reused_without_search(self, engine, memory_store, customer_spec, mocker):
        memory_store.create("customer", {"name": "John Doe"})
        search_spy = mocker.spy(memory_store, "search")
        field_map = {"customer": "John"}

        decision, _ = _resolve(engine, field_map, "customer_id", customer_spec, choice=1)

        assert decision == Reused(id=1, chosen=True)
        assert field_map == {"customer_id": 1}
        assert search_spy.call_count == 0

    def test_missing_chosen_id(self, engine, customer_spec):
        decision, _ = _resolve(engine, {"customer": "John"}, "customer_id", customer_spec, choice=9)

        assert decision.reason is UnresolvedReason.NO_MATCH
        assert decision.detail == {"chosen_id": 9}

    def test_create_new_skips_matching(self, engine, memory_store, customer_spec):
        memory_store.create("customer", {"name": "John Doe"})

        decision, _ = _resolve(
            engine, {"customer": "John"}, "customer_id", customer_spec, choice=CREATE_NEW
        )

        assert isinstance(decision, Created)
        assert decision.id == 2
        assert memory_store.count("customer") == 2


class TestCustomResolver:
    """Per-type resolvers replace search."""

    def test_callable_resolver(self, memory_store):
        registry = RecordTypeRegistry()
        registry.register_resolver("customer", lambda value, context: 77 if value == "Acme" else None)
        engine = ResolutionEngine(memory_store, registry=registry)
        spec = FieldResolutionSpec("customer", create_if_missing=True)

        found, _ = _resolve(engine, {"customer": "Acme"}, "customer_id", spec)
        created, _ = _resolve(engine, {"customer": "Other"}, "customer_id", spec)

        assert found == Reused(id=77)
        assert isinstance(created, Created)

    def test_resolver_object_without_create(self, memory_store):
        class Directory:
            def resolve(self, value, context):
                return None

        registry = RecordTypeRegistry()
        registry.register_resolver("customer", Directory())
        engine = ResolutionEngine(memory_store, registry=registry)

        decision, _ = _resolve(engine, {"customer": "Acme"}, "customer_id", FieldResolutionSpec("customer"))

        assert decision.reason is UnresolvedReason.NO_MATCH


class TestSubResolution:
    """Relationships of newly created records."""

    def _spec(self):
        return FieldResolutionSpec(
            "customer",
            create_if_missing=True,
            defaults={"segment": "Retail"},
            sub_specs={
                "category_id": FieldResolutionSpec(
                    "category",
                    search_fields=("title",),
                    source_field="segment",
                    create_if_missing=True,
                    sub_specs={"parent_id": FieldResolutionSpec("category", create_if_missing=True)},
                ),
            },
        )

    def test_created_record_gets_its_relationships(self, engine, memory_store):
        decision, log = _resolve(engine, {"customer": "Acme"}, "customer_id", self._spec())

        assert isinstance(decision, Created)
        assert decision.data == {"name": "Acme", "category_id": 1}
        assert memory_store.get("customer", 1).data == {"name": "Acme", "category_id": 1}
        assert memory_store.get("category", 1).data == {"title": "Retail"}
        assert log.paths() == ["customer_id.category_id", "customer_id"]
        assert isinstance(log.get("customer_id.category_id"), Created)

    def test_existing_related_record_is_reused(self, engine, memory_store):
        memory_store.create("category", {"title": "retail"})

        decision, log = _resolve(engine, {"customer": "Acme"}, "customer_id", self._spec())

        assert decision.data["category_id"] == 1
        assert isinstance(log.get("customer_id.category_id"), Reused)
        assert memory_store.count("category") == 1

    def test_failed_link_update_marks_sub_field_unresolved(self, engine, memory_store, mocker):
        mocker.patch.object(memory_store, "update", side_effect=RuntimeError("disk full"))

        decision, log = _resolve(engine, {"customer": "Acme"}, "customer_id", self._spec())

        assert isinstance(decision, Created)
        assert "category_id" not in decision.data
        assert memory_store.get("customer", decision.id).data == decision.data
        sub_decision = log.get("customer_id.category_id")
        assert sub_decision.reason is UnresolvedReason.RESOLUTION_ERROR
        assert sub_decision.detail["parent_id"] == decision.id
        assert sub_decision.detail["resolved_id"] == 1
        assert sub_decision.detail["error_type"] == "RuntimeError"

    def test_reused_records_are_not_sub_resolved(self, engine, memory_store):
        memory_store.create("customer", {"name": "Acme", "segment": "Retail"})

        decision, log = _resolve(engine, {"customer": "Acme"}, "customer_id", self._spec())

        assert isinstance(decision, Reused)
        assert log.paths() == ["customer_id"]
        assert memory_store.count("category") == 0


def test_parallel_search_matches_sequential(memory_store, customer_spec) -> None:
    for name in ("John Doe", "Johnny Walker", "Jane Doe"):
        memory_store.create("customer", {"name": name})
    index = InMemorySemanticIndex(create_ngram_embedding_function())
    for record in memory_store.all("customer"):
        index.add(record.data["name"], {"record_type": "customer", "record_id": record.id})
    semantic = SemanticCandidateSource(memory_store, {"customer": index})

    sequential = ResolutionEngine(memory_store, semantic=semantic)
    parallel = ResolutionEngine(
        memory_store, semantic=semantic, config=ResolutionConfig(parallel_search=True)
    )

    for value in ("John", "Jane Doe", "Walker", "nobody"):
        assert parallel.search(customer_spec, value) == sequential.search(customer_spec, value)


def test_created_records_are_indexed(memory_store, customer_spec) -> None:
    index = InMemorySemanticIndex(create_ngram_embedding_function())
    semantic = SemanticCandidateSource(memory_store, {"customer": index})
    engine = ResolutionEngine(memory_store, semantic=semantic)

    _resolve(engine, {"customer": "Acme Ltd"}, "customer_id", customer_spec)

    assert index.query("Acme Ltd")[0]["metadata"] == {"record_type": "customer", "record_id": 1}


@pytest.mark.parametrize("value", ["acme ltd", "  ACME   LTD ", "Acme Ltd"])
def test_reuse_ignores_case_and_spacing(engine, memory_store, customer_spec, value) -> None:
    memory_store.create("customer", {"name": "Acme Ltd"})

    decision, _ = _resolve(engine, {"customer": value}, "customer_id", customer_spec)

    assert decision.resolved_id == 1
    assert isinstance(decision, Reused)
