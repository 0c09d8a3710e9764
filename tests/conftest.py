"""Pytest configuration and shared fixtures for Tether tests."""

import pytest

from tether.records import MemoryRecordStore, SQLRecordStore
from tether.resolution import (
    ArrayFieldSpec,
    FieldResolutionSpec,
    ResolutionConfig,
    ResolutionEngine,
    ResolutionSession,
)
from tether.schema import RecordTypeRegistry, RecordTypeSchema

RECORD_TYPES = ("customer", "category", "product", "invoice")


# Pytest configuration
def pytest_configure(config):
    """Configure custom pytest markers."""
    config.addinivalue_line(
        "markers", "integration: mark test as integration test (requires chromadb)"
    )


def _customer_schema() -> RecordTypeSchema:
    return RecordTypeSchema.from_dict("customer", {
        "semantic": True,
        "index_fields": ["name", "email"],
        "fields": {
            "name": {"type": "string", "required": True},
            "email": {"type": "email", "required": True},
            "status": {"type": "enum", "options": ["active", "lead"], "required": True},
            "vip": {"type": "boolean", "required": True},
            "balance": {"type": "number", "required": True},
            "joined_on": {"type": "date", "default": "today"},
            "workspace_id": {"type": "integer"},
            "category_id": {
                "type": "relationship",
                "record_type": "category",
                "search_fields": ["title"],
                "create_if_missing": True,
            },
        },
    })


def _product_schema() -> RecordTypeSchema:
    return RecordTypeSchema.from_dict("product", {
        "fields": {
            "name": {"type": "string", "required": True},
            "price": {"type": "number", "default": 0},
        },
    })


def _invoice_schema() -> RecordTypeSchema:
    return RecordTypeSchema.from_dict("invoice", {
        "fields": {
            "number": {"type": "string", "required": True},
            "customer_id": {
                "type": "relationship",
                "record_type": "customer",
                "search_fields": ["email", "name"],
                "create_if_missing": True,
                "required": True,
            },
            "items": {
                "type": "array",
                "item_structure": {
                    "product_id": {
                        "type": "relationship",
                        "record_type": "product",
                        "create_if_missing": True,
                    },
                },
            },
        },
    })


@pytest.fixture
def registry():
    """Provide a registry with customer, category, product and invoice types."""
    return RecordTypeRegistry([
        _customer_schema(),
        RecordTypeSchema.from_dict("category", {
            "fields": {"title": {"type": "string", "required": True}},
        }),
        _product_schema(),
        _invoice_schema(),
    ])


@pytest.fixture
def memory_store():
    """Provide an empty in-memory record store."""
    return MemoryRecordStore(RECORD_TYPES)


@pytest.fixture
def sql_store(tmp_path):
    """Provide an empty SQLite-backed record store."""
    store = SQLRecordStore(f"sqlite:///{tmp_path / 'records.db'}", record_types=RECORD_TYPES)
    yield store
    store.close()


@pytest.fixture
def engine(memory_store):
    """Provide an engine over the memory store without schemas."""
    return ResolutionEngine(memory_store, config=ResolutionConfig())


@pytest.fixture
def session(memory_store):
    """Provide a session over the memory store without schemas."""
    return ResolutionSession.create(memory_store)


@pytest.fixture
def customer_spec():
    return FieldResolutionSpec(
        record_type="customer",
        search_fields=("email", "name"),
        create_if_missing=True,
    )


@pytest.fixture
def product_items_spec():
    return ArrayFieldSpec(
        item_specs={
            "product_id": FieldResolutionSpec(record_type="product", create_if_missing=True),
        },
    )
