"""Tests for the in-memory record store."""

import pytest

from tether.errors import UnknownRecordType


def test_ids_are_per_record_type(memory_store) -> None:
    assert memory_store.create("customer", {"name": "Acme"}) == 1
    assert memory_store.create("product", {"name": "Acme"}) == 1
    assert memory_store.create("customer", {"name": "Globex"}) == 2


def test_unknown_record_type(memory_store) -> None:
    with pytest.raises(UnknownRecordType):
        memory_store.search("supplier", "name", "Acme")


def test_search_returns_copies(memory_store) -> None:
    memory_store.create("customer", {"name": "Acme"})

    memory_store.search("customer", "name", "acme")[0].data["name"] = "changed"

    assert memory_store.get("customer", 1).data == {"name": "Acme"}


def test_exact_match_is_not_cut_off_by_limit(memory_store) -> None:
    for index in range(5):
        memory_store.create("customer", {"name": f"Acme {index}"})
    exact_id = memory_store.create("customer", {"name": "ACME"})

    results = memory_store.search("customer", "name", "acme", limit=3)

    assert [r.id for r in results] == [exact_id, 1, 2]


def test_create_if_absent_normalizes(memory_store) -> None:
    assert memory_store.create_if_absent("customer", "name", {"name": "Acme"}) == (1, True)
    assert memory_store.create_if_absent("customer", "name", {"name": "ACME "}) == (1, False)
    assert memory_store.count("customer") == 1


def test_create_if_absent_is_scoped(memory_store) -> None:
    memory_store.create("customer", {"name": "Acme", "workspace_id": 1})

    scoped = memory_store.create_if_absent(
        "customer", "name", {"name": "Acme", "workspace_id": 2}, scope={"workspace_id": 2}
    )
    repeated = memory_store.create_if_absent(
        "customer", "name", {"name": "acme", "workspace_id": 2}, scope={"workspace_id": 2}
    )

    assert scoped == (2, True)
    assert repeated == (2, False)
    assert memory_store.find_by_unique("customer", "name", "ACME", {"workspace_id": 3}) is None
