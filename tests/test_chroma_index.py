"""Tests for the ChromaDB semantic index."""

import pytest

pytest.importorskip("chromadb")

from tether.errors import SemanticIndexUnavailable
from tether.semantic import ChromaSemanticIndex, create_ngram_embedding_function
from tether.semantic.chroma import _chroma_where


@pytest.fixture
def chroma_index(tmp_path):
    index = ChromaSemanticIndex(
        collection_name="test_records",
        persist_directory=str(tmp_path / "chroma"),
        embedding_function=create_ngram_embedding_function(),
    )
    yield index
    index.close()


def test_where_clause() -> None:
    assert _chroma_where(None) is None
    assert _chroma_where({"record_type": "customer"}) == {"record_type": "customer"}
    assert _chroma_where({"record_type": "customer", "record_id": 1}) == {
        "$and": [{"record_type": "customer"}, {"record_id": 1}],
    }


@pytest.mark.integration
class TestChromaSemanticIndex:
    """Round trips through a persistent Chroma collection."""

    def test_empty_collection(self, chroma_index):
        assert chroma_index.query("anything") == []

    def test_add_and_query(self, chroma_index):
        chroma_index.add("John Doe", {"record_type": "customer", "record_id": 1}, uid="customer:1")
        chroma_index.add("Widget", {"record_type": "product", "record_id": 1}, uid="product:1")

        results = chroma_index.query("John Doe", top_k=5, metadata_filter={"record_type": "customer"})

        assert [result["uid"] for result in results] == ["customer:1"]
        assert results[0]["distance"] == pytest.approx(0.0, abs=1e-4)

    def test_upsert_and_delete(self, chroma_index):
        chroma_index.add("Old", {"record_type": "customer", "record_id": 1}, uid="customer:1")
        chroma_index.add("New", {"record_type": "customer", "record_id": 1}, uid="customer:1")

        assert chroma_index.query("New")[0]["text"] == "New"
        assert chroma_index.delete("customer:1") is True
        assert chroma_index.query("New") == []

    def test_query_failure_is_unavailable(self, chroma_index, mocker):
        chroma_index.add("Acme", {"record_type": "customer", "record_id": 1})
        mocker.patch.object(chroma_index, "_embedding_function", side_effect=RuntimeError("model gone"))

        with pytest.raises(SemanticIndexUnavailable):
            chroma_index.query("Acme")
