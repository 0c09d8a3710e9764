"""
ChromaSemanticIndex: ChromaDB implementation of SemanticIndex.

Uses a cosine-space Chroma collection, either in memory or persisted to a
directory, with embeddings from an injected function or sentence-transformers.
"""

import uuid
from pathlib import Path
from typing import Any, Dict, List, Optional

try:
    import chromadb
    _CHROMA_AVAILABLE = True
except ImportError:
    _CHROMA_AVAILABLE = False

from tether.errors import SemanticIndexUnavailable
from tether.semantic.base import SemanticIndex
from tether.semantic.embeddings import (
    EmbeddingFunction,
    _record_semantic_event,
    get_default_embedding_function,
)


def _chroma_where(metadata_filter: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """Chroma accepts one key per clause; several keys need an explicit $and."""
    if not metadata_filter:
        return None
    if len(metadata_filter) == 1:
        return dict(metadata_filter)
    return {"$and": [{key: value} for key, value in metadata_filter.items()]}


class ChromaSemanticIndex(SemanticIndex):
    """
    Chroma implementation of SemanticIndex.

    Example:
        >>> index = ChromaSemanticIndex(collection_name="tether_records")
        >>> index.add("Acme Corporation", {"record_type": "customer", "record_id": 1})
        >>> index.query("Acme Corp", metadata_filter={"record_type": "customer"})
        >>> index.close()
    """

    def __init__(
        self,
        collection_name: str = "tether_records",
        persist_directory: Optional[str] = None,
        embedding_model: Optional[str] = None,
        embedding_function: Optional[EmbeddingFunction] = None,
        prefer_local_embeddings: bool = True,
    ):
        """
        Initialize ChromaSemanticIndex.

        Args:
            collection_name: Name of the Chroma collection
            persist_directory: Optional directory to persist data (defaults to in-memory)
            embedding_model: Name of sentence-transformers model
            embedding_function: Optional custom embedding function
            prefer_local_embeddings: Use sentence-transformers when installed

        Raises:
            ImportError: If chromadb is not installed
        """
        self._persist_directory = (
            Path(persist_directory).expanduser()
            if persist_directory is not None
            else None
        )
        persist_directory_str = (
            str(self._persist_directory) if self._persist_directory is not None else None
        )
        _record_semantic_event(
            "chroma.init.start",
            {
                "collection_name": collection_name,
                "persist_directory": persist_directory_str,
                "embedding_model": embedding_model,
                "embedding_function_provided": embedding_function is not None,
            },
        )
        if not _CHROMA_AVAILABLE:
            err = ImportError(
                "ChromaDB is required for ChromaSemanticIndex. "
                "Install it with: pip install chromadb>=0.4.0"
            )
            _record_semantic_event(
                "chroma.init.error",
                {"collection_name": collection_name, "error": str(err)},
            )
            raise err

        try:
            self._embedding_function = embedding_function or get_default_embedding_function(
                prefer_local=prefer_local_embeddings,
                model_name=embedding_model,
            )
            if persist_directory_str:
                self._persist_directory.mkdir(parents=True, exist_ok=True)
                self.client = chromadb.PersistentClient(path=persist_directory_str)
            else:
                self.client = chromadb.EphemeralClient()
            self.collection = self.client.get_or_create_collection(
                name=collection_name,
                metadata={"hnsw:space": "cosine"},
            )
        except Exception as exc:
            _record_semantic_event(
                "chroma.init.error",
                {"collection_name": collection_name, "error": str(exc)},
            )
            raise

        self._emit_event(
            "chroma.init.complete",
            {"collection_name": collection_name, "persist_directory": persist_directory_str},
        )

    def _emit_event(self, name: str, payload: Optional[Dict[str, Any]] = None) -> None:
        base_payload: Dict[str, Any] = {
            "collection_name": getattr(getattr(self, "collection", None), "name", None),
        }
        if payload:
            base_payload.update(payload)
        _record_semantic_event(name, base_payload)

    def add(
        self,
        text: str,
        metadata: Optional[Dict[str, Any]] = None,
        uid: Optional[str] = None,
    ) -> str:
        uid = uid or str(uuid.uuid4())
        try:
            embedding = self._embedding_function(text)
            self.collection.upsert(
                ids=[uid],
                embeddings=[embedding],
                documents=[text],
                metadatas=[metadata or {"source": "tether"}],
            )
        except Exception as exc:
            self._emit_event("chroma.add.error", {"uid": uid, "error": str(exc)})
            raise
        self._emit_event("chroma.add.complete", {"uid": uid})
        return uid

    def query(
        self,
        text: str,
        top_k: int = 10,
        metadata_filter: Optional[Dict[str, Any]] = None,
    ) -> List[Dict[str, Any]]:
        try:
            available = self.collection.count()
            if available == 0:
                return []
            query_embedding = self._embedding_function(text)
            results = self.collection.query(
                query_embeddings=[query_embedding],
                n_results=min(top_k, available),
                where=_chroma_where(metadata_filter),
                include=["documents", "metadatas", "distances"],
            )
            formatted_results = []
            if results["ids"] and len(results["ids"][0]) > 0:
                for i in range(len(results["ids"][0])):
                    formatted_results.append({
                        "uid": results["ids"][0][i],
                        "text": results["documents"][0][i],
                        "metadata": results["metadatas"][0][i] if results["metadatas"] and results["metadatas"][0] else {},
                        "distance": results["distances"][0][i] if results["distances"] else None,
                    })
        except Exception as exc:
            self._emit_event("chroma.query.error", {"top_k": top_k, "error": str(exc)})
            raise SemanticIndexUnavailable(str(exc)) from exc

        self._emit_event(
            "chroma.query.complete",
            {"top_k": top_k, "result_count": len(formatted_results)},
        )
        return formatted_results

    def delete(self, uid: str) -> bool:
        try:
            self.collection.delete(ids=[uid])
        except Exception as exc:
            self._emit_event("chroma.delete.error", {"uid": uid, "error": str(exc)})
            return False
        return True

    def close(self) -> None:
        self.client = None
        self.collection = None
        self._emit_event("chroma.close.complete", {})
