"""In-process semantic index using numpy cosine similarity."""

import uuid
from threading import RLock
from typing import Any, Dict, List, Optional

import numpy as np

from tether.semantic.base import SemanticIndex
from tether.semantic.embeddings import (
    EmbeddingFunction,
    _record_semantic_event,
    get_default_embedding_function,
)


class InMemorySemanticIndex(SemanticIndex):
    """
    Brute-force cosine search over embeddings held in memory.

    Args:
        embedding_function: Text to vector function; defaults to the
            sentence-transformers model
    """

    def __init__(self, embedding_function: Optional[EmbeddingFunction] = None) -> None:
        self._embed = embedding_function or get_default_embedding_function()
        self._lock = RLock()
        self._entries: Dict[str, Dict[str, Any]] = {}

    def add(
        self,
        text: str,
        metadata: Optional[Dict[str, Any]] = None,
        uid: Optional[str] = None,
    ) -> str:
        uid = uid or str(uuid.uuid4())
        vector = np.asarray(self._embed(text), dtype=np.float64)
        with self._lock:
            self._entries[uid] = {
                "text": text,
                "metadata": dict(metadata or {}),
                "vector": vector,
            }
        _record_semantic_event("memory.add.complete", {"uid": uid})
        return uid

    def query(
        self,
        text: str,
        top_k: int = 10,
        metadata_filter: Optional[Dict[str, Any]] = None,
    ) -> List[Dict[str, Any]]:
        query_vector = np.asarray(self._embed(text), dtype=np.float64)
        query_norm = np.linalg.norm(query_vector)
        with self._lock:
            entries = [
                (uid, entry) for uid, entry in self._entries.items()
                if all(entry["metadata"].get(k) == v for k, v in (metadata_filter or {}).items())
            ]
        if not entries or query_norm == 0:
            return []

        matrix = np.vstack([entry["vector"] for _, entry in entries])
        norms = np.linalg.norm(matrix, axis=1)
        norms[norms == 0] = 1.0
        similarities = matrix @ query_vector / (norms * query_norm)
        distances = 1.0 - similarities
        order = np.argsort(distances, kind="stable")[:top_k]

        results = []
        for position in order:
            uid, entry = entries[int(position)]
            results.append({
                "uid": uid,
                "text": entry["text"],
                "metadata": dict(entry["metadata"]),
                "distance": float(distances[int(position)]),
            })
        _record_semantic_event(
            "memory.query.complete",
            {"top_k": top_k, "result_count": len(results)},
        )
        return results

    def delete(self, uid: str) -> bool:
        with self._lock:
            return self._entries.pop(uid, None) is not None

    def close(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
