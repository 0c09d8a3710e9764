"""
SemanticIndex: Abstract base class for similarity search backends.

A semantic index stores one embedding per indexed record, tagged with the
record's type and id in its metadata, and answers nearest-neighbour queries
with cosine distances.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional


class SemanticIndex(ABC):
    """
    Abstract base class for semantic index implementations.

    Example:
        >>> index = InMemorySemanticIndex(create_ngram_embedding_function())
        >>> index.add("Acme Corporation", {"record_type": "customer", "record_id": 1})
        >>> index.query("Acme Corp", top_k=3, metadata_filter={"record_type": "customer"})
    """

    @abstractmethod
    def add(
        self,
        text: str,
        metadata: Optional[Dict[str, Any]] = None,
        uid: Optional[str] = None,
    ) -> str:
        """
        Store an embedding and return its UID.

        Args:
            text: Text to embed and store
            metadata: Optional metadata stored with the embedding
            uid: Optional UID; an existing entry with the same UID is replaced

        Returns:
            UID of the stored embedding
        """
        pass

    @abstractmethod
    def query(
        self,
        text: str,
        top_k: int = 10,
        metadata_filter: Optional[Dict[str, Any]] = None,
    ) -> List[Dict[str, Any]]:
        """
        Perform semantic similarity search.

        Returns:
            List of dictionaries with 'uid', 'text', 'metadata' and 'distance'
            keys, nearest first. Distance is cosine distance in [0, 2].

        Raises:
            SemanticIndexUnavailable: The backend could not answer
        """
        pass

    @abstractmethod
    def delete(self, uid: str) -> bool:
        """Delete an embedding; False if it was not found."""
        pass

    @abstractmethod
    def close(self) -> None:
        """Release backend resources."""
        pass

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False
