"""
Embedding function factories.

Semantic indexes take a ``Callable[[str], List[float]]``. The default is a
sentence-transformers model (the ``embeddings`` extra). A deterministic
character n-gram embedding is available for callers that inject it
explicitly, such as tests.
"""

import hashlib
from typing import Callable, List, Optional

import numpy as np

try:
    from sentence_transformers import SentenceTransformer
    _SENTENCE_TRANSFORMERS_AVAILABLE = True
except ImportError:
    _SENTENCE_TRANSFORMERS_AVAILABLE = False

from tether.errors import ConfigurationError
from tether.observability import get_event_recorder

SEMANTIC_RECORDER = get_event_recorder("semantic")

EmbeddingFunction = Callable[[str], List[float]]


def _record_semantic_event(name: str, payload: dict) -> None:
    """Record a semantic index event."""
    SEMANTIC_RECORDER.record(name=name, payload=payload)


def create_sentence_transformer_embedding_function(
    model_name: str = "all-MiniLM-L6-v2",
) -> EmbeddingFunction:
    """
    Create an embedding function backed by a local sentence-transformers model.

    Raises:
        ImportError: If sentence-transformers is not installed
    """
    if not _SENTENCE_TRANSFORMERS_AVAILABLE:
        raise ImportError(
            "sentence-transformers is required for local embeddings. "
            "Install it with: pip install tether-resolve[embeddings]"
        )
    model = SentenceTransformer(model_name)

    def embed(text: str) -> List[float]:
        return model.encode(text).tolist()

    return embed


def create_ngram_embedding_function(
    dimensions: int = 256,
    ngram_size: int = 3,
) -> EmbeddingFunction:
    """
    Create a hashed character n-gram embedding function.

    Strings that share most of their n-grams land close together, which is
    enough to catch spelling variants ("Jon Doe" / "John Doe") without a model.
    """
    if dimensions < 1 or ngram_size < 1:
        raise ValueError("dimensions and ngram_size must be positive")

    def embed(text: str) -> List[float]:
        vector = np.zeros(dimensions, dtype=np.float64)
        padded = f" {text.casefold().strip()} "
        if len(padded) < ngram_size:
            padded = padded.ljust(ngram_size)
        for start in range(len(padded) - ngram_size + 1):
            gram = padded[start:start + ngram_size]
            digest = hashlib.md5(gram.encode("utf-8")).digest()
            vector[int.from_bytes(digest[:4], "little") % dimensions] += 1.0
        norm = np.linalg.norm(vector)
        if norm > 0:
            vector /= norm
        return vector.tolist()

    return embed


def get_default_embedding_function(
    prefer_local: bool = True,
    model_name: Optional[str] = None,
) -> EmbeddingFunction:
    """
    Return the sentence-transformers embedding function.

    Args:
        prefer_local: Allow the local sentence-transformers model; when False
            the caller must inject an embedding function instead
        model_name: sentence-transformers model (defaults to all-MiniLM-L6-v2)

    Raises:
        ConfigurationError: No embedding method is available
    """
    if prefer_local and _SENTENCE_TRANSFORMERS_AVAILABLE:
        model_name = model_name or "all-MiniLM-L6-v2"
        _record_semantic_event(
            "embeddings.selected",
            {"provider": "sentence_transformers", "model": model_name},
        )
        return create_sentence_transformer_embedding_function(model_name)

    _record_semantic_event(
        "embeddings.unavailable",
        {"prefer_local": prefer_local, "sentence_transformers": _SENTENCE_TRANSFORMERS_AVAILABLE},
    )
    raise ConfigurationError(
        "No embedding method available. Options:\n"
        "1. Install sentence-transformers: pip install tether-resolve[embeddings]\n"
        "2. Provide a custom embedding_function\n"
        "3. Disable the semantic index (TETHER_SEMANTIC_ENABLED=false)"
    )
