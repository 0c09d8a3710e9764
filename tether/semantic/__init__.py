"""
Semantic index backends.

Provides the SemanticIndex abstract base class, a Chroma implementation and
an in-memory numpy implementation, plus embedding function factories.
"""

from tether.semantic.base import SemanticIndex
from tether.semantic.chroma import ChromaSemanticIndex
from tether.semantic.embeddings import (
    create_ngram_embedding_function,
    create_sentence_transformer_embedding_function,
    get_default_embedding_function,
)
from tether.semantic.memory import InMemorySemanticIndex

__all__ = [
    "ChromaSemanticIndex",
    "InMemorySemanticIndex",
    "SemanticIndex",
    "create_ngram_embedding_function",
    "create_sentence_transformer_embedding_function",
    "get_default_embedding_function",
]
