"""Embedding backends and vector stores."""

from .service import EmbeddingBackend, EmbeddingConfig, HashEmbeddingBackend, HuggingFaceEmbeddingBackend, Vector
from .store import ChromaVectorStore, StoredPoint, VectorRecord, VectorStore, build_where

__all__ = [
    "ChromaVectorStore",
    "EmbeddingBackend",
    "EmbeddingConfig",
    "HashEmbeddingBackend",
    "HuggingFaceEmbeddingBackend",
    "StoredPoint",
    "Vector",
    "VectorRecord",
    "VectorStore",
    "build_where",
]
