"""Versioned embedding indexing."""

from .service import DocumentReindexer, EmbeddingIndexer, IndexingConfig, IndexResult, chunk_metadata

__all__ = ["DocumentReindexer", "EmbeddingIndexer", "IndexResult", "IndexingConfig", "chunk_metadata"]
