"""Chunking of normalized text into retrieval units."""

from .service import Chunker, ChunkingConfig, reconstruct_text

__all__ = ["Chunker", "ChunkingConfig", "reconstruct_text"]
