"""Retrieval components."""

from .service import RetrievalConfig, RetrievalCoordinator, Retriever

__all__ = ["RetrievalConfig", "RetrievalCoordinator", "Retriever"]
