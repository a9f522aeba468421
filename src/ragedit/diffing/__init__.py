"""Diff/anchor engine."""

from .engine import AnchorResolver, DiffAnchorEngine, DiffSession, EngineConfig, tokenize

__all__ = ["AnchorResolver", "DiffAnchorEngine", "DiffSession", "EngineConfig", "tokenize"]
