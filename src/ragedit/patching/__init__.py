"""Document store contract and patch application."""

from .applier import ApplyResult, PatchApplier, PendingHunks
from .store import DocumentStore, InMemoryDocumentStore

__all__ = ["ApplyResult", "DocumentStore", "InMemoryDocumentStore", "PatchApplier", "PendingHunks"]
