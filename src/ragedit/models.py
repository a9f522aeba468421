"""Shared domain models used across the ragedit pipeline."""

from __future__ import annotations

import hashlib
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Literal, Mapping


def content_hash(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class DocumentSnapshot:
    """Version and text of a document as seen by one edit stream."""

    document_id: str
    version: int
    text: str


@dataclass(frozen=True)
class Chunk:
    """Retrieval unit of one document version with exact offsets."""

    chunk_id: str
    document_id: str
    version: int
    text: str
    start: int
    end: int
    order: int
    content_hash: str
    stale: bool = False
    dataset_id: str | None = None


@dataclass(frozen=True)
class Provenance:
    """Where ingested content came from."""

    source: str
    media_kind: str
    fetched_at: datetime = field(default_factory=_utcnow)
    title: str | None = None
    extra: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class IngestedContent:
    """Normalized plain text ready for chunking."""

    text: str
    provenance: Provenance


@dataclass(frozen=True)
class RetrievalQuery:
    """Instruction plus optional local context used to look up chunks."""

    instruction: str
    document_id: str
    local_context: str | None = None
    dataset_id: str | None = None
    top_k: int | None = None
    similarity_threshold: float | None = None

    @property
    def text(self) -> str:
        if self.local_context:
            return f"{self.instruction}\n\n{self.local_context}"
        return self.instruction


@dataclass(frozen=True)
class RetrievedChunk:
    """Chunk returned from the vector store during retrieval."""

    chunk: Chunk
    score: float


class StreamState(str, Enum):
    IDLE = "idle"
    STREAMING = "streaming"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (StreamState.COMPLETED, StreamState.CANCELLED, StreamState.FAILED)


@dataclass(frozen=True)
class PatchHunk:
    """Proposed replacement of ``anchor`` by ``replacement`` at ``[start, end)``.

    ``start``/``end`` refer to the text the hunk was last resolved against.
    The context strings are slices of the original text around the anchor and
    are used to relocate the hunk after drift.
    """

    anchor: str
    replacement: str
    start: int
    end: int
    order: int
    confidence: float = 1.0
    context_before: str = ""
    context_after: str = ""

    @property
    def delta(self) -> int:
        return len(self.replacement) - len(self.anchor)

    def moved_to(self, start: int, end: int, confidence: float | None = None) -> "PatchHunk":
        return replace(
            self,
            start=start,
            end=end,
            confidence=self.confidence if confidence is None else confidence,
        )

    def shifted(self, delta: int) -> "PatchHunk":
        return replace(self, start=self.start + delta, end=self.end + delta)


UnresolvedReason = Literal["ambiguous_match", "anchor_not_found", "document_mutated"]
ResolutionMethod = Literal["exact", "context", "fuzzy"]


@dataclass(frozen=True)
class AnchorResolution:
    """Outcome of locating a hunk's anchor in the current document text."""

    resolved: bool
    start: int | None = None
    end: int | None = None
    confidence: float = 0.0
    method: ResolutionMethod | None = None
    reason: UnresolvedReason | None = None

    @classmethod
    def found(cls, start: int, end: int, confidence: float, method: ResolutionMethod) -> "AnchorResolution":
        return cls(resolved=True, start=start, end=end, confidence=confidence, method=method)

    @classmethod
    def unresolved(cls, reason: UnresolvedReason) -> "AnchorResolution":
        return cls(resolved=False, reason=reason)
