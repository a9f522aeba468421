"""Client-facing events emitted by completion streams."""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, ClassVar, Dict


@dataclass(frozen=True)
class StreamEvent:
    stream_id: str

    type: ClassVar[str] = "event"

    def payload(self) -> Dict[str, Any]:
        return {}

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.type, "stream_id": self.stream_id, **self.payload()}


@dataclass(frozen=True)
class HunkApplied(StreamEvent):
    """A hunk was committed; offsets refer to the text it replaced."""

    start: int
    end: int
    text: str
    new_version: int
    confidence: float = 1.0

    type: ClassVar[str] = "hunk_applied"

    @property
    def offsets(self) -> tuple[int, int]:
        return (self.start, self.end)

    def payload(self) -> Dict[str, Any]:
        return {
            "offsets": [self.start, self.end],
            "text": self.text,
            "new_version": self.new_version,
            "confidence": round(self.confidence, 4),
        }


@dataclass(frozen=True)
class HunkUnresolved(StreamEvent):
    """A hunk could not be placed; the generated text is handed back to the client."""

    reason: str
    generated_text: str
    anchor: str = ""

    type: ClassVar[str] = "hunk_unresolved"

    def payload(self) -> Dict[str, Any]:
        return {"reason": self.reason, "generated_text": self.generated_text, "anchor": self.anchor}


@dataclass(frozen=True)
class StreamCompleted(StreamEvent):
    applied: int = 0
    unresolved: int = 0
    version: int | None = None

    type: ClassVar[str] = "stream_completed"

    def payload(self) -> Dict[str, Any]:
        return {"applied": self.applied, "unresolved": self.unresolved, "version": self.version}


@dataclass(frozen=True)
class StreamCancelled(StreamEvent):
    applied: int = 0
    version: int | None = None

    type: ClassVar[str] = "stream_cancelled"

    def payload(self) -> Dict[str, Any]:
        return {"applied": self.applied, "version": self.version}


@dataclass(frozen=True)
class StreamFailed(StreamEvent):
    reason: str = ""

    type: ClassVar[str] = "stream_failed"

    def payload(self) -> Dict[str, Any]:
        return {"reason": self.reason}


def encode_sse(event: StreamEvent) -> str:
    """Render an event as one server-sent-events frame."""

    data = json.dumps(event.to_dict(), ensure_ascii=False)
    return f"id: {event.stream_id}\nevent: {event.type}\ndata: {data}\n\n"


__all__ = [
    "HunkApplied",
    "HunkUnresolved",
    "StreamCancelled",
    "StreamCompleted",
    "StreamEvent",
    "StreamFailed",
    "encode_sse",
]
