"""Registry of active streams: quota enforcement and cancellation routing."""

from __future__ import annotations

import asyncio
import threading
from dataclasses import dataclass, field

from ragedit.errors import QuotaExceededError
from ragedit.metrics.observability import PipelineMetrics, get_logger
from ragedit.streams.plans import PlanProvider


@dataclass
class StreamSession:
    """Active streams of one user on one document."""

    user_id: str
    document_id: str
    ceiling: int
    stream_ids: set[str] = field(default_factory=set)

    @property
    def active(self) -> int:
        return len(self.stream_ids)


@dataclass(frozen=True)
class _StreamEntry:
    user_id: str
    document_id: str
    cancel_signal: asyncio.Event


class StreamRegistry:
    """Tracks ``(user, document) -> session`` and ``stream -> cancel signal``.

    Entries exist only between :meth:`acquire` and :meth:`release`. Counters
    are mutated under a short lock that is never held across I/O.
    """

    def __init__(self, plans: PlanProvider) -> None:
        self._plans = plans
        self._lock = threading.Lock()
        self._sessions: dict[tuple[str, str], StreamSession] = {}
        self._streams: dict[str, _StreamEntry] = {}
        self._logger = get_logger("streams")

    def acquire(self, user_id: str, document_id: str, stream_id: str) -> asyncio.Event:
        """Register a new stream and return its cancellation signal.

        Raises :class:`QuotaExceededError` without creating any entry when the
        user already runs as many streams as the plan allows.
        """

        limit = self._plans.concurrency_limit(user_id)
        if not self._plans.can_start_stream(user_id):
            raise QuotaExceededError(user_id, limit)
        with self._lock:
            if stream_id in self._streams:
                raise ValueError(f"Stream {stream_id} is already registered")
            if self._active_for_user(user_id) >= limit:
                raise QuotaExceededError(user_id, limit)
            key = (user_id, document_id)
            session = self._sessions.get(key)
            if session is None:
                session = self._sessions[key] = StreamSession(user_id, document_id, ceiling=limit)
            session.stream_ids.add(stream_id)
            signal = asyncio.Event()
            self._streams[stream_id] = _StreamEntry(user_id, document_id, signal)
        PipelineMetrics.active_streams.inc()
        self._logger.info("stream.registered", stream_id=stream_id, user_id=user_id, document_id=document_id)
        return signal

    def release(self, stream_id: str) -> None:
        with self._lock:
            entry = self._streams.pop(stream_id, None)
            if entry is None:
                return
            key = (entry.user_id, entry.document_id)
            session = self._sessions.get(key)
            if session is not None:
                session.stream_ids.discard(stream_id)
                if not session.stream_ids:
                    del self._sessions[key]
        PipelineMetrics.active_streams.dec()
        self._logger.info("stream.released", stream_id=stream_id)

    def cancel(self, stream_id: str) -> bool:
        """Signal cancellation; returns False for unknown or finished streams."""

        with self._lock:
            entry = self._streams.get(stream_id)
        if entry is None:
            return False
        entry.cancel_signal.set()
        self._logger.info("stream.cancel_requested", stream_id=stream_id)
        return True

    def session(self, user_id: str, document_id: str) -> StreamSession | None:
        with self._lock:
            return self._sessions.get((user_id, document_id))

    def active_streams(self, user_id: str) -> int:
        with self._lock:
            return self._active_for_user(user_id)

    def __contains__(self, stream_id: object) -> bool:
        with self._lock:
            return stream_id in self._streams

    def __len__(self) -> int:
        with self._lock:
            return len(self._streams)

    def _active_for_user(self, user_id: str) -> int:
        return sum(session.active for (owner, _), session in self._sessions.items() if owner == user_id)
