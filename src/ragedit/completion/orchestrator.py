"""Completion Orchestrator: turn a streamed model rewrite into live document patches.

Each stream runs two cooperative tasks connected by a bounded channel. The
producer pulls deltas from the model provider, the consumer feeds them to the
diff engine and applies hunks as soon as they stabilize. Events reach the
client through a second bounded channel exposed by :class:`StreamHandle`.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field, replace
from typing import Any, Awaitable, Callable, Dict, FrozenSet, List, Sequence, Tuple
from uuid import uuid4

from ragedit.completion.events import (
    HunkApplied,
    HunkUnresolved,
    StreamCancelled,
    StreamCompleted,
    StreamEvent,
    StreamFailed,
)
from ragedit.completion.prompts import PromptBuilder
from ragedit.completion.providers import CompletionRequest, ModelProvider
from ragedit.diffing.engine import DiffAnchorEngine, DiffSession
from ragedit.errors import (
    ConflictError,
    InvalidTransitionError,
    ProviderError,
    RageditError,
    RetrievalError,
    StreamError,
    TransientProviderError,
)
from ragedit.metrics.observability import PipelineMetrics, bind_correlation_id, get_logger
from ragedit.models import DocumentSnapshot, PatchHunk, RetrievalQuery, RetrievedChunk, StreamState
from ragedit.patching.applier import PatchApplier, PendingHunks
from ragedit.retrieval.service import Retriever
from ragedit.retrying import RetryPolicy
from ragedit.streams.registry import StreamRegistry

Reindexer = Callable[[DocumentSnapshot], Awaitable[Any]]

_TRANSITIONS: Dict[StreamState, FrozenSet[StreamState]] = {
    StreamState.IDLE: frozenset({StreamState.STREAMING, StreamState.CANCELLED, StreamState.FAILED}),
    StreamState.STREAMING: frozenset({StreamState.COMPLETED, StreamState.CANCELLED, StreamState.FAILED}),
}

_OUTCOMES = (StreamCompleted, StreamCancelled, StreamFailed)


@dataclass(frozen=True)
class OrchestratorConfig:
    """Channel sizes, timeouts and retry ceilings for completion streams."""

    channel_size: int = 64
    event_channel_size: int = 64
    provider_timeout_seconds: float = 30.0
    max_conflict_retries: int = 3
    retry: RetryPolicy = field(default_factory=RetryPolicy)
    model: str = "gpt-3.5-turbo"
    temperature: float = 0.2
    max_tokens: int = 1024


@dataclass
class CompletionStream:
    """Mutable state of one edit stream.

    ``view`` is the latest document revision this stream knows about: the
    starting snapshot plus its own commits, refreshed whenever a conflict
    reveals a newer revision.
    """

    stream_id: str
    user_id: str
    query: RetrievalQuery
    region: Tuple[int, int]
    view: DocumentSnapshot
    cancel_signal: asyncio.Event
    state: StreamState = StreamState.IDLE
    output: str = ""
    applied: int = 0
    unresolved: int = 0
    conflicts: int = 0
    net_delta: int = 0
    failure: str | None = None
    started_at: float = field(default_factory=time.perf_counter)

    @property
    def document_id(self) -> str:
        return self.view.document_id

    @property
    def cancelled(self) -> bool:
        return self.cancel_signal.is_set()

    def transition(self, state: StreamState) -> None:
        if state not in _TRANSITIONS.get(self.state, frozenset()):
            raise InvalidTransitionError(
                f"Stream {self.stream_id} cannot move from {self.state.value} to {state.value}"
            )
        self.state = state


class StreamHandle:
    """Client side of a running stream.

    Iterate it for events (``async for event in handle``) or call :meth:`wait`.
    Events are buffered in a bounded channel; a client that stops reading
    pauses the stream until it reads again or cancels. Once cancelled, events
    that find the channel full are dropped, but the outcome event is always
    delivered last.
    """

    def __init__(
        self,
        stream: CompletionStream,
        events: "asyncio.Queue[StreamEvent]",
        task: "asyncio.Task[None]",
        orchestrator: "CompletionOrchestrator",
    ) -> None:
        self._stream = stream
        self._events = events
        self._task = task
        self._orchestrator = orchestrator
        self._closed = False
        self.history: List[StreamEvent] = []

    @property
    def stream_id(self) -> str:
        return self._stream.stream_id

    @property
    def stream(self) -> CompletionStream:
        return self._stream

    @property
    def state(self) -> StreamState:
        return self._stream.state

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        while not self._closed:
            event = await self._events.get()
            self.history.append(event)
            # the outcome event is always the last one on the channel
            self._closed = isinstance(event, _OUTCOMES)
            yield event

    def cancel(self) -> bool:
        return self._orchestrator.cancel(self.stream_id)

    async def wait(self) -> StreamState:
        """Drain remaining events and return the terminal state."""

        async for _ in self:
            pass
        await self._task
        return self._stream.state

    async def result(self) -> DocumentSnapshot:
        """Wait for the stream and return the last revision it saw.

        Raises :class:`StreamError` when the stream failed.
        """

        state = await self.wait()
        if state is StreamState.FAILED:
            raise StreamError(self._stream.failure or f"Stream {self.stream_id} failed")
        return self._stream.view


class CompletionOrchestrator:
    """Run completion streams against live documents."""

    def __init__(
        self,
        retriever: Retriever,
        provider: ModelProvider,
        engine: DiffAnchorEngine,
        applier: PatchApplier,
        registry: StreamRegistry,
        config: OrchestratorConfig | None = None,
        *,
        prompt_builder: PromptBuilder | None = None,
        reindexer: Reindexer | None = None,
    ) -> None:
        self._retriever = retriever
        self._provider = provider
        self._engine = engine
        self._applier = applier
        self._registry = registry
        self._config = config or OrchestratorConfig()
        self._prompts = prompt_builder or PromptBuilder()
        self._reindexer = reindexer
        self._tasks: set[asyncio.Task] = set()
        self._streams: dict[str, CompletionStream] = {}
        self._logger = get_logger("completion")

    @property
    def config(self) -> OrchestratorConfig:
        return self._config

    async def start(
        self,
        query: RetrievalQuery,
        snapshot: DocumentSnapshot,
        *,
        user_id: str,
        region: Tuple[int, int] | None = None,
        stream_id: str | None = None,
    ) -> StreamHandle:
        """Register, retrieve, build the prompt and launch a stream.

        Raises :class:`QuotaExceededError` before anything is registered when
        the user has no free stream slot.
        """

        stream_id = stream_id or uuid4().hex
        region = _checked_region(snapshot, region)
        signal = self._registry.acquire(user_id, snapshot.document_id, stream_id)
        stream = CompletionStream(
            stream_id=stream_id,
            user_id=user_id,
            query=query,
            region=region,
            view=snapshot,
            cancel_signal=signal,
        )
        try:
            passage = snapshot.text[region[0] : region[1]]
            lookup = query if query.local_context is not None else replace(query, local_context=passage)
            citations = await self._retrieve(lookup)
            request = self._prompts.build(
                query,
                snapshot,
                region,
                citations,
                model=self._config.model,
                temperature=self._config.temperature,
                max_tokens=self._config.max_tokens,
            )
            stream.transition(StreamState.STREAMING)
        except BaseException:
            self._registry.release(stream_id)
            raise

        events: "asyncio.Queue[StreamEvent]" = asyncio.Queue(maxsize=self._config.event_channel_size)
        task = asyncio.create_task(self._run(stream, request, events), name=f"ragedit-stream-{stream_id}")
        self._track(task)
        self._streams[stream_id] = stream
        task.add_done_callback(lambda _: self._streams.pop(stream_id, None))
        self._logger.info(
            "stream.started",
            stream_id=stream_id,
            user_id=user_id,
            document_id=snapshot.document_id,
            version=snapshot.version,
            region=list(region),
            citations=len(citations),
        )
        return StreamHandle(stream, events, task, self)

    def cancel(self, target: StreamHandle | str) -> bool:
        """Signal cancellation; applied hunks stay applied."""

        stream_id = target.stream_id if isinstance(target, StreamHandle) else target
        stream = self._streams.get(stream_id)
        if stream is not None:
            # the registry slot is gone while the outcome is being published
            stream.cancel_signal.set()
        return self._registry.cancel(stream_id) or stream is not None

    async def regenerate(self, handle: StreamHandle) -> StreamHandle:
        """Restart the request of ``handle`` against the latest document revision."""

        stream = handle.stream
        if not stream.state.is_terminal:
            self.cancel(handle)
            await handle.wait()
        snapshot = await self._applier.snapshot(stream.document_id)
        length = len(snapshot.text)
        start, end = stream.region
        start = min(start, length)
        end = min(max(start, end + stream.net_delta), length)
        self._logger.info("stream.regenerate", previous_stream_id=stream.stream_id, version=snapshot.version)
        return await self.start(stream.query, snapshot, user_id=stream.user_id, region=(start, end))

    async def aclose(self) -> None:
        """Cancel every running stream and wait for background work."""

        for stream_id in list(self._streams):
            self.cancel(stream_id)
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)

    async def _retrieve(self, query: RetrievalQuery) -> Sequence[RetrievedChunk]:
        try:
            return await self._retriever.retrieve(query)
        except RetrievalError as exc:
            self._logger.warning("retrieval.degraded", document_id=query.document_id, error=str(exc))
            return ()

    async def _run(
        self,
        stream: CompletionStream,
        request: CompletionRequest,
        events: "asyncio.Queue[StreamEvent]",
    ) -> None:
        bind_correlation_id(stream.stream_id)
        channel: asyncio.Queue = asyncio.Queue(maxsize=self._config.channel_size)
        producer = asyncio.create_task(self._produce(stream, request, channel))
        try:
            await self._consume(stream, channel, events)
        except Exception as exc:  # noqa: BLE001 - errors stay scoped to this stream
            self._logger.exception("stream.crashed", stream_id=stream.stream_id)
            if not stream.state.is_terminal:
                self._fail(stream, f"{type(exc).__name__}: {exc}")
        finally:
            if not producer.done():
                producer.cancel()
            await asyncio.gather(producer, return_exceptions=True)
            self._registry.release(stream.stream_id)
        if not stream.state.is_terminal:
            self._fail(stream, "stream ended without a terminal state")

        duration = time.perf_counter() - stream.started_at
        PipelineMetrics.observe_stream(stream.state.value, duration)
        self._logger.info(
            "stream.finished",
            stream_id=stream.stream_id,
            state=stream.state.value,
            applied=stream.applied,
            unresolved=stream.unresolved,
            conflicts=stream.conflicts,
            version=stream.view.version,
            duration_seconds=duration,
        )
        await self._publish_outcome(stream, events)
        if stream.applied and self._reindexer is not None:
            self._track(asyncio.create_task(self._reindex(stream.document_id)))

    async def _produce(self, stream: CompletionStream, request: CompletionRequest, channel: asyncio.Queue) -> None:
        received: List[str] = []
        retrying = self._config.retry.retrying(
            TransientProviderError,
            logger=self._logger,
            event="provider.retry",
            on_retry=lambda _: PipelineMetrics.provider_retries.inc(),
        )
        try:
            async for attempt in retrying:
                with attempt:
                    resumed = replace(request, resume_from="".join(received)) if received else request
                    await self._pull(stream, resumed, channel, received)
        except StreamError as exc:
            self._logger.error("provider.failed", stream_id=stream.stream_id, error=str(exc))
            await _race(channel.put(("error", exc)), stream.cancel_signal)
        except Exception as exc:  # noqa: BLE001 - surfaced to the consumer as a provider failure
            self._logger.exception("provider.crashed", stream_id=stream.stream_id)
            failure = ProviderError(f"{type(exc).__name__}: {exc}")
            await _race(channel.put(("error", failure)), stream.cancel_signal)

    async def _pull(
        self,
        stream: CompletionStream,
        request: CompletionRequest,
        channel: asyncio.Queue,
        received: List[str],
    ) -> None:
        iterator = self._provider.stream(request).__aiter__()
        timeout = self._config.provider_timeout_seconds
        try:
            while not stream.cancelled:
                try:
                    arrived, event = await _race(iterator.__anext__(), stream.cancel_signal, timeout)
                except StopAsyncIteration:
                    raise TransientProviderError("Provider stream ended without a finish marker") from None
                if not arrived:
                    if stream.cancelled:
                        return
                    raise TransientProviderError(f"No delta within {timeout}s")
                if event.kind == "delta":
                    if not event.text:
                        continue
                    received.append(event.text)
                    await _race(channel.put(("delta", event.text)), stream.cancel_signal)
                elif event.kind == "finish":
                    await _race(channel.put(("finish", event.reason)), stream.cancel_signal)
                    return
                else:
                    error_type = TransientProviderError if event.transient else ProviderError
                    raise error_type(event.reason or "provider reported an error")
        finally:
            aclose = getattr(iterator, "aclose", None)
            if aclose is not None:
                await aclose()

    async def _consume(
        self,
        stream: CompletionStream,
        channel: asyncio.Queue,
        events: "asyncio.Queue[StreamEvent]",
    ) -> None:
        session = self._engine.open(stream.view.text, stream.region)
        pending = PendingHunks()
        shift = 0
        while True:
            arrived, item = await _race(channel.get(), stream.cancel_signal)
            if not arrived or stream.cancelled:
                self._abandon(stream, session, pending)
                return
            kind, payload = item
            if kind == "error":
                self._fail(stream, str(payload))
                return
            if kind == "delta":
                stream.output += payload
                hunks = session.feed(payload)
            else:
                hunks = session.finish()
            for hunk in hunks:
                pending.push(hunk.shifted(shift))
            shift = await self._drain(stream, pending, events, shift)
            if stream.cancelled:
                self._abandon(stream, session, pending)
                return
            if kind == "finish":
                stream.transition(StreamState.COMPLETED)
                return

    async def _drain(
        self,
        stream: CompletionStream,
        pending: PendingHunks,
        events: "asyncio.Queue[StreamEvent]",
        shift: int,
    ) -> int:
        while pending:
            if stream.cancelled:
                break
            hunk = pending.pop()
            moved = await self._settle(stream, hunk, events)
            if moved:
                pending.shift(hunk.start, moved)
                shift += moved
        return shift

    async def _settle(
        self,
        stream: CompletionStream,
        hunk: PatchHunk,
        events: "asyncio.Queue[StreamEvent]",
    ) -> int:
        """Resolve and apply one hunk, re-resolving after conflicts.

        Returns how far later hunks of the stream move: drift observed while
        resolving plus the length change of the applied hunk.
        """

        for attempt in range(self._config.max_conflict_retries + 1):
            resolution = self._engine.resolve(hunk, stream.view.text)
            if not resolution.resolved:
                await self._unresolved(stream, hunk, resolution.reason or "anchor_not_found", events)
                return 0
            start, end = resolution.start, resolution.end
            # a fuzzy match replaces what is there now, not the original anchor
            located = replace(
                hunk.moved_to(start, end, resolution.confidence),
                anchor=stream.view.text[start:end],
            )
            try:
                result = await self._applier.apply(stream.document_id, located)
            except ConflictError as exc:
                stream.conflicts += 1
                stream.view = DocumentSnapshot(stream.document_id, exc.version, exc.text)
                self._logger.warning(
                    "hunk.conflict",
                    stream_id=stream.stream_id,
                    attempt=attempt + 1,
                    version=exc.version,
                    start=located.start,
                )
                continue
            stream.view = result.snapshot()
            stream.applied += 1
            stream.net_delta += result.delta
            PipelineMetrics.hunk_outcomes.labels(outcome="applied").inc()
            self._logger.info(
                "hunk.applied",
                stream_id=stream.stream_id,
                start=located.start,
                end=located.end,
                version=result.version,
                method=resolution.method,
                confidence=resolution.confidence,
            )
            await self._publish(
                stream,
                events,
                HunkApplied(
                    stream.stream_id,
                    start=located.start,
                    end=located.end,
                    text=located.replacement,
                    new_version=result.version,
                    confidence=resolution.confidence,
                ),
            )
            return (located.end - hunk.end) + result.delta
        await self._unresolved(stream, hunk, "document_mutated", events)
        return 0

    async def _unresolved(
        self,
        stream: CompletionStream,
        hunk: PatchHunk,
        reason: str,
        events: "asyncio.Queue[StreamEvent]",
    ) -> None:
        stream.unresolved += 1
        PipelineMetrics.hunk_outcomes.labels(outcome=reason).inc()
        self._logger.warning("hunk.unresolved", stream_id=stream.stream_id, reason=reason, anchor=hunk.anchor)
        await self._publish(
            stream,
            events,
            HunkUnresolved(stream.stream_id, reason=reason, generated_text=hunk.replacement, anchor=hunk.anchor),
        )

    async def _publish(
        self,
        stream: CompletionStream,
        events: "asyncio.Queue[StreamEvent]",
        event: StreamEvent,
    ) -> bool:
        delivered, _ = await _race(events.put(event), stream.cancel_signal)
        if not delivered:
            self._logger.info("event.dropped", stream_id=stream.stream_id, type=event.type)
        return delivered

    async def _publish_outcome(self, stream: CompletionStream, events: "asyncio.Queue[StreamEvent]") -> None:
        outcome = self._terminal_event(stream)
        if await self._publish(stream, events, outcome):
            return
        # cancelled with nobody reading: make room so the outcome is still the last event
        while events.full():
            events.get_nowait()
        events.put_nowait(outcome)

    def _abandon(self, stream: CompletionStream, session: DiffSession, pending: PendingHunks) -> None:
        session.discard()
        dropped = pending.clear()
        stream.output = session.generated
        stream.transition(StreamState.CANCELLED)
        self._logger.info("stream.cancelled", stream_id=stream.stream_id, applied=stream.applied, dropped=len(dropped))

    def _fail(self, stream: CompletionStream, reason: str) -> None:
        stream.failure = reason
        stream.transition(StreamState.FAILED)
        self._logger.error("stream.failed", stream_id=stream.stream_id, reason=reason)

    @staticmethod
    def _terminal_event(stream: CompletionStream) -> StreamEvent:
        if stream.state is StreamState.COMPLETED:
            return StreamCompleted(
                stream.stream_id,
                applied=stream.applied,
                unresolved=stream.unresolved,
                version=stream.view.version,
            )
        if stream.state is StreamState.CANCELLED:
            return StreamCancelled(stream.stream_id, applied=stream.applied, version=stream.view.version)
        return StreamFailed(stream.stream_id, reason=stream.failure or "unknown failure")

    async def _reindex(self, document_id: str) -> None:
        try:
            snapshot = await self._applier.snapshot(document_id)
            await self._reindexer(snapshot)
        except RageditError as exc:
            self._logger.warning("index.refresh_failed", document_id=document_id, error=str(exc))

    def _track(self, task: asyncio.Task) -> None:
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)


async def _race(
    awaitable: Awaitable[Any],
    signal: asyncio.Event,
    timeout: float | None = None,
) -> Tuple[bool, Any]:
    """Await ``awaitable`` unless ``signal`` fires or ``timeout`` passes first.

    Returns ``(True, result)`` when the awaitable finished, ``(False, None)``
    otherwise; the loser is cancelled.
    """

    task = asyncio.ensure_future(awaitable)
    waiter = asyncio.ensure_future(signal.wait())
    try:
        await asyncio.wait({task, waiter}, timeout=timeout, return_when=asyncio.FIRST_COMPLETED)
    except asyncio.CancelledError:
        task.cancel()
        await asyncio.wait({task})
        raise
    finally:
        waiter.cancel()
    if not task.done():
        task.cancel()
        await asyncio.wait({task})
        return False, None
    return True, task.result()


def _checked_region(snapshot: DocumentSnapshot, region: Tuple[int, int] | None) -> Tuple[int, int]:
    if region is None:
        return (0, len(snapshot.text))
    start, end = region
    if not 0 <= start <= end <= len(snapshot.text):
        raise ValueError(f"Region [{start}, {end}) is outside document {snapshot.document_id}")
    return (start, end)


__all__ = [
    "CompletionOrchestrator",
    "CompletionStream",
    "OrchestratorConfig",
    "Reindexer",
    "StreamHandle",
]
