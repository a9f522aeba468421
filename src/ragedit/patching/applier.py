"""Transactional application of resolved hunks to live documents."""

from __future__ import annotations

import asyncio
from collections import deque
from dataclasses import dataclass
from typing import Deque, Iterable, Iterator, List, Sequence

from ragedit.errors import ConflictError, VersionConflict
from ragedit.metrics.observability import PipelineMetrics, get_logger
from ragedit.models import DocumentSnapshot, PatchHunk
from ragedit.patching.store import DocumentStore


@dataclass(frozen=True)
class ApplyResult:
    """A committed hunk: where it landed and what the document became."""

    document_id: str
    version: int
    text: str
    start: int
    end: int
    delta: int

    def snapshot(self) -> DocumentSnapshot:
        return DocumentSnapshot(document_id=self.document_id, version=self.version, text=self.text)


class PendingHunks:
    """Hunks of one stream waiting to be applied, kept in offset order."""

    def __init__(self, hunks: Iterable[PatchHunk] = ()) -> None:
        self._hunks: Deque[PatchHunk] = deque(sorted(hunks, key=lambda hunk: (hunk.start, hunk.order)))

    def __len__(self) -> int:
        return len(self._hunks)

    def __iter__(self) -> Iterator[PatchHunk]:
        return iter(self._hunks)

    def push(self, hunk: PatchHunk) -> None:
        if self._hunks and (hunk.start, hunk.order) < (self._hunks[-1].start, self._hunks[-1].order):
            self._hunks = deque(sorted([*self._hunks, hunk], key=lambda item: (item.start, item.order)))
        else:
            self._hunks.append(hunk)

    def pop(self) -> PatchHunk:
        return self._hunks.popleft()

    def clear(self) -> List[PatchHunk]:
        dropped = list(self._hunks)
        self._hunks.clear()
        return dropped

    def shift(self, after: int, delta: int) -> None:
        """Move every hunk starting at or after ``after`` by ``delta`` characters."""

        if not delta:
            return
        self._hunks = deque(hunk.shifted(delta) if hunk.start >= after else hunk for hunk in self._hunks)


class PatchApplier:
    """Apply hunks under a per-document mutation scope.

    Only one hunk commits against a given document at a time; every
    application re-reads the latest text and checks the anchor before writing.
    """

    def __init__(self, store: DocumentStore) -> None:
        self._store = store
        self._locks: dict[str, asyncio.Lock] = {}
        self._logger = get_logger("patching")

    def mutation_scope(self, document_id: str) -> asyncio.Lock:
        lock = self._locks.get(document_id)
        if lock is None:
            lock = self._locks[document_id] = asyncio.Lock()
        return lock

    async def snapshot(self, document_id: str) -> DocumentSnapshot:
        version, text = await self._store.load(document_id)
        return DocumentSnapshot(document_id=document_id, version=version, text=text)

    async def apply(self, document_id: str, hunk: PatchHunk) -> ApplyResult:
        async with self.mutation_scope(document_id):
            version, text = await self._store.load(document_id)
            if not 0 <= hunk.start <= hunk.end <= len(text) or text[hunk.start : hunk.end] != hunk.anchor:
                PipelineMetrics.patch_conflicts.inc()
                raise ConflictError(
                    document_id,
                    version,
                    text,
                    f"anchor {hunk.anchor!r} not found at [{hunk.start}, {hunk.end})",
                )
            new_text = text[: hunk.start] + hunk.replacement + text[hunk.end :]
            try:
                new_version = await self._store.commit(document_id, version, new_text)
            except VersionConflict as exc:
                PipelineMetrics.patch_conflicts.inc()
                latest_version, latest_text = await self._store.load(document_id)
                raise ConflictError(document_id, latest_version, latest_text, str(exc)) from exc
        self._logger.info(
            "hunk.committed",
            document_id=document_id,
            version=new_version,
            start=hunk.start,
            end=hunk.end,
            delta=hunk.delta,
        )
        return ApplyResult(
            document_id=document_id,
            version=new_version,
            text=new_text,
            start=hunk.start,
            end=hunk.start + len(hunk.replacement),
            delta=hunk.delta,
        )

    async def apply_all(self, document_id: str, hunks: Sequence[PatchHunk]) -> list[ApplyResult]:
        """Apply non-overlapping hunks in offset order, shifting the ones left."""

        pending = PendingHunks(hunks)
        results: list[ApplyResult] = []
        while pending:
            hunk = pending.pop()
            result = await self.apply(document_id, hunk)
            pending.shift(hunk.end, result.delta)
            results.append(result)
        return results
