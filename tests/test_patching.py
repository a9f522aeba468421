from __future__ import annotations

import asyncio

import pytest

from ragedit.errors import ConflictError, VersionConflict
from ragedit.models import PatchHunk
from ragedit.patching import InMemoryDocumentStore, PatchApplier, PendingHunks


def _hunk(start: int, end: int, anchor: str, replacement: str, order: int = 0) -> PatchHunk:
    return PatchHunk(anchor=anchor, replacement=replacement, start=start, end=end, order=order)


def _applier(text: str) -> tuple[InMemoryDocumentStore, PatchApplier]:
    store = InMemoryDocumentStore()
    store.create("doc", text)
    return store, PatchApplier(store)


async def test_apply_commits_and_bumps_version():
    store, applier = _applier("The cat sit.")
    result = await applier.apply("doc", _hunk(8, 11, "sit", "sat"))
    assert result.version == 2
    assert result.text == "The cat sat."
    assert (result.start, result.end, result.delta) == (8, 11, 0)
    assert await store.load("doc") == (2, "The cat sat.")


async def test_stale_anchor_raises_conflict_with_latest_text():
    store, applier = _applier("The cat sit.")
    await store.commit("doc", 1, "Note: The cat sit.")
    with pytest.raises(ConflictError) as excinfo:
        await applier.apply("doc", _hunk(8, 11, "sit", "sat"))
    assert excinfo.value.version == 2
    assert excinfo.value.text == "Note: The cat sit."
    assert await store.load("doc") == (2, "Note: The cat sit.")


async def test_out_of_range_hunk_is_a_conflict():
    _, applier = _applier("short")
    with pytest.raises(ConflictError):
        await applier.apply("doc", _hunk(10, 12, "xx", "yy"))


class RacingStore(InMemoryDocumentStore):
    """Simulates a writer outside this process committing between load and commit."""

    async def commit(self, document_id: str, expected_version: int, new_text: str) -> int:
        version, text = await self.load(document_id)
        self._documents[document_id] = (version + 1, text + " (edited elsewhere)")
        raise VersionConflict(document_id, expected_version, version + 1)


async def test_store_version_conflict_becomes_conflict_error():
    store = RacingStore()
    store.create("doc", "The cat sit.")
    with pytest.raises(ConflictError) as excinfo:
        await PatchApplier(store).apply("doc", _hunk(8, 11, "sit", "sat"))
    assert excinfo.value.version == 2
    assert excinfo.value.text.endswith("(edited elsewhere)")


async def test_apply_all_shifts_pending_hunks():
    store, applier = _applier("one two three")
    results = await applier.apply_all(
        "doc",
        [_hunk(8, 13, "three", "3", order=1), _hunk(0, 3, "one", "1111", order=0)],
    )
    assert [result.version for result in results] == [2, 3]
    assert await store.load("doc") == (3, "1111 two 3")


async def test_mutations_of_one_document_are_serialized():
    store, applier = _applier("a b c d")
    hunks = [_hunk(0, 1, "a", "A"), _hunk(2, 3, "b", "B"), _hunk(4, 5, "c", "C"), _hunk(6, 7, "d", "D")]
    results = await asyncio.gather(*(applier.apply("doc", hunk) for hunk in hunks))
    assert sorted(result.version for result in results) == [2, 3, 4, 5]
    assert await store.load("doc") == (5, "A B C D")


async def test_snapshot_reads_latest_revision():
    store, applier = _applier("text")
    await applier.apply("doc", _hunk(0, 4, "text", "prose"))
    snapshot = await applier.snapshot("doc")
    assert (snapshot.version, snapshot.text) == (2, "prose")


def test_pending_hunks_stay_ordered_and_shift():
    pending = PendingHunks()
    pending.push(_hunk(20, 25, "later", "x", order=1))
    pending.push(_hunk(2, 5, "abc", "y", order=0))
    assert [hunk.start for hunk in pending] == [2, 20]

    first = pending.pop()
    pending.shift(first.end, 3)
    assert [(hunk.start, hunk.end) for hunk in pending] == [(23, 28)]
    assert len(pending.clear()) == 1
    assert len(pending) == 0


async def test_unknown_document():
    _, applier = _applier("x")
    with pytest.raises(KeyError):
        await applier.snapshot("missing")
