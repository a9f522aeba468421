from __future__ import annotations

from uuid import uuid4

import chromadb
import pytest

from ragedit.embeddings.service import EmbeddingConfig, HashEmbeddingBackend
from ragedit.embeddings.store import ChromaVectorStore, VectorRecord, build_where
from ragedit.errors import EmbeddingDimensionError, VectorStoreUnavailableError

BACKEND = HashEmbeddingBackend(EmbeddingConfig(dim=8))


def _collection() -> str:
    return f"store-{uuid4().hex[:12]}"


def _record(point_id: str, text: str, **metadata) -> VectorRecord:
    return VectorRecord(point_id, BACKEND.embed_query(text), {"stale": False, **metadata}, text)


async def test_upsert_and_similarity_search():
    store = ChromaVectorStore(8, client=chromadb.EphemeralClient())
    collection = _collection()
    await store.upsert_many(
        collection,
        [_record("a", "alpha beta gamma", document_id="d1"), _record("b", "lorem ipsum", document_id="d2")],
    )
    assert await store.count(collection) == 2
    hits = await store.search(collection, BACKEND.embed_query("alpha beta gamma"), 2)
    assert [hit.point_id for hit in hits][0] == "a"
    assert hits[0].score == pytest.approx(1.0, abs=1e-3)
    assert hits[0].text == "alpha beta gamma"
    assert hits[0].metadata["document_id"] == "d1"


async def test_filters_and_metadata_updates():
    store = ChromaVectorStore(8, client=chromadb.EphemeralClient())
    collection = _collection()
    await store.upsert_many(
        collection,
        [
            _record("d1:1:0", "first version", document_id="d1", version=1),
            _record("d1:2:0", "second version", document_id="d1", version=2),
        ],
    )
    older = await store.get(collection, {"document_id": "d1", "version": {"$lt": 2}})
    assert [point.point_id for point in older] == ["d1:1:0"]

    await store.update_metadata(collection, ["d1:1:0"], [{**older[0].metadata, "stale": True}])
    live = await store.search(collection, BACKEND.embed_query("first version"), 5, {"stale": False})
    assert [hit.point_id for hit in live] == ["d1:2:0"]

    await store.delete(collection, filter={"stale": True})
    assert await store.count(collection) == 1
    assert await store.count(collection, {"version": 2}) == 1


async def test_none_metadata_values_are_dropped():
    store = ChromaVectorStore(8, client=chromadb.EphemeralClient())
    collection = _collection()
    await store.upsert(collection, "p", BACKEND.embed_query("text"), {"dataset_id": None, "stale": False}, "text")
    (point,) = await store.get(collection)
    assert "dataset_id" not in point.metadata


async def test_vector_dimension_is_enforced():
    store = ChromaVectorStore(8, client=chromadb.EphemeralClient())
    with pytest.raises(EmbeddingDimensionError):
        await store.upsert(_collection(), "x", (0.5,) * 4, {})


async def test_collection_dimension_is_checked_on_reopen():
    client = chromadb.EphemeralClient()
    collection = _collection()
    await ChromaVectorStore(8, client=client).upsert_many(collection, [_record("a", "alpha")])
    with pytest.raises(EmbeddingDimensionError):
        await ChromaVectorStore(16, client=client).count(collection)


class _UnreachableClient:
    def get_or_create_collection(self, **_kwargs):
        raise ConnectionError("connection refused")


async def test_connection_errors_map_to_unavailable():
    store = ChromaVectorStore(8, client=_UnreachableClient())
    with pytest.raises(VectorStoreUnavailableError):
        await store.count(_collection())


def test_build_where_translates_filters():
    assert build_where(None) is None
    assert build_where({"stale": False}) == {"stale": False}
    assert build_where({"version": {"$lt": 3}, "document_id": ["a", "b"]}) == {
        "$and": [{"version": {"$lt": 3}}, {"document_id": {"$in": ["a", "b"]}}],
    }
