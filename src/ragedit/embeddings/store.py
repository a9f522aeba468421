"""Vector store implementations."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from functools import partial
from pathlib import Path
from typing import Any, Callable, Dict, Mapping, MutableMapping, Protocol, Sequence, TypeVar

import chromadb
import httpx
from chromadb.api import ClientAPI
from chromadb.api.models.Collection import Collection

from ragedit.errors import EmbeddingDimensionError, RetrievalError, VectorStoreUnavailableError

T = TypeVar("T")

MetadataValue = str | int | float | bool


@dataclass(frozen=True)
class VectorRecord:
    """Point to write: identifier, vector, metadata and the raw text."""

    point_id: str
    vector: Sequence[float]
    metadata: Mapping[str, MetadataValue | None]
    text: str = ""


@dataclass(frozen=True)
class StoredPoint:
    """Point read back from the store; ``score`` is set for search hits only."""

    point_id: str
    metadata: Mapping[str, Any] = field(default_factory=dict)
    text: str = ""
    score: float = 0.0


class VectorStore(Protocol):
    """Protocol for vector persistence backends."""

    @property
    def dimension(self) -> int:
        """Vector dimensionality every collection enforces."""

    async def upsert(
        self,
        collection: str,
        point_id: str,
        vector: Sequence[float],
        metadata: Mapping[str, MetadataValue | None],
        text: str = "",
    ) -> None:
        """Insert or replace a single point."""

    async def upsert_many(self, collection: str, records: Sequence[VectorRecord]) -> None:
        """Insert or replace a batch of points."""

    async def search(
        self,
        collection: str,
        vector: Sequence[float],
        k: int,
        filter: Mapping[str, Any] | None = None,
    ) -> Sequence[StoredPoint]:
        """Return up to ``k`` points ordered by descending similarity."""

    async def get(self, collection: str, filter: Mapping[str, Any] | None = None) -> Sequence[StoredPoint]:
        """Return every point matching ``filter``."""

    async def update_metadata(
        self,
        collection: str,
        point_ids: Sequence[str],
        metadatas: Sequence[Mapping[str, MetadataValue | None]],
    ) -> None:
        """Replace the metadata of existing points."""

    async def delete(
        self,
        collection: str,
        *,
        point_ids: Sequence[str] | None = None,
        filter: Mapping[str, Any] | None = None,
    ) -> None:
        """Remove points by id or filter; no arguments removes everything."""

    async def count(self, collection: str, filter: Mapping[str, Any] | None = None) -> int:
        """Return the number of points matching ``filter``."""


def build_where(filter: Mapping[str, Any] | None) -> Dict[str, Any] | None:
    """Translate a flat equality filter into a Chroma ``where`` clause.

    Values that are dicts are passed through as operator expressions
    (``{"version": {"$lt": 3}}``); lists and tuples become ``$in``.
    """

    if not filter:
        return None
    clauses: list[Dict[str, Any]] = []
    for key, value in filter.items():
        if isinstance(value, Mapping):
            clauses.append({key: dict(value)})
        elif isinstance(value, (list, tuple, set)):
            clauses.append({key: {"$in": list(value)}})
        else:
            clauses.append({key: value})
    if len(clauses) == 1:
        return clauses[0]
    return {"$and": clauses}


class ChromaVectorStore:
    """Chroma-backed vector store.

    Chroma's client is synchronous; each call runs in a worker thread under a
    timeout so callers only ever await.
    """

    _UNAVAILABLE = (ConnectionError, OSError, httpx.TransportError)

    def __init__(
        self,
        dimension: int,
        *,
        client: ClientAPI | None = None,
        persist_directory: str | Path | None = None,
        timeout_seconds: float = 10.0,
    ) -> None:
        if client is not None:
            self._client = client
        elif persist_directory is not None:
            self._client = chromadb.PersistentClient(path=str(persist_directory))
        else:
            self._client = chromadb.EphemeralClient()
        self._dimension = dimension
        self._timeout = timeout_seconds
        self._collections: dict[str, Collection] = {}

    @property
    def dimension(self) -> int:
        return self._dimension

    async def upsert(
        self,
        collection: str,
        point_id: str,
        vector: Sequence[float],
        metadata: Mapping[str, MetadataValue | None],
        text: str = "",
    ) -> None:
        await self.upsert_many(collection, [VectorRecord(point_id, vector, metadata, text)])

    async def upsert_many(self, collection: str, records: Sequence[VectorRecord]) -> None:
        if not records:
            return
        for record in records:
            self._check_dimension(record.vector)
        target = await self._collection(collection)
        await self._call(
            target.upsert,
            ids=[record.point_id for record in records],
            embeddings=[list(record.vector) for record in records],
            metadatas=[self._clean(record.metadata) for record in records],
            documents=[record.text for record in records],
        )

    async def search(
        self,
        collection: str,
        vector: Sequence[float],
        k: int,
        filter: Mapping[str, Any] | None = None,
    ) -> Sequence[StoredPoint]:
        if k <= 0:
            return []
        self._check_dimension(vector)
        target = await self._collection(collection)
        results = await self._call(
            target.query,
            query_embeddings=[list(vector)],
            n_results=k,
            where=build_where(filter),
            include=["metadatas", "documents", "distances"],
        )
        ids = self._first(results.get("ids"))
        metadatas = self._first(results.get("metadatas"))
        documents = self._first(results.get("documents"))
        distances = self._first(results.get("distances"))
        hits: list[StoredPoint] = []
        for index, point_id in enumerate(ids):
            distance = distances[index] if index < len(distances) else None
            hits.append(
                StoredPoint(
                    point_id=point_id,
                    metadata=dict(metadatas[index] or {}) if index < len(metadatas) else {},
                    text=(documents[index] or "") if index < len(documents) else "",
                    score=1.0 - float(distance) if distance is not None else 0.0,
                ),
            )
        return hits

    async def get(self, collection: str, filter: Mapping[str, Any] | None = None) -> Sequence[StoredPoint]:
        target = await self._collection(collection)
        batch = await self._call(target.get, where=build_where(filter), include=["metadatas", "documents"])
        ids = batch.get("ids") or []
        metadatas = batch.get("metadatas") or []
        documents = batch.get("documents") or []
        return [
            StoredPoint(
                point_id=point_id,
                metadata=dict(metadatas[index] or {}) if index < len(metadatas) else {},
                text=(documents[index] or "") if index < len(documents) else "",
            )
            for index, point_id in enumerate(ids)
        ]

    async def update_metadata(
        self,
        collection: str,
        point_ids: Sequence[str],
        metadatas: Sequence[Mapping[str, MetadataValue | None]],
    ) -> None:
        if not point_ids:
            return
        target = await self._collection(collection)
        await self._call(
            target.update,
            ids=list(point_ids),
            metadatas=[self._clean(metadata) for metadata in metadatas],
        )

    async def delete(
        self,
        collection: str,
        *,
        point_ids: Sequence[str] | None = None,
        filter: Mapping[str, Any] | None = None,
    ) -> None:
        target = await self._collection(collection)
        if point_ids is None and not filter:
            point_ids = [point.point_id for point in await self.get(collection)]
            if not point_ids:
                return
        await self._call(
            target.delete,
            ids=list(point_ids) if point_ids is not None else None,
            where=build_where(filter),
        )

    async def count(self, collection: str, filter: Mapping[str, Any] | None = None) -> int:
        target = await self._collection(collection)
        if not filter:
            return int(await self._call(target.count))
        batch = await self._call(target.get, where=build_where(filter), include=[])
        return len(batch.get("ids") or [])

    async def _collection(self, name: str) -> Collection:
        existing = self._collections.get(name)
        if existing is not None:
            return existing
        collection = await self._call(
            self._client.get_or_create_collection,
            name=name,
            metadata={"hnsw:space": "cosine", "dimension": self._dimension},
        )
        stored_dim = (collection.metadata or {}).get("dimension")
        if stored_dim is not None and int(stored_dim) != self._dimension:
            raise EmbeddingDimensionError(expected=int(stored_dim), actual=self._dimension)
        self._collections[name] = collection
        return collection

    async def _call(self, fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        try:
            return await asyncio.wait_for(asyncio.to_thread(partial(fn, *args, **kwargs)), self._timeout)
        except asyncio.TimeoutError as exc:
            raise VectorStoreUnavailableError(f"Vector store call timed out after {self._timeout}s") from exc
        except self._UNAVAILABLE as exc:
            raise VectorStoreUnavailableError(f"Vector store unavailable: {exc}") from exc
        except RetrievalError:
            raise
        except Exception as exc:
            raise RetrievalError(f"Vector store call failed: {exc}") from exc

    def _check_dimension(self, vector: Sequence[float]) -> None:
        if len(vector) != self._dimension:
            raise EmbeddingDimensionError(expected=self._dimension, actual=len(vector))

    @staticmethod
    def _clean(metadata: Mapping[str, MetadataValue | None]) -> MutableMapping[str, MetadataValue]:
        return {key: value for key, value in metadata.items() if value is not None}

    @staticmethod
    def _first(value: object) -> list:
        if isinstance(value, list):
            first = value[0] if value else []
            return list(first) if first is not None else []
        return []
