"""Embedding indexer: versioned upserts with stale-chunk reclamation."""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Sequence, TypeVar

from ragedit.chunking.service import Chunker
from ragedit.embeddings.service import EmbeddingBackend
from ragedit.embeddings.store import VectorRecord, VectorStore
from ragedit.errors import EmbeddingDimensionError, RetrievalError, VectorStoreUnavailableError
from ragedit.metrics.observability import PipelineMetrics, get_logger
from ragedit.models import Chunk, DocumentSnapshot
from ragedit.retrying import RetryPolicy

T = TypeVar("T")


@dataclass(frozen=True)
class IndexingConfig:
    """Configuration for the indexer."""

    collection: str = "ragedit-chunks"
    retry: RetryPolicy = RetryPolicy()


@dataclass(frozen=True)
class IndexResult:
    """Outcome of indexing one document version."""

    document_id: str
    version: int
    indexed: int
    skipped: int
    stale_marked: int

    @property
    def is_noop(self) -> bool:
        return self.indexed == 0 and self.stale_marked == 0


def chunk_metadata(chunk: Chunk) -> dict[str, Any]:
    return {
        "document_id": chunk.document_id,
        "version": chunk.version,
        "start": chunk.start,
        "end": chunk.end,
        "order": chunk.order,
        "content_hash": chunk.content_hash,
        "stale": chunk.stale,
        "dataset_id": chunk.dataset_id,
    }


class EmbeddingIndexer:
    """Embed chunks and upsert them into the vector store, one version at a time."""

    def __init__(
        self,
        backend: EmbeddingBackend,
        store: VectorStore,
        config: IndexingConfig | None = None,
    ) -> None:
        self._backend = backend
        self._store = store
        self._config = config or IndexingConfig()
        self._logger = get_logger("indexing")
        self._reclaim_tasks: set[asyncio.Task[None]] = set()
        if backend.dimension != store.dimension:
            raise EmbeddingDimensionError(expected=store.dimension, actual=backend.dimension)

    @property
    def collection(self) -> str:
        return self._config.collection

    async def index(
        self,
        document_id: str,
        version: int,
        chunks: Sequence[Chunk],
        *,
        dataset_id: str | None = None,
    ) -> IndexResult:
        for chunk in chunks:
            if chunk.document_id != document_id or chunk.version != version:
                raise ValueError(f"Chunk {chunk.chunk_id} does not belong to {document_id} v{version}")
        start = time.perf_counter()
        collection = self._config.collection
        existing = await self._retry(
            self._store.get,
            collection,
            {"document_id": document_id, "version": version},
        )
        known_hashes = {point.point_id: point.metadata.get("content_hash") for point in existing}
        pending = [chunk for chunk in chunks if known_hashes.get(chunk.chunk_id) != chunk.content_hash]
        orphaned = set(known_hashes) - {chunk.chunk_id for chunk in chunks}

        if pending:
            vectors = await asyncio.to_thread(self._backend.embed_texts, [chunk.text for chunk in pending])
            records = []
            for chunk, vector in zip(pending, vectors, strict=True):
                if len(vector) != self._store.dimension:
                    raise EmbeddingDimensionError(expected=self._store.dimension, actual=len(vector))
                metadata = chunk_metadata(chunk)
                if dataset_id is not None:
                    metadata["dataset_id"] = dataset_id
                records.append(VectorRecord(chunk.chunk_id, vector, metadata, chunk.text))
            await self._retry(self._store.upsert_many, collection, records)
        if orphaned:
            await self._retry(self._store.delete, collection, point_ids=sorted(orphaned))

        stale_marked = await self._mark_previous_stale(document_id, version)
        duration = time.perf_counter() - start
        PipelineMetrics.observe_indexing(duration, len(pending))
        self._logger.info(
            "index.complete",
            document_id=document_id,
            version=version,
            indexed=len(pending),
            skipped=len(chunks) - len(pending),
            stale_marked=stale_marked,
            duration_seconds=duration,
        )
        return IndexResult(
            document_id=document_id,
            version=version,
            indexed=len(pending),
            skipped=len(chunks) - len(pending),
            stale_marked=stale_marked,
        )

    async def drain(self) -> None:
        """Wait for scheduled stale-chunk deletions to finish."""

        while self._reclaim_tasks:
            await asyncio.gather(*list(self._reclaim_tasks), return_exceptions=True)

    async def _mark_previous_stale(self, document_id: str, version: int) -> int:
        collection = self._config.collection
        live_filter = {"document_id": document_id, "version": {"$lt": version}, "stale": False}
        previous = await self._retry(self._store.get, collection, live_filter)
        if not previous:
            return 0
        await self._retry(
            self._store.update_metadata,
            collection,
            [point.point_id for point in previous],
            [{**point.metadata, "stale": True} for point in previous],
        )
        PipelineMetrics.stale_chunks.inc(len(previous))
        task = asyncio.create_task(self._reclaim(document_id, version))
        self._reclaim_tasks.add(task)
        task.add_done_callback(self._reclaim_tasks.discard)
        return len(previous)

    async def _reclaim(self, document_id: str, version: int) -> None:
        stale_filter = {"document_id": document_id, "version": {"$lt": version}, "stale": True}
        try:
            await self._retry(self._store.delete, self._config.collection, filter=stale_filter)
        except RetrievalError as exc:
            self._logger.error("index.reclaim_failed", document_id=document_id, version=version, error=str(exc))
            return
        self._logger.info("index.reclaimed", document_id=document_id, below_version=version)

    async def _retry(self, fn: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any) -> T:
        retrying = self._config.retry.retrying(
            VectorStoreUnavailableError,
            logger=self._logger,
            event="index.retry",
        )
        async for attempt in retrying:
            with attempt:
                result = await fn(*args, **kwargs)
        return result


class DocumentReindexer:
    """Chunk and index one revision of a document, retiring older versions."""

    def __init__(self, chunker: Chunker, indexer: EmbeddingIndexer, dataset_id: str | None = None) -> None:
        self._chunker = chunker
        self._indexer = indexer
        self._dataset_id = dataset_id

    async def __call__(self, snapshot: DocumentSnapshot) -> IndexResult:
        chunks = self._chunker.split(
            snapshot.text,
            document_id=snapshot.document_id,
            version=snapshot.version,
            dataset_id=self._dataset_id,
        )
        return await self._indexer.index(
            snapshot.document_id,
            snapshot.version,
            chunks,
            dataset_id=self._dataset_id,
        )
