"""Retrieval coordination on top of the vector store."""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Any, Protocol, Sequence

from ragedit.embeddings.service import EmbeddingBackend
from ragedit.embeddings.store import StoredPoint, VectorStore
from ragedit.errors import VectorStoreUnavailableError
from ragedit.metrics.observability import PipelineMetrics, get_logger
from ragedit.models import Chunk, RetrievalQuery, RetrievedChunk
from ragedit.retrying import RetryPolicy


@dataclass(frozen=True)
class RetrievalConfig:
    """Configuration for retrieval."""

    collection: str = "ragedit-chunks"
    top_k: int = 5
    max_top_k: int | None = 20
    similarity_threshold: float = 0.2
    rerank_lexical: bool = False
    lexical_blend_weight: float = 0.35
    retry: RetryPolicy = RetryPolicy()


class Retriever(Protocol):
    """Retrieve relevant chunks for a query."""

    async def retrieve(self, query: RetrievalQuery) -> Sequence[RetrievedChunk]:
        """Return the top-k chunks above the similarity threshold."""


class RetrievalCoordinator:
    """Embed the query, search live chunks and filter by similarity."""

    def __init__(
        self,
        backend: EmbeddingBackend,
        store: VectorStore,
        config: RetrievalConfig | None = None,
    ) -> None:
        self._backend = backend
        self._store = store
        self._config = config or RetrievalConfig()
        self._logger = get_logger("retrieval")

    async def retrieve(self, query: RetrievalQuery) -> Sequence[RetrievedChunk]:
        start = time.perf_counter()
        limit = query.top_k or self._config.top_k
        if self._config.max_top_k:
            limit = min(limit, self._config.max_top_k)
        limit = max(1, limit)
        threshold = (
            self._config.similarity_threshold
            if query.similarity_threshold is None
            else query.similarity_threshold
        )

        vector = await asyncio.to_thread(self._backend.embed_query, query.text)
        search_filter: dict[str, Any] = {"stale": False}
        if query.dataset_id:
            search_filter["dataset_id"] = query.dataset_id

        retrying = self._config.retry.retrying(
            VectorStoreUnavailableError,
            logger=self._logger,
            event="retrieval.retry",
        )
        async for attempt in retrying:
            with attempt:
                hits = await self._store.search(self._config.collection, vector, limit, search_filter)

        items = [self._to_retrieved(hit) for hit in hits if hit.score >= threshold]
        if self._config.rerank_lexical and items:
            items = self._rerank(query.text, items)

        duration = time.perf_counter() - start
        PipelineMetrics.observe_retrieval(duration, len(items), (item.score for item in items))
        self._logger.info(
            "retrieval.complete",
            document_id=query.document_id,
            chunk_count=len(items),
            candidates=len(hits),
            threshold=threshold,
            duration_seconds=duration,
        )
        return items

    def _rerank(self, text: str, items: list[RetrievedChunk]) -> list[RetrievedChunk]:
        weight = self._clamp_weight(self._config.lexical_blend_weight)
        tokens = set(text.lower().split())
        scored: list[tuple[RetrievedChunk, float]] = []
        for item in items:
            lexical = _token_overlap_score(tokens, item.chunk.text)
            scored.append((item, (1.0 - weight) * item.score + weight * lexical))
        scored.sort(key=lambda pair: pair[1], reverse=True)
        return [pair[0] for pair in scored]

    @staticmethod
    def _to_retrieved(hit: StoredPoint) -> RetrievedChunk:
        metadata = hit.metadata
        chunk = Chunk(
            chunk_id=hit.point_id,
            document_id=str(metadata.get("document_id", "")),
            version=int(metadata.get("version", 0)),
            text=hit.text,
            start=int(metadata.get("start", 0)),
            end=int(metadata.get("end", 0)),
            order=int(metadata.get("order", 0)),
            content_hash=str(metadata.get("content_hash", "")),
            stale=bool(metadata.get("stale", False)),
            dataset_id=metadata.get("dataset_id"),
        )
        return RetrievedChunk(chunk=chunk, score=hit.score)

    @staticmethod
    def _clamp_weight(weight: float) -> float:
        if weight < 0.0:
            return 0.0
        if weight > 1.0:
            return 1.0
        return weight


def _token_overlap_score(query_tokens: set[str], text: str) -> float:
    tokens = set(text.lower().split())
    if not tokens:
        return 0.0
    overlap = len(query_tokens.intersection(tokens))
    return overlap / max(len(query_tokens), 1)
