"""Wiring of the ragedit components from settings."""

from __future__ import annotations

from dataclasses import dataclass

import chromadb
import httpx
from chromadb.api import ClientAPI

from ragedit.chunking import Chunker, ChunkingConfig
from ragedit.completion import (
    CompletionOrchestrator,
    ModelProvider,
    OpenAIStreamProvider,
    OrchestratorConfig,
    ScriptedProvider,
    echo_region,
)
from ragedit.config import Settings, get_settings
from ragedit.diffing import DiffAnchorEngine, EngineConfig
from ragedit.embeddings import (
    ChromaVectorStore,
    EmbeddingBackend,
    EmbeddingConfig,
    HashEmbeddingBackend,
    HuggingFaceEmbeddingBackend,
)
from ragedit.indexing import DocumentReindexer, EmbeddingIndexer, IndexingConfig, IndexResult
from ragedit.ingestion import ContentIngestor, ContentSource, IngestionConfig
from ragedit.metrics.observability import get_logger
from ragedit.models import DocumentSnapshot
from ragedit.patching import DocumentStore, InMemoryDocumentStore, PatchApplier
from ragedit.retrieval import RetrievalConfig, RetrievalCoordinator
from ragedit.retrying import RetryPolicy
from ragedit.streams import SettingsPlanProvider, StreamRegistry


@dataclass(frozen=True)
class Pipeline:
    ingestor: ContentIngestor
    chunker: Chunker
    backend: EmbeddingBackend
    store: ChromaVectorStore
    indexer: EmbeddingIndexer
    retriever: RetrievalCoordinator
    documents: DocumentStore
    applier: PatchApplier
    plans: SettingsPlanProvider
    registry: StreamRegistry
    orchestrator: CompletionOrchestrator

    async def index_snapshot(self, snapshot: DocumentSnapshot, *, dataset_id: str | None = None) -> IndexResult:
        chunks = self.chunker.split(
            snapshot.text,
            document_id=snapshot.document_id,
            version=snapshot.version,
            dataset_id=dataset_id,
        )
        return await self.indexer.index(snapshot.document_id, snapshot.version, chunks, dataset_id=dataset_id)

    async def add_source(
        self,
        document_id: str,
        source: ContentSource,
        *,
        dataset_id: str | None = None,
    ) -> tuple[DocumentSnapshot, IndexResult]:
        """Ingest a source as version 1 of a new document and index it.

        Only supported when the document store is the in-memory one.
        """

        if not isinstance(self.documents, InMemoryDocumentStore):
            raise TypeError("add_source needs an InMemoryDocumentStore")
        content = await self.ingestor.ingest(source)
        self.documents.create(document_id, content.text)
        snapshot = await self.applier.snapshot(document_id)
        return snapshot, await self.index_snapshot(snapshot, dataset_id=dataset_id)


def build_embedding_backend(settings: Settings) -> EmbeddingBackend:
    config = EmbeddingConfig(
        model=settings.embedding_model,
        dim=settings.embedding_dim,
        use_model=settings.use_model_embeddings,
        normalize=True,
    )
    if settings.use_model_embeddings:
        return HuggingFaceEmbeddingBackend(config)
    return HashEmbeddingBackend(config)


def build_provider(settings: Settings) -> ModelProvider:
    if settings.generator_provider == "openai":
        return OpenAIStreamProvider(api_key=settings.openai_api_key, base_url=settings.openai_base_url)
    return ScriptedProvider(echo_region)


def build_pipeline(
    settings: Settings | None = None,
    *,
    chroma_client: ClientAPI | None = None,
    http_client: httpx.AsyncClient | None = None,
    provider: ModelProvider | None = None,
    documents: DocumentStore | None = None,
) -> Pipeline:
    settings = settings or get_settings()
    logger = get_logger("pipeline")
    retry = RetryPolicy(
        max_attempts=settings.retry_max_attempts,
        backoff_multiplier=settings.retry_backoff_multiplier,
        backoff_max_seconds=settings.retry_backoff_max_seconds,
    )

    if chroma_client is None and settings.chroma_host:
        chroma_client = chromadb.HttpClient(
            host=settings.chroma_host,
            port=settings.chroma_port or 8000,
            ssl=settings.chroma_ssl,
        )
    store = ChromaVectorStore(
        settings.embedding_dim,
        client=chroma_client,
        persist_directory=None if chroma_client else settings.chroma_persist_dir,
        timeout_seconds=settings.store_timeout_seconds,
    )
    backend = build_embedding_backend(settings)
    chunker = Chunker(ChunkingConfig(chunk_size=settings.chunk_size, overlap_fraction=settings.chunk_overlap_fraction))
    indexer = EmbeddingIndexer(backend, store, IndexingConfig(collection=settings.chroma_collection, retry=retry))
    retriever = RetrievalCoordinator(
        backend,
        store,
        RetrievalConfig(
            collection=settings.chroma_collection,
            top_k=settings.retrieval_top_k,
            max_top_k=settings.retrieval_max_top_k,
            similarity_threshold=settings.similarity_threshold,
            rerank_lexical=settings.retrieval_rerank_lexical,
            lexical_blend_weight=settings.retrieval_lexical_blend_weight,
            retry=retry,
        ),
    )
    ingestor = ContentIngestor(
        IngestionConfig(
            allowed_domains=settings.allowed_ingest_domains_tuple,
            max_download_bytes=settings.max_download_size_mb * 1024 * 1024,
            timeout_seconds=settings.fetch_timeout_seconds,
            user_agent=settings.user_agent,
        ),
        client=http_client,
    )
    documents = documents or InMemoryDocumentStore()
    applier = PatchApplier(documents)
    plans = SettingsPlanProvider(settings.plan_stream_limits, settings.default_plan)
    registry = StreamRegistry(plans)
    engine = DiffAnchorEngine(
        EngineConfig(
            lookahead_tokens=settings.lookahead_tokens,
            context_chars=settings.anchor_context_chars,
            search_radius=settings.anchor_search_radius,
            fuzzy_threshold=settings.fuzzy_threshold,
        ),
    )
    orchestrator = CompletionOrchestrator(
        retriever,
        provider or build_provider(settings),
        engine,
        applier,
        registry,
        OrchestratorConfig(
            channel_size=settings.stream_channel_size,
            event_channel_size=settings.event_channel_size,
            provider_timeout_seconds=settings.provider_timeout_seconds,
            max_conflict_retries=settings.max_conflict_retries,
            retry=retry,
            model=settings.generator_model,
            temperature=settings.generator_temperature,
            max_tokens=settings.generator_max_tokens,
        ),
        reindexer=DocumentReindexer(chunker, indexer) if settings.reindex_on_commit else None,
    )
    logger.info(
        "pipeline.ready",
        collection=settings.chroma_collection,
        embedding_dim=settings.embedding_dim,
        provider=settings.generator_provider if provider is None else type(provider).__name__,
    )
    return Pipeline(
        ingestor=ingestor,
        chunker=chunker,
        backend=backend,
        store=store,
        indexer=indexer,
        retriever=retriever,
        documents=documents,
        applier=applier,
        plans=plans,
        registry=registry,
        orchestrator=orchestrator,
    )


__all__ = ["Pipeline", "build_embedding_backend", "build_pipeline", "build_provider"]
