from __future__ import annotations

from uuid import uuid4

import chromadb

from ragedit.chunking import Chunker, ChunkingConfig
from ragedit.embeddings.service import EmbeddingConfig, HashEmbeddingBackend
from ragedit.embeddings.store import ChromaVectorStore
from ragedit.indexing import EmbeddingIndexer, IndexingConfig
from ragedit.models import RetrievalQuery
from ragedit.retrieval import RetrievalConfig, RetrievalCoordinator

TEXT = "".join(f"Paragraph {index} describes feature {index} of the editor. " for index in range(12))


async def _indexed(**retrieval):
    collection = f"retrieval-{uuid4().hex[:12]}"
    backend = HashEmbeddingBackend(EmbeddingConfig(dim=16))
    store = ChromaVectorStore(16, client=chromadb.EphemeralClient())
    indexer = EmbeddingIndexer(backend, store, IndexingConfig(collection=collection))
    chunker = Chunker(ChunkingConfig(chunk_size=120, overlap_fraction=0.15))
    chunks = chunker.split(TEXT, document_id="doc", version=1, dataset_id="manuals")
    await indexer.index("doc", 1, chunks, dataset_id="manuals")
    retriever = RetrievalCoordinator(backend, store, RetrievalConfig(collection=collection, **retrieval))
    return retriever, indexer, chunker, chunks


async def test_exact_chunk_text_ranks_first():
    retriever, _, _, chunks = await _indexed(similarity_threshold=0.0)
    target = chunks[2]
    results = await retriever.retrieve(RetrievalQuery(instruction=target.text, document_id="doc"))
    assert results[0].chunk.chunk_id == target.chunk_id
    assert results[0].score >= 0.99
    assert results[0].chunk.start == target.start
    assert results[0].chunk.end == target.end


async def test_top_k_is_clamped_to_maximum():
    retriever, _, _, _ = await _indexed(similarity_threshold=0.0, max_top_k=2)
    results = await retriever.retrieve(RetrievalQuery(instruction="editor", document_id="doc", top_k=10))
    assert len(results) == 2


async def test_threshold_filters_weak_matches():
    retriever, _, _, _ = await _indexed()
    query = RetrievalQuery(instruction="editor", document_id="doc", similarity_threshold=1.01)
    assert await retriever.retrieve(query) == []


async def test_dataset_filter_applies():
    retriever, _, _, _ = await _indexed(similarity_threshold=0.0)
    query = RetrievalQuery(instruction="editor", document_id="doc", dataset_id="other")
    assert await retriever.retrieve(query) == []


async def test_stale_chunks_are_never_returned():
    retriever, indexer, chunker, _ = await _indexed(similarity_threshold=0.0, top_k=20)
    newer = chunker.split(TEXT.upper(), document_id="doc", version=2, dataset_id="manuals")
    await indexer.index("doc", 2, newer, dataset_id="manuals")

    results = await retriever.retrieve(RetrievalQuery(instruction="editor", document_id="doc"))

    assert results
    assert {item.chunk.version for item in results} == {2}
    assert not any(item.chunk.stale for item in results)
    await indexer.drain()


async def test_lexical_rerank_promotes_overlapping_chunk():
    retriever, _, _, chunks = await _indexed(similarity_threshold=0.0, rerank_lexical=True, lexical_blend_weight=1.0)
    results = await retriever.retrieve(
        RetrievalQuery(instruction="Paragraph 7 describes feature 7", document_id="doc", top_k=20),
    )
    assert {"paragraph", "7", "describes", "feature"} <= set(results[0].chunk.text.lower().split())
