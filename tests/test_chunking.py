from __future__ import annotations

import pytest

from ragedit.chunking import Chunker, ChunkingConfig, reconstruct_text
from ragedit.errors import EmptyContentError
from ragedit.models import content_hash

TEXT = " ".join(f"Sentence number {index} talks about topic {index % 7}." for index in range(80))


@pytest.mark.parametrize("size,overlap", [(100, 0.15), (64, 0.0), (250, 0.5), (7, 0.3)])
def test_round_trip_reconstructs_text(size, overlap):
    chunker = Chunker(ChunkingConfig(chunk_size=size, overlap_fraction=overlap))
    chunks = chunker.split(TEXT, document_id="doc", version=1)
    assert reconstruct_text(chunks) == TEXT
    for chunk in chunks:
        assert TEXT[chunk.start : chunk.end] == chunk.text
        assert chunk.content_hash == content_hash(chunk.text)


def test_windows_overlap_by_configured_fraction():
    chunker = Chunker(ChunkingConfig(chunk_size=100, overlap_fraction=0.15))
    chunks = chunker.split(TEXT, document_id="doc", version=1)
    assert chunks[0].start == 0 and chunks[0].end == 100
    assert chunks[1].start == 85
    assert chunks[-1].end == len(TEXT)
    assert [chunk.order for chunk in chunks] == list(range(len(chunks)))


def test_chunk_ids_are_deterministic_per_version():
    chunker = Chunker(ChunkingConfig(chunk_size=120))
    first = chunker.split(TEXT, document_id="doc", version=3, dataset_id="set")
    second = chunker.split(TEXT, document_id="doc", version=3, dataset_id="set")
    assert [chunk.chunk_id for chunk in first] == [chunk.chunk_id for chunk in second]
    assert first[0].chunk_id == "doc:3:0"
    assert all(chunk.dataset_id == "set" for chunk in first)


def test_short_text_is_one_chunk():
    chunks = Chunker().split("tiny", document_id="doc", version=1)
    assert len(chunks) == 1
    assert chunks[0].text == "tiny"


@pytest.mark.parametrize("text", ["", "   \n\t "])
def test_empty_text_rejected(text):
    with pytest.raises(EmptyContentError):
        Chunker().split(text, document_id="doc", version=1)


def test_invalid_config_rejected():
    with pytest.raises(ValueError):
        ChunkingConfig(chunk_size=0)
    with pytest.raises(ValueError):
        ChunkingConfig(overlap_fraction=1.0)
