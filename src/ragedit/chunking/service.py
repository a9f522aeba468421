"""Fixed-window chunking with exact offsets."""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Sequence

from ragedit.errors import EmptyContentError
from ragedit.metrics.observability import PipelineMetrics, get_logger
from ragedit.models import Chunk, content_hash


@dataclass(frozen=True)
class ChunkingConfig:
    """Configuration for chunking."""

    chunk_size: int = 800
    overlap_fraction: float = 0.15

    def __post_init__(self) -> None:
        if self.chunk_size <= 0:
            raise ValueError("chunk_size must be positive")
        if not 0.0 <= self.overlap_fraction < 1.0:
            raise ValueError("overlap_fraction must be in [0, 1)")

    @property
    def step(self) -> int:
        overlap = round(self.chunk_size * self.overlap_fraction)
        return max(1, self.chunk_size - overlap)


class Chunker:
    """Split text into overlapping windows.

    Window ``i`` covers ``[i * step, i * step + chunk_size)``; the last window
    ends at the end of the text. The region ``[start_i, start_{i+1})`` belongs
    to chunk ``i`` alone, so concatenating those regions yields the input.
    """

    def __init__(self, config: ChunkingConfig | None = None) -> None:
        self._config = config or ChunkingConfig()
        self._logger = get_logger("chunking")

    @property
    def config(self) -> ChunkingConfig:
        return self._config

    def split(
        self,
        text: str,
        *,
        document_id: str,
        version: int,
        dataset_id: str | None = None,
    ) -> Sequence[Chunk]:
        if not text or not text.strip():
            raise EmptyContentError(f"Document {document_id} v{version} has no content to chunk")
        size = self._config.chunk_size
        step = self._config.step
        chunks: List[Chunk] = []
        start = 0
        while True:
            end = min(start + size, len(text))
            piece = text[start:end]
            order = len(chunks)
            chunks.append(
                Chunk(
                    chunk_id=f"{document_id}:{version}:{order}",
                    document_id=document_id,
                    version=version,
                    text=piece,
                    start=start,
                    end=end,
                    order=order,
                    content_hash=content_hash(piece),
                    dataset_id=dataset_id,
                ),
            )
            if end >= len(text):
                break
            start += step
        PipelineMetrics.chunk_count.observe(len(chunks))
        self._logger.debug(
            "chunking.complete",
            document_id=document_id,
            version=version,
            chunk_count=len(chunks),
        )
        return chunks


def reconstruct_text(chunks: Sequence[Chunk]) -> str:
    """Concatenate the non-overlapping region of each chunk in offset order."""

    ordered = sorted(chunks, key=lambda chunk: chunk.start)
    parts: List[str] = []
    for index, chunk in enumerate(ordered):
        limit = ordered[index + 1].start if index + 1 < len(ordered) else chunk.end
        parts.append(chunk.text[: limit - chunk.start])
    return "".join(parts)
