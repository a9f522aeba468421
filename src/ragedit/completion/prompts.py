"""Prompt assembly for edit completions."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

from ragedit.completion.providers import CompletionRequest
from ragedit.models import DocumentSnapshot, RetrievalQuery, RetrievedChunk


@dataclass(frozen=True)
class PromptBuilderConfig:
    """Configuration for prompt construction."""

    citation_prefix: str = "["
    citation_suffix: str = "]"
    system_prompt: str = (
        "You edit documents. Rewrite the passage according to the instruction. "
        "Reply with the rewritten passage only, keeping unchanged wording as it is."
    )


class PromptBuilder:
    """Builds completion requests from retrieved context and the edit region."""

    def __init__(self, config: PromptBuilderConfig | None = None) -> None:
        self._config = config or PromptBuilderConfig()

    def build_context(self, citations: Sequence[RetrievedChunk]) -> str:
        if not citations:
            return ""
        lines = []
        for index, citation in enumerate(citations, start=1):
            prefix = f"{self._config.citation_prefix}{index}{self._config.citation_suffix}"
            chunk = citation.chunk
            lines.append(f"{prefix} {chunk.text}\nSource: {chunk.document_id} v{chunk.version}")
        return "\n\n".join(lines)

    def build(
        self,
        query: RetrievalQuery,
        snapshot: DocumentSnapshot,
        region: tuple[int, int],
        citations: Sequence[RetrievedChunk],
        *,
        model: str,
        temperature: float,
        max_tokens: int,
    ) -> CompletionRequest:
        start, end = region
        passage = snapshot.text[start:end]
        sections = []
        context = self.build_context(self._dedupe(citations))
        if context:
            sections.append(f"Context:\n{context}")
        sections.append(f"Instruction:\n{query.instruction}")
        sections.append(f"Passage:\n{passage}")
        return CompletionRequest(
            prompt="\n\n".join(sections),
            system=self._config.system_prompt,
            model=model,
            temperature=temperature,
            max_tokens=max_tokens,
            metadata={"document_id": snapshot.document_id, "region_text": passage},
        )

    @staticmethod
    def _dedupe(citations: Sequence[RetrievedChunk]) -> Sequence[RetrievedChunk]:
        seen: set[str] = set()
        ordered: list[RetrievedChunk] = []
        for citation in citations:
            if citation.chunk.chunk_id in seen:
                continue
            seen.add(citation.chunk.chunk_id)
            ordered.append(citation)
        return ordered
