"""Document store contract with optimistic concurrency."""

from __future__ import annotations

from typing import Protocol

from ragedit.errors import VersionConflict


class DocumentStore(Protocol):
    """Narrow read/commit contract of the external document store."""

    async def load(self, document_id: str) -> tuple[int, str]:
        """Return ``(version, text)`` of the latest committed revision."""

    async def commit(self, document_id: str, expected_version: int, new_text: str) -> int:
        """Write ``new_text`` if the document is still at ``expected_version``.

        Returns the new version; raises :class:`VersionConflict` otherwise.
        """


class InMemoryDocumentStore:
    """Process-local document store used in tests and local runs."""

    def __init__(self) -> None:
        self._documents: dict[str, tuple[int, str]] = {}

    def create(self, document_id: str, text: str, version: int = 1) -> None:
        self._documents[document_id] = (version, text)

    async def load(self, document_id: str) -> tuple[int, str]:
        try:
            return self._documents[document_id]
        except KeyError:
            raise KeyError(f"Unknown document: {document_id}") from None

    async def commit(self, document_id: str, expected_version: int, new_text: str) -> int:
        version, _ = await self.load(document_id)
        if version != expected_version:
            raise VersionConflict(document_id, expected_version, version)
        self._documents[document_id] = (version + 1, new_text)
        return version + 1
