"""Error taxonomy shared by the ragedit pipeline."""

from __future__ import annotations


class RageditError(RuntimeError):
    """Base class for every error raised by ragedit."""


class IngestionError(RageditError):
    """Raised when ingestion fails for a particular source."""


class FetchFailedError(IngestionError):
    """Raised when a remote source cannot be downloaded."""


class UnparseableContentError(IngestionError):
    """Raised when fetched content cannot be turned into text."""


class EmptyContentError(IngestionError):
    """Raised when a source normalizes to no text at all."""


class RetrievalError(RageditError):
    """Raised when indexing or searching the vector store fails."""


class VectorStoreUnavailableError(RetrievalError):
    """Raised when the vector store cannot be reached; retried with backoff."""


class EmbeddingDimensionError(RetrievalError):
    """Raised when a vector does not match the configured dimension.

    This is a configuration error and halts indexing instead of being retried.
    """

    def __init__(self, expected: int, actual: int) -> None:
        super().__init__(f"Embedding dimension mismatch: expected {expected}, got {actual}")
        self.expected = expected
        self.actual = actual


class StreamError(RageditError):
    """Raised when a completion stream cannot be produced."""


class TransientProviderError(StreamError):
    """Network failure, rate limit or timeout; eligible for retry."""


class ProviderError(StreamError):
    """Permanent provider failure such as a malformed response."""


class QuotaExceededError(RageditError):
    """Raised when a user already runs as many streams as their plan allows."""

    def __init__(self, user_id: str, limit: int) -> None:
        super().__init__(f"User {user_id} reached the concurrent stream limit ({limit})")
        self.user_id = user_id
        self.limit = limit


class VersionConflict(RageditError):
    """Raised by a document store when the expected version is outdated."""

    def __init__(self, document_id: str, expected_version: int, actual_version: int) -> None:
        super().__init__(
            f"Document {document_id} is at version {actual_version}, expected {expected_version}",
        )
        self.document_id = document_id
        self.expected_version = expected_version
        self.actual_version = actual_version


class ConflictError(RageditError):
    """Raised when a hunk no longer matches the live document text."""

    def __init__(self, document_id: str, version: int, text: str, detail: str) -> None:
        super().__init__(f"Conflict on document {document_id} at version {version}: {detail}")
        self.document_id = document_id
        self.version = version
        self.text = text


class InvalidTransitionError(RageditError, ValueError):
    """Raised when a stream is moved out of a terminal state."""


__all__ = [
    "ConflictError",
    "EmbeddingDimensionError",
    "EmptyContentError",
    "FetchFailedError",
    "IngestionError",
    "InvalidTransitionError",
    "ProviderError",
    "QuotaExceededError",
    "RageditError",
    "RetrievalError",
    "StreamError",
    "TransientProviderError",
    "UnparseableContentError",
    "VectorStoreUnavailableError",
    "VersionConflict",
]
