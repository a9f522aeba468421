"""Embedding backends for ragedit.

Every backend returns unit-length tuples of exactly ``EmbeddingConfig.dim``
floats; the vector store rejects anything else, so backends check their own
output before it reaches an upsert.
"""

from __future__ import annotations

import hashlib
import math
from dataclasses import dataclass
from typing import Protocol, Sequence, Tuple

from langchain_community.embeddings import HuggingFaceEmbeddings
from langchain_core.embeddings import Embeddings as LangChainEmbeddings

from ragedit.errors import EmbeddingDimensionError, RetrievalError
from ragedit.metrics.observability import get_logger

Vector = Tuple[float, ...]


@dataclass(frozen=True)
class EmbeddingConfig:
    """Model name and the deployment-wide vector dimension."""

    model: str = "BAAI/bge-small-en-v1.5"
    dim: int = 384
    use_model: bool = False
    device: str | None = None
    normalize: bool = True
    cache_folder: str | None = None

    def __post_init__(self) -> None:
        if self.dim <= 0:
            raise ValueError("dim must be positive")


class EmbeddingBackend(Protocol):
    @property
    def dimension(self) -> int:
        """Size of every vector this backend returns."""

    def embed_texts(self, texts: Sequence[str]) -> Sequence[Vector]:
        """Return one vector per input text, in order."""

    def embed_query(self, query: str) -> Vector:
        """Return the vector used to search for ``query``."""


def _unit(values: Sequence[float]) -> Vector:
    norm = math.sqrt(sum(value * value for value in values)) or 1.0
    return tuple(value / norm for value in values)


class HashEmbeddingBackend:
    """Deterministic offline vectors derived from SHA-256 blocks of the text.

    Identical texts map to identical vectors and nothing else is implied;
    used for tests and for deployments without a model.
    """

    _BLOCK = hashlib.sha256().digest_size

    def __init__(self, config: EmbeddingConfig | None = None) -> None:
        self._config = config or EmbeddingConfig()

    @property
    def dimension(self) -> int:
        return self._config.dim

    def embed_texts(self, texts: Sequence[str]) -> Sequence[Vector]:
        return [self._vector(text) for text in texts]

    def embed_query(self, query: str) -> Vector:
        return self._vector(query)

    def _vector(self, text: str) -> Vector:
        encoded = text.encode("utf-8")
        blocks = -(-self._config.dim // self._BLOCK)
        raw = b"".join(hashlib.sha256(index.to_bytes(4, "big") + encoded).digest() for index in range(blocks))
        values = [byte / 255.0 for byte in raw[: self._config.dim]]
        return _unit(values) if self._config.normalize else tuple(values)


class HuggingFaceEmbeddingBackend:
    """Sentence-embedding model through LangChain, with hash vectors as the offline mode.

    The model is only loaded when ``use_model`` is set; a model that cannot be
    loaded degrades to hash vectors of the same dimension. A loaded model whose
    output width differs from ``dim`` raises :class:`EmbeddingDimensionError`.
    """

    def __init__(self, config: EmbeddingConfig | None = None, *, client: LangChainEmbeddings | None = None) -> None:
        self._config = config or EmbeddingConfig()
        self._fallback = HashEmbeddingBackend(self._config)
        self._logger = get_logger("embeddings")
        self._client = client
        if self._client is None and self._config.use_model:
            self._client = self._load()
        if self._client is None:
            self._logger.info("embeddings.hash_mode", dim=self._config.dim)

    @property
    def dimension(self) -> int:
        return self._config.dim

    @property
    def uses_model(self) -> bool:
        return self._client is not None

    def embed_texts(self, texts: Sequence[str]) -> Sequence[Vector]:
        if not texts:
            return []
        if self._client is None:
            return self._fallback.embed_texts(texts)
        vectors = self._client.embed_documents(list(texts))
        if len(vectors) != len(texts):
            raise RetrievalError(f"Embedding model returned {len(vectors)} vectors for {len(texts)} texts")
        return [self._checked(vector) for vector in vectors]

    def embed_query(self, query: str) -> Vector:
        if self._client is None:
            return self._fallback.embed_query(query)
        return self._checked(self._client.embed_query(query))

    def _checked(self, vector: Sequence[float]) -> Vector:
        if len(vector) != self._config.dim:
            raise EmbeddingDimensionError(expected=self._config.dim, actual=len(vector))
        return _unit(vector) if self._config.normalize else tuple(vector)

    def _load(self) -> LangChainEmbeddings | None:
        model_kwargs: dict[str, str] = {}
        if self._config.device:
            model_kwargs["device"] = self._config.device
        try:
            client = HuggingFaceEmbeddings(
                model_name=self._config.model,
                model_kwargs=model_kwargs,
                cache_folder=self._config.cache_folder,
                encode_kwargs={"normalize_embeddings": self._config.normalize},
            )
        except Exception as exc:  # noqa: BLE001 - missing weights or sentence-transformers
            self._logger.warning("embeddings.model_unavailable", model=self._config.model, error=str(exc))
            return None
        self._logger.info("embeddings.model_loaded", model=self._config.model, dim=self._config.dim)
        return client
