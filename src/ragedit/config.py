"""Runtime configuration for the ragedit services."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Literal, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Environment-backed configuration model."""

    model_config = SettingsConfigDict(env_prefix="ragedit_", env_file=".env", case_sensitive=False)

    environment: Literal["dev", "test", "prod"] = "dev"
    log_level: str = "INFO"

    # Vector store
    chroma_persist_dir: Path = Path("./.chroma")
    chroma_collection: str = "ragedit-chunks"
    chroma_host: str | None = None
    chroma_port: int | None = None
    chroma_ssl: bool = False
    store_timeout_seconds: float = 10.0

    # Embeddings; the dimension is fixed for the whole deployment
    embedding_model: str = "BAAI/bge-small-en-v1.5"
    embedding_dim: int = 384
    use_model_embeddings: bool = False

    # Chunking
    chunk_size: int = 800
    chunk_overlap_fraction: float = Field(default=0.15, ge=0.0, lt=1.0)

    # Retrieval
    retrieval_top_k: int = 5
    retrieval_max_top_k: int = 20
    similarity_threshold: float = 0.2
    retrieval_rerank_lexical: bool = False
    retrieval_lexical_blend_weight: float = 0.35

    # Generation
    generator_provider: Literal["scripted", "openai"] = "scripted"
    generator_model: str = "gpt-3.5-turbo"
    generator_temperature: float = 0.2
    generator_max_tokens: int = 1024
    openai_api_key: str | None = None
    openai_base_url: str | None = None
    provider_timeout_seconds: float = 30.0

    # Retry policy shared by provider and vector store calls
    retry_max_attempts: int = 4
    retry_backoff_multiplier: float = 0.5
    retry_backoff_max_seconds: float = 8.0

    # Streaming
    stream_channel_size: int = 64
    event_channel_size: int = 64
    lookahead_tokens: int = 4
    reindex_on_commit: bool = False

    # Anchor resolution
    anchor_context_chars: int = 24
    anchor_search_radius: int = 400
    fuzzy_threshold: float = Field(default=0.85, ge=0.0, le=1.0)
    max_conflict_retries: int = 3

    # Plans: concurrent streams per user for each tier
    plan_stream_limits: dict[str, int] = Field(
        default_factory=lambda: {"free": 1, "silver": 3, "gold": 8},
    )
    default_plan: str = "free"

    # Remote ingestion
    allowed_ingest_domains: tuple[str, ...] | str = ()  # empty means block external URLs by default
    max_download_size_mb: int = 25
    fetch_timeout_seconds: float = 30.0
    user_agent: str = "ragedit-ingestor/0.1"

    @field_validator("chunk_size")
    @classmethod
    def _positive_chunk_size(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("chunk_size must be positive")
        return value

    @property
    def is_test(self) -> bool:
        return self.environment == "test"

    @property
    def allowed_ingest_domains_tuple(self) -> tuple[str, ...]:
        value = self.allowed_ingest_domains
        if isinstance(value, tuple):
            return value
        return tuple(part.strip() for part in value.split(",") if part.strip())


@lru_cache(maxsize=1)
def _cached_settings() -> Settings:
    return Settings()


def get_settings(override: Optional[dict[str, object]] = None) -> Settings:
    """Return settings, optionally overriding values without mutating cache."""

    if override:
        return Settings(**override)
    return _cached_settings()
