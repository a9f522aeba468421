"""Observability helpers for ragedit."""

from __future__ import annotations

import logging
from typing import Iterable

import structlog
from prometheus_client import Counter, Gauge, Histogram

_logger_configured = False


def configure_logging(level: int = logging.INFO) -> None:
    global _logger_configured  # noqa: PLW0603 - module-level guard
    if _logger_configured:
        return
    logging.basicConfig(level=level, format="%(message)s")
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
    _logger_configured = True


def bind_correlation_id(correlation_id: str) -> None:
    structlog.contextvars.bind_contextvars(correlation_id=correlation_id)


def get_logger(name: str = "ragedit") -> structlog.BoundLogger:
    configure_logging()
    return structlog.get_logger(name)


def _clamp_score(score: float) -> float:
    if score < 0.0:
        return 0.0
    if score > 1.0:
        return 1.0
    return score


class PipelineMetrics:
    """Prometheus metrics for pipeline stages."""

    ingestion_latency = Histogram(
        "ragedit_ingestion_duration_seconds",
        "Time spent fetching and normalizing a source.",
        buckets=(0.05, 0.1, 0.5, 1.0, 2.5, 5.0, 10.0),
    )
    ingestion_failures = Counter(
        "ragedit_ingestion_failures_total",
        "Ingestion jobs that failed and were skipped.",
        ["reason"],
    )
    chunk_count = Histogram(
        "ragedit_chunk_count",
        "Chunks produced per document version.",
        buckets=(0, 1, 5, 10, 20, 40, 80, 160),
    )
    indexing_latency = Histogram(
        "ragedit_indexing_duration_seconds",
        "Time spent embedding and upserting one document version.",
        buckets=(0.01, 0.05, 0.1, 0.5, 1.0, 2.5, 5.0),
    )
    indexed_chunks = Counter(
        "ragedit_indexed_chunks_total",
        "Chunks written to the vector store.",
    )
    stale_chunks = Counter(
        "ragedit_stale_chunks_total",
        "Chunks marked stale after a newer version was indexed.",
    )
    retrieval_latency = Histogram(
        "ragedit_retrieval_duration_seconds",
        "Time spent retrieving context chunks.",
        buckets=(0.01, 0.05, 0.1, 0.5, 1.0, 2.0, 5.0),
    )
    retrieved_chunk_count = Histogram(
        "ragedit_retrieved_chunk_count",
        "Number of chunks returned by retrieval.",
        buckets=(0, 1, 2, 3, 5, 8, 13),
    )
    grounding_score = Histogram(
        "ragedit_grounding_score",
        "Similarity score of retrieved chunks.",
        buckets=(0.0, 0.25, 0.5, 0.75, 1.0),
    )
    active_streams = Gauge(
        "ragedit_active_streams",
        "Completion streams currently registered.",
    )
    stream_outcomes = Counter(
        "ragedit_stream_outcomes_total",
        "Completion streams by terminal state.",
        ["state"],
    )
    stream_latency = Histogram(
        "ragedit_stream_duration_seconds",
        "Wall time from stream start to terminal state.",
        buckets=(0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0),
    )
    provider_retries = Counter(
        "ragedit_provider_retries_total",
        "Transient provider failures that were retried.",
    )
    hunk_outcomes = Counter(
        "ragedit_hunk_outcomes_total",
        "Patch hunks by outcome.",
        ["outcome"],
    )
    patch_conflicts = Counter(
        "ragedit_patch_conflicts_total",
        "Hunks whose anchor no longer matched at application time.",
    )

    @classmethod
    def observe_ingestion(cls, duration_seconds: float) -> None:
        cls.ingestion_latency.observe(duration_seconds)

    @classmethod
    def observe_indexing(cls, duration_seconds: float, chunk_count: int) -> None:
        cls.indexing_latency.observe(duration_seconds)
        cls.indexed_chunks.inc(chunk_count)

    @classmethod
    def observe_retrieval(
        cls,
        duration_seconds: float,
        chunk_count: int,
        scores: Iterable[float],
    ) -> None:
        cls.retrieval_latency.observe(duration_seconds)
        cls.retrieved_chunk_count.observe(chunk_count)
        for score in scores:
            cls.grounding_score.observe(_clamp_score(score))

    @classmethod
    def observe_stream(cls, state: str, duration_seconds: float) -> None:
        cls.stream_outcomes.labels(state=state).inc()
        cls.stream_latency.observe(duration_seconds)


__all__ = [
    "PipelineMetrics",
    "bind_correlation_id",
    "configure_logging",
    "get_logger",
]
