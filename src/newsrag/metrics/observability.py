"""Observability helpers for NewsRAG."""

from __future__ import annotations

import logging
import time
from contextvars import ContextVar
from typing import Callable, Iterable

import structlog
from prometheus_client import Counter, Histogram

_logger_configured = False
_correlation_id_var: ContextVar[str] = ContextVar("correlation_id", default="-")


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


def bind_correlation_id(correlation_id: str, **extra: object) -> None:
    structlog.contextvars.bind_contextvars(correlation_id=correlation_id, **extra)
    _correlation_id_var.set(correlation_id)


def clear_correlation_id() -> None:
    structlog.contextvars.clear_contextvars()
    _correlation_id_var.set("-")


def get_correlation_id() -> str:
    return _correlation_id_var.get()


def get_logger(name: str = "newsrag") -> structlog.BoundLogger:
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

    embedding_latency = Histogram(
        "newsrag_embedding_duration_seconds",
        "Time spent embedding query or document text.",
        buckets=(0.01, 0.05, 0.1, 0.5, 1.0, 2.5, 5.0),
    )
    embedding_fallbacks = Counter(
        "newsrag_embedding_fallback_total",
        "Texts embedded with the deterministic fallback instead of the provider.",
    )
    retrieval_latency = Histogram(
        "newsrag_retrieval_duration_seconds",
        "Time spent searching the vector index.",
        buckets=(0.01, 0.05, 0.1, 0.5, 1.0, 2.0, 5.0),
    )
    retrieved_hit_count = Histogram(
        "newsrag_retrieved_hit_count",
        "Number of hits returned by retrieval.",
        buckets=(0, 1, 2, 3, 5, 8, 13),
    )
    grounding_score = Histogram(
        "newsrag_grounding_score",
        "Similarity score of retrieved hits.",
        buckets=(0.0, 0.25, 0.5, 0.7, 0.85, 1.0),
    )
    generation_latency = Histogram(
        "newsrag_generation_duration_seconds",
        "Time spent generating answers.",
        buckets=(0.05, 0.1, 0.5, 1.0, 2.0, 5.0, 10.0),
    )
    query_cache_events = Counter(
        "newsrag_query_cache_events_total",
        "Query-result cache lookups by outcome.",
        ["outcome"],
    )
    ingestion_latency = Histogram(
        "newsrag_ingestion_duration_seconds",
        "Time spent ingesting a document batch.",
        buckets=(0.05, 0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0),
    )
    ingested_documents = Counter(
        "newsrag_ingested_documents_total",
        "Documents by ingestion outcome.",
        ["outcome"],
    )

    @classmethod
    def observe_embedding(cls, duration_seconds: float) -> None:
        cls.embedding_latency.observe(duration_seconds)

    @classmethod
    def observe_fallback(cls, count: int = 1) -> None:
        cls.embedding_fallbacks.inc(count)

    @classmethod
    def observe_retrieval(
        cls,
        duration_seconds: float,
        hit_count: int,
        scores: Iterable[float],
    ) -> None:
        cls.retrieval_latency.observe(duration_seconds)
        cls.retrieved_hit_count.observe(hit_count)
        for score in scores:
            cls.grounding_score.observe(_clamp_score(score))

    @classmethod
    def observe_generation(cls, duration_seconds: float) -> None:
        cls.generation_latency.observe(duration_seconds)

    @classmethod
    def observe_cache(cls, hit: bool) -> None:
        cls.query_cache_events.labels(outcome="hit" if hit else "miss").inc()

    @classmethod
    def observe_ingestion(cls, duration_seconds: float, indexed: int, failed: int = 0) -> None:
        cls.ingestion_latency.observe(duration_seconds)
        if indexed:
            cls.ingested_documents.labels(outcome="indexed").inc(indexed)
        if failed:
            cls.ingested_documents.labels(outcome="failed").inc(failed)


class TimedSection:
    """Context manager capturing elapsed time for metrics."""

    def __init__(self, callback: Callable[[float], None]) -> None:
        self._callback = callback
        self._start = 0.0
        self.duration = 0.0

    def __enter__(self) -> "TimedSection":
        self._start = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:  # noqa: D401
        self.duration = time.perf_counter() - self._start
        self._callback(self.duration)


__all__ = [
    "PipelineMetrics",
    "TimedSection",
    "bind_correlation_id",
    "clear_correlation_id",
    "configure_logging",
    "get_correlation_id",
    "get_logger",
]
