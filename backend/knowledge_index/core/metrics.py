"""Prometheus metrics instrumentation."""

from __future__ import annotations

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

REGISTRY = CollectorRegistry()

DOCUMENTS_PROCESSED = Counter(
    "kidx_documents_processed_total",
    "Documents that left the indexing pipeline",
    labelnames=("outcome",),
    registry=REGISTRY,
)

STAGE_LATENCY = Histogram(
    "kidx_pipeline_stage_seconds",
    "Duration of a single pipeline stage",
    labelnames=("stage",),
    registry=REGISTRY,
)

VECTOR_BATCHES = Counter(
    "kidx_vector_batches_total",
    "Vector store upsert batches",
    labelnames=("outcome",),
    registry=REGISTRY,
)

KEYWORD_LOCK_SKIPPED = Counter(
    "kidx_keyword_lock_skipped_total",
    "Keyword table mutations skipped because the dataset lock was busy",
    labelnames=("operation",),
    registry=REGISTRY,
)

RETRIEVAL_LATENCY = Histogram(
    "kidx_retrieval_latency_seconds",
    "Latency of retrieval requests",
    labelnames=("strategy",),
    registry=REGISTRY,
)

INDEX_SIZE = Gauge(
    "kidx_vector_index_nodes",
    "Number of nodes stored in the vector index",
    registry=REGISTRY,
)


def render_metrics() -> tuple[bytes, str]:
    """Return the exposition payload and its content type."""
    return generate_latest(REGISTRY), CONTENT_TYPE_LATEST


__all__ = [
    "REGISTRY",
    "DOCUMENTS_PROCESSED",
    "STAGE_LATENCY",
    "VECTOR_BATCHES",
    "KEYWORD_LOCK_SKIPPED",
    "RETRIEVAL_LATENCY",
    "INDEX_SIZE",
    "render_metrics",
]
