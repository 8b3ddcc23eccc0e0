"""Prometheus metrics instrumentation."""

from __future__ import annotations

from fastapi import Response
from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Histogram,
    generate_latest,
)

REGISTRY = CollectorRegistry()

DOCUMENTS_INGESTED = Counter(
    "fieldarc_documents_ingested_total",
    "Documents committed to the archive",
    labelnames=("format", "origin"),
    registry=REGISTRY,
)

DUPLICATES_SKIPPED = Counter(
    "fieldarc_duplicates_skipped_total",
    "Remote items skipped because they were already ingested",
    registry=REGISTRY,
)

EXTRACTION_STRATEGY = Counter(
    "fieldarc_extraction_strategy_total",
    "Extraction strategy that produced the final text of a PDF",
    labelnames=("strategy",),
    registry=REGISTRY,
)

POLLS = Counter(
    "fieldarc_watcher_polls_total",
    "Delta-sync polls by outcome",
    labelnames=("outcome",),
    registry=REGISTRY,
)

POLL_DURATION = Histogram(
    "fieldarc_watcher_poll_duration_seconds",
    "Wall time of one delta-sync poll, including inter-file delays",
    registry=REGISTRY,
)


def metrics_response() -> Response:
    """Return Prometheus metrics as an HTTP response."""
    payload = generate_latest(REGISTRY)
    return Response(content=payload, media_type=CONTENT_TYPE_LATEST)


__all__ = [
    "REGISTRY",
    "DOCUMENTS_INGESTED",
    "DUPLICATES_SKIPPED",
    "EXTRACTION_STRATEGY",
    "POLLS",
    "POLL_DURATION",
    "metrics_response",
]
