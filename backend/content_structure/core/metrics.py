"""Prometheus metrics instrumentation."""

from __future__ import annotations

from pathlib import Path

from prometheus_client import CollectorRegistry, Counter, Histogram, write_to_textfile

REGISTRY = CollectorRegistry()

DOCUMENTS_WRITTEN = Counter(
    "cs_documents_written_total",
    "Documents persisted to the structure database",
    registry=REGISTRY,
)

ITEMS_WRITTEN = Counter(
    "cs_items_written_total",
    "Items persisted to the structure database",
    labelnames=("type",),
    registry=REGISTRY,
)

ASSETS_WRITTEN = Counter(
    "cs_assets_written_total",
    "New asset rows persisted",
    labelnames=("type",),
    registry=REGISTRY,
)

BLOBS_WRITTEN = Counter(
    "cs_blobs_written_total",
    "New blob rows persisted",
    labelnames=("storage",),
    registry=REGISTRY,
)

RECORDS_DROPPED = Counter(
    "cs_records_dropped_total",
    "Records omitted after a recoverable error",
    labelnames=("reason",),
    registry=REGISTRY,
)

RUN_DURATION = Histogram(
    "cs_run_duration_seconds",
    "Indexing run duration",
    registry=REGISTRY,
)


def write_metrics(path: Path) -> None:
    """Write the registry in the node-exporter textfile format."""
    path.parent.mkdir(parents=True, exist_ok=True)
    write_to_textfile(str(path), REGISTRY)


__all__ = [
    "REGISTRY",
    "DOCUMENTS_WRITTEN",
    "ITEMS_WRITTEN",
    "ASSETS_WRITTEN",
    "BLOBS_WRITTEN",
    "RECORDS_DROPPED",
    "RUN_DURATION",
    "write_metrics",
]
