"""Prometheus metrics for the Drive export pipeline."""

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    REGISTRY,
    Counter,
    Histogram,
    generate_latest,
)

DRIVE_EXPORTS_TOTAL = Counter(
    "drive_exports_total",
    "Drive exports by entity type and outcome",
    ["entity_type", "status"],
)

DRIVE_EXPORT_DURATION_SECONDS = Histogram(
    "drive_export_duration_seconds",
    "Wall time of a single Drive export",
    ["entity_type"],
)

DRIVE_TOKEN_REFRESHES_TOTAL = Counter(
    "drive_token_refreshes_total",
    "OAuth access token refresh attempts",
    ["status"],
)

__all__ = [
    "CONTENT_TYPE_LATEST",
    "REGISTRY",
    "Counter",
    "Histogram",
    "generate_latest",
    "DRIVE_EXPORTS_TOTAL",
    "DRIVE_EXPORT_DURATION_SECONDS",
    "DRIVE_TOKEN_REFRESHES_TOTAL",
]
