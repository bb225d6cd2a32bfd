"""Prometheus metrics for healthlink.

Usage::

    from healthlink.observability.metrics import MANIFEST_REQUESTS_TOTAL

    MANIFEST_REQUESTS_TOTAL.labels(outcome="served").inc()
"""

from __future__ import annotations

from prometheus_client import (
    REGISTRY,
    CONTENT_TYPE_LATEST,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

# ---------------------------------------------------------------------------
# HTTP request metrics
# ---------------------------------------------------------------------------

HTTP_REQUESTS_TOTAL = Counter(
    "healthlink_http_requests_total",
    "Total HTTP requests by method, path pattern, and status code.",
    labelnames=["method", "path", "status"],
    registry=REGISTRY,
)

HTTP_REQUEST_DURATION_SECONDS = Histogram(
    "healthlink_http_request_duration_seconds",
    "HTTP request latency in seconds.",
    labelnames=["method", "path"],
    buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
    registry=REGISTRY,
)

# ---------------------------------------------------------------------------
# Link lifecycle metrics
# ---------------------------------------------------------------------------

LINKS_ISSUED_TOTAL = Counter(
    "healthlink_links_issued_total",
    "Links successfully issued.",
    registry=REGISTRY,
)

LINK_ISSUANCE_FAILURES_TOTAL = Counter(
    "healthlink_link_issuance_failures_total",
    "Link issuance attempts aborted after validation.",
    registry=REGISTRY,
)

MANIFEST_REQUESTS_TOTAL = Counter(
    "healthlink_manifest_requests_total",
    "Manifest requests by outcome (served, not_found, revoked, expired, error).",
    labelnames=["outcome"],
    registry=REGISTRY,
)

NOTIFICATIONS_TOTAL = Counter(
    "healthlink_notifications_total",
    "Notification attempts by channel and status.",
    labelnames=["channel", "status"],
    registry=REGISTRY,
)

NOTIFICATIONS_PENDING = Gauge(
    "healthlink_notifications_pending",
    "Background notification tasks currently in flight.",
    registry=REGISTRY,
)


def metrics_text() -> tuple[bytes, str]:
    """Return the exposition payload and its content type."""
    return generate_latest(REGISTRY), CONTENT_TYPE_LATEST
