"""
Prometheus metrics for the ad board.

This module provides:
- HTTP request counter (method, path, status)
- Ad submission outcome counter (result)
- Request latency histogram (method, path)

Metrics are stored in-memory using prometheus-client.
"""

from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST


# =============================================================================
# Metric Definitions
# =============================================================================

http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    labelnames=["method", "path", "status"]
)

# result: created, quota_exceeded, upload_error, validation_error, storage_error
ad_submissions_total = Counter(
    "ad_submissions_total",
    "Total ad submission outcomes",
    labelnames=["result"]
)

request_latency_seconds = Histogram(
    "request_latency_seconds",
    "Request latency in seconds",
    labelnames=["method", "path"]
)


# =============================================================================
# Helper Functions
# =============================================================================

def record_http_request(method: str, path: str, status: int, latency_seconds: float) -> None:
    """
    Record an HTTP request in metrics.

    Args:
        method: HTTP method (GET, POST, etc.)
        path: Request path
        status: HTTP status code
        latency_seconds: Request processing time in seconds
    """
    # Uploaded files would otherwise produce one label per image
    if path.startswith("/uploads/"):
        path = "/uploads"

    http_requests_total.labels(
        method=method,
        path=path,
        status=str(status)
    ).inc()

    request_latency_seconds.labels(
        method=method,
        path=path
    ).observe(latency_seconds)


def record_submission_outcome(result: str) -> None:
    """Record an ad submission outcome."""
    ad_submissions_total.labels(result=result).inc()


def get_metrics() -> bytes:
    """Generate Prometheus exposition format metrics."""
    return generate_latest()


def get_metrics_content_type() -> str:
    return CONTENT_TYPE_LATEST
