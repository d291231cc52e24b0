"""
Prometheus metrics for the Messagely API.

This module provides:
- HTTP request counter (method, path, status)
- Request latency histogram (method, path)
- Authentication outcome counter (event, result)
- Message lifecycle counter (event)

Metrics are stored in-memory using prometheus-client.
"""

from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST


# =============================================================================
# Metric Definitions
# =============================================================================

# path is the route template (/messages/{message_id}), not the raw URL
http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    labelnames=["method", "path", "status"]
)

request_latency_seconds = Histogram(
    "request_latency_seconds",
    "Request latency in seconds",
    labelnames=["method", "path"]
)

# event: register, login
# result: success, conflict, invalid_credentials
auth_events_total = Counter(
    "auth_events_total",
    "Registration and login outcomes",
    labelnames=["event", "result"]
)

# event: created, read
message_events_total = Counter(
    "message_events_total",
    "Message lifecycle transitions",
    labelnames=["event"]
)


# =============================================================================
# Helper Functions
# =============================================================================

def record_http_request(method: str, path: str, status: int, latency_seconds: float) -> None:
    """
    Record an HTTP request in metrics.

    Args:
        method: HTTP method (GET, POST, etc.)
        path: Route template, or the raw path when no route matched
        status: HTTP status code
        latency_seconds: Request processing time in seconds
    """
    normalized_path = path.split("?")[0]

    http_requests_total.labels(
        method=method,
        path=normalized_path,
        status=str(status)
    ).inc()

    request_latency_seconds.labels(
        method=method,
        path=normalized_path
    ).observe(latency_seconds)


def record_auth_event(event: str, result: str) -> None:
    """Record a registration or login outcome."""
    auth_events_total.labels(event=event, result=result).inc()


def record_message_event(event: str) -> None:
    """Record a message being created or read."""
    message_events_total.labels(event=event).inc()


def get_metrics() -> bytes:
    """
    Generate Prometheus exposition format metrics.

    Returns:
        Metrics in Prometheus text format as bytes
    """
    return generate_latest()


def get_metrics_content_type() -> str:
    return CONTENT_TYPE_LATEST
