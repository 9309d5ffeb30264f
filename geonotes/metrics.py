"""
Prometheus metrics for the geonotes API.

This module provides:
- HTTP request counter (method, path, status)
- Request latency histogram (method, path)
- Message operation outcome counter (operation, result)
- Nearby result size histogram
- Purged message counter

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

request_latency_seconds = Histogram(
    "request_latency_seconds",
    "Request latency in seconds",
    labelnames=["method", "path"]
)

# operation: create, nearby, delete
# result: created, ok, deleted, validation_error, unauthorized, not_found, error
message_operations_total = Counter(
    "message_operations_total",
    "Message operation outcomes",
    labelnames=["operation", "result"]
)

nearby_results = Histogram(
    "nearby_results",
    "Number of messages returned per nearby query",
    buckets=(0, 1, 2, 5, 10, 25, 50, 100, 250, 500)
)

messages_purged_total = Counter(
    "messages_purged_total",
    "Messages removed by the retention purge"
)


# =============================================================================
# Helper Functions
# =============================================================================

def normalize_path(path: str) -> str:
    """
    Collapse per-message paths to avoid high-cardinality labels
    (e.g., /messages/3f2a... -> /messages/{id}).
    """
    path = path.split("?")[0]
    parts = path.rstrip("/").split("/")
    if len(parts) == 3 and parts[1] == "messages" and parts[2] not in ("nearby", "mine"):
        return "/messages/{id}"
    return path


def record_http_request(method: str, path: str, status: int, latency_seconds: float) -> None:
    """
    Record an HTTP request in metrics.

    Args:
        method: HTTP method (GET, POST, etc.)
        path: Request path
        status: HTTP status code
        latency_seconds: Request processing time in seconds
    """
    normalized_path = normalize_path(path)

    http_requests_total.labels(
        method=method,
        path=normalized_path,
        status=str(status)
    ).inc()

    request_latency_seconds.labels(
        method=method,
        path=normalized_path
    ).observe(latency_seconds)


def record_message_operation(operation: str, result: str) -> None:
    message_operations_total.labels(operation=operation, result=result).inc()


def record_nearby_results(count: int) -> None:
    nearby_results.observe(count)


def record_purge(count: int) -> None:
    if count:
        messages_purged_total.inc(count)


def get_metrics() -> bytes:
    """
    Generate Prometheus exposition format metrics.

    Returns:
        Metrics in Prometheus text format as bytes
    """
    return generate_latest()


def get_metrics_content_type() -> str:
    return CONTENT_TYPE_LATEST
