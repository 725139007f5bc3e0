"""Prometheus metric definitions for the payment service."""

from prometheus_client import Counter, Histogram, generate_latest
from starlette.responses import Response


http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["service", "route", "method", "status_code"],
)
http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration seconds",
    ["service", "route", "method"],
)
payments_created_total = Counter("payments_created_total", "Total payments created", ["service"])
idempotency_replays_total = Counter(
    "idempotency_replays_total",
    "Requests answered from a cached idempotent response",
    ["service"],
)
idempotency_conflicts_total = Counter(
    "idempotency_conflicts_total",
    "Idempotency keys reused with a different payload",
    ["service"],
)
idempotency_persist_failures_total = Counter(
    "idempotency_persist_failures_total",
    "Failures storing an idempotent response",
    ["service"],
)
batch_items_total = Counter("batch_items_total", "Batch items processed", ["service", "outcome"])
batch_item_retries_total = Counter("batch_item_retries_total", "Batch item retry attempts", ["service"])
batch_duration_seconds = Histogram("batch_duration_seconds", "Batch processing duration seconds", ["service"])
status_transitions_total = Counter(
    "status_transitions_total",
    "Applied payment status transitions",
    ["service", "from_status", "to_status"],
)


def metrics_response() -> Response:
    """Expose all registered Prometheus metrics in text format."""

    return Response(content=generate_latest(), media_type="text/plain")
