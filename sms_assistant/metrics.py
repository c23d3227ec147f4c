"""
Prometheus metrics for the SMS assistant.

Request-level series are fed by RequestLoggingMiddleware; the rest are
recorded at the point where the event happens (webhook outcome in the route,
intent in the dispatcher, collaborator failures in each adapter).
"""

from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST


# =============================================================================
# HTTP
# =============================================================================

http_requests_total = Counter(
    "http_requests_total",
    "HTTP requests served, by route path and status code",
    labelnames=["method", "path", "status"]
)

request_latency_seconds = Histogram(
    "request_latency_seconds",
    "Time from request received to response returned",
    labelnames=["method", "path"]
)


# =============================================================================
# Messaging
# =============================================================================

# result: processed, unauthorized, invalid_signature, validation_error, error
sms_webhook_total = Counter(
    "sms_webhook_total",
    "Inbound SMS webhook deliveries by outcome",
    labelnames=["result"]
)

sms_outbound_total = Counter(
    "sms_outbound_total",
    "Outbound SMS send attempts by delivery result",
    labelnames=["success"]
)

intents_total = Counter(
    "intents_total",
    "Classified inbound messages by intent",
    labelnames=["intent"]
)

classification_latency_seconds = Histogram(
    "classification_latency_seconds",
    "Round trip to the intent classifier",
    buckets=(0.25, 0.5, 1.0, 2.0, 4.0, 8.0, 16.0)
)

# service: classifier, geocoding, routing, sms
external_call_failures_total = Counter(
    "external_call_failures_total",
    "Failed or degraded calls to external collaborators",
    labelnames=["service"]
)


# =============================================================================
# Recorders
# =============================================================================

def record_http_request(method: str, path: str, status: int, latency_seconds: float) -> None:
    """
    Count one served request and observe its latency.

    Args:
        method: HTTP method
        path: URL path without the query string
        status: Response status code
        latency_seconds: Wall time spent in the handler chain
    """
    http_requests_total.labels(method=method, path=path, status=str(status)).inc()
    request_latency_seconds.labels(method=method, path=path).observe(latency_seconds)


def record_webhook_outcome(result: str) -> None:
    sms_webhook_total.labels(result=result).inc()


def record_sms_sent(success: bool) -> None:
    sms_outbound_total.labels(success=str(success).lower()).inc()


def record_intent(intent: str) -> None:
    intents_total.labels(intent=intent).inc()


def record_classification_latency(latency_seconds: float) -> None:
    classification_latency_seconds.observe(latency_seconds)


def record_external_failure(service: str) -> None:
    external_call_failures_total.labels(service=service).inc()


def get_metrics() -> bytes:
    """Current registry in the Prometheus text exposition format."""
    return generate_latest()


def get_metrics_content_type() -> str:
    return CONTENT_TYPE_LATEST
