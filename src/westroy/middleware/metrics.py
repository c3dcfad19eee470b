"""Prometheus metrics middleware and marketplace counters."""
import time
from typing import Callable

from prometheus_client import Counter, Gauge, Histogram, generate_latest
from prometheus_client import CONTENT_TYPE_LATEST
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response


# =============================================================================
# Prometheus Metrics Definitions
# =============================================================================

# Request metrics
REQUEST_COUNT = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "endpoint", "status"],
)

REQUEST_LATENCY = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency in seconds",
    ["method", "endpoint"],
    buckets=[0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0, 10.0],
)

ACTIVE_REQUESTS = Gauge(
    "http_requests_active",
    "Number of active HTTP requests",
)

# Lifecycle metrics
REQUESTS_CREATED = Counter(
    "marketplace_requests_created_total",
    "Buyer requests created",
    ["category"],
)

OFFER_DECISIONS = Counter(
    "marketplace_offer_decisions_total",
    "Offer accept/reject decisions",
    ["decision"],  # accepted, rejected
)

ORDER_STATUS_CHANGES = Counter(
    "marketplace_order_transitions_total",
    "Successful order status transitions",
    ["from_status", "to_status"],
)

# Query parser metrics
PARSER_OUTCOMES = Counter(
    "query_parser_outcomes_total",
    "Which source produced the parsed query",
    ["outcome"],  # rules, merged, llm, timeout, error
)

PARSER_LATENCY = Histogram(
    "query_parser_duration_seconds",
    "Query parsing latency in seconds",
    buckets=[0.001, 0.005, 0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 1.5, 2.0],
)

# Notification metrics
NOTIFICATIONS_SENT = Counter(
    "notifications_sent_total",
    "Notification deliveries per transport",
    ["transport", "outcome"],  # outcome: sent, skipped, failed
)


# =============================================================================
# Metrics Middleware
# =============================================================================

class PrometheusMiddleware(BaseHTTPMiddleware):
    """Records count, latency and in-flight requests per endpoint.

    Endpoints are labelled by their route template (`/api/v1/orders/{order_id}`)
    so ids never become label values. Unrouted paths share one `/other` label.
    """

    UNLABELLED = "/other"

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        if request.url.path == "/metrics":
            return await call_next(request)

        ACTIVE_REQUESTS.inc()
        start_time = time.perf_counter()
        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
            return response
        finally:
            ACTIVE_REQUESTS.dec()
            endpoint = self._endpoint_label(request)
            REQUEST_COUNT.labels(method=request.method, endpoint=endpoint, status=status_code).inc()
            REQUEST_LATENCY.labels(method=request.method, endpoint=endpoint).observe(
                time.perf_counter() - start_time
            )

    def _endpoint_label(self, request: Request) -> str:
        route = request.scope.get("route")
        path = getattr(route, "path", None)
        return path or self.UNLABELLED


async def metrics_endpoint(request: Request) -> Response:
    """Prometheus scrape endpoint."""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


def record_parser_outcome(outcome: str, duration: float) -> None:
    """Record which parser source won and how long parsing took."""
    PARSER_OUTCOMES.labels(outcome=outcome).inc()
    PARSER_LATENCY.observe(duration)


def record_notification(transport: str, outcome: str) -> None:
    NOTIFICATIONS_SENT.labels(transport=transport, outcome=outcome).inc()
