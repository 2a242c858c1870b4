"""Prometheus metrics shared by the middleware stack and auth services"""

from prometheus_client import Counter, Histogram

REQUEST_COUNT = Counter(
    "openfare_http_requests_total",
    "Total HTTP requests",
    ["method", "path", "status"],
)
REQUEST_LATENCY = Histogram(
    "openfare_http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "path"],
)
AUTH_EVENTS = Counter(
    "openfare_auth_events_total",
    "Authentication and gate decisions",
    ["event", "outcome"],
)
