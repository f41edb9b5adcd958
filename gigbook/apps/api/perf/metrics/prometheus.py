"""Prometheus instruments for request, cache and rate-limit observability.

Labels stay low-cardinality: route templates rather than raw paths, and
never user identifiers.
"""

from __future__ import annotations

from typing import Any

from prometheus_client import Counter, Gauge, Histogram

HTTP_INFLIGHT = Gauge(
    "gigbook_http_inflight_requests",
    "Number of in-flight HTTP requests.",
)

HTTP_REQUESTS_TOTAL = Counter(
    "gigbook_http_requests_total",
    "Total HTTP requests by route/method/status.",
    labelnames=("route", "method", "status"),
)

HTTP_REQUEST_DURATION_SECONDS = Histogram(
    "gigbook_http_request_duration_seconds",
    "HTTP request latency in seconds by route/method.",
    labelnames=("route", "method"),
    buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
)

HTTP_ERRORS_TOTAL = Counter(
    "gigbook_http_errors_total",
    "HTTP responses with status >= 400 by route/method/status.",
    labelnames=("route", "method", "status"),
)

RESPONSE_CACHE_TOTAL = Counter(
    "gigbook_response_cache_total",
    "Response cache lookups by route and result (hit/miss).",
    labelnames=("route", "result"),
)

RATE_LIMIT_REJECTIONS_TOTAL = Counter(
    "gigbook_rate_limit_rejections_total",
    "Requests rejected by a rate limiter, by limiter name.",
    labelnames=("limiter",),
)


def route_label(scope: dict[str, Any]) -> str:
    """Return the route template when routing has resolved one."""

    route = scope.get("route")
    path = getattr(route, "path", None)
    if isinstance(path, str) and path:
        return path
    raw = scope.get("path") or ""
    return str(raw) if raw else "unknown"


def observe_http(*, route: str, method: str, status_code: int, duration_seconds: float) -> None:
    status = str(int(status_code))
    HTTP_REQUESTS_TOTAL.labels(route=route, method=method, status=status).inc()
    HTTP_REQUEST_DURATION_SECONDS.labels(route=route, method=method).observe(duration_seconds)
    if status_code >= 400:
        HTTP_ERRORS_TOTAL.labels(route=route, method=method, status=status).inc()


def observe_response_cache(*, route: str, result: str) -> None:
    RESPONSE_CACHE_TOTAL.labels(route=route, result=result).inc()


def observe_rate_limit_rejection(limiter: str) -> None:
    RATE_LIMIT_REJECTIONS_TOTAL.labels(limiter=limiter).inc()
