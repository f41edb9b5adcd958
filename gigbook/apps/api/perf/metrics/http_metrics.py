"""Per-request timing, logging and Prometheus metrics.

Implemented as ASGI middleware (instead of BaseHTTPMiddleware) so the
timing covers the whole response and streaming bodies are left alone.
"""

from __future__ import annotations

import time
from typing import Any, Callable, Optional

from starlette.datastructures import QueryParams
from starlette.requests import HTTPConnection

from gigbook.apps.api.perf.metrics import prometheus
from gigbook.apps.api.security import get_user_identity
from gigbook.core.metrics import RequestMetric, RequestMetricsRecorder


def _recorder(scope: dict[str, Any]) -> Optional[RequestMetricsRecorder]:
    app = scope.get("app")
    services = getattr(getattr(app, "state", None), "services", None)
    return getattr(services, "recorder", None)


def _query_params(scope: dict[str, Any]) -> Optional[dict[str, str]]:
    raw = scope.get("query_string") or b""
    if not raw:
        return None
    return dict(QueryParams(raw))


class RequestMetricsMiddleware:
    """Record every HTTP request into the metrics recorder and Prometheus."""

    def __init__(self, app) -> None:
        self.app = app

    async def __call__(self, scope: dict[str, Any], receive: Callable, send: Callable) -> None:
        if scope.get("type") != "http":
            await self.app(scope, receive, send)
            return

        method = str(scope.get("method") or "GET")
        path = str(scope.get("path") or "/")
        status_code = 500
        error_message: Optional[str] = None

        async def send_wrapper(message: dict[str, Any]) -> None:
            nonlocal status_code
            if message.get("type") == "http.response.start":
                status_code = int(message.get("status") or 500)
            await send(message)

        prometheus.HTTP_INFLIGHT.inc()
        start = time.perf_counter()
        try:
            await self.app(scope, receive, send_wrapper)
        except Exception as exc:
            status_code = 500
            error_message = str(exc) or exc.__class__.__name__
            raise
        finally:
            duration = max(0.0, time.perf_counter() - start)
            prometheus.HTTP_INFLIGHT.dec()
            prometheus.observe_http(
                route=prometheus.route_label(scope),
                method=method,
                status_code=status_code,
                duration_seconds=duration,
            )

            recorder = _recorder(scope)
            if recorder is not None:
                user_id, user_role = get_user_identity(HTTPConnection(scope))
                recorder.record(
                    RequestMetric(
                        method=method,
                        path=path,
                        status_code=status_code,
                        duration_ms=duration * 1000,
                        user_id=user_id,
                        user_role=user_role,
                        query_params=_query_params(scope),
                        error_message=error_message,
                    )
                )
