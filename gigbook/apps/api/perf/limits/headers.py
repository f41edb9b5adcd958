"""Carry X-RateLimit-* headers onto every response of a limited request.

Limiter dependencies write their headers into FastAPI's sub-response, which
is discarded when an endpoint returns its own `Response` or raises
`HTTPException`. The headers are therefore also remembered on the request
state, and `RateLimitHeadersMiddleware` adds whichever are missing when the
response starts.
"""

from __future__ import annotations

from typing import Any, Callable, Mapping

from starlette.requests import Request

STATE_KEY = "rate_limit_headers"


def remember_rate_limit_headers(request: Request, headers: Mapping[str, str]) -> None:
    pending = dict(getattr(request.state, STATE_KEY, None) or {})
    pending.update(headers)
    setattr(request.state, STATE_KEY, pending)


class RateLimitHeadersMiddleware:
    def __init__(self, app) -> None:
        self.app = app

    async def __call__(self, scope: dict[str, Any], receive: Callable, send: Callable) -> None:
        if scope.get("type") != "http":
            await self.app(scope, receive, send)
            return

        # Request.state writes into this dict, so later reads see the limiter's values.
        state = scope.setdefault("state", {})

        async def send_wrapper(message: dict[str, Any]) -> None:
            if message.get("type") == "http.response.start":
                pending = state.get(STATE_KEY)
                if pending:
                    headers = list(message.get("headers") or [])
                    present = {key.lower() for key, _ in headers}
                    for name, value in pending.items():
                        raw_name = name.lower().encode("latin-1")
                        if raw_name not in present:
                            headers.append((raw_name, str(value).encode("latin-1")))
                    message["headers"] = headers
            await send(message)

        await self.app(scope, receive, send_wrapper)


__all__ = ["RateLimitHeadersMiddleware", "remember_rate_limit_headers"]
