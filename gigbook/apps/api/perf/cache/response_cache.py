"""HTTP response caching for GET endpoints.

Usage:
    @router.get("/artists")
    @response_cache("5m")
    async def list_artists(page: int = 1) -> dict:
        ...

Responses are stored under `METHOD:/path?query` through the cache adapter
and marked with an `X-Cache: HIT|MISS` header. Route dependencies (rate
limiting included) still run on a hit, since only the endpoint body is
short-circuited.
"""

from __future__ import annotations

import functools
import inspect
import re
import typing
from typing import Any, Awaitable, Callable

from fastapi import Request, Response
from fastapi.encoders import jsonable_encoder

from gigbook.apps.api.perf.metrics import prometheus

TTL_PATTERN = re.compile(r"([0-9]+)([smhd])")

_UNIT_MS = {
    "s": 1000,
    "m": 60 * 1000,
    "h": 60 * 60 * 1000,
    "d": 24 * 60 * 60 * 1000,
}

_REQUEST_PARAM = "_cache_request"
_RESPONSE_PARAM = "_cache_response"


def parse_ttl(ttl: str) -> int:
    """Parse "30s" / "5m" / "1h" / "2d" into milliseconds."""
    match = TTL_PATTERN.fullmatch(ttl or "")
    if not match:
        raise ValueError(f'Invalid TTL format: {ttl!r}. Use format like "5m", "30s", "1h", "2d"')
    value, unit = match.groups()
    return int(value) * _UNIT_MS[unit]


def response_cache_key(request: Request) -> str:
    path = request.url.path
    if request.url.query:
        path = f"{path}?{request.url.query}"
    return f"{request.method}:{path}"


def _with_injected_params(func: Callable[..., Any]) -> inspect.Signature:
    hints = typing.get_type_hints(func, include_extras=True)
    signature = inspect.signature(func)
    params = [
        param.replace(annotation=hints.get(name, param.annotation))
        for name, param in signature.parameters.items()
    ]
    injected = [
        inspect.Parameter(_REQUEST_PARAM, inspect.Parameter.KEYWORD_ONLY, annotation=Request),
        inspect.Parameter(_RESPONSE_PARAM, inspect.Parameter.KEYWORD_ONLY, annotation=Response),
    ]
    if params and params[-1].kind is inspect.Parameter.VAR_KEYWORD:
        params = params[:-1] + injected + params[-1:]
    else:
        params = params + injected
    return signature.replace(parameters=params, return_annotation=hints.get("return", signature.return_annotation))


def response_cache(ttl: str = "5m") -> Callable[[Callable[..., Any]], Callable[..., Awaitable[Any]]]:
    """Cache JSON results of a GET endpoint for `ttl`; bad TTL strings fail here."""

    ttl_seconds = parse_ttl(ttl) / 1000

    def decorator(func: Callable[..., Any]) -> Callable[..., Awaitable[Any]]:
        signature = _with_injected_params(func)

        @functools.wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> Any:
            request: Request = kwargs.pop(_REQUEST_PARAM)
            response: Response = kwargs.pop(_RESPONSE_PARAM)

            services = getattr(request.app.state, "services", None)
            if services is None or request.method != "GET":
                return await _call(func, *args, **kwargs)

            key = response_cache_key(request)
            cached = await services.cache.get_cached(key)
            if cached is not None:
                response.headers["X-Cache"] = "HIT"
                prometheus.observe_response_cache(route=prometheus.route_label(request.scope), result="hit")
                return cached

            result = await _call(func, *args, **kwargs)
            if isinstance(result, Response):
                return result

            response.headers["X-Cache"] = "MISS"
            prometheus.observe_response_cache(route=prometheus.route_label(request.scope), result="miss")
            # None reads back as absent, so it is never stored.
            if result is not None:
                await services.cache.set_cached(key, jsonable_encoder(result), ttl_seconds)
            return result

        wrapper.__signature__ = signature  # type: ignore[attr-defined]
        # FastAPI must introspect the wrapper (async, injected params), not the endpoint.
        del wrapper.__wrapped__
        return wrapper

    return decorator


async def _call(func: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
    result = func(*args, **kwargs)
    if inspect.isawaitable(result):
        result = await result
    return result


__all__ = ["parse_ttl", "response_cache", "response_cache_key"]
