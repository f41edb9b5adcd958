"""Operator endpoints for request metrics, cache and rate-limit state."""

from __future__ import annotations

import re
from datetime import datetime, timezone
from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import Response

from gigbook.apps.api.perf.limits.rate_limiter import RATE_LIMIT_CONFIGS
from gigbook.apps.api.schemas import (
    InvalidateCacheRequest,
    InvalidateCacheResult,
    ResetRateLimitRequest,
    ResetRateLimitResult,
)
from gigbook.apps.api.state import Services, get_services, rate_limit


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


router = APIRouter(
    prefix="/admin",
    tags=["admin"],
    dependencies=[Depends(rate_limit("sensitive"))],
)


@router.get("/metrics/requests")
async def request_metrics(
    method: Optional[str] = Query(default=None),
    path: Optional[str] = Query(default=None),
    status_code: Optional[int] = Query(default=None, ge=100, le=599),
    start_time: Optional[datetime] = Query(default=None),
    end_time: Optional[datetime] = Query(default=None),
    services: Services = Depends(get_services),
) -> dict[str, Any]:
    recorder = services.recorder
    if not any(v is not None for v in (method, path, status_code, start_time, end_time)):
        return recorder.snapshot()

    records = recorder.get_metrics(
        start_time=_as_utc(start_time),
        end_time=_as_utc(end_time),
        method=method.upper() if method else None,
        path=path,
        status_code=status_code,
    )
    return {
        "metrics": [m.to_dict() for m in records],
        "stats": recorder.get_stats(records),
    }


@router.get("/metrics/slowest")
async def slowest_endpoints(
    limit: int = Query(default=10, ge=1, le=100),
    services: Services = Depends(get_services),
) -> list[dict[str, Any]]:
    return services.recorder.get_slowest_endpoints(limit)


@router.get("/metrics/most-accessed")
async def most_accessed_endpoints(
    limit: int = Query(default=10, ge=1, le=100),
    services: Services = Depends(get_services),
) -> list[dict[str, Any]]:
    return services.recorder.get_most_accessed_endpoints(limit)


@router.get("/metrics/errors")
async def error_summary(services: Services = Depends(get_services)) -> dict[str, Any]:
    return services.recorder.get_error_summary()


@router.get("/metrics/export")
async def export_metrics(services: Services = Depends(get_services)) -> Response:
    return Response(content=services.recorder.export(), media_type="application/json")


@router.post("/metrics/clear")
async def clear_metrics(services: Services = Depends(get_services)) -> dict[str, bool]:
    services.recorder.clear()
    return {"cleared": True}


@router.get("/cache/stats")
async def cache_stats(services: Services = Depends(get_services)) -> dict[str, Any]:
    return services.cache.get_stats()


@router.post("/cache/clear")
async def clear_cache(services: Services = Depends(get_services)) -> dict[str, bool]:
    await services.endpoint_cache.clear_all()
    return {"cleared": True}


@router.post("/cache/invalidate", response_model=InvalidateCacheResult)
async def invalidate_cache(
    payload: InvalidateCacheRequest,
    services: Services = Depends(get_services),
) -> InvalidateCacheResult:
    try:
        pattern = re.compile(payload.pattern)
    except re.error as exc:
        raise HTTPException(status_code=400, detail=f"Invalid pattern: {exc}") from exc
    deleted = await services.endpoint_cache.invalidate_cache_pattern(pattern)
    return InvalidateCacheResult(pattern=payload.pattern, deleted=deleted)


@router.get("/rate-limits/status")
async def rate_limit_status(
    request: Request,
    preset: str = Query(default="api"),
    services: Services = Depends(get_services),
) -> dict[str, Any]:
    config = RATE_LIMIT_CONFIGS.get(preset)
    if config is None:
        raise HTTPException(status_code=404, detail=f"Unknown rate limit preset: {preset}")
    return services.limiter.get_status(request, config)


@router.post("/rate-limits/reset", response_model=ResetRateLimitResult)
async def reset_rate_limits(
    payload: ResetRateLimitRequest,
    services: Services = Depends(get_services),
) -> ResetRateLimitResult:
    if payload.key:
        return ResetRateLimitResult(key=payload.key, reset=services.limiter.reset(payload.key))
    services.limiter.reset_all()
    services.tiered.reset_all()
    return ResetRateLimitResult(key=None, reset=True)
