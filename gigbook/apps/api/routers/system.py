from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from gigbook.core.cache import CacheAvailability

router = APIRouter()


@router.get("/health", include_in_schema=False)
async def health_check(request: Request) -> JSONResponse:
    services = getattr(request.app.state, "services", None)
    if services is None:
        return JSONResponse(
            {"status": "error", "checks": {"services": "missing"}},
            status_code=503,
        )

    # A missing Redis degrades caching but never takes the API down.
    cache_state = services.cache.state
    checks = {
        "services": "ok",
        "cache": "redis" if cache_state is CacheAvailability.CONNECTED else "memory",
        "cache_state": cache_state.value,
        "rate_limiting": "enabled" if services.limiter.enabled else "disabled",
    }
    return JSONResponse({"status": "ok", "checks": checks})
