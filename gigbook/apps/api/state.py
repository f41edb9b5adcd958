"""Runtime services shared by request handlers."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

from fastapi import Request, Response

from gigbook.apps.api.perf.cache.endpoint_cache import EndpointCache
from gigbook.apps.api.perf.limits.rate_limiter import RATE_LIMIT_CONFIGS, RateLimiter
from gigbook.apps.api.perf.limits.tiered import TieredRateLimiter
from gigbook.core.cache import CacheBackend, LocalPlusRemoteCache, RedisCacheClient, build_cache
from gigbook.core.error_handler import GracefulShutdown
from gigbook.core.metrics import RequestMetricsRecorder
from gigbook.core.settings import Settings
from gigbook.core.ttl_store import TTLStore

logger = logging.getLogger(__name__)


@dataclass
class Services:
    """Holds the caching, rate limiting and metrics objects for one process."""

    settings: Settings
    store: TTLStore
    cache: CacheBackend
    endpoint_cache: EndpointCache
    limiter: RateLimiter
    tiered: TieredRateLimiter
    recorder: RequestMetricsRecorder

    def start_background_tasks(self, shutdown: GracefulShutdown) -> None:
        shutdown.add_task(self.store.start_cleanup(self.settings.cache_cleanup_interval_seconds))
        shutdown.add_task(self.limiter.start_cleanup(self.settings.rate_limit_cleanup_interval_seconds))
        if isinstance(self.cache, LocalPlusRemoteCache):
            shutdown.add_task(self.cache.start_health_watch(self.settings.cache_health_interval_seconds))

    async def shutdown(self) -> None:
        self.store.stop_cleanup()
        self.limiter.stop_cleanup()
        await self.cache.close()
        self.endpoint_cache.log_stats()
        self.store.destroy()


async def build_services(
    settings: Settings,
    *,
    redis_client: Optional[RedisCacheClient] = None,
) -> Services:
    store = TTLStore()
    cache = await build_cache(
        store,
        redis_url=settings.redis_url,
        socket_timeout=settings.redis_socket_timeout,
        client=redis_client,
    )
    services = Services(
        settings=settings,
        store=store,
        cache=cache,
        endpoint_cache=EndpointCache(cache),
        limiter=RateLimiter(
            enabled=settings.rate_limit_enabled,
            trust_proxy_headers=settings.trust_proxy_headers,
        ),
        tiered=TieredRateLimiter(
            enabled=settings.rate_limit_enabled,
            trust_proxy_headers=settings.trust_proxy_headers,
        ),
        recorder=RequestMetricsRecorder(
            settings.metrics_max_records,
            slow_request_threshold_ms=settings.slow_request_threshold_ms,
        ),
    )
    logger.info(
        "Services ready (cache=%s, rate_limit=%s)",
        cache.state.value,
        "on" if settings.rate_limit_enabled else "off",
    )
    return services


def get_services(request: Request) -> Services:
    services = getattr(request.app.state, "services", None)
    if services is None:
        raise RuntimeError("Application services are not initialized")
    return services


def rate_limit(preset: str) -> Callable[[Request, Response], Awaitable[None]]:
    """Dependency applying a named rate-limit preset with the app's limiter."""
    config = RATE_LIMIT_CONFIGS[preset]

    async def enforce_preset(request: Request, response: Response) -> None:
        get_services(request).limiter.enforce(request, response, config)

    return enforce_preset


async def tier_limit(request: Request, response: Response) -> None:
    get_services(request).tiered.enforce(request, response)


__all__ = ["Services", "build_services", "get_services", "rate_limit", "tier_limit"]
