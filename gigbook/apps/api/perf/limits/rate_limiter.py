"""Fixed-window request rate limiting.

Each client key (authenticated user, else IP) gets a counter that resets
when its window ends. Because windows are fixed rather than sliding, a
client may send up to twice the quota around a window boundary; that is
accepted behaviour. Counters live in this process only, so N instances
allow up to N times the quota.

Usage:
    limiter = RateLimiter()
    router = APIRouter(dependencies=[Depends(limiter.middleware(RATE_LIMIT_CONFIGS["api"]))])
"""

from __future__ import annotations

import asyncio
import logging
import math
import time
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Awaitable, Callable, Mapping, Optional

from fastapi import Request, Response
from fastapi.responses import JSONResponse

from gigbook.apps.api.perf.limits.headers import remember_rate_limit_headers
from gigbook.apps.api.perf.metrics import prometheus
from gigbook.apps.api.security import get_client_key
from gigbook.core.error_handler import resilient_task, safe_background_task

logger = logging.getLogger(__name__)

DEFAULT_MESSAGE = "Too many requests. Please try again later."
RATE_LIMIT_ERROR = "RATE_LIMIT_EXCEEDED"


@dataclass(frozen=True)
class RateLimitConfig:
    window_ms: int
    max_requests: int
    message: Optional[str] = None
    key_generator: Optional[Callable[[Request], str]] = None
    skip: Optional[Callable[[Request], bool]] = None
    name: str = "default"

    def __post_init__(self) -> None:
        if self.window_ms <= 0:
            raise ValueError("window_ms must be positive")
        if self.max_requests < 0:
            raise ValueError("max_requests must not be negative")


RATE_LIMIT_CONFIGS: Mapping[str, RateLimitConfig] = MappingProxyType(
    {
        "auth": RateLimitConfig(
            window_ms=15 * 60 * 1000,
            max_requests=20,
            message="Too many login attempts. Please try again later.",
            name="auth",
        ),
        "api": RateLimitConfig(
            window_ms=60 * 1000,
            max_requests=10000,
            message="Too many requests. Please slow down.",
            name="api",
        ),
        "public": RateLimitConfig(
            window_ms=60 * 1000,
            max_requests=5000,
            message="Rate limit exceeded. Please try again later.",
            name="public",
        ),
        "sensitive": RateLimitConfig(
            window_ms=60 * 1000,
            max_requests=500,
            message="Too many requests for this operation. Please try again later.",
            name="sensitive",
        ),
    }
)


@dataclass
class RateLimitWindow:
    count: int
    reset_at: float


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    limit: int
    remaining: int
    reset_after: int  # whole seconds until the window resets

    @property
    def retry_after(self) -> int:
        return max(1, self.reset_after)

    def headers(self) -> dict[str, str]:
        return {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": str(self.reset_after),
        }


class RateLimitExceeded(Exception):
    """Raised by the limiter dependency; rendered as a 429 response."""

    def __init__(self, decision: RateLimitDecision, message: str = DEFAULT_MESSAGE) -> None:
        super().__init__(message)
        self.decision = decision
        self.message = message

    @property
    def retry_after(self) -> int:
        return self.decision.retry_after

    def to_payload(self) -> dict[str, Any]:
        return {
            "error": RATE_LIMIT_ERROR,
            "message": self.message,
            "retryAfter": self.retry_after,
        }


async def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    headers = exc.decision.headers()
    headers["Retry-After"] = str(exc.retry_after)
    return JSONResponse(status_code=429, content=exc.to_payload(), headers=headers)


class RateLimiter:
    """Process-local fixed-window counters keyed by client identity."""

    def __init__(
        self,
        *,
        enabled: bool = True,
        trust_proxy_headers: bool = False,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.enabled = enabled
        self.trust_proxy_headers = trust_proxy_headers
        self._clock = clock
        self._windows: dict[str, RateLimitWindow] = {}
        self._cleanup_task: Optional[asyncio.Task] = None

    def __len__(self) -> int:
        return len(self._windows)

    def key_for(self, request: Request, config: RateLimitConfig) -> str:
        if config.key_generator is not None:
            return config.key_generator(request)
        return get_client_key(request, trust_proxy_headers=self.trust_proxy_headers)

    def hit(self, key: str, config: RateLimitConfig) -> RateLimitDecision:
        """Count one request for `key` and decide whether it may proceed."""
        now = self._clock()
        window = self._windows.get(key)
        if window is None or now > window.reset_at:
            window = RateLimitWindow(count=0, reset_at=now + config.window_ms / 1000)
            self._windows[key] = window

        window.count += 1
        return RateLimitDecision(
            allowed=window.count <= config.max_requests,
            limit=config.max_requests,
            remaining=max(0, config.max_requests - window.count),
            reset_after=max(0, math.ceil(window.reset_at - now)),
        )

    def enforce(self, request: Request, response: Response, config: RateLimitConfig) -> None:
        """Count the request, set X-RateLimit-* headers and raise once over quota."""
        if not self.enabled:
            return
        if config.skip is not None and config.skip(request):
            return

        key = self.key_for(request, config)
        decision = self.hit(key, config)
        headers = decision.headers()
        response.headers.update(headers)
        remember_rate_limit_headers(request, headers)
        if decision.allowed:
            return

        prometheus.observe_rate_limit_rejection(config.name)
        logger.warning(
            "Rate limit exceeded for %s on %s %s (limiter=%s)",
            key,
            request.method,
            request.url.path,
            config.name,
        )
        raise RateLimitExceeded(decision, config.message or DEFAULT_MESSAGE)

    def middleware(self, config: RateLimitConfig) -> Callable[[Request, Response], Awaitable[None]]:
        """Build a FastAPI dependency enforcing `config` on the routes it guards."""

        async def enforce_rate_limit(request: Request, response: Response) -> None:
            self.enforce(request, response, config)

        return enforce_rate_limit

    def get_status(self, request: Request, config: RateLimitConfig) -> dict[str, Any]:
        """Current counter of a client without counting a request."""
        key = self.key_for(request, config)
        now = self._clock()
        window = self._windows.get(key)
        if window is None or now > window.reset_at:
            return {
                "key": key,
                "count": 0,
                "limit": config.max_requests,
                "remaining": config.max_requests,
                "reset_after": math.ceil(config.window_ms / 1000),
            }
        return {
            "key": key,
            "count": window.count,
            "limit": config.max_requests,
            "remaining": max(0, config.max_requests - window.count),
            "reset_after": max(0, math.ceil(window.reset_at - now)),
        }

    def reset(self, key: str) -> bool:
        return self._windows.pop(key, None) is not None

    def reset_all(self) -> None:
        self._windows.clear()

    def cleanup(self) -> int:
        """Drop windows that have already ended."""
        now = self._clock()
        expired = [key for key, window in self._windows.items() if now > window.reset_at]
        for key in expired:
            del self._windows[key]
        if expired:
            logger.info("Rate limiter cleaned up %d expired entries", len(expired))
        return len(expired)

    def start_cleanup(self, interval_seconds: float = 60.0) -> asyncio.Task:
        if self._cleanup_task is not None and not self._cleanup_task.done():
            return self._cleanup_task

        @resilient_task(task_name="rate_limit_sweeper", retry_delay=interval_seconds)
        async def _sweep_forever() -> None:
            while True:
                await asyncio.sleep(interval_seconds)
                self.cleanup()

        self._cleanup_task = safe_background_task("rate_limit_sweeper", _sweep_forever())
        return self._cleanup_task

    def stop_cleanup(self) -> None:
        if self._cleanup_task is not None:
            self._cleanup_task.cancel()
            self._cleanup_task = None


__all__ = [
    "RATE_LIMIT_CONFIGS",
    "RateLimitConfig",
    "RateLimitDecision",
    "RateLimitExceeded",
    "RateLimitWindow",
    "RateLimiter",
    "rate_limit_exceeded_handler",
]
