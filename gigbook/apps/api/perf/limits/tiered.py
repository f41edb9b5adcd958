"""Per-minute request quotas by subscription tier."""

from __future__ import annotations

import enum
import logging
import math
import os
import time
from dataclasses import asdict, dataclass
from types import MappingProxyType
from typing import Any, Awaitable, Callable, Mapping, Optional

from fastapi import Request, Response
from fastapi.responses import JSONResponse

from gigbook.apps.api.perf.limits.headers import remember_rate_limit_headers
from gigbook.apps.api.perf.metrics import prometheus
from gigbook.apps.api.security import get_client_key, get_user_identity

logger = logging.getLogger(__name__)

_MINUTE = 60
_BUCKET_RETENTION_SECONDS = 60 * 60
_MAX_BUCKETS = 10_000
UPGRADE_THRESHOLD = 0.8


class SubscriptionTier(str, enum.Enum):
    FREE = "free"
    BASIC = "basic"
    PREMIUM = "premium"


@dataclass(frozen=True)
class TierLimits:
    requests_per_minute: int
    requests_per_hour: int
    requests_per_day: int
    max_concurrent_requests: int
    api_calls_per_month: int
    description: str

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


TIER_LIMITS: Mapping[SubscriptionTier, TierLimits] = MappingProxyType(
    {
        SubscriptionTier.FREE: TierLimits(
            requests_per_minute=30,
            requests_per_hour=500,
            requests_per_day=5000,
            max_concurrent_requests=2,
            api_calls_per_month=100_000,
            description="Free tier - limited access",
        ),
        SubscriptionTier.BASIC: TierLimits(
            requests_per_minute=300,
            requests_per_hour=5000,
            requests_per_day=50_000,
            max_concurrent_requests=10,
            api_calls_per_month=1_000_000,
            description="Basic tier - standard access",
        ),
        SubscriptionTier.PREMIUM: TierLimits(
            requests_per_minute=1000,
            requests_per_hour=50_000,
            requests_per_day=500_000,
            max_concurrent_requests=50,
            api_calls_per_month=10_000_000,
            description="Premium tier - unlimited access",
        ),
    }
)

TierResolver = Callable[[str], SubscriptionTier]


def env_tier_resolver(user_key: str) -> SubscriptionTier:
    """Look up `USER_TIER_<id>`; anything unknown counts as free."""
    raw = os.getenv(f"USER_TIER_{user_key}", "").strip().lower()
    try:
        return SubscriptionTier(raw)
    except ValueError:
        return SubscriptionTier.FREE


def get_tier_limits(tier: SubscriptionTier) -> TierLimits:
    return TIER_LIMITS.get(tier, TIER_LIMITS[SubscriptionTier.FREE])


@dataclass
class _Bucket:
    count: int
    started_at: float


class TieredRateLimiter:
    """
    Counts requests per user in wall-clock minute buckets.

    A bucket is keyed by `"{user}:{minute}"`, so counts reset at the start
    of each minute. Old buckets are pruned once more than 10000 are held.
    """

    def __init__(
        self,
        tier_resolver: TierResolver = env_tier_resolver,
        *,
        enabled: bool = True,
        trust_proxy_headers: bool = False,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.tier_resolver = tier_resolver
        self.enabled = enabled
        self.trust_proxy_headers = trust_proxy_headers
        self._clock = clock
        self._buckets: dict[str, _Bucket] = {}

    def __len__(self) -> int:
        return len(self._buckets)

    def resolve_tier(self, user_key: str) -> SubscriptionTier:
        try:
            return self.tier_resolver(user_key)
        except Exception:
            logger.exception("Tier lookup failed for %s, assuming free tier", user_key)
            return SubscriptionTier.FREE

    def _bucket_key(self, user_key: str, now: float) -> str:
        return f"{user_key}:{int(now // _MINUTE)}"

    def track_request(self, user_key: str) -> int:
        now = self._clock()
        key = self._bucket_key(user_key, now)
        bucket = self._buckets.get(key)
        if bucket is None:
            bucket = _Bucket(count=0, started_at=now)
            self._buckets[key] = bucket
        bucket.count += 1

        if len(self._buckets) > _MAX_BUCKETS:
            self.prune(now)
        return bucket.count

    def prune(self, now: Optional[float] = None) -> int:
        """Drop buckets started more than an hour ago."""
        current = self._clock() if now is None else now
        cutoff = current - _BUCKET_RETENTION_SECONDS
        stale = [key for key, bucket in self._buckets.items() if bucket.started_at < cutoff]
        for key in stale:
            del self._buckets[key]
        return len(stale)

    def current_count(self, user_key: str) -> int:
        bucket = self._buckets.get(self._bucket_key(user_key, self._clock()))
        return bucket.count if bucket else 0

    def is_rate_limited(self, user_key: str) -> bool:
        """Count one request and report whether it exceeds the tier quota."""
        limits = get_tier_limits(self.resolve_tier(user_key))
        return self.track_request(user_key) > limits.requests_per_minute

    def remaining(self, user_key: str) -> int:
        limits = get_tier_limits(self.resolve_tier(user_key))
        return max(0, limits.requests_per_minute - self.current_count(user_key))

    def headers(self, user_key: str) -> dict[str, str]:
        tier = self.resolve_tier(user_key)
        limits = get_tier_limits(tier)
        now = self._clock()
        reset_after = math.ceil(_MINUTE - (now % _MINUTE))
        return {
            "X-RateLimit-Limit": str(limits.requests_per_minute),
            "X-RateLimit-Remaining": str(max(0, limits.requests_per_minute - self.current_count(user_key))),
            "X-RateLimit-Reset": str(reset_after),
            "X-Subscription-Tier": tier.value,
        }

    def should_promote_upgrade(self, user_key: str) -> bool:
        threshold = TIER_LIMITS[SubscriptionTier.FREE].requests_per_minute * UPGRADE_THRESHOLD
        return self.current_count(user_key) > threshold

    def upgrade_recommendation(self, user_key: str) -> Optional[dict[str, str]]:
        tier = self.resolve_tier(user_key)
        if tier is SubscriptionTier.PREMIUM or not self.should_promote_upgrade(user_key):
            return None
        next_tier = SubscriptionTier.BASIC if tier is SubscriptionTier.FREE else SubscriptionTier.PREMIUM
        return {
            "current_tier": tier.value,
            "recommended_tier": next_tier.value,
            "reason": (
                f"You're approaching your {tier.value} tier limit. "
                f"Upgrade to {next_tier.value} for higher limits."
            ),
        }

    def reset_all(self) -> None:
        self._buckets.clear()

    def user_key_for(self, request: Request) -> str:
        user_id, _ = get_user_identity(request)
        if user_id is not None:
            return str(user_id)
        return get_client_key(request, trust_proxy_headers=self.trust_proxy_headers)

    def enforce(self, request: Request, response: Response) -> None:
        """Count the request against the caller's tier quota, raising once over it."""
        if not self.enabled:
            return
        user_key = self.user_key_for(request)
        limited = self.is_rate_limited(user_key)
        headers = self.headers(user_key)
        remember_rate_limit_headers(request, headers)
        if limited:
            tier = self.resolve_tier(user_key)
            prometheus.observe_rate_limit_rejection(f"tier:{tier.value}")
            logger.warning("Tier rate limit exceeded for %s (tier=%s)", user_key, tier.value)
            raise TierRateLimitExceeded(tier=tier, limits=get_tier_limits(tier), headers=headers)
        response.headers.update(headers)

    def dependency(self) -> Callable[[Request, Response], Awaitable[None]]:
        async def enforce_tier_limit(request: Request, response: Response) -> None:
            self.enforce(request, response)

        return enforce_tier_limit


class TierRateLimitExceeded(Exception):
    def __init__(self, *, tier: SubscriptionTier, limits: TierLimits, headers: dict[str, str]) -> None:
        super().__init__("Rate limit exceeded")
        self.tier = tier
        self.limits = limits
        self.headers = headers

    def to_payload(self) -> dict[str, Any]:
        return {
            "error": "Rate limit exceeded",
            "tier": self.tier.value,
            "limits": self.limits.to_dict(),
        }


async def tier_rate_limit_exceeded_handler(request: Request, exc: TierRateLimitExceeded) -> JSONResponse:
    return JSONResponse(status_code=429, content=exc.to_payload(), headers=exc.headers)


__all__ = [
    "SubscriptionTier",
    "TIER_LIMITS",
    "TierLimits",
    "TierRateLimitExceeded",
    "TieredRateLimiter",
    "env_tier_resolver",
    "get_tier_limits",
    "tier_rate_limit_exceeded_handler",
]
