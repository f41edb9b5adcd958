from fastapi import Depends, FastAPI
from fastapi.testclient import TestClient

from gigbook.apps.api.perf.limits.tiered import (
    TIER_LIMITS,
    SubscriptionTier,
    TieredRateLimiter,
    TierRateLimitExceeded,
    env_tier_resolver,
    get_tier_limits,
    tier_rate_limit_exceeded_handler,
)

MINUTE_START = 1200.0


def _tiers(mapping):
    return lambda user_key: mapping.get(user_key, SubscriptionTier.FREE)


def test_tier_table():
    assert TIER_LIMITS[SubscriptionTier.FREE].requests_per_minute == 30
    assert TIER_LIMITS[SubscriptionTier.BASIC].requests_per_hour == 5000
    assert TIER_LIMITS[SubscriptionTier.PREMIUM].max_concurrent_requests == 50
    assert get_tier_limits(SubscriptionTier.PREMIUM).api_calls_per_month == 10_000_000


def test_env_tier_resolver(monkeypatch):
    monkeypatch.setenv("USER_TIER_42", "premium")
    monkeypatch.setenv("USER_TIER_43", "platinum")

    assert env_tier_resolver("42") is SubscriptionTier.PREMIUM
    assert env_tier_resolver("43") is SubscriptionTier.FREE
    assert env_tier_resolver("44") is SubscriptionTier.FREE


def test_free_tier_limited_after_thirty_requests(clock):
    clock.now = MINUTE_START
    limiter = TieredRateLimiter(_tiers({}), clock=clock)

    results = [limiter.is_rate_limited("u1") for _ in range(31)]

    assert results[:30] == [False] * 30
    assert results[30] is True
    assert limiter.remaining("u1") == 0


def test_bucket_rolls_over_each_minute(clock):
    clock.now = MINUTE_START
    limiter = TieredRateLimiter(_tiers({}), clock=clock)
    for _ in range(31):
        limiter.is_rate_limited("u1")

    clock.advance(60)

    assert limiter.is_rate_limited("u1") is False
    assert limiter.remaining("u1") == 29


def test_higher_tiers_have_higher_quota(clock):
    clock.now = MINUTE_START
    limiter = TieredRateLimiter(_tiers({"pro": SubscriptionTier.BASIC}), clock=clock)

    results = [limiter.is_rate_limited("pro") for _ in range(100)]

    assert not any(results)
    assert limiter.remaining("pro") == 200


def test_headers_include_tier(clock):
    clock.now = MINUTE_START + 15
    limiter = TieredRateLimiter(_tiers({"vip": SubscriptionTier.PREMIUM}), clock=clock)
    limiter.is_rate_limited("vip")

    assert limiter.headers("vip") == {
        "X-RateLimit-Limit": "1000",
        "X-RateLimit-Remaining": "999",
        "X-RateLimit-Reset": "45",
        "X-Subscription-Tier": "premium",
    }


def test_upgrade_recommendation(clock):
    clock.now = MINUTE_START
    limiter = TieredRateLimiter(
        _tiers({"b": SubscriptionTier.BASIC, "p": SubscriptionTier.PREMIUM}),
        clock=clock,
    )
    for user in ("f", "b", "p"):
        for _ in range(24):
            limiter.is_rate_limited(user)

    assert limiter.upgrade_recommendation("f") is None

    for user in ("f", "b", "p"):
        limiter.is_rate_limited(user)

    assert limiter.upgrade_recommendation("f") == {
        "current_tier": "free",
        "recommended_tier": "basic",
        "reason": "You're approaching your free tier limit. Upgrade to basic for higher limits.",
    }
    assert limiter.upgrade_recommendation("b")["recommended_tier"] == "premium"
    assert limiter.upgrade_recommendation("p") is None


def test_resolver_errors_fall_back_to_free(clock):
    def broken(user_key):
        raise RuntimeError("tier service down")

    limiter = TieredRateLimiter(broken, clock=clock)

    assert limiter.resolve_tier("u1") is SubscriptionTier.FREE


def test_prune_drops_buckets_older_than_an_hour(clock):
    clock.now = MINUTE_START
    limiter = TieredRateLimiter(_tiers({}), clock=clock)
    limiter.is_rate_limited("old")
    clock.advance(3601)
    limiter.is_rate_limited("new")

    assert limiter.prune() == 1
    assert len(limiter) == 1


def test_http_rejection_includes_tier_and_limits(clock):
    clock.now = MINUTE_START
    limiter = TieredRateLimiter(_tiers({}), clock=clock)
    app = FastAPI()
    app.add_exception_handler(TierRateLimitExceeded, tier_rate_limit_exceeded_handler)

    @app.get("/bookings", dependencies=[Depends(limiter.dependency())])
    async def bookings():
        return []

    client = TestClient(app)
    for _ in range(30):
        response = client.get("/bookings")
        assert response.status_code == 200
    assert response.headers["X-Subscription-Tier"] == "free"
    assert response.headers["X-RateLimit-Remaining"] == "0"

    rejected = client.get("/bookings")

    assert rejected.status_code == 429
    body = rejected.json()
    assert body["error"] == "Rate limit exceeded"
    assert body["tier"] == "free"
    assert body["limits"]["requests_per_minute"] == 30
    assert rejected.headers["X-Subscription-Tier"] == "free"
