import logging

import pytest
from fastapi import Depends, FastAPI
from fastapi.testclient import TestClient
from starlette.requests import Request

from gigbook.apps.api.perf.limits.rate_limiter import (
    RATE_LIMIT_CONFIGS,
    RateLimitConfig,
    RateLimiter,
    RateLimitExceeded,
    rate_limit_exceeded_handler,
)


def _request(client_host="1.2.3.4", headers=None, user=None):
    scope = {
        "type": "http",
        "method": "GET",
        "path": "/",
        "headers": [(k.lower().encode(), v.encode()) for k, v in (headers or {}).items()],
        "client": (client_host, 5000),
        "query_string": b"",
    }
    request = Request(scope)
    if user is not None:
        request.state.user = user
    return request


def _app(limiter, config):
    app = FastAPI()
    app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)

    @app.get("/limited", dependencies=[Depends(limiter.middleware(config))])
    async def limited():
        return {"ok": True}

    return app


def test_presets():
    assert RATE_LIMIT_CONFIGS["auth"].window_ms == 15 * 60 * 1000
    assert RATE_LIMIT_CONFIGS["auth"].max_requests == 20
    assert RATE_LIMIT_CONFIGS["api"].max_requests == 10000
    assert RATE_LIMIT_CONFIGS["public"].max_requests == 5000
    assert RATE_LIMIT_CONFIGS["sensitive"].max_requests == 500
    assert RATE_LIMIT_CONFIGS["api"].message == "Too many requests. Please slow down."


def test_fifth_request_allowed_sixth_rejected(clock):
    limiter = RateLimiter(clock=clock)
    config = RateLimitConfig(window_ms=60_000, max_requests=5)

    decisions = [limiter.hit("ip:1.2.3.4", config) for _ in range(6)]

    assert all(d.allowed for d in decisions[:5])
    assert decisions[4].remaining == 0
    assert decisions[5].allowed is False
    assert decisions[5].retry_after > 0


def test_window_resets_after_it_elapses(clock):
    limiter = RateLimiter(clock=clock)
    config = RateLimitConfig(window_ms=1000, max_requests=1)

    assert limiter.hit("k", config).allowed
    assert not limiter.hit("k", config).allowed

    clock.advance(1.001)
    decision = limiter.hit("k", config)
    assert decision.allowed
    assert decision.remaining == 0
    assert limiter.get_status(_request(), RateLimitConfig(window_ms=1000, max_requests=1, key_generator=lambda r: "k"))["count"] == 1


def test_scenario_two_per_second(clock):
    limiter = RateLimiter(clock=clock)
    config = RateLimitConfig(window_ms=1000, max_requests=2)

    first = limiter.hit("ip:1.2.3.4", config)
    clock.advance(0.1)
    second = limiter.hit("ip:1.2.3.4", config)
    clock.advance(0.1)
    third = limiter.hit("ip:1.2.3.4", config)

    assert (first.allowed, second.allowed, third.allowed) == (True, True, False)
    assert third.retry_after == 1
    assert third.headers() == {
        "X-RateLimit-Limit": "2",
        "X-RateLimit-Remaining": "0",
        "X-RateLimit-Reset": "1",
    }


def test_clients_are_counted_separately(clock):
    limiter = RateLimiter(clock=clock)
    config = RateLimitConfig(window_ms=1000, max_requests=1)

    assert limiter.hit("ip:1.1.1.1", config).allowed
    assert limiter.hit("ip:2.2.2.2", config).allowed
    assert len(limiter) == 2


def test_key_prefers_user_over_ip():
    limiter = RateLimiter()
    config = RateLimitConfig(window_ms=1000, max_requests=1)

    assert limiter.key_for(_request(), config) == "ip:1.2.3.4"
    assert limiter.key_for(_request(user={"id": 7, "role": "artist"}), config) == "user:7"


def test_forwarded_for_only_trusted_when_configured():
    config = RateLimitConfig(window_ms=1000, max_requests=1)
    request = _request(headers={"X-Forwarded-For": "9.9.9.9, 10.0.0.1"})

    assert RateLimiter().key_for(request, config) == "ip:1.2.3.4"
    assert RateLimiter(trust_proxy_headers=True).key_for(request, config) == "ip:9.9.9.9"


def test_custom_key_generator():
    limiter = RateLimiter()
    config = RateLimitConfig(window_ms=1000, max_requests=1, key_generator=lambda r: "tenant:abc")

    assert limiter.key_for(_request(), config) == "tenant:abc"


def test_reset_and_reset_all(clock):
    limiter = RateLimiter(clock=clock)
    config = RateLimitConfig(window_ms=1000, max_requests=1)
    limiter.hit("a", config)
    limiter.hit("b", config)

    assert limiter.reset("a") is True
    assert limiter.reset("a") is False
    assert limiter.hit("a", config).allowed

    limiter.reset_all()
    assert len(limiter) == 0


def test_cleanup_drops_finished_windows(clock):
    limiter = RateLimiter(clock=clock)
    limiter.hit("short", RateLimitConfig(window_ms=1000, max_requests=5))
    limiter.hit("long", RateLimitConfig(window_ms=60_000, max_requests=5))

    clock.advance(2)

    assert limiter.cleanup() == 1
    assert len(limiter) == 1


def test_get_status_does_not_count(clock):
    limiter = RateLimiter(clock=clock)
    config = RateLimitConfig(window_ms=10_000, max_requests=3)
    request = _request()

    assert limiter.get_status(request, config) == {
        "key": "ip:1.2.3.4",
        "count": 0,
        "limit": 3,
        "remaining": 3,
        "reset_after": 10,
    }
    limiter.hit("ip:1.2.3.4", config)
    status = limiter.get_status(request, config)
    assert status["count"] == 1
    assert status["remaining"] == 2


def test_http_rejection_body_and_headers(clock, caplog):
    limiter = RateLimiter(clock=clock)
    config = RateLimitConfig(window_ms=1000, max_requests=2, message="Slow down", name="test")
    client = TestClient(_app(limiter, config))

    ok = client.get("/limited")
    assert ok.status_code == 200
    assert ok.headers["X-RateLimit-Limit"] == "2"
    assert ok.headers["X-RateLimit-Remaining"] == "1"

    client.get("/limited")
    with caplog.at_level(logging.WARNING):
        rejected = client.get("/limited")

    assert rejected.status_code == 429
    assert rejected.json() == {"error": "RATE_LIMIT_EXCEEDED", "message": "Slow down", "retryAfter": 1}
    assert rejected.headers["Retry-After"] == "1"
    assert rejected.headers["X-RateLimit-Remaining"] == "0"
    assert "Rate limit exceeded" in caplog.text


def test_skip_predicate_bypasses_limit(clock):
    limiter = RateLimiter(clock=clock)
    config = RateLimitConfig(
        window_ms=1000,
        max_requests=1,
        skip=lambda request: request.headers.get("x-internal-check") == "1",
    )
    client = TestClient(_app(limiter, config))

    for _ in range(3):
        assert client.get("/limited", headers={"X-Internal-Check": "1"}).status_code == 200
    assert len(limiter) == 0
    assert client.get("/limited").status_code == 200
    assert client.get("/limited").status_code == 429


def test_disabled_limiter_never_rejects(clock):
    limiter = RateLimiter(clock=clock, enabled=False)
    client = TestClient(_app(limiter, RateLimitConfig(window_ms=1000, max_requests=1)))

    responses = [client.get("/limited") for _ in range(3)]

    assert [r.status_code for r in responses] == [200, 200, 200]
    assert "X-RateLimit-Limit" not in responses[0].headers


def test_invalid_config_rejected():
    with pytest.raises(ValueError):
        RateLimitConfig(window_ms=0, max_requests=1)
