import pytest
from fastapi import APIRouter
from fastapi.responses import PlainTextResponse
from fastapi.testclient import TestClient

from gigbook.apps.api.app import create_app
from gigbook.apps.api.perf.cache.response_cache import parse_ttl, response_cache


@pytest.mark.parametrize(
    "ttl, expected",
    [
        ("30s", 30_000),
        ("5m", 300_000),
        ("1h", 3_600_000),
        ("2d", 172_800_000),
        ("0s", 0),
    ],
)
def test_parse_ttl(ttl, expected):
    assert parse_ttl(ttl) == expected


@pytest.mark.parametrize("ttl", ["", "5", "m5", "5 m", "1.5h", "10w", "-1s", "5m\n", "\uff15m"])
def test_parse_ttl_rejects_bad_format(ttl):
    with pytest.raises(ValueError):
        parse_ttl(ttl)


def test_bad_ttl_fails_when_decorating():
    with pytest.raises(ValueError):
        response_cache("five minutes")


def _build_client():
    calls = {"artists": 0, "plain": 0, "nothing": 0}
    router = APIRouter()

    @router.get("/artists")
    @response_cache("5m")
    async def list_artists(page: int = 1) -> dict:
        calls["artists"] += 1
        return {"page": page, "calls": calls["artists"]}

    @router.get("/plain")
    @response_cache("30s")
    async def plain() -> PlainTextResponse:
        calls["plain"] += 1
        return PlainTextResponse("hello")

    @router.get("/nothing")
    @response_cache("30s")
    async def nothing():
        calls["nothing"] += 1
        return None

    app = create_app()
    app.include_router(router)
    return TestClient(app), calls


def test_get_response_is_cached_by_path_and_query():
    client, calls = _build_client()
    with client:
        first = client.get("/artists?page=1")
        second = client.get("/artists?page=1")
        other_page = client.get("/artists?page=2")

        assert first.headers["X-Cache"] == "MISS"
        assert second.headers["X-Cache"] == "HIT"
        assert second.json() == first.json() == {"page": 1, "calls": 1}
        assert other_page.headers["X-Cache"] == "MISS"
        assert other_page.json() == {"page": 2, "calls": 2}
        assert calls["artists"] == 2

        services = client.app.state.services
        assert services.store.get("GET:/artists?page=1") == {"page": 1, "calls": 1}


def test_cache_clear_forces_miss():
    client, calls = _build_client()
    with client:
        client.get("/artists")
        client.app.state.services.store.clear()
        response = client.get("/artists")

        assert response.headers["X-Cache"] == "MISS"
        assert calls["artists"] == 2


def test_explicit_response_objects_are_passed_through():
    client, calls = _build_client()
    with client:
        first = client.get("/plain")
        second = client.get("/plain")

        assert first.text == second.text == "hello"
        assert "X-Cache" not in second.headers
        assert calls["plain"] == 2


def test_query_validation_still_applies():
    client, calls = _build_client()
    with client:
        response = client.get("/artists?page=abc")

        assert response.status_code == 422
        assert calls["artists"] == 0


def test_none_results_are_not_stored():
    client, calls = _build_client()
    with client:
        first = client.get("/nothing")
        second = client.get("/nothing")

        assert first.json() is None
        assert first.headers["X-Cache"] == second.headers["X-Cache"] == "MISS"
        assert calls["nothing"] == 2
        assert "GET:/nothing" not in client.app.state.services.store
