import os
import tempfile

import pytest
from fakeredis import aioredis as fakeredis_aioredis

_TEST_DATA_DIR = tempfile.mkdtemp(prefix="gigbook-tests-")

TEST_ENV = {
    "ENVIRONMENT": "test",
    "DATA_DIR": _TEST_DATA_DIR,
    "LOG_FILE": os.path.join(_TEST_DATA_DIR, "logs", "test.log"),
    "REDIS_URL": "",
    "RATE_LIMIT_ENABLED": "true",
    "TRUST_PROXY_HEADERS": "false",
    "METRICS_ENABLED": "true",
    "METRICS_MAX_RECORDS": "10000",
    "SLOW_REQUEST_THRESHOLD_MS": "1000",
}

for key, value in TEST_ENV.items():
    os.environ[key] = value


@pytest.fixture(scope="session", autouse=True)
def _set_test_env():
    """Force deterministic env for tests and reset cached settings."""

    for key, value in TEST_ENV.items():
        os.environ[key] = value

    from gigbook.core import settings as settings_module

    settings_module.get_settings.cache_clear()
    yield
    settings_module.get_settings.cache_clear()


class FakeClock:
    """Manually advanced clock for TTL and window arithmetic."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
async def fake_redis():
    """Provide a fake Redis client bound to the test's event loop."""
    client = fakeredis_aioredis.FakeRedis(decode_responses=True)
    yield client
    await client.aclose()
