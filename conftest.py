import pytest


def pytest_addoption(parser):
    parser.addoption(
        "--redis-url",
        action="store",
        default="",
        help="Redis connection URL for cache adapter tests against a live server",
    )


@pytest.fixture(scope="session")
def redis_url(pytestconfig):
    return pytestconfig.getoption("--redis-url")
