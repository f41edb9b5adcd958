from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Optional

from gigbook.core.env import load_env


PROJECT_ROOT = Path(__file__).resolve().parents[2]
DEFAULT_DATA_DIR = Path.home() / ".gigbook" / "data"

_ENVIRONMENTS = {"development", "staging", "production", "test"}


@dataclass(frozen=True)
class Settings:
    environment: str  # development, staging, production, test
    data_dir: Path
    redis_url: str
    redis_socket_timeout: float
    cache_cleanup_interval_seconds: float
    cache_health_interval_seconds: float
    rate_limit_enabled: bool
    rate_limit_cleanup_interval_seconds: float
    trust_proxy_headers: bool
    metrics_max_records: int
    slow_request_threshold_ms: float
    metrics_enabled: bool
    log_level: str
    request_log_level: str
    log_json: bool
    log_file: str
    api_docs_enabled: bool
    api_host: str
    api_port: int


def _get_int(name: str, default: int, *, minimum: Optional[int] = None) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        value = int(raw.strip())
    except (TypeError, ValueError):
        return default
    if minimum is not None and value < minimum:
        return default
    return value


def _get_float(name: str, default: float, *, minimum: Optional[float] = None) -> float:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        value = float(raw.strip())
    except (TypeError, ValueError):
        return default
    if minimum is not None and value < minimum:
        return default
    return value


def _get_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


load_env()


def _default_data_dir() -> Path:
    env_dir = os.getenv("DATA_DIR")
    if env_dir and env_dir.strip():
        return Path(env_dir).expanduser()
    return DEFAULT_DATA_DIR


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    environment = os.getenv("ENVIRONMENT", "development").strip().lower()
    if environment not in _ENVIRONMENTS:
        environment = "development"

    data_dir = _default_data_dir()
    data_dir.mkdir(parents=True, exist_ok=True)

    log_level = os.getenv("LOG_LEVEL", "INFO").strip().upper() or "INFO"
    log_file = os.getenv("LOG_FILE", "").strip()
    if not log_file:
        log_dir = data_dir / "logs"
        log_dir.mkdir(parents=True, exist_ok=True)
        log_file = str(log_dir / "app.log")

    return Settings(
        environment=environment,
        data_dir=data_dir,
        redis_url=os.getenv("REDIS_URL", "").strip(),
        redis_socket_timeout=_get_float("REDIS_SOCKET_TIMEOUT", 5.0, minimum=0.1),
        cache_cleanup_interval_seconds=_get_float(
            "CACHE_CLEANUP_INTERVAL_SECONDS", 60.0, minimum=0.01
        ),
        cache_health_interval_seconds=_get_float(
            "CACHE_HEALTH_INTERVAL_SECONDS", 15.0, minimum=0.01
        ),
        rate_limit_enabled=_get_bool("RATE_LIMIT_ENABLED", default=True),
        rate_limit_cleanup_interval_seconds=_get_float(
            "RATE_LIMIT_CLEANUP_INTERVAL_SECONDS", 60.0, minimum=0.01
        ),
        trust_proxy_headers=_get_bool("TRUST_PROXY_HEADERS", default=False),
        metrics_max_records=_get_int("METRICS_MAX_RECORDS", 10000, minimum=1),
        slow_request_threshold_ms=_get_float("SLOW_REQUEST_THRESHOLD_MS", 1000.0, minimum=0.0),
        # Enabled by default outside production to support local perf work.
        metrics_enabled=_get_bool("METRICS_ENABLED", default=environment != "production"),
        log_level=log_level,
        request_log_level=os.getenv("REQUEST_LOG_LEVEL", "").strip().upper() or log_level,
        log_json=_get_bool("LOG_JSON", default=False),
        log_file=log_file,
        api_docs_enabled=_get_bool("API_DOCS_ENABLED", default=False),
        api_host=os.getenv("API_HOST", "127.0.0.1").strip() or "127.0.0.1",
        api_port=_get_int("API_PORT", 8000, minimum=1),
    )
