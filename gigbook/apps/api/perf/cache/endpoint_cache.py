"""Per-endpoint response caching for read procedures.

Handlers call `get_cached_response` before doing work and `cache_response`
after it. Unknown or disabled endpoints are silently treated as not
cacheable. Reads and writes go through the cache adapter, so they never
raise.
"""

from __future__ import annotations

import logging
from typing import Any, Mapping, Optional

from gigbook.apps.api.perf.cache.keys import build_key, serialize_input
from gigbook.apps.api.perf.cache.policy import ENDPOINT_CACHE_POLICIES, EndpointCachePolicy
from gigbook.core.cache import CacheBackend
from gigbook.core.ttl_store import KeyPattern

logger = logging.getLogger(__name__)

_INPUT = "input"
_VALUE = "value"


class EndpointCache:
    def __init__(
        self,
        cache: CacheBackend,
        policies: Mapping[str, EndpointCachePolicy] = ENDPOINT_CACHE_POLICIES,
    ) -> None:
        self.cache = cache
        self.policies = policies

    def get_policy(self, endpoint: str) -> Optional[EndpointCachePolicy]:
        return self.policies.get(endpoint)

    def should_cache(self, endpoint: str) -> bool:
        policy = self.get_policy(endpoint)
        return bool(policy and policy.enabled)

    def generate_cache_key(self, endpoint: str, call_input: Optional[Any] = None) -> str:
        """Return the cache key for a call, or "" for unknown endpoints."""
        policy = self.get_policy(endpoint)
        if policy is None:
            return ""
        return build_key(policy.key_prefix or endpoint, call_input)

    async def get_cached_response(self, endpoint: str, call_input: Optional[Any] = None) -> Optional[Any]:
        if not self.should_cache(endpoint):
            return None
        key = self.generate_cache_key(endpoint, call_input)
        if not key:
            return None

        envelope = await self.cache.get_cached(key)
        if not isinstance(envelope, dict) or _VALUE not in envelope:
            return None
        if envelope.get(_INPUT) != _fingerprint(call_input):
            # Hash collision: the entry belongs to a different input.
            logger.warning("Cache key collision on %s, treating as miss", key)
            return None
        return envelope[_VALUE]

    async def cache_response(self, endpoint: str, call_input: Optional[Any], value: Any) -> bool:
        policy = self.get_policy(endpoint)
        if policy is None or not policy.enabled:
            return False
        key = self.generate_cache_key(endpoint, call_input)
        if not key:
            return False

        envelope = {_INPUT: _fingerprint(call_input), _VALUE: value}
        await self.cache.set_cached(key, envelope, policy.ttl_seconds)
        return True

    async def invalidate_cache(self, endpoint: str, call_input: Optional[Any] = None) -> bool:
        if not self.should_cache(endpoint):
            return False
        key = self.generate_cache_key(endpoint, call_input)
        if not key:
            return False
        return await self.cache.delete_cached(key)

    async def invalidate_cache_pattern(self, pattern: KeyPattern) -> int:
        return await self.cache.delete_cached_pattern(pattern)

    async def clear_all(self) -> None:
        await self.cache.clear_all_cached()

    def get_stats(self) -> dict[str, Any]:
        return self.cache.store.get_stats()

    def log_stats(self) -> None:
        stats = self.get_stats()
        logger.info(
            "Endpoint cache statistics: hits=%s misses=%s hit_rate=%s cached_items=%s",
            stats["hits"],
            stats["misses"],
            stats["hit_rate"],
            stats["size"],
        )


def _fingerprint(call_input: Optional[Any]) -> Optional[str]:
    if call_input is None:
        return None
    return serialize_input(call_input)


__all__ = ["EndpointCache"]
