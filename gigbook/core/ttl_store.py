"""In-process TTL store.

Entries expire lazily on read and are additionally swept on a fixed
interval so that keys which are written once and never read again do not
accumulate. The store is process-local: a second worker process has its
own copy.
"""

from __future__ import annotations

import asyncio
import logging
import re
import time
from dataclasses import dataclass
from typing import Any, Callable, Iterator, Optional, Pattern, Union

from gigbook.core.error_handler import resilient_task, safe_background_task

logger = logging.getLogger(__name__)

DEFAULT_CLEANUP_INTERVAL_SECONDS = 60.0

KeyPattern = Union[str, Pattern[str]]


@dataclass(frozen=True)
class CacheEntry:
    value: Any
    created_at: float
    expires_at: float

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at


@dataclass
class CacheStats:
    """Hit/miss counters and current size of a store."""

    hits: int = 0
    misses: int = 0
    size: int = 0

    @property
    def hit_rate(self) -> float:
        """Hits over all lookups, 0.0 before the first lookup."""
        total = self.hits + self.misses
        if total == 0:
            return 0.0
        return self.hits / total


def compile_pattern(pattern: KeyPattern) -> Pattern[str]:
    if isinstance(pattern, str):
        return re.compile(pattern)
    return pattern


class TTLStore:
    """Map of string keys to values with per-entry expiry."""

    def __init__(self, *, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._data: dict[str, CacheEntry] = {}
        self._stats = CacheStats()
        self._cleanup_task: Optional[asyncio.Task] = None

    # Read/write ----------------------------------------------------------

    def get(self, key: str) -> Optional[Any]:
        entry = self._data.get(key)
        if entry is None:
            self._stats.misses += 1
            return None

        if entry.is_expired(self._clock()):
            del self._data[key]
            self._sync_size()
            self._stats.misses += 1
            return None

        self._stats.hits += 1
        return entry.value

    def set(self, key: str, value: Any, ttl_seconds: float) -> None:
        if ttl_seconds <= 0:
            # Nothing can be retained past its own creation time.
            self._data.pop(key, None)
            self._sync_size()
            return
        now = self._clock()
        self._data[key] = CacheEntry(value=value, created_at=now, expires_at=now + ttl_seconds)
        self._sync_size()

    def delete(self, key: str) -> bool:
        deleted = self._data.pop(key, None) is not None
        self._sync_size()
        return deleted

    def delete_pattern(self, pattern: KeyPattern) -> int:
        """Delete every key the regular expression matches anywhere in the key."""
        regex = compile_pattern(pattern)
        matched = [key for key in self._data if regex.search(key)]
        for key in matched:
            del self._data[key]
        self._sync_size()
        return len(matched)

    def clear(self) -> None:
        self._data.clear()
        self._stats = CacheStats()
        logger.info("TTL store cleared")

    def keys(self) -> Iterator[str]:
        return iter(list(self._data))

    def __len__(self) -> int:
        return len(self._data)

    def __contains__(self, key: object) -> bool:
        return key in self._data

    # Stats ---------------------------------------------------------------

    @property
    def stats(self) -> CacheStats:
        return self._stats

    def get_stats(self) -> dict[str, Any]:
        self._sync_size()
        return {
            "hits": self._stats.hits,
            "misses": self._stats.misses,
            "size": self._stats.size,
            "hit_rate": f"{self._stats.hit_rate * 100:.2f}%",
        }

    def _sync_size(self) -> None:
        self._stats.size = len(self._data)

    # Sweeping ------------------------------------------------------------

    def cleanup(self) -> int:
        """Remove expired entries now; returns how many were removed."""
        now = self._clock()
        expired = [key for key, entry in self._data.items() if entry.is_expired(now)]
        for key in expired:
            del self._data[key]
        self._sync_size()
        if expired:
            logger.info(
                "TTL store cleaned up %d expired entries (%d remaining)",
                len(expired),
                len(self._data),
            )
        return len(expired)

    def start_cleanup(self, interval_seconds: float = DEFAULT_CLEANUP_INTERVAL_SECONDS) -> asyncio.Task:
        """Start the periodic sweep on the running event loop."""
        if self._cleanup_task is not None and not self._cleanup_task.done():
            return self._cleanup_task

        @resilient_task(task_name="ttl_store_sweeper", retry_delay=interval_seconds)
        async def _sweep_forever() -> None:
            while True:
                await asyncio.sleep(interval_seconds)
                self.cleanup()

        self._cleanup_task = safe_background_task("ttl_store_sweeper", _sweep_forever())
        logger.info("TTL store sweeper started (interval %.1fs)", interval_seconds)
        return self._cleanup_task

    def stop_cleanup(self) -> None:
        if self._cleanup_task is not None:
            self._cleanup_task.cancel()
            self._cleanup_task = None

    def destroy(self) -> None:
        self.stop_cleanup()
        self.clear()


__all__ = ["CacheEntry", "CacheStats", "KeyPattern", "TTLStore", "compile_pattern"]
