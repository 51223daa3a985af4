"""
In-process TTL cache for per-key aggregate stats (server stats, player stats).

Each key maps to one task that computes the value. Concurrent callers for a
key share that task (single-flight), so a burst of requests for an uncached
server or player triggers one storage round-trip, not one per caller.

Rules:
- An entry expires TTL seconds after its computation finished.
- A failed computation is dropped; the next call recomputes.
- The lock guards only the key -> task map, never the computation itself.
- A caller that is cancelled does not cancel the shared computation.

There is no size-based eviction: the key space is bounded by the servers
and players actually queried.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Generic, Optional, TypeVar

from models.stats import Cacheable

T = TypeVar("T", bound=Cacheable)


@dataclass
class _CacheEntry(Generic[T]):
    task: "asyncio.Future[T]"
    populated_at: Optional[float] = None


class StatCache(Generic[T]):
    """Single-flight TTL cache keyed by string."""

    def __init__(
        self,
        name: str,
        ttl_seconds: float,
        clock: Callable[[], float] = time.monotonic,
        logger: Optional[logging.Logger] = None,
    ):
        """
        Initialize the cache.

        Args:
            name: Cache name used in logs and metrics.
            ttl_seconds: Lifetime of a computed value.
            clock: Monotonic time source (injectable for tests).
            logger: Logger for cache events.
        """
        self.name = name
        self.ttl_seconds = ttl_seconds
        self.clock = clock
        self.logger = logger or logging.getLogger(__name__)
        self._entries: dict[str, _CacheEntry[T]] = {}
        self._lock = asyncio.Lock()
        self.hits = 0
        self.misses = 0

    def __len__(self) -> int:
        return len(self._entries)

    async def get_or_compute(
        self,
        key: str,
        compute: Callable[[str], Awaitable[T]],
    ) -> T:
        """
        Return the cached value for key, computing it at most once.

        Args:
            key: Cache key (endpoint or case-folded player name).
            compute: Coroutine function producing the value for a key.

        Returns:
            The value; every concurrent caller for the key gets the same one.

        Raises:
            Whatever compute raised, to every caller waiting on it.
        """
        async with self._lock:
            entry = self._entries.get(key)
            if entry is None or not self._is_usable(entry):
                entry = _CacheEntry(task=asyncio.ensure_future(compute(key)))
                entry.task.add_done_callback(lambda task, k=key, e=entry: self._on_done(k, e))
                self._entries[key] = entry
                self.misses += 1
                self.logger.debug(f"{self.name} cache miss for {key}")
            else:
                self.hits += 1

        return await asyncio.shield(entry.task)

    def invalidate(self, key: str) -> None:
        """Forget a key; the next call recomputes it."""
        self._entries.pop(key, None)

    def metrics(self) -> dict:
        return {"size": len(self._entries), "hits": self.hits, "misses": self.misses}

    def _is_usable(self, entry: _CacheEntry[T]) -> bool:
        """In-flight entries are always usable; finished ones until TTL."""
        if not entry.task.done():
            return True
        if entry.task.cancelled() or entry.task.exception() is not None:
            return False
        # Finished but not yet stamped by _on_done: just computed.
        if entry.populated_at is None:
            return True
        return self.clock() - entry.populated_at < self.ttl_seconds

    def _on_done(self, key: str, entry: _CacheEntry[T]) -> None:
        """Stamp a successful entry, or drop a failed one."""
        task = entry.task
        if task.cancelled() or task.exception() is not None:
            if self._entries.get(key) is entry:
                del self._entries[key]
            if not task.cancelled():
                self.logger.warning(
                    f"{self.name} computation failed for {key}",
                    exc_info=task.exception(),
                )
            return
        entry.populated_at = self.clock()
