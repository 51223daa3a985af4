"""
In-process cache for ordered list reports (recent matches, best players,
popular servers).

One full report, capped at a fixed size, is computed and shared by every
requested prefix length. A request for 5 items and a request for 20 items
arriving together trigger one computation.

A request for more items than the cached report holds gets the whole
cached report; the cache is never recomputed just to satisfy a larger
count.
"""

import asyncio
import logging
import time
from contextlib import asynccontextmanager
from typing import AsyncIterator, Awaitable, Callable, Generic, Optional, TypeVar

T = TypeVar("T")


class ReadWriteLock:
    """
    Asyncio reader/writer lock.

    Any number of readers may hold the lock together; a writer holds it
    alone. Waiting writers block new readers so refreshes are not starved.
    """

    def __init__(self):
        self._cond = asyncio.Condition()
        self._readers = 0
        self._writer = False
        self._waiting_writers = 0

    @asynccontextmanager
    async def reader(self) -> AsyncIterator[None]:
        async with self._cond:
            await self._cond.wait_for(lambda: not self._writer and self._waiting_writers == 0)
            self._readers += 1
        try:
            yield
        finally:
            async with self._cond:
                self._readers -= 1
                self._cond.notify_all()

    @asynccontextmanager
    async def writer(self) -> AsyncIterator[None]:
        async with self._cond:
            self._waiting_writers += 1
            try:
                await self._cond.wait_for(lambda: not self._writer and self._readers == 0)
            except BaseException:
                self._waiting_writers -= 1
                self._cond.notify_all()
                raise
            self._waiting_writers -= 1
            self._writer = True
        try:
            yield
        finally:
            async with self._cond:
                self._writer = False
                self._cond.notify_all()


class ReportCache(Generic[T]):
    """TTL cache holding one full report and serving its prefixes."""

    def __init__(
        self,
        name: str,
        ttl_seconds: float,
        max_items: int,
        clock: Callable[[], float] = time.monotonic,
        logger: Optional[logging.Logger] = None,
    ):
        """
        Initialize the cache.

        Args:
            name: Report name used in logs and metrics.
            ttl_seconds: Lifetime of a computed report.
            max_items: Size cap of the stored report.
            clock: Monotonic time source (injectable for tests).
            logger: Logger for cache events.
        """
        self.name = name
        self.ttl_seconds = ttl_seconds
        self.max_items = max_items
        self.clock = clock
        self.logger = logger or logging.getLogger(__name__)
        self._items: list[T] = []
        self._updated_at: Optional[float] = None
        self._lock = ReadWriteLock()
        self.hits = 0
        self.misses = 0

    async def get_or_compute(
        self,
        count: int,
        compute_full: Callable[[], Awaitable[list[T]]],
    ) -> list[T]:
        """
        Return the first ``count`` items of the report.

        Args:
            count: Number of items wanted.
            compute_full: Coroutine function building the full report.

        Returns:
            Up to ``count`` items; fewer if the report is shorter.
        """
        async with self._lock.reader():
            cached = self._fresh_prefix(count)
        if cached is not None:
            self.hits += 1
            return cached

        async with self._lock.writer():
            # Another writer may have refreshed while we waited.
            cached = self._fresh_prefix(count)
            if cached is not None:
                self.hits += 1
                return cached

            self.misses += 1
            self.logger.debug(f"Recomputing {self.name} report")
            items = list(await compute_full())[: self.max_items]
            self._items = items
            self._updated_at = self.clock()
            return items[: max(count, 0)]

    def metrics(self) -> dict:
        return {
            "size": len(self._items),
            "hits": self.hits,
            "misses": self.misses,
            "fresh": self._is_fresh(),
        }

    def _is_fresh(self) -> bool:
        return (
            self._updated_at is not None
            and self.clock() - self._updated_at < self.ttl_seconds
        )

    def _fresh_prefix(self, count: int) -> Optional[list[T]]:
        if not self._is_fresh():
            return None
        return self._items[: max(count, 0)]
