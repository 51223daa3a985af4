"""
Tests for the prefix-list report cache and its reader/writer lock.
"""

import asyncio

import pytest

from stores.report_cache import ReadWriteLock, ReportCache


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self):
        self.now = 500.0

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def cache(clock):
    return ReportCache("best_players", ttl_seconds=60, max_items=50, clock=clock)


class FullReport:
    """Builds a 100-item report and counts its invocations."""

    def __init__(self, size: int = 100):
        self.size = size
        self.calls = 0

    async def __call__(self) -> list[int]:
        self.calls += 1
        await asyncio.sleep(0)
        return list(range(self.size))


class TestReportCache:
    """Tests for ReportCache."""

    @pytest.mark.asyncio
    async def test_prefix_of_one_computation(self, cache):
        report = FullReport()

        five = await cache.get_or_compute(5, report)
        twenty = await cache.get_or_compute(20, report)

        assert five == [0, 1, 2, 3, 4]
        assert twenty == list(range(20))
        assert report.calls == 1

    @pytest.mark.asyncio
    async def test_stored_report_is_capped(self, cache):
        report = FullReport()

        items = await cache.get_or_compute(80, report)

        assert items == list(range(50))
        assert cache.metrics()["size"] == 50

    @pytest.mark.asyncio
    async def test_larger_count_gets_whole_cached_report(self, cache):
        report = FullReport(size=3)

        await cache.get_or_compute(2, report)
        items = await cache.get_or_compute(10, report)

        assert items == [0, 1, 2]
        assert report.calls == 1

    @pytest.mark.asyncio
    @pytest.mark.parametrize("count", [0, -1])
    async def test_non_positive_count_is_empty(self, cache, count):
        assert await cache.get_or_compute(count, FullReport()) == []

    @pytest.mark.asyncio
    async def test_concurrent_burst_computes_once(self, cache):
        report = FullReport()

        results = await asyncio.gather(*(cache.get_or_compute(n, report) for n in range(1, 11)))

        assert report.calls == 1
        assert [len(r) for r in results] == list(range(1, 11))

    @pytest.mark.asyncio
    async def test_report_expires_after_ttl(self, cache, clock):
        report = FullReport()

        await cache.get_or_compute(5, report)
        clock.advance(59)
        await cache.get_or_compute(5, report)
        assert report.calls == 1

        clock.advance(1)
        await cache.get_or_compute(5, report)

        assert report.calls == 2
        assert cache.metrics()["misses"] == 2

    @pytest.mark.asyncio
    async def test_failed_refresh_is_not_cached(self, cache):
        attempts = []

        async def flaky():
            attempts.append(1)
            if len(attempts) == 1:
                raise RuntimeError("database went away")
            return [1, 2, 3]

        with pytest.raises(RuntimeError):
            await cache.get_or_compute(5, flaky)

        assert await cache.get_or_compute(5, flaky) == [1, 2, 3]
        assert cache.metrics()["fresh"] is True


class TestReadWriteLock:
    """Tests for ReadWriteLock."""

    @pytest.mark.asyncio
    async def test_readers_share_the_lock(self):
        lock = ReadWriteLock()
        inside = []
        both_in = asyncio.Event()

        async def read():
            async with lock.reader():
                inside.append(1)
                if len(inside) == 2:
                    both_in.set()
                await asyncio.wait_for(both_in.wait(), timeout=1)

        await asyncio.gather(read(), read())

        assert len(inside) == 2

    @pytest.mark.asyncio
    async def test_writer_excludes_readers(self):
        lock = ReadWriteLock()
        events = []

        async def write():
            async with lock.writer():
                events.append("write-start")
                await asyncio.sleep(0)
                await asyncio.sleep(0)
                events.append("write-end")

        async def read():
            await asyncio.sleep(0)
            async with lock.reader():
                events.append("read")

        await asyncio.gather(write(), read())

        assert events == ["write-start", "write-end", "read"]
