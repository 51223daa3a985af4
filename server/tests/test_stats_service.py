"""
Tests for StatsService wiring: storage, aggregation and both cache layers.
"""

from datetime import datetime, timezone
from unittest.mock import AsyncMock

import pytest

from models.stats import (
    Match,
    MatchResult,
    PlayerMatchRow,
    PlayerRollup,
    RecentMatch,
    Server,
    ServerInfo,
    ServerMatchRow,
    ServerMatchSummary,
)
from services.stats_service import StatsService

DAY_ONE = datetime(2017, 1, 1, 10, tzinfo=timezone.utc)
DAY_TWO = datetime(2017, 1, 2, 10, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def mock_store():
    """Create a mock StatsStore."""
    mock = AsyncMock()
    mock.insert_match_if_new = AsyncMock(return_value=True)
    mock.get_server = AsyncMock(return_value=None)
    mock.get_server_matches = AsyncMock(return_value=[
        ServerMatchRow(DAY_ONE, "DM-1", "DM", 2),
        ServerMatchRow(DAY_TWO, "DM-2", "DM", 4),
    ])
    mock.get_player_matches = AsyncMock(return_value=[
        PlayerMatchRow("a-1", DAY_ONE, "DM", 2, 1, 3, 1),
    ])
    mock.get_recent_matches = AsyncMock(return_value=[
        RecentMatch("a-1", DAY_ONE, MatchResult("DM-1", "DM", 1, 1, 1.0)),
        RecentMatch("a-1", DAY_TWO, MatchResult("DM-2", "DM", 1, 1, 1.0)),
    ])
    mock.get_eligible_rollups = AsyncMock(return_value=[
        PlayerRollup("Alice", kills=30, deaths=10, match_count=10),
        PlayerRollup("Bob", kills=10, deaths=10, match_count=12),
    ])
    mock.get_server_match_summaries = AsyncMock(return_value=(
        [
            ServerMatchSummary("a-1", "A", 4, DAY_ONE),
            ServerMatchSummary("b-2", "B", 3, DAY_TWO),
        ],
        DAY_TWO,
    ))
    return mock


@pytest.fixture
def service(mock_store, clock):
    return StatsService(mock_store, cache_ttl_seconds=60, report_max_items=50, clock=clock)


class TestIngestion:
    """Tests for the write path."""

    @pytest.mark.asyncio
    async def test_upsert_server_delegates(self, service, mock_store):
        server = Server("a-1", ServerInfo("A", ["DM"]))

        await service.upsert_server(server)

        mock_store.upsert_server.assert_awaited_once_with(server)

    @pytest.mark.asyncio
    async def test_insert_match_reports_rejection(self, service, mock_store):
        mock_store.insert_match_if_new.return_value = False
        match = Match("a-1", DAY_ONE, MatchResult("DM-1", "DM", 1, 1, 1.0))

        assert await service.insert_match(match) is False


class TestAggregates:
    """Tests for cached server and player stats."""

    @pytest.mark.asyncio
    async def test_server_stat_is_cached(self, service, mock_store):
        first = await service.get_server_stat("a-1")
        second = await service.get_server_stat("a-1")

        assert first is second
        assert first.total_matches_played == 2
        assert first.maximum_population == 4
        mock_store.get_server_matches.assert_awaited_once_with("a-1")

    @pytest.mark.asyncio
    async def test_server_stat_refreshes_after_ttl(self, service, mock_store, clock):
        await service.get_server_stat("a-1")
        clock.now += 60
        await service.get_server_stat("a-1")

        assert mock_store.get_server_matches.await_count == 2

    @pytest.mark.asyncio
    async def test_player_lookup_is_case_insensitive(self, service, mock_store):
        upper = await service.get_player_stat("ALICE")
        lower = await service.get_player_stat("alice")

        assert upper is lower
        assert upper.kill_to_death_ratio == 3.0
        mock_store.get_player_matches.assert_awaited_once_with("alice")


class TestReports:
    """Tests for the prefix-cached reports."""

    @pytest.mark.asyncio
    async def test_recent_matches_prefixes_share_one_fetch(self, service, mock_store):
        one = await service.get_recent_matches(1)
        both = await service.get_recent_matches(5)

        assert [m.timestamp for m in one] == [DAY_TWO]
        assert [m.timestamp for m in both] == [DAY_TWO, DAY_ONE]
        mock_store.get_recent_matches.assert_awaited_once_with(50)

    @pytest.mark.asyncio
    async def test_best_players(self, service, mock_store):
        players = await service.get_best_players(5)

        assert [p.name for p in players] == ["Alice", "Bob"]
        mock_store.get_eligible_rollups.assert_awaited_once_with(50)

    @pytest.mark.asyncio
    async def test_popular_servers(self, service):
        servers = await service.get_popular_servers(5)

        assert [(s.endpoint, s.average_matches_per_day) for s in servers] == [
            ("b-2", 3.0),
            ("a-1", 2.0),
        ]

    @pytest.mark.asyncio
    async def test_cache_metrics_cover_every_cache(self, service):
        await service.get_server_stat("a-1")

        metrics = service.cache_metrics()

        assert set(metrics) == {
            "server_stats",
            "player_stats",
            "recent_matches",
            "best_players",
            "popular_servers",
        }
        assert metrics["server_stats"]["misses"] == 1
