"""
Tests for the pure stat aggregation functions.

These tests cover:
- Day bucketing and inclusive day spans
- ServerStat / PlayerStat arithmetic
- Popular servers, best players and recent matches ordering
"""

from datetime import datetime, timezone

import pytest

from models.stats import (
    BestPlayer,
    MatchResult,
    PlayerMatchRow,
    PlayerRollup,
    RecentMatch,
    ServerMatchRow,
    ServerMatchSummary,
)
from services.stats_aggregator import (
    compute_best_players,
    compute_player_stat,
    compute_popular_servers,
    compute_recent_matches,
    compute_server_stat,
    day_span,
    kill_to_death_ratio,
    max_per_day,
    rank_by_frequency,
    scoreboard_percent,
)


def ts(day: int, hour: int = 12, minute: int = 0, second: int = 0) -> datetime:
    return datetime(2017, 1, day, hour, minute, second, tzinfo=timezone.utc)


def server_row(timestamp, map="DM-HelloWorld", mode="DM", population=2):
    return ServerMatchRow(timestamp=timestamp, map=map, game_mode=mode, population=population)


def player_row(timestamp, endpoint="srv-1", mode="DM", population=2, rank=1, kills=1, deaths=1):
    return PlayerMatchRow(
        endpoint=endpoint,
        timestamp=timestamp,
        game_mode=mode,
        population=population,
        rank=rank,
        kills=kills,
        deaths=deaths,
    )


def result(map="DM-HelloWorld"):
    return MatchResult(map=map, game_mode="DM", frag_limit=20, time_limit=20, time_elapsed=12.3)


# =============================================================================
# Helpers
# =============================================================================

class TestHelpers:
    """Tests for the building blocks."""

    def test_day_span_same_day_is_one(self):
        assert day_span(ts(1, 0), ts(1, 23)) == 1

    def test_day_span_across_midnight_is_two(self):
        assert day_span(ts(1, 23, 59, 59), ts(2, 0)) == 2

    def test_max_per_day(self):
        assert max_per_day([ts(1, 1), ts(1, 2), ts(2, 1)]) == 2
        assert max_per_day([]) == 0

    def test_rank_by_frequency_ties_by_value(self):
        assert rank_by_frequency(["b", "a", "c", "c"]) == ["c", "a", "b"]
        assert rank_by_frequency(["b", "a", "c", "c"], limit=2) == ["c", "a"]

    def test_scoreboard_percent(self):
        assert scoreboard_percent(1, 1) == 100.0
        assert scoreboard_percent(2, 1) == 100.0
        assert scoreboard_percent(2, 2) == 0.0
        assert scoreboard_percent(5, 3) == 50.0

    def test_kill_to_death_ratio_guards_zero_deaths(self):
        assert kill_to_death_ratio(10, 0) == 0.0
        assert kill_to_death_ratio(10, 4) == 2.5


# =============================================================================
# ServerStat
# =============================================================================

class TestServerStat:
    """Tests for compute_server_stat."""

    def test_no_matches_gives_zero_stat(self):
        stat = compute_server_stat("srv-1", [])

        assert stat.endpoint == "srv-1"
        assert stat.total_matches_played == 0
        assert stat.average_matches_per_day == 0.0
        assert stat.top5_maps == []
        assert stat.to_dict()["top5GameModes"] == []

    def test_matches_across_day_border(self):
        """Two matches a second apart across midnight span two days."""
        stat = compute_server_stat("srv-1", [
            server_row(ts(1, 23, 59, 59)),
            server_row(ts(2, 0, 0, 0)),
        ])

        assert stat.total_matches_played == 2
        assert stat.maximum_matches_per_day == 1
        assert stat.average_matches_per_day == 1.0

    def test_populations_and_top_lists(self):
        stat = compute_server_stat("srv-1", [
            server_row(ts(1, 1), map="b", mode="TDM", population=4),
            server_row(ts(1, 2), map="a", mode="DM", population=2),
            server_row(ts(1, 3), map="b", mode="DM", population=3),
        ])

        assert stat.maximum_population == 4
        assert stat.average_population == 3.0
        assert stat.maximum_matches_per_day == 3
        assert stat.average_matches_per_day == 3.0
        assert stat.top5_maps == ["b", "a"]
        assert stat.top5_game_modes == ["DM", "TDM"]

    def test_top_lists_capped_at_five(self):
        rows = [server_row(ts(1, h), map=f"map-{h}") for h in range(7)]

        stat = compute_server_stat("srv-1", rows)

        assert len(stat.top5_maps) == 5
        assert stat.top5_maps == ["map-0", "map-1", "map-2", "map-3", "map-4"]

    def test_span_uses_own_dates(self):
        """Each server averages over its own active days."""
        first = compute_server_stat("srv-1", [server_row(ts(1))])
        second = compute_server_stat("srv-2", [server_row(ts(2))])

        assert first.average_matches_per_day == 1.0
        assert second.average_matches_per_day == 1.0


# =============================================================================
# PlayerStat
# =============================================================================

class TestPlayerStat:
    """Tests for compute_player_stat."""

    def test_never_played_gives_zero_stat(self):
        stat = compute_player_stat("ghost", [])

        assert stat.total_matches_played == 0
        assert stat.favorite_server is None
        assert stat.last_match_played is None
        assert stat.to_dict()["lastMatchPlayed"] is None

    def test_solo_match_scores_full_percent(self):
        stat = compute_player_stat("solo", [player_row(ts(1), population=1, rank=1)])

        assert stat.average_scoreboard_percent == 100.0
        assert stat.total_matches_won == 1

    def test_two_player_match_percents(self):
        winner = compute_player_stat("a", [player_row(ts(1), population=2, rank=1)])
        loser = compute_player_stat("b", [player_row(ts(1), population=2, rank=2)])

        assert winner.average_scoreboard_percent == 100.0
        assert loser.average_scoreboard_percent == 0.0
        assert loser.total_matches_won == 0

    def test_favorites_and_totals(self):
        stat = compute_player_stat("p", [
            player_row(ts(1, 1), endpoint="srv-2", mode="TDM", rank=2, kills=3, deaths=1),
            player_row(ts(1, 2), endpoint="srv-1", mode="DM", rank=1, kills=2, deaths=2),
            player_row(ts(3, 2), endpoint="srv-2", mode="DM", rank=1, kills=1, deaths=1),
        ])

        assert stat.total_matches_played == 3
        assert stat.total_matches_won == 2
        assert stat.favorite_server == "srv-2"
        assert stat.unique_servers == 2
        assert stat.favorite_game_mode == "DM"
        assert stat.maximum_matches_per_day == 2
        assert stat.average_matches_per_day == 1.0
        assert stat.kill_to_death_ratio == 1.5
        assert stat.to_dict()["lastMatchPlayed"] == "2017-01-03T02:00:00Z"

    def test_player_on_two_servers_on_two_days(self):
        stat = compute_player_stat("p", [
            player_row(ts(1), endpoint="srv-1"),
            player_row(ts(2), endpoint="srv-2"),
        ])

        assert stat.average_matches_per_day == 1.0
        assert stat.maximum_matches_per_day == 1


# =============================================================================
# Reports
# =============================================================================

class TestPopularServers:
    """Tests for compute_popular_servers."""

    def test_rate_anchored_at_global_last_match(self):
        summaries = [
            ServerMatchSummary("srv-1", "One", match_count=2, first_match=ts(1)),
            ServerMatchSummary("srv-2", "Two", match_count=2, first_match=ts(2)),
        ]

        ranked = compute_popular_servers(summaries, last_match=ts(2), limit=5)

        assert [p.endpoint for p in ranked] == ["srv-2", "srv-1"]
        assert ranked[0].average_matches_per_day == 2.0
        assert ranked[1].average_matches_per_day == 1.0

    def test_ties_by_endpoint(self):
        summaries = [
            ServerMatchSummary("srv-b", "B", match_count=1, first_match=ts(1)),
            ServerMatchSummary("srv-a", "A", match_count=1, first_match=ts(1)),
        ]

        ranked = compute_popular_servers(summaries, last_match=ts(1), limit=5)

        assert [p.endpoint for p in ranked] == ["srv-a", "srv-b"]

    def test_empty_when_no_matches_or_no_room(self):
        summary = ServerMatchSummary("srv-1", "One", match_count=1, first_match=ts(1))

        assert compute_popular_servers([], last_match=None, limit=5) == []
        assert compute_popular_servers([summary], last_match=ts(1), limit=0) == []


class TestBestPlayers:
    """Tests for compute_best_players."""

    def test_requires_ten_matches_and_a_death(self):
        rollups = [
            PlayerRollup("nine", kills=90, deaths=1, match_count=9),
            PlayerRollup("deathless", kills=90, deaths=0, match_count=20),
            PlayerRollup("ten", kills=20, deaths=10, match_count=10),
        ]

        assert compute_best_players(rollups, limit=5) == [BestPlayer("ten", 2.0)]

    def test_ordering_and_ties(self):
        rollups = [
            PlayerRollup("zed", kills=10, deaths=5, match_count=10),
            PlayerRollup("amy", kills=10, deaths=5, match_count=10),
            PlayerRollup("top", kills=30, deaths=5, match_count=10),
        ]

        ranked = compute_best_players(rollups, limit=2)

        assert [p.name for p in ranked] == ["top", "amy"]


class TestRecentMatches:
    """Tests for compute_recent_matches."""

    def test_newest_first_and_truncated(self):
        matches = [
            RecentMatch("srv-1", ts(1), result("a")),
            RecentMatch("srv-1", ts(3), result("c")),
            RecentMatch("srv-2", ts(2), result("b")),
        ]

        recent = compute_recent_matches(matches, limit=2)

        assert [m.result.map for m in recent] == ["c", "b"]
        assert recent[0].to_dict()["timestamp"] == "2017-01-03T12:00:00Z"
        assert recent[0].to_dict()["server"] == "srv-1"

    @pytest.mark.parametrize("limit", [0, -3])
    def test_non_positive_limit_is_empty(self, limit):
        assert compute_recent_matches([RecentMatch("srv-1", ts(1), result())], limit) == []
