"""
Pure aggregation of match telemetry into server and player statistics.

Nothing here touches storage: the functions take the rows fetched by
StatsStore and return derived records. Keeping them pure makes the
arithmetic (day bucketing, percentile scoring, ratio guards, tie-breaks)
testable without a database.

Rules shared by every aggregate:
- Days are UTC calendar dates; a span covers both endpoints, so it is >= 1.
- Frequency rankings order by count descending, then key ascending.
- Kill/death ratio is 0 when there are no deaths.
"""

from collections import Counter
from datetime import date, datetime
from typing import Iterable, Optional

from models.stats import (
    BestPlayer,
    PlayerMatchRow,
    PlayerRollup,
    PlayerStat,
    PopularServer,
    RecentMatch,
    ServerMatchRow,
    ServerMatchSummary,
    ServerStat,
    to_utc,
)

TOP_ITEMS = 5


def utc_date(value: datetime) -> date:
    """Calendar date of a timestamp in UTC."""
    return to_utc(value).date()


def day_span(first: datetime, last: datetime) -> int:
    """Number of calendar days from first to last, inclusive."""
    return (utc_date(last) - utc_date(first)).days + 1


def max_per_day(timestamps: Iterable[datetime]) -> int:
    """Largest number of timestamps falling on one UTC date."""
    per_day = Counter(utc_date(ts) for ts in timestamps)
    return max(per_day.values(), default=0)


def rank_by_frequency(values: Iterable[str], limit: Optional[int] = None) -> list[str]:
    """Distinct values, most frequent first, ties by ascending value."""
    counts = Counter(values)
    ranked = sorted(counts.items(), key=lambda item: (-item[1], item[0]))
    keys = [key for key, _ in ranked]
    return keys if limit is None else keys[:limit]


def scoreboard_percent(population: int, rank: int) -> float:
    """
    Share of the scoreboard a player finished above, as a percentage.

    A winner scores 100 and the last place scores 0. A player alone in a
    match scores 100.
    """
    if population == 1:
        return 100.0
    return (population - rank) / (population - 1) * 100


def kill_to_death_ratio(kills: int, deaths: int) -> float:
    if deaths == 0:
        return 0.0
    return kills / deaths


def compute_server_stat(endpoint: str, matches: list[ServerMatchRow]) -> ServerStat:
    """
    Aggregate all matches of one server.

    Args:
        endpoint: Server endpoint the rows belong to.
        matches: Every match on the server with its population.

    Returns:
        ServerStat, the zero-value stat when there are no matches.
    """
    if not matches:
        return ServerStat(endpoint=endpoint)

    timestamps = [m.timestamp for m in matches]
    total = len(matches)
    days = day_span(min(timestamps), max(timestamps))

    return ServerStat(
        endpoint=endpoint,
        total_matches_played=total,
        maximum_matches_per_day=max_per_day(timestamps),
        average_matches_per_day=total / days,
        maximum_population=max(m.population for m in matches),
        average_population=sum(m.population for m in matches) / total,
        top5_game_modes=rank_by_frequency((m.game_mode for m in matches), TOP_ITEMS),
        top5_maps=rank_by_frequency((m.map for m in matches), TOP_ITEMS),
    )


def compute_player_stat(name: str, rows: list[PlayerMatchRow]) -> PlayerStat:
    """
    Aggregate a player's own match history.

    The kill/death ratio comes from these rows, not from the rollup table;
    the rollup only feeds the best-players report.

    Args:
        name: Case-folded player name.
        rows: One row per scoreboard line of the player.

    Returns:
        PlayerStat, the zero-value stat when the player never played.
    """
    if not rows:
        return PlayerStat(name=name)

    timestamps = [r.timestamp for r in rows]
    total = len(rows)
    days = day_span(min(timestamps), max(timestamps))
    percent_sum = sum(scoreboard_percent(r.population, r.rank) for r in rows)

    return PlayerStat(
        name=name,
        total_matches_played=total,
        total_matches_won=sum(1 for r in rows if r.rank == 1),
        favorite_server=rank_by_frequency(r.endpoint for r in rows)[0],
        unique_servers=len({r.endpoint for r in rows}),
        favorite_game_mode=rank_by_frequency(r.game_mode for r in rows)[0],
        average_scoreboard_percent=percent_sum / total,
        maximum_matches_per_day=max_per_day(timestamps),
        average_matches_per_day=total / days,
        last_match_played=to_utc(max(timestamps)),
        kill_to_death_ratio=kill_to_death_ratio(
            sum(r.kills for r in rows),
            sum(r.deaths for r in rows),
        ),
    )


def compute_popular_servers(
    summaries: list[ServerMatchSummary],
    last_match: Optional[datetime],
    limit: int,
) -> list[PopularServer]:
    """
    Rank servers by matches per day.

    Every server's span ends at the globally latest match, not at its own
    latest match, so a server that went quiet sees its rate decay.

    Args:
        summaries: Match count and first match time of each server that
            has at least one match.
        last_match: Timestamp of the newest match across all servers.
        limit: Maximum rows to return.
    """
    if last_match is None or limit <= 0:
        return []

    ranked = [
        PopularServer(
            endpoint=s.endpoint,
            name=s.name,
            average_matches_per_day=s.match_count / day_span(s.first_match, last_match),
        )
        for s in summaries
        if s.match_count > 0
    ]
    ranked.sort(key=lambda p: (-p.average_matches_per_day, p.endpoint))
    return ranked[:limit]


def compute_best_players(rollups: list[PlayerRollup], limit: int) -> list[BestPlayer]:
    """Rank eligible players by kill/death ratio, ties by name."""
    if limit <= 0:
        return []

    ranked = [
        BestPlayer(name=r.name, kill_to_death_ratio=r.kill_to_death_ratio)
        for r in rollups
        if r.is_leaderboard_eligible
    ]
    ranked.sort(key=lambda p: (-p.kill_to_death_ratio, p.name))
    return ranked[:limit]


def compute_recent_matches(matches: list[RecentMatch], limit: int) -> list[RecentMatch]:
    """Newest matches first, at most ``limit`` of them."""
    if limit <= 0:
        return []
    ordered = sorted(matches, key=lambda m: to_utc(m.timestamp), reverse=True)
    return ordered[:limit]
