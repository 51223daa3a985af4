"""Models package for the game stats server."""

from .stats import (
    Cacheable,
    ServerInfo,
    Server,
    ScoreboardEntry,
    MatchResult,
    Match,
    PlayerRollup,
    ServerMatchRow,
    PlayerMatchRow,
    ServerMatchSummary,
    ServerStat,
    PlayerStat,
    PopularServer,
    BestPlayer,
    RecentMatch,
    LEADERBOARD_MIN_MATCHES,
    parse_timestamp,
    format_timestamp,
    search_name,
)

__all__ = [
    "Cacheable",
    "ServerInfo",
    "Server",
    "ScoreboardEntry",
    "MatchResult",
    "Match",
    "PlayerRollup",
    "ServerMatchRow",
    "PlayerMatchRow",
    "ServerMatchSummary",
    "ServerStat",
    "PlayerStat",
    "PopularServer",
    "BestPlayer",
    "RecentMatch",
    "LEADERBOARD_MIN_MATCHES",
    "parse_timestamp",
    "format_timestamp",
    "search_name",
]
