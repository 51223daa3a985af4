"""
Domain records for game-match telemetry and derived statistics.

Persisted records:
- Server: advertised game server, keyed by endpoint ("host-port")
- Match / MatchResult / ScoreboardEntry: one finished match and its scoreboard
- PlayerRollup: running per-player totals backing the best-players report

Derived records (never persisted, lifetime bounded by the caches):
- ServerStat, PlayerStat, PopularServer, BestPlayer, RecentMatch

Every wire-visible record has ``to_dict()`` producing the camelCase field
names existing consumers depend on.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Optional, Protocol

TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%SZ"

# Players need this many matches (and at least one death) to be ranked.
LEADERBOARD_MIN_MATCHES = 10


def parse_timestamp(value: str) -> datetime:
    """
    Parse a wire timestamp ("2017-01-22T15:17:00Z") into an aware UTC datetime.

    Raises:
        ValueError: If the value does not match the wire format.
    """
    return datetime.strptime(value, TIMESTAMP_FORMAT).replace(tzinfo=timezone.utc)


def format_timestamp(value: datetime) -> str:
    """Render a datetime in the wire format, converting to UTC first."""
    return to_utc(value).strftime(TIMESTAMP_FORMAT)


def to_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC and convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def search_name(name: str) -> str:
    """Case-folded player name used as the lookup key."""
    return name.casefold()


class Cacheable(Protocol):
    """A value that knows the key it is cached under."""

    @property
    def cache_key(self) -> str:
        ...


# =============================================================================
# Persisted records
# =============================================================================


@dataclass
class ServerInfo:
    """Display name and supported game modes of a server."""
    name: str
    game_modes: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {"name": self.name, "gameModes": list(self.game_modes)}


@dataclass
class Server:
    """An advertised server."""
    endpoint: str
    info: ServerInfo

    def to_dict(self) -> dict:
        return {"endpoint": self.endpoint, "info": self.info.to_dict()}


@dataclass
class ScoreboardEntry:
    """One player's line on a match scoreboard."""
    name: str
    frags: int
    kills: int
    deaths: int

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "frags": self.frags,
            "kills": self.kills,
            "deaths": self.deaths,
        }


@dataclass
class MatchResult:
    """
    Outcome of a match.

    The scoreboard is ordered by placement: index 0 is the winner.
    """
    map: str
    game_mode: str
    frag_limit: int
    time_limit: int
    time_elapsed: float
    scoreboard: list[ScoreboardEntry] = field(default_factory=list)

    @property
    def population(self) -> int:
        return len(self.scoreboard)

    def to_dict(self) -> dict:
        return {
            "map": self.map,
            "gameMode": self.game_mode,
            "fragLimit": self.frag_limit,
            "timeLimit": self.time_limit,
            "timeElapsed": self.time_elapsed,
            "scoreboard": [entry.to_dict() for entry in self.scoreboard],
        }


@dataclass
class Match:
    """A match played on a server, unique by (endpoint, timestamp)."""
    endpoint: str
    timestamp: datetime
    result: MatchResult

    def __post_init__(self):
        self.timestamp = to_utc(self.timestamp)


@dataclass
class PlayerRollup:
    """Cumulative totals for one player across every match they played."""
    name: str
    frags: int = 0
    kills: int = 0
    deaths: int = 0
    match_count: int = 0

    @property
    def search_name(self) -> str:
        return search_name(self.name)

    @property
    def kill_to_death_ratio(self) -> float:
        if self.deaths == 0:
            return 0.0
        return self.kills / self.deaths

    @property
    def is_leaderboard_eligible(self) -> bool:
        return self.deaths > 0 and self.match_count >= LEADERBOARD_MIN_MATCHES

    def add(self, entry: ScoreboardEntry) -> "PlayerRollup":
        """
        Return a new rollup with one match's contribution added.

        The display name follows the casing used in the newest match.
        """
        return replace(
            self,
            name=entry.name,
            frags=self.frags + entry.frags,
            kills=self.kills + entry.kills,
            deaths=self.deaths + entry.deaths,
            match_count=self.match_count + 1,
        )


# =============================================================================
# Aggregation input rows
# =============================================================================


@dataclass
class ServerMatchRow:
    """A match on one server, reduced to what server stats need."""
    timestamp: datetime
    map: str
    game_mode: str
    population: int


@dataclass
class PlayerMatchRow:
    """One scoreboard line of a player joined with its match."""
    endpoint: str
    timestamp: datetime
    game_mode: str
    population: int
    rank: int
    kills: int
    deaths: int


@dataclass
class ServerMatchSummary:
    """Per-server match count and first match time, for popularity ranking."""
    endpoint: str
    name: str
    match_count: int
    first_match: datetime


# =============================================================================
# Derived records
# =============================================================================


@dataclass
class ServerStat:
    """Aggregate statistics of one server."""
    endpoint: str
    total_matches_played: int = 0
    maximum_matches_per_day: int = 0
    average_matches_per_day: float = 0.0
    maximum_population: int = 0
    average_population: float = 0.0
    top5_game_modes: list[str] = field(default_factory=list)
    top5_maps: list[str] = field(default_factory=list)

    @property
    def cache_key(self) -> str:
        return self.endpoint

    def to_dict(self) -> dict:
        return {
            "totalMatchesPlayed": self.total_matches_played,
            "maximumMatchesPerDay": self.maximum_matches_per_day,
            "averageMatchesPerDay": self.average_matches_per_day,
            "maximumPopulation": self.maximum_population,
            "averagePopulation": self.average_population,
            "top5GameModes": list(self.top5_game_modes),
            "top5Maps": list(self.top5_maps),
        }


@dataclass
class PlayerStat:
    """Aggregate statistics of one player, keyed by case-folded name."""
    name: str
    total_matches_played: int = 0
    total_matches_won: int = 0
    favorite_server: Optional[str] = None
    unique_servers: int = 0
    favorite_game_mode: Optional[str] = None
    average_scoreboard_percent: float = 0.0
    maximum_matches_per_day: int = 0
    average_matches_per_day: float = 0.0
    last_match_played: Optional[datetime] = None
    kill_to_death_ratio: float = 0.0

    @property
    def cache_key(self) -> str:
        return self.name

    def to_dict(self) -> dict:
        return {
            "totalMatchesPlayed": self.total_matches_played,
            "totalMatchesWon": self.total_matches_won,
            "favoriteServer": self.favorite_server,
            "uniqueServers": self.unique_servers,
            "favoriteGameMode": self.favorite_game_mode,
            "averageScoreboardPercent": self.average_scoreboard_percent,
            "maximumMatchesPerDay": self.maximum_matches_per_day,
            "averageMatchesPerDay": self.average_matches_per_day,
            "lastMatchPlayed": (
                format_timestamp(self.last_match_played) if self.last_match_played else None
            ),
            "killToDeathRatio": self.kill_to_death_ratio,
        }


@dataclass
class PopularServer:
    """Row of the popular-servers report."""
    endpoint: str
    name: str
    average_matches_per_day: float

    def to_dict(self) -> dict:
        return {
            "endpoint": self.endpoint,
            "name": self.name,
            "averageMatchesPerDay": self.average_matches_per_day,
        }


@dataclass
class BestPlayer:
    """Row of the best-players report."""
    name: str
    kill_to_death_ratio: float

    def to_dict(self) -> dict:
        return {"name": self.name, "killToDeathRatio": self.kill_to_death_ratio}


@dataclass
class RecentMatch:
    """Row of the recent-matches report."""
    endpoint: str
    timestamp: datetime
    result: MatchResult

    def to_dict(self) -> dict:
        return {
            "server": self.endpoint,
            "timestamp": format_timestamp(self.timestamp),
            "results": self.result.to_dict(),
        }
