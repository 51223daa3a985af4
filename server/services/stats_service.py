"""
Stats service for game-match telemetry.

Composes the storage gateway, the pure aggregators and the two cache
layers into the operations the HTTP layer exposes:
- Ingestion: server upsert, at-most-once match insert
- Lookups: server info, server list, single match result
- Aggregates: server stats, player stats (per-key cache)
- Reports: recent matches, best players, popular servers (prefix cache)

Cached reads may be stale by up to the cache TTL. Ingestion never
invalidates caches; entries age out.
"""

import logging
import time
from datetime import datetime
from typing import Callable, Optional

from models.stats import (
    BestPlayer,
    Match,
    MatchResult,
    PlayerStat,
    PopularServer,
    RecentMatch,
    Server,
    ServerInfo,
    ServerStat,
    search_name,
)
from services.stats_aggregator import (
    compute_best_players,
    compute_player_stat,
    compute_popular_servers,
    compute_recent_matches,
    compute_server_stat,
)
from stores.report_cache import ReportCache
from stores.stat_cache import StatCache
from stores.stats_store import StatsStore


class StatsService:
    """
    Server and player statistics service.

    Provides methods for:
    - Ingesting server descriptors and match results
    - Looking up stored servers and matches
    - Querying cached server/player aggregates
    - Querying cached list reports
    """

    def __init__(
        self,
        store: StatsStore,
        cache_ttl_seconds: float = 60,
        report_max_items: int = 50,
        clock: Callable[[], float] = time.monotonic,
        logger: Optional[logging.Logger] = None,
    ):
        """
        Initialize the stats service.

        Args:
            store: Storage gateway.
            cache_ttl_seconds: Lifetime of cached aggregates and reports.
            report_max_items: Size cap of every list report.
            clock: Monotonic time source shared by the caches.
            logger: Logger for service and cache events.
        """
        self.store = store
        self.report_max_items = report_max_items
        self.logger = logger or logging.getLogger(__name__)

        def stat_cache(name: str) -> StatCache:
            return StatCache(name, cache_ttl_seconds, clock=clock, logger=self.logger)

        def report_cache(name: str) -> ReportCache:
            return ReportCache(name, cache_ttl_seconds, report_max_items, clock=clock, logger=self.logger)

        self.server_stats: StatCache[ServerStat] = stat_cache("server_stats")
        self.player_stats: StatCache[PlayerStat] = stat_cache("player_stats")
        self.recent_matches: ReportCache[RecentMatch] = report_cache("recent_matches")
        self.best_players: ReportCache[BestPlayer] = report_cache("best_players")
        self.popular_servers: ReportCache[PopularServer] = report_cache("popular_servers")

    # -------------------------------------------------------------------------
    # Ingestion
    # -------------------------------------------------------------------------

    async def upsert_server(self, server: Server) -> None:
        """Advertise a server, replacing any previous descriptor."""
        await self.store.upsert_server(server)
        self.logger.info(f"Server {server.endpoint} advertised as '{server.info.name}'")

    async def insert_match(self, match: Match) -> bool:
        """
        Store a match result.

        Returns:
            False if the server was never advertised, True otherwise
            (including when the match had already been stored).
        """
        return await self.store.insert_match_if_new(match)

    # -------------------------------------------------------------------------
    # Lookups
    # -------------------------------------------------------------------------

    async def get_server_info(self, endpoint: str) -> Optional[ServerInfo]:
        """Get a server descriptor, or None if unknown."""
        return await self.store.get_server(endpoint)

    async def get_all_servers(self) -> list[Server]:
        """Get every advertised server."""
        return await self.store.get_all_servers()

    async def get_match_result(self, endpoint: str, timestamp: datetime) -> Optional[MatchResult]:
        """Get a stored match result, or None if there is none."""
        return await self.store.get_match(endpoint, timestamp)

    # -------------------------------------------------------------------------
    # Aggregates
    # -------------------------------------------------------------------------

    async def get_server_stat(self, endpoint: str) -> ServerStat:
        """Get a server's stats; zero-valued if it has no matches."""
        return await self.server_stats.get_or_compute(endpoint, self._compute_server_stat)

    async def get_player_stat(self, name: str) -> PlayerStat:
        """
        Get a player's stats.

        Args:
            name: Player name in any casing.

        Returns:
            PlayerStat; zero-valued if the player never played.
        """
        return await self.player_stats.get_or_compute(search_name(name), self._compute_player_stat)

    async def _compute_server_stat(self, endpoint: str) -> ServerStat:
        matches = await self.store.get_server_matches(endpoint)
        return compute_server_stat(endpoint, matches)

    async def _compute_player_stat(self, key: str) -> PlayerStat:
        rows = await self.store.get_player_matches(key)
        return compute_player_stat(key, rows)

    # -------------------------------------------------------------------------
    # Reports
    # -------------------------------------------------------------------------

    async def get_recent_matches(self, count: int) -> list[RecentMatch]:
        """Get up to ``count`` of the newest matches, newest first."""
        return await self.recent_matches.get_or_compute(count, self._compute_recent_matches)

    async def get_best_players(self, count: int) -> list[BestPlayer]:
        """Get up to ``count`` eligible players by kill/death ratio."""
        return await self.best_players.get_or_compute(count, self._compute_best_players)

    async def get_popular_servers(self, count: int) -> list[PopularServer]:
        """Get up to ``count`` servers by matches per day."""
        return await self.popular_servers.get_or_compute(count, self._compute_popular_servers)

    async def _compute_recent_matches(self) -> list[RecentMatch]:
        matches = await self.store.get_recent_matches(self.report_max_items)
        return compute_recent_matches(matches, self.report_max_items)

    async def _compute_best_players(self) -> list[BestPlayer]:
        rollups = await self.store.get_eligible_rollups(self.report_max_items)
        return compute_best_players(rollups, self.report_max_items)

    async def _compute_popular_servers(self) -> list[PopularServer]:
        summaries, last_match = await self.store.get_server_match_summaries()
        return compute_popular_servers(summaries, last_match, self.report_max_items)

    # -------------------------------------------------------------------------
    # Metrics
    # -------------------------------------------------------------------------

    def cache_metrics(self) -> dict:
        """Hit/miss/size counters of every cache."""
        caches = (
            self.server_stats,
            self.player_stats,
            self.recent_matches,
            self.best_players,
            self.popular_servers,
        )
        return {cache.name: cache.metrics() for cache in caches}
