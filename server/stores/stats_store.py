"""
PostgreSQL-backed storage for servers, matches, scoreboards and player rollups.

This is the only component that touches durable storage. Every public
method runs in its own transaction and commits before returning, so a
reader never sees a match without its scoreboard or a half-applied rollup.

Features:
- At-most-once match insertion via unique (endpoint, played_at)
- Scoreboard rows ranked by input order (1 = winner)
- Incremental player rollups updated in the same transaction as the match
- Per-player advisory locks so concurrent ingestions cannot lose updates
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import AsyncIterator, Optional

import asyncpg

from models.stats import (
    LEADERBOARD_MIN_MATCHES,
    Match,
    MatchResult,
    PlayerMatchRow,
    PlayerRollup,
    RecentMatch,
    ScoreboardEntry,
    Server,
    ServerInfo,
    ServerMatchRow,
    ServerMatchSummary,
    search_name,
)


class StorageError(Exception):
    """Raised when the database cannot complete an operation."""
    pass


# SQL schema for the stats store
SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS servers (
    endpoint VARCHAR(255) PRIMARY KEY,
    name VARCHAR(255) NOT NULL,
    game_modes TEXT[] NOT NULL DEFAULT '{}'
);

-- Append-only match log
CREATE TABLE IF NOT EXISTS matches (
    id BIGSERIAL PRIMARY KEY,
    endpoint VARCHAR(255) NOT NULL REFERENCES servers(endpoint),
    played_at TIMESTAMPTZ NOT NULL,
    map VARCHAR(255) NOT NULL,
    game_mode VARCHAR(64) NOT NULL,
    frag_limit INT NOT NULL,
    time_limit INT NOT NULL,
    time_elapsed DOUBLE PRECISION NOT NULL,

    -- A replayed match is ignored, never duplicated
    UNIQUE(endpoint, played_at)
);

CREATE TABLE IF NOT EXISTS scoreboards (
    match_id BIGINT NOT NULL REFERENCES matches(id),
    rank INT NOT NULL,
    name VARCHAR(255) NOT NULL,
    search_name VARCHAR(255) NOT NULL,
    frags INT NOT NULL,
    kills INT NOT NULL,
    deaths INT NOT NULL,

    PRIMARY KEY (match_id, rank)
);

-- Running per-player totals (not source of truth, backs best-players)
CREATE TABLE IF NOT EXISTS player_rollups (
    search_name VARCHAR(255) PRIMARY KEY,
    name VARCHAR(255) NOT NULL,
    frags BIGINT NOT NULL DEFAULT 0,
    kills BIGINT NOT NULL DEFAULT 0,
    deaths BIGINT NOT NULL DEFAULT 0,
    match_count INT NOT NULL DEFAULT 0
);

CREATE INDEX IF NOT EXISTS idx_matches_endpoint ON matches(endpoint);
CREATE INDEX IF NOT EXISTS idx_matches_played_at ON matches(played_at DESC);
CREATE INDEX IF NOT EXISTS idx_scoreboards_search_name ON scoreboards(search_name);
CREATE INDEX IF NOT EXISTS idx_rollups_eligible ON player_rollups(search_name)
    WHERE deaths > 0 AND match_count >= 10;
"""

UPSERT_SERVER_SQL = """
    INSERT INTO servers (endpoint, name, game_modes)
    VALUES ($1, $2, $3)
    ON CONFLICT (endpoint) DO UPDATE
    SET name = EXCLUDED.name, game_modes = EXCLUDED.game_modes
"""

INSERT_MATCH_SQL = """
    INSERT INTO matches (endpoint, played_at, map, game_mode, frag_limit, time_limit, time_elapsed)
    VALUES ($1, $2, $3, $4, $5, $6, $7)
    ON CONFLICT (endpoint, played_at) DO NOTHING
    RETURNING id
"""

INSERT_SCOREBOARD_SQL = """
    INSERT INTO scoreboards (match_id, rank, name, search_name, frags, kills, deaths)
    VALUES ($1, $2, $3, $4, $5, $6, $7)
"""

LOCK_PLAYER_SQL = "SELECT pg_advisory_xact_lock(hashtext($1))"

SELECT_ROLLUPS_SQL = """
    SELECT search_name, name, frags, kills, deaths, match_count
    FROM player_rollups
    WHERE search_name = ANY($1::text[])
"""

UPSERT_ROLLUP_SQL = """
    INSERT INTO player_rollups (search_name, name, frags, kills, deaths, match_count)
    VALUES ($1, $2, $3, $4, $5, $6)
    ON CONFLICT (search_name) DO UPDATE
    SET name = EXCLUDED.name,
        frags = EXCLUDED.frags,
        kills = EXCLUDED.kills,
        deaths = EXCLUDED.deaths,
        match_count = EXCLUDED.match_count
"""

LAST_MATCH_SQL = "SELECT MAX(played_at) FROM matches"


class StatsStore:
    """
    PostgreSQL-backed storage gateway.

    Provides generic transaction primitives plus the typed reads and
    writes the stats service composes on. Uses asyncpg for async access.
    """

    def __init__(self, pool: asyncpg.Pool, logger: Optional[logging.Logger] = None):
        """
        Initialize the store with a connection pool.

        Args:
            pool: asyncpg connection pool.
            logger: Logger for store events (defaults to the module logger).
        """
        self.pool = pool
        self.logger = logger or logging.getLogger(__name__)

    @classmethod
    async def create(
        cls,
        postgres_url: str,
        min_size: int = 2,
        max_size: int = 10,
        logger: Optional[logging.Logger] = None,
    ) -> "StatsStore":
        """
        Create a StatsStore with a new connection pool and ensure the schema.

        Args:
            postgres_url: PostgreSQL connection URL.
            min_size: Minimum pool connections.
            max_size: Maximum pool connections.
            logger: Logger for store events.

        Returns:
            Configured StatsStore instance.
        """
        try:
            pool = await asyncpg.create_pool(postgres_url, min_size=min_size, max_size=max_size)
        except (asyncpg.PostgresError, OSError) as e:
            raise StorageError(f"Cannot connect to database: {e}") from e
        store = cls(pool, logger=logger)
        await store.initialize_schema()
        return store

    async def initialize_schema(self) -> None:
        """Create tables if they don't exist."""
        async with self.transaction() as conn:
            await conn.execute(SCHEMA_SQL)
        self.logger.info("Stats store schema initialized")

    async def close(self) -> None:
        """Close the connection pool."""
        await self.pool.close()
        self.logger.info("Stats store closed")

    async def ping(self) -> None:
        """Round-trip to the database; raises StorageError if unreachable."""
        await self.fetch("SELECT 1")

    # -------------------------------------------------------------------------
    # Transaction Primitives
    # -------------------------------------------------------------------------

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[asyncpg.Connection]:
        """
        Acquire a connection and open a transaction on it.

        Commits when the block exits normally, rolls back otherwise.
        Database and connection failures surface as StorageError.
        """
        try:
            async with self.pool.acquire() as conn:
                async with conn.transaction():
                    yield conn
        except (asyncpg.PostgresError, asyncpg.InterfaceError, OSError) as e:
            raise StorageError(str(e)) from e

    async def execute_batch(self, statements: list[tuple[str, tuple]]) -> None:
        """
        Execute write statements atomically.

        Args:
            statements: (sql, args) pairs, run in order in one transaction.
        """
        if not statements:
            return
        async with self.transaction() as conn:
            for sql, args in statements:
                await conn.execute(sql, *args)

    async def fetch(self, sql: str, *args) -> list[asyncpg.Record]:
        """Run one read query in its own transaction."""
        async with self.transaction() as conn:
            return await conn.fetch(sql, *args)

    # -------------------------------------------------------------------------
    # Ingestion
    # -------------------------------------------------------------------------

    async def upsert_server(self, server: Server) -> None:
        """Insert a server or fully replace its descriptor."""
        await self.execute_batch([
            (UPSERT_SERVER_SQL, (server.endpoint, server.info.name, list(server.info.game_modes))),
        ])

    async def insert_match_if_new(self, match: Match) -> bool:
        """
        Insert a match with its scoreboard and fold it into player rollups.

        Args:
            match: Match to insert.

        Returns:
            False if the server is unknown (nothing written), True if the
            match was inserted or had already been inserted before.
        """
        async with self.transaction() as conn:
            server_exists = await conn.fetchval(
                "SELECT 1 FROM servers WHERE endpoint = $1",
                match.endpoint,
            )
            if not server_exists:
                self.logger.warning(f"Rejected match for unknown server {match.endpoint}")
                return False

            result = match.result
            match_id = await conn.fetchval(
                INSERT_MATCH_SQL,
                match.endpoint,
                match.timestamp,
                result.map,
                result.game_mode,
                result.frag_limit,
                result.time_limit,
                result.time_elapsed,
            )
            if match_id is None:
                self.logger.info(f"Match {match.endpoint}@{match.timestamp.isoformat()} already stored")
                return True

            if result.scoreboard:
                await conn.executemany(
                    INSERT_SCOREBOARD_SQL,
                    [
                        (match_id, rank, e.name, search_name(e.name), e.frags, e.kills, e.deaths)
                        for rank, e in enumerate(result.scoreboard, start=1)
                    ],
                )
                await self._apply_rollups(conn, result.scoreboard)

            return True

    async def _apply_rollups(
        self,
        conn: asyncpg.Connection,
        scoreboard: list[ScoreboardEntry],
    ) -> None:
        """
        Add one match's contributions to the players' running totals.

        Advisory locks are taken in sorted key order so two matches sharing
        players cannot deadlock.
        """
        keys = sorted({search_name(e.name) for e in scoreboard})
        for key in keys:
            await conn.execute(LOCK_PLAYER_SQL, key)

        rows = await conn.fetch(SELECT_ROLLUPS_SQL, keys)
        rollups = {row["search_name"]: self._row_to_rollup(row) for row in rows}

        for entry in scoreboard:
            key = search_name(entry.name)
            current = rollups.get(key) or PlayerRollup(name=entry.name)
            rollups[key] = current.add(entry)

        await conn.executemany(
            UPSERT_ROLLUP_SQL,
            [
                (key, r.name, r.frags, r.kills, r.deaths, r.match_count)
                for key, r in sorted(rollups.items())
            ],
        )

    # -------------------------------------------------------------------------
    # Server and Match Reads
    # -------------------------------------------------------------------------

    async def get_server(self, endpoint: str) -> Optional[ServerInfo]:
        """
        Get a server's descriptor.

        Returns:
            ServerInfo, or None if the server was never advertised.
        """
        rows = await self.fetch(
            "SELECT endpoint, name, game_modes FROM servers WHERE endpoint = $1",
            endpoint,
        )
        return self._row_to_server(rows[0]).info if rows else None

    async def get_all_servers(self) -> list[Server]:
        """Get every advertised server, ordered by endpoint."""
        rows = await self.fetch("SELECT endpoint, name, game_modes FROM servers ORDER BY endpoint")
        return [self._row_to_server(row) for row in rows]

    async def get_match(self, endpoint: str, timestamp: datetime) -> Optional[MatchResult]:
        """
        Get a stored match result with its scoreboard.

        Returns:
            MatchResult, or None if no such match exists.
        """
        async with self.transaction() as conn:
            row = await conn.fetchrow(
                """
                SELECT id, map, game_mode, frag_limit, time_limit, time_elapsed
                FROM matches
                WHERE endpoint = $1 AND played_at = $2
                """,
                endpoint,
                timestamp,
            )
            if not row:
                return None

            scoreboard = await conn.fetch(
                """
                SELECT match_id, name, frags, kills, deaths
                FROM scoreboards
                WHERE match_id = $1
                ORDER BY rank
                """,
                row["id"],
            )
            return self._row_to_result(row, scoreboard)

    async def get_recent_matches(self, limit: int) -> list[RecentMatch]:
        """
        Get the newest matches across all servers with their scoreboards.

        Args:
            limit: Maximum matches to return.

        Returns:
            Matches ordered newest first.
        """
        async with self.transaction() as conn:
            rows = await conn.fetch(
                """
                SELECT id, endpoint, played_at, map, game_mode, frag_limit, time_limit, time_elapsed
                FROM matches
                ORDER BY played_at DESC, id DESC
                LIMIT $1
                """,
                limit,
            )
            if not rows:
                return []

            scoreboard_rows = await conn.fetch(
                """
                SELECT match_id, name, frags, kills, deaths
                FROM scoreboards
                WHERE match_id = ANY($1::bigint[])
                ORDER BY match_id, rank
                """,
                [row["id"] for row in rows],
            )

        by_match: dict[int, list] = {}
        for s in scoreboard_rows:
            by_match.setdefault(s["match_id"], []).append(s)

        return [
            RecentMatch(
                endpoint=row["endpoint"],
                timestamp=row["played_at"],
                result=self._row_to_result(row, by_match.get(row["id"], [])),
            )
            for row in rows
        ]

    # -------------------------------------------------------------------------
    # Aggregation Inputs
    # -------------------------------------------------------------------------

    async def get_server_matches(self, endpoint: str) -> list[ServerMatchRow]:
        """Get every match of a server with its population."""
        rows = await self.fetch(
            """
            SELECT m.played_at, m.map, m.game_mode, COUNT(s.match_id) AS population
            FROM matches m
            LEFT JOIN scoreboards s ON s.match_id = m.id
            WHERE m.endpoint = $1
            GROUP BY m.id
            """,
            endpoint,
        )
        return [
            ServerMatchRow(
                timestamp=row["played_at"],
                map=row["map"],
                game_mode=row["game_mode"],
                population=row["population"],
            )
            for row in rows
        ]

    async def get_player_matches(self, name: str) -> list[PlayerMatchRow]:
        """
        Get a player's scoreboard lines joined with their matches.

        Args:
            name: Player name in any casing.
        """
        rows = await self.fetch(
            """
            SELECT m.endpoint, m.played_at, m.game_mode, p.rank, p.kills, p.deaths,
                (SELECT COUNT(*) FROM scoreboards s WHERE s.match_id = m.id) AS population
            FROM scoreboards p
            JOIN matches m ON m.id = p.match_id
            WHERE p.search_name = $1
            """,
            search_name(name),
        )
        return [
            PlayerMatchRow(
                endpoint=row["endpoint"],
                timestamp=row["played_at"],
                game_mode=row["game_mode"],
                population=row["population"],
                rank=row["rank"],
                kills=row["kills"],
                deaths=row["deaths"],
            )
            for row in rows
        ]

    async def get_last_match_timestamp(self) -> Optional[datetime]:
        """Get the timestamp of the newest match across all servers."""
        async with self.transaction() as conn:
            return await conn.fetchval(LAST_MATCH_SQL)

    async def get_server_match_summaries(
        self,
    ) -> tuple[list[ServerMatchSummary], Optional[datetime]]:
        """
        Get per-server match counts together with the global last match.

        Both are read in one transaction so the anchor is consistent with
        the counts.

        Returns:
            (summaries of servers with at least one match, newest match time)
        """
        async with self.transaction() as conn:
            last_match = await conn.fetchval(LAST_MATCH_SQL)
            if last_match is None:
                return [], None

            rows = await conn.fetch(
                """
                SELECT s.endpoint, s.name, COUNT(m.id) AS match_count,
                    MIN(m.played_at) AS first_match
                FROM matches m
                JOIN servers s ON s.endpoint = m.endpoint
                GROUP BY s.endpoint, s.name
                """
            )

        summaries = [
            ServerMatchSummary(
                endpoint=row["endpoint"],
                name=row["name"],
                match_count=row["match_count"],
                first_match=row["first_match"],
            )
            for row in rows
        ]
        return summaries, last_match

    async def get_eligible_rollups(self, limit: int) -> list[PlayerRollup]:
        """
        Get the rollups of leaderboard-eligible players, best ratio first.

        Args:
            limit: Maximum rollups to return.
        """
        rows = await self.fetch(
            """
            SELECT search_name, name, frags, kills, deaths, match_count
            FROM player_rollups
            WHERE deaths > 0 AND match_count >= $1
            ORDER BY kills::float8 / deaths DESC, name
            LIMIT $2
            """,
            LEADERBOARD_MIN_MATCHES,
            limit,
        )
        return [self._row_to_rollup(row) for row in rows]

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def _row_to_server(self, row: asyncpg.Record) -> Server:
        """Convert a servers row to a Server."""
        return Server(
            endpoint=row["endpoint"],
            info=ServerInfo(name=row["name"], game_modes=list(row["game_modes"] or [])),
        )

    def _row_to_result(self, row: asyncpg.Record, scoreboard: list) -> MatchResult:
        """Convert a matches row and its scoreboard rows to a MatchResult."""
        return MatchResult(
            map=row["map"],
            game_mode=row["game_mode"],
            frag_limit=row["frag_limit"],
            time_limit=row["time_limit"],
            time_elapsed=float(row["time_elapsed"]),
            scoreboard=[
                ScoreboardEntry(
                    name=s["name"],
                    frags=s["frags"],
                    kills=s["kills"],
                    deaths=s["deaths"],
                )
                for s in scoreboard
            ],
        )

    def _row_to_rollup(self, row: asyncpg.Record) -> PlayerRollup:
        """Convert a player_rollups row to a PlayerRollup."""
        return PlayerRollup(
            name=row["name"],
            frags=row["frags"],
            kills=row["kills"],
            deaths=row["deaths"],
            match_count=row["match_count"],
        )
