"""
Game stats API router.

Provides the ingestion endpoints game servers call (server advertisement,
match results) and the public read endpoints for server info, match
results, server/player statistics and the list reports.

Field names on the wire are camelCase; timestamps use the
``YYYY-MM-DDTHH:MM:SSZ`` format in UTC.
"""

import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Path, Response
from pydantic import BaseModel, Field

from config import config
from logging_config import endpoint_var, player_var
from models.stats import (
    Match,
    MatchResult,
    ScoreboardEntry,
    Server,
    ServerInfo,
    parse_timestamp,
)
from services.stats_service import StatsService

logger = logging.getLogger(__name__)

router = APIRouter(tags=["stats"])

ENDPOINT_PATTERN = r"^\S+-\d+$"
TIMESTAMP_PATTERN = r"^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}Z$"


# =============================================================================
# Request Models
# =============================================================================


class ServerInfoRequest(BaseModel):
    """Server advertisement body."""
    name: str
    game_modes: list[str] = Field(default_factory=list, alias="gameModes")

    def to_domain(self) -> ServerInfo:
        return ServerInfo(name=self.name, game_modes=list(self.game_modes))


class ScoreboardEntryRequest(BaseModel):
    """One scoreboard line, in placement order."""
    name: str
    frags: int
    kills: int
    deaths: int


class MatchResultRequest(BaseModel):
    """Match result body."""
    map: str
    game_mode: str = Field(alias="gameMode")
    frag_limit: int = Field(alias="fragLimit")
    time_limit: int = Field(alias="timeLimit")
    time_elapsed: float = Field(alias="timeElapsed")
    scoreboard: list[ScoreboardEntryRequest] = Field(default_factory=list)

    def to_domain(self) -> MatchResult:
        return MatchResult(
            map=self.map,
            game_mode=self.game_mode,
            frag_limit=self.frag_limit,
            time_limit=self.time_limit,
            time_elapsed=self.time_elapsed,
            scoreboard=[
                ScoreboardEntry(name=s.name, frags=s.frags, kills=s.kills, deaths=s.deaths)
                for s in self.scoreboard
            ],
        )


# =============================================================================
# Dependencies
# =============================================================================

# Set by main.py during startup
_stats_service: Optional[StatsService] = None


def set_stats_service(service: Optional[StatsService]) -> None:
    """Set the stats service instance (called from main.py)."""
    global _stats_service
    _stats_service = service


def get_stats_service_dep() -> StatsService:
    """Dependency to get stats service."""
    if _stats_service is None:
        raise HTTPException(status_code=503, detail="Stats service not initialized")
    return _stats_service


def _parse_match_timestamp(value: str) -> datetime:
    try:
        return parse_timestamp(value)
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Invalid timestamp: {value}")


def _report_count(count: Optional[int], service: StatsService) -> int:
    """Omitted -> default, above the cap -> cap. Non-positive stays as is."""
    if count is None:
        return config.REPORT_DEFAULT_ITEMS
    return min(count, service.report_max_items)


# =============================================================================
# Servers
# =============================================================================


@router.get("/servers/info")
async def list_servers(service: StatsService = Depends(get_stats_service_dep)):
    """Get every advertised server with its info."""
    servers = await service.get_all_servers()
    return [server.to_dict() for server in servers]


@router.put("/servers/{endpoint}/info")
async def put_server_info(
    endpoint: str = Path(pattern=ENDPOINT_PATTERN),
    body: ServerInfoRequest = Body(...),
    service: StatsService = Depends(get_stats_service_dep),
):
    """Advertise a server, replacing its previous info."""
    endpoint_var.set(endpoint)
    await service.upsert_server(Server(endpoint=endpoint, info=body.to_domain()))
    return Response(status_code=200)


@router.get("/servers/{endpoint}/info")
async def get_server_info(
    endpoint: str = Path(pattern=ENDPOINT_PATTERN),
    service: StatsService = Depends(get_stats_service_dep),
):
    """Get a server's info."""
    info = await service.get_server_info(endpoint)
    if info is None:
        raise HTTPException(status_code=404, detail="Server not found")
    return info.to_dict()


@router.put("/servers/{endpoint}/matches/{timestamp}")
async def put_match(
    endpoint: str = Path(pattern=ENDPOINT_PATTERN),
    timestamp: str = Path(pattern=TIMESTAMP_PATTERN),
    body: MatchResultRequest = Body(...),
    service: StatsService = Depends(get_stats_service_dep),
):
    """
    Store a match result.

    Replaying an already stored match succeeds without changing anything.
    A match from a server that never advertised itself is rejected.
    """
    endpoint_var.set(endpoint)
    match = Match(
        endpoint=endpoint,
        timestamp=_parse_match_timestamp(timestamp),
        result=body.to_domain(),
    )
    if not await service.insert_match(match):
        raise HTTPException(status_code=400, detail="Unknown server")
    return Response(status_code=200)


@router.get("/servers/{endpoint}/matches/{timestamp}")
async def get_match(
    endpoint: str = Path(pattern=ENDPOINT_PATTERN),
    timestamp: str = Path(pattern=TIMESTAMP_PATTERN),
    service: StatsService = Depends(get_stats_service_dep),
):
    """Get a stored match result."""
    result = await service.get_match_result(endpoint, _parse_match_timestamp(timestamp))
    if result is None:
        raise HTTPException(status_code=404, detail="Match not found")
    return result.to_dict()


@router.get("/servers/{endpoint}/stats")
async def get_server_stats(
    endpoint: str = Path(pattern=ENDPOINT_PATTERN),
    service: StatsService = Depends(get_stats_service_dep),
):
    """Get a server's aggregate statistics (zero-valued if it has no matches)."""
    endpoint_var.set(endpoint)
    stat = await service.get_server_stat(endpoint)
    return stat.to_dict()


# =============================================================================
# Players
# =============================================================================


@router.get("/players/{name:path}/stats")
async def get_player_stats(
    name: str,
    service: StatsService = Depends(get_stats_service_dep),
):
    """Get a player's aggregate statistics; the name is case-insensitive."""
    player_var.set(name)
    stat = await service.get_player_stat(name)
    return stat.to_dict()


# =============================================================================
# Reports
# =============================================================================


@router.get("/reports/recent-matches")
@router.get("/reports/recent-matches/{count}")
async def recent_matches_report(
    count: Optional[int] = None,
    service: StatsService = Depends(get_stats_service_dep),
):
    """Newest matches first."""
    matches = await service.get_recent_matches(_report_count(count, service))
    return [m.to_dict() for m in matches]


@router.get("/reports/best-players")
@router.get("/reports/best-players/{count}")
async def best_players_report(
    count: Optional[int] = None,
    service: StatsService = Depends(get_stats_service_dep),
):
    """Players with enough matches, by kill/death ratio."""
    players = await service.get_best_players(_report_count(count, service))
    return [p.to_dict() for p in players]


@router.get("/reports/popular-servers")
@router.get("/reports/popular-servers/{count}")
async def popular_servers_report(
    count: Optional[int] = None,
    service: StatsService = Depends(get_stats_service_dep),
):
    """Servers by average matches per day."""
    servers = await service.get_popular_servers(_report_count(count, service))
    return [s.to_dict() for s in servers]
