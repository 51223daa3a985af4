"""Services package for game stats business logic."""

from .stats_service import StatsService
from . import stats_aggregator

__all__ = [
    "StatsService",
    "stats_aggregator",
]
