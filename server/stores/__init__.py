"""Stores package for game stats persistence and caching."""

from .stats_store import StatsStore, StorageError
from .stat_cache import StatCache
from .report_cache import ReportCache, ReadWriteLock

__all__ = [
    # Storage gateway
    "StatsStore",
    "StorageError",
    # Caches
    "StatCache",
    "ReportCache",
    "ReadWriteLock",
]
