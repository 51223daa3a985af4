"""
Health check endpoints for production deployment.

Provides:
- /health - Basic liveness check (is the app running?)
- /ready - Readiness check (can the app reach the database?)
- /metrics - Cache metrics for monitoring
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter
from fastapi.responses import JSONResponse

from services.stats_service import StatsService
from stores.stats_store import StorageError

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])

# Service reference (set during app initialization)
_stats_service: Optional[StatsService] = None


def set_health_dependencies(stats_service: Optional[StatsService] = None) -> None:
    """Set dependencies for health checks."""
    global _stats_service
    _stats_service = stats_service


@router.get("/health")
async def health_check():
    """
    Basic liveness check - is the app running?

    This endpoint should always return 200 if the process is alive.
    """
    return {
        "status": "ok",
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@router.get("/ready")
async def readiness_check():
    """
    Readiness check - can the app handle requests?

    Returns 503 if the database is unreachable or not configured.
    """
    healthy = False
    if _stats_service is None:
        database = {"status": "not_configured"}
    else:
        try:
            await _stats_service.store.ping()
            database = {"status": "ok"}
            healthy = True
        except StorageError as e:
            logger.warning(f"Database health check failed: {e}")
            database = {"status": "error", "message": str(e)}

    return JSONResponse(
        status_code=200 if healthy else 503,
        content={
            "status": "ok" if healthy else "degraded",
            "checks": {"database": database},
            "timestamp": datetime.now(timezone.utc).isoformat(),
        },
    )


@router.get("/metrics")
async def metrics():
    """Cache hit/miss/size counters of every stat and report cache."""
    metrics_data = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
    if _stats_service is not None:
        metrics_data["caches"] = _stats_service.cache_metrics()
    return metrics_data
