"""FastAPI HTTP server for game stats."""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from config import config
from logging_config import get_logger, setup_logging
from middleware import RequestContextMiddleware
from routers.health import router as health_router, set_health_dependencies
from routers.stats import router as stats_router, set_stats_service
from services.stats_service import StatsService
from stores.stats_store import StatsStore, StorageError

# Configure logging based on environment
setup_logging(
    level=config.LOG_LEVEL,
    environment=config.ENVIRONMENT,
)
logger = logging.getLogger(__name__)

ALL_METHODS = ["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]


# =============================================================================
# Services (initialized in lifespan)
# =============================================================================

_stats_store: Optional[StatsStore] = None
_stats_service: Optional[StatsService] = None


async def _init_services() -> None:
    """Open the database pool and build the stats service."""
    global _stats_store, _stats_service

    _stats_store = await StatsStore.create(
        config.POSTGRES_URL,
        min_size=config.DB_POOL_MIN_SIZE,
        max_size=config.DB_POOL_MAX_SIZE,
        logger=get_logger("stores.stats_store"),
    )
    _stats_service = StatsService(
        _stats_store,
        cache_ttl_seconds=config.CACHE_TTL_SECONDS,
        report_max_items=config.REPORT_MAX_ITEMS,
        logger=get_logger("services.stats_service"),
    )
    set_stats_service(_stats_service)
    logger.info("Stats service initialized")


async def _shutdown_services() -> None:
    """Detach the service from the routers and close the pool."""
    global _stats_store, _stats_service

    set_stats_service(None)
    set_health_dependencies(None)
    _stats_service = None

    if _stats_store:
        await _stats_store.close()
        _stats_store = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for async service initialization."""
    if config.POSTGRES_URL:
        try:
            await _init_services()
        except StorageError as e:
            logger.error(f"Failed to initialize services: {e}")
            raise
    else:
        logger.warning("POSTGRES_URL not configured - stats endpoints will not work")

    set_health_dependencies(_stats_service)

    logger.info(f"Stats server started (environment={config.ENVIRONMENT})")

    yield

    logger.info("Shutdown initiated...")
    await _shutdown_services()
    logger.info("Shutdown complete")


app = FastAPI(
    title="Game Stats Server",
    debug=config.DEBUG,
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(RequestContextMiddleware)


# =============================================================================
# Error Handlers
# =============================================================================


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    """Malformed paths, bodies and counts are client errors."""
    return JSONResponse(status_code=400, content={"detail": jsonable_encoder(exc.errors())})


@app.exception_handler(StorageError)
async def storage_error_handler(request: Request, exc: StorageError):
    logger.error(f"Storage failure on {request.method} {request.url.path}: {exc}")
    return JSONResponse(status_code=503, content={"detail": "Storage unavailable"})


# =============================================================================
# Routers
# =============================================================================

app.include_router(stats_router)
app.include_router(health_router)


@app.api_route("/{path:path}", methods=ALL_METHODS, include_in_schema=False)
async def unknown_route(path: str):
    """Any path or method not served above is a bad request."""
    return JSONResponse(status_code=400, content={"detail": f"Unknown route: /{path}"})


def run():
    """Run the server using uvicorn."""
    import uvicorn

    logger.info(f"Starting stats server on {config.HOST}:{config.PORT}")
    logger.info(f"Debug mode: {config.DEBUG}")

    uvicorn.run(
        "main:app",
        host=config.HOST,
        port=config.PORT,
        reload=config.DEBUG,
        log_level=config.LOG_LEVEL.lower(),
    )


if __name__ == "__main__":
    run()
