"""Sharpline FastAPI application.

Deterministic pick engine: analytical factors are aggregated into a
calibrated confidence, adjusted against the market, and turned into
immutable picks through an idempotent, audited run pipeline.
"""

from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from app import __version__
from app.api.routes import config, health, runs
from app.config import get_settings
from app.config.logging import configure_logging
from app.services.engine.errors import EngineError

settings = get_settings()
configure_logging(settings.log_level)

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    logger.info(
        "starting_sharpline",
        version=__version__,
        write_enabled=settings.write_enabled,
        engine_profile=settings.engine_profile_version,
    )
    yield
    logger.info("shutting_down_sharpline")


# Create FastAPI application
app = FastAPI(
    title="Sharpline",
    description="Deterministic sports pick engine with an audited run pipeline",
    version=__version__,
    lifespan=lifespan,
)

# Include API routers
app.include_router(health.router)
app.include_router(runs.router)
app.include_router(config.router)


# Error handlers
@app.exception_handler(EngineError)
async def engine_error_handler(request: Request, exc: EngineError):
    """Engine errors become {kind, message, stage} with their status code."""
    logger.warning(
        "engine_error",
        path=request.url.path,
        kind=exc.kind.value,
        message=exc.message,
        stage=exc.stage,
    )
    return JSONResponse(status_code=exc.http_status, content=exc.to_dict())


@app.exception_handler(500)
async def server_error_handler(request: Request, exc):
    """Custom 500 handler."""
    logger.error("server_error", path=request.url.path, error=str(exc))
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})
