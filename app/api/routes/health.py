"""Health check endpoints."""

from datetime import datetime, timezone

import redis.asyncio as redis
from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.dependencies import get_db, get_redis
from app.config import get_settings

router = APIRouter(tags=["health"])


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    timestamp: datetime


class ReadyCheck(BaseModel):
    """Individual readiness check."""

    status: str
    message: str | None = None


class ReadyResponse(BaseModel):
    """Readiness check response."""

    ready: bool
    write_enabled: bool
    checks: dict[str, ReadyCheck]


def _configured(is_configured: bool, name: str) -> ReadyCheck:
    if is_configured:
        return ReadyCheck(status="ok", message=f"{name} configured")
    return ReadyCheck(status="warning", message=f"{name} not configured")


@router.get("/health", response_model=HealthResponse)
async def health():
    """
    Basic health check.

    Returns healthy if the service is running.
    """
    return HealthResponse(
        status="healthy",
        timestamp=datetime.now(timezone.utc),
    )


@router.get("/ready", response_model=ReadyResponse)
async def ready(
    db: AsyncSession = Depends(get_db),
    redis_client: redis.Redis = Depends(get_redis),
):
    """
    Readiness check for all dependencies.

    Checks:
    - Database connectivity
    - Redis connectivity
    - Odds, statistics and narrative providers configured
    """
    checks = {}
    all_ready = True

    # Check database
    try:
        await db.execute(text("SELECT 1"))
        checks["db"] = ReadyCheck(status="ok")
    except Exception as e:
        checks["db"] = ReadyCheck(status="error", message=str(e))
        all_ready = False

    # Check Redis
    try:
        await redis_client.ping()
        checks["redis"] = ReadyCheck(status="ok")
    except Exception as e:
        checks["redis"] = ReadyCheck(status="error", message=str(e))
        all_ready = False

    # Provider configuration only warns; narrative is optional anyway
    settings = get_settings()
    checks["odds"] = _configured(settings.odds_configured, "Odds provider")
    checks["stats"] = _configured(settings.stats_configured, "Statistics provider")
    checks["narrative"] = _configured(settings.narrative_configured, "Narrative provider")

    return ReadyResponse(
        ready=all_ready, write_enabled=settings.write_enabled, checks=checks
    )
