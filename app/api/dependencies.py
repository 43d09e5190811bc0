"""FastAPI dependencies for Sharpline."""

from collections.abc import AsyncGenerator

import redis.asyncio as redis
from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import get_settings
from app.models.base import get_default_session_factory
from app.services.pipeline.factory import build_orchestrator, provider_clients
from app.services.pipeline.orchestrator import RunOrchestrator
from app.services.providers.cache import RedisTTLCache


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Get database session dependency."""
    async with get_default_session_factory()() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


async def get_redis() -> AsyncGenerator[redis.Redis, None]:
    """Get Redis client dependency."""
    settings = get_settings()
    client = redis.from_url(settings.redis_url)
    try:
        yield client
    finally:
        await client.close()


async def get_orchestrator(
    db: AsyncSession = Depends(get_db),
    redis_client: redis.Redis = Depends(get_redis),
) -> AsyncGenerator[RunOrchestrator, None]:
    """Get a run orchestrator bound to this request's session."""
    settings = get_settings()
    async with provider_clients(settings, RedisTTLCache(redis_client)) as clients:
        yield build_orchestrator(db, clients, settings)
