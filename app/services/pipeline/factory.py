"""Wiring for the run orchestrator.

Clients and orchestrators are built per request (FastAPI) or per task
(Celery) so that no connection outlives its event loop.
"""

from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator

from sqlalchemy.ext.asyncio import AsyncSession

from app.config.profiles import ProfileCatalog, get_profile_catalog
from app.config.settings import Settings, get_settings
from app.services.factors.provider import AnalyticalFactorProvider
from app.services.pipeline.orchestrator import RunOrchestrator
from app.services.pipeline.repository import ProfileWeightSource, RunRepository
from app.services.providers.cache import MemoryTTLCache, TTLCache
from app.services.providers.narrative import NarrativeClient
from app.services.providers.odds import OddsClient
from app.services.providers.retry import RetryPolicy
from app.services.providers.stats import StatsClient


@dataclass
class ProviderClients:
    """External provider clients sharing one retry policy."""

    odds: OddsClient
    stats: StatsClient
    narrative: NarrativeClient | None = None

    async def close(self) -> None:
        await self.odds.close()
        await self.stats.close()
        if self.narrative is not None:
            await self.narrative.close()


def build_provider_clients(
    settings: Settings | None = None, cache: TTLCache | None = None
) -> ProviderClients:
    settings = settings or get_settings()
    retry_policy = RetryPolicy.from_settings(settings)
    timeout = settings.provider_timeout_seconds

    narrative = None
    if settings.narrative_configured:
        narrative = NarrativeClient(
            api_key=settings.openai_api_key,
            model=settings.narrative_model,
            max_tokens=settings.narrative_max_tokens,
            timeout=timeout,
            retry_policy=retry_policy,
        )

    return ProviderClients(
        odds=OddsClient(
            base_url=settings.odds_api_url,
            api_key=settings.odds_api_key,
            sport_keys=settings.odds_sport_keys,
            regions=settings.odds_regions,
            retry_policy=retry_policy,
            timeout=timeout,
        ),
        stats=StatsClient(
            base_url=settings.stats_api_url,
            api_key=settings.stats_api_key,
            cache=cache if cache is not None else MemoryTTLCache(),
            cache_ttl_seconds=settings.stats_cache_ttl_seconds,
            retry_policy=retry_policy,
            timeout=timeout,
        ),
        narrative=narrative,
    )


@asynccontextmanager
async def provider_clients(
    settings: Settings | None = None, cache: TTLCache | None = None
) -> AsyncIterator[ProviderClients]:
    """Provider clients closed on exit."""
    clients = build_provider_clients(settings, cache)
    try:
        yield clients
    finally:
        await clients.close()


def stage_timeout(settings: Settings) -> float:
    """Timeout for one collaborator call, long enough for every retry."""
    if settings.stage_timeout_seconds:
        return settings.stage_timeout_seconds
    return RetryPolicy.from_settings(settings).total_budget(
        settings.provider_timeout_seconds
    )


def build_orchestrator(
    session: AsyncSession,
    clients: ProviderClients,
    settings: Settings | None = None,
    catalog: ProfileCatalog | None = None,
) -> RunOrchestrator:
    """Assemble an orchestrator over one database session."""
    settings = settings or get_settings()
    return RunOrchestrator(
        repository=RunRepository(session),
        market=clients.odds,
        factors=AnalyticalFactorProvider(clients.stats),
        weights=ProfileWeightSource(session),
        narrative=clients.narrative,
        catalog=catalog or get_profile_catalog(),
        stage_timeout=stage_timeout(settings),
        write_enabled=settings.write_enabled,
        default_profile_version=settings.engine_profile_version,
    )
