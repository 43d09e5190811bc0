"""Analytical factor provider backed by team statistics."""

import asyncio
from typing import Protocol

import structlog

from app.services.engine.errors import ConfigurationError
from app.services.engine.types import BetType
from app.services.factors.base import FactorComputation, FactorContext, FactorRegistry
from app.services.factors.registry import build_default_registry
from app.services.providers.stats import TeamStats

logger = structlog.get_logger(__name__)


class TeamStatsSource(Protocol):
    async def get_team_stats(self, team: str, sport: str) -> TeamStats: ...


class AnalyticalFactorProvider:
    """
    Compute the factors a capper has enabled.

    Only factors with a configured weight are computed, in catalogue order,
    so the same inputs always produce the same factor list.
    """

    def __init__(self, stats: TeamStatsSource, registry: FactorRegistry | None = None):
        self.stats = stats
        self.registry = registry or build_default_registry()

    def _enabled_specs(self, ctx: FactorContext):
        for key in ctx.weights:
            spec = self.registry.get(key)
            if spec.bet_type != ctx.bet_type:
                raise ConfigurationError(
                    f"Factor {key} is a {spec.bet_type.value} factor, "
                    f"configured for a {ctx.bet_type.value} run"
                )
        return [s for s in self.registry.for_bet_type(ctx.bet_type) if s.key in ctx.weights]

    async def compute_factors(self, ctx: FactorContext) -> FactorComputation:
        specs = self._enabled_specs(ctx)
        if not specs:
            raise ConfigurationError(
                f"No enabled {ctx.bet_type.value} factors in weight config"
            )

        away, home = await asyncio.gather(
            self.stats.get_team_stats(ctx.away_team, ctx.sport),
            self.stats.get_team_stats(ctx.home_team, ctx.sport),
        )

        factors = [
            spec.compute(
                away, home, ctx.league_averages, ctx.weights[spec.key], spec.max_points
            )
            for spec in specs
        ]

        if ctx.bet_type == BetType.TOTAL:
            if away.ppg > 0 and home.ppg > 0:
                baseline = away.ppg + home.ppg
            else:
                baseline = 2 * ctx.league_averages.ppg
        else:
            baseline = 0.0

        logger.info(
            "factors_computed",
            game_id=ctx.game_id,
            bet_type=ctx.bet_type.value,
            factors=len(factors),
            baseline=baseline,
        )
        return FactorComputation(
            factors=factors,
            baseline_avg=baseline,
            details={"away_stats": away.to_dict(), "home_stats": home.to_dict()},
        )
