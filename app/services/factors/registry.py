"""Catalogue of analytical factors."""

from app.services.engine.types import BetType
from app.services.factors import spread, totals
from app.services.factors.base import FactorRegistry, FactorSpec


def build_default_registry() -> FactorRegistry:
    """Registry with every built-in NBA factor."""
    registry = FactorRegistry()

    # Totals
    registry.register(FactorSpec(
        key="paceIndex",
        name="Matchup Pace Index",
        description="Expected possessions vs league average",
        bet_type=BetType.TOTAL,
        default_weight=20.0,
        max_points=0.6,
        compute=totals.pace_index,
    ))
    registry.register(FactorSpec(
        key="offForm",
        name="Offensive Form",
        description="Opponent-adjusted recent offensive rating",
        bet_type=BetType.TOTAL,
        default_weight=20.0,
        max_points=0.6,
        compute=totals.offensive_form,
    ))
    registry.register(FactorSpec(
        key="defErosion",
        name="Defensive Erosion",
        description="Defensive rating vs league average",
        bet_type=BetType.TOTAL,
        default_weight=20.0,
        max_points=0.5,
        compute=totals.defensive_erosion,
    ))
    registry.register(FactorSpec(
        key="threeEnv",
        name="3-Point Environment",
        description="Three-point attempt rate and recent shooting variance",
        bet_type=BetType.TOTAL,
        default_weight=20.0,
        max_points=0.4,
        compute=totals.three_point_environment,
    ))
    registry.register(FactorSpec(
        key="whistleEnv",
        name="Free-Throw Environment",
        description="Free-throw rate for and against",
        bet_type=BetType.TOTAL,
        default_weight=20.0,
        max_points=0.3,
        compute=totals.whistle_environment,
    ))

    # Spread
    registry.register(FactorSpec(
        key="netRatingDiff",
        name="Net Rating Differential",
        description="Net rating gap as expected margin",
        bet_type=BetType.SPREAD,
        default_weight=30.0,
        max_points=5.0,
        compute=spread.net_rating_differential,
    ))
    registry.register(FactorSpec(
        key="turnoverDiff",
        name="Turnover Differential",
        description="Recent turnovers, valued per possession",
        bet_type=BetType.SPREAD,
        default_weight=15.0,
        max_points=5.0,
        compute=spread.turnover_differential,
    ))
    registry.register(FactorSpec(
        key="reboundingDiff",
        name="Rebounding Differential",
        description="Offensive and defensive rebounding share",
        bet_type=BetType.SPREAD,
        default_weight=15.0,
        max_points=5.0,
        compute=spread.rebounding_differential,
    ))
    registry.register(FactorSpec(
        key="fourFactorsDiff",
        name="Four Factors Differential",
        description="eFG%, TOV%, OREB%, FTr composite",
        bet_type=BetType.SPREAD,
        default_weight=25.0,
        max_points=5.0,
        compute=spread.four_factors_differential,
    ))
    registry.register(FactorSpec(
        key="homeAwaySplits",
        name="Home/Away Splits",
        description="Road form vs home form",
        bet_type=BetType.SPREAD,
        default_weight=15.0,
        max_points=5.0,
        compute=spread.home_away_splits,
    ))

    return registry
