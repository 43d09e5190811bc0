"""NBA spread factors.

Signals are from the away team's perspective: positive leans AWAY,
negative leans HOME. Each converts a point estimate into [-1, 1] with tanh.
"""

import math

from app.config.profiles import LeagueAverages
from app.services.engine.types import BetType, Factor, directional_payload
from app.services.providers.stats import TeamStats

POINTS_PER_TURNOVER = 1.1
MARGIN_CAP = 20.0

# Four-factor composite weights
EFG_WEIGHT = 0.50
TOV_WEIGHT = 0.30
OREB_WEIGHT = 0.15
FTR_WEIGHT = 0.05


def _spread_factor(
    key: str,
    name: str,
    signal: float,
    weight: float,
    max_points: float,
    raw_inputs: dict,
    notes: str,
    was_capped: bool = False,
    cap_reason: str | None = None,
) -> Factor:
    return Factor(
        key=key,
        display_name=name,
        normalized_value=signal,
        weight_percent=weight,
        raw_inputs=raw_inputs,
        notes=notes,
        was_capped=was_capped,
        cap_reason=cap_reason,
        payload=directional_payload(BetType.SPREAD, signal, max_points),
    )


def net_rating_differential(
    away: TeamStats, home: TeamStats, league: LeagueAverages, weight: float,
    max_points: float = 5.0,
) -> Factor:
    """Net rating gap converted to an expected margin at league pace."""
    diff = away.net_rating - home.net_rating
    expected_margin = diff * (league.pace / 100)
    capped_margin = max(-MARGIN_CAP, min(MARGIN_CAP, expected_margin))
    was_capped = capped_margin != expected_margin
    return _spread_factor(
        "netRatingDiff",
        "Net Rating Differential",
        math.tanh(capped_margin / 3.5),
        weight,
        max_points,
        {"away_net_rating": away.net_rating, "home_net_rating": home.net_rating,
         "expected_margin": expected_margin, "pace": league.pace},
        f"Expected away margin {expected_margin:+.1f}",
        was_capped=was_capped,
        cap_reason=f"margin clamped to ±{MARGIN_CAP:.0f}" if was_capped else None,
    )


def turnover_differential(
    away: TeamStats, home: TeamStats, league: LeagueAverages, weight: float,
    max_points: float = 5.0,
) -> Factor:
    """More home turnovers than away turnovers favours the away side."""
    differential = home.turnovers_last10 - away.turnovers_last10
    impact = differential * POINTS_PER_TURNOVER
    return _spread_factor(
        "turnoverDiff",
        "Turnover Differential",
        math.tanh(impact / 5.0),
        weight,
        max_points,
        {"away_tov": away.turnovers_last10, "home_tov": home.turnovers_last10,
         "point_impact": impact},
        f"Turnover edge worth {impact:+.1f} pts to away",
    )


def _rebound_pct(own: float, opp: float) -> float:
    total = own + opp
    return own / total if total > 0 else 0.0


def rebounding_differential(
    away: TeamStats, home: TeamStats, league: LeagueAverages, weight: float,
    max_points: float = 5.0,
) -> Factor:
    """Total rebounding share gap, in points."""
    away_total = _rebound_pct(away.off_reb, away.opp_def_reb) + _rebound_pct(
        away.def_reb, away.opp_off_reb
    )
    home_total = _rebound_pct(home.off_reb, home.opp_def_reb) + _rebound_pct(
        home.def_reb, home.opp_off_reb
    )
    impact = (away_total - home_total) * 100
    return _spread_factor(
        "reboundingDiff",
        "Rebounding Differential",
        math.tanh(impact / 10.0),
        weight,
        max_points,
        {"away_total_reb_pct": away_total, "home_total_reb_pct": home_total,
         "point_impact": impact},
        f"Rebounding edge worth {impact:+.1f} pts to away",
    )


def four_factors_differential(
    away: TeamStats, home: TeamStats, league: LeagueAverages, weight: float,
    max_points: float = 5.0,
) -> Factor:
    """Dean Oliver's four factors as a weighted composite."""

    def rating(t: TeamStats) -> float:
        return (
            EFG_WEIGHT * t.efg_pct
            - TOV_WEIGHT * t.tov_pct
            + OREB_WEIGHT * t.oreb_pct
            + FTR_WEIGHT * t.ftr
        )

    away_rating = rating(away)
    home_rating = rating(home)
    # A composite gap of 0.10 is roughly a 12 point margin
    expected_margin = (away_rating - home_rating) * 120
    return _spread_factor(
        "fourFactorsDiff",
        "Four Factors Differential",
        math.tanh(expected_margin / 8.0),
        weight,
        max_points,
        {"away_rating": away_rating, "home_rating": home_rating,
         "expected_margin": expected_margin},
        f"Four-factor margin {expected_margin:+.1f} to away",
    )


def home_away_splits(
    away: TeamStats, home: TeamStats, league: LeagueAverages, weight: float,
    max_points: float = 5.0,
) -> Factor:
    """Away team's road form against home team's home form."""
    away_road = (away.away_ortg or away.ortg) - (away.away_drtg or away.drtg)
    home_home = (home.home_ortg or home.ortg) - (home.home_drtg or home.drtg)
    advantage = away_road - home_home
    return _spread_factor(
        "homeAwaySplits",
        "Home/Away Splits",
        math.tanh(advantage / 6.0),
        weight,
        max_points,
        {"away_road_net": away_road, "home_home_net": home_home},
        f"Road net {away_road:+.1f} vs home net {home_home:+.1f}",
    )
