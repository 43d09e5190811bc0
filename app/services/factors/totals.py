"""NBA totals factors.

Each factor expresses one angle on the game total as a z-like score in
[-1, 1]: positive leans OVER, negative leans UNDER.
"""

import math

from app.config.profiles import LeagueAverages
from app.services.engine.errors import ValidationError
from app.services.engine.types import BetType, Factor, directional_payload
from app.services.providers.stats import TeamStats

Z_CAP_REASON = "z-score clamped to ±1"


def _clamp_z(z: float) -> tuple[float, bool]:
    capped = abs(z) >= 1.0
    return max(-1.0, min(1.0, z)), capped


def _totals_factor(
    key: str,
    name: str,
    z: float,
    weight: float,
    max_points: float,
    raw_inputs: dict,
    notes: str,
) -> Factor:
    value, capped = _clamp_z(z)
    return Factor(
        key=key,
        display_name=name,
        normalized_value=value,
        weight_percent=weight,
        raw_inputs=raw_inputs,
        notes=notes,
        was_capped=capped,
        cap_reason=Z_CAP_REASON if capped else None,
        payload=directional_payload(BetType.TOTAL, value, max_points),
    )


def pace_index(
    away: TeamStats, home: TeamStats, league: LeagueAverages, weight: float,
    max_points: float = 0.6,
) -> Factor:
    """Expected game pace vs league (blend 60% season, 40% last 10)."""
    away_pace = 0.6 * away.pace + 0.4 * (away.pace_last10 or away.pace)
    home_pace = 0.6 * home.pace + 0.4 * (home.pace_last10 or home.pace)
    expected = (away_pace + home_pace) / 2
    delta = expected - league.pace
    return _totals_factor(
        "paceIndex",
        "Matchup Pace Index",
        delta / 6.0,
        weight,
        max_points,
        {"away_pace": away_pace, "home_pace": home_pace, "expected_pace": expected,
         "league_pace": league.pace},
        f"Expected pace {expected:.1f} vs league {league.pace:.1f} ({delta:+.1f})",
    )


def offensive_form(
    away: TeamStats, home: TeamStats, league: LeagueAverages, weight: float,
    max_points: float = 0.6,
) -> Factor:
    """Recent offensive rating, adjusted for the opponent's defense."""
    if away.drtg <= 0 or home.drtg <= 0:
        raise ValidationError("Defensive ratings must be positive")
    away_ortg = away.ortg_last10 or away.ortg
    home_ortg = home.ortg_last10 or home.ortg
    away_adj = away_ortg * (league.ortg / home.drtg)
    home_adj = home_ortg * (league.ortg / away.drtg)
    delta = (away_adj + home_adj) - 2 * league.ortg
    return _totals_factor(
        "offForm",
        "Offensive Form",
        delta / 10.0,
        weight,
        max_points,
        {"away_ortg_adj": away_adj, "home_ortg_adj": home_adj, "league_ortg": league.ortg},
        f"Combined adjusted ORtg {delta:+.1f} per 100 vs league",
    )


def defensive_erosion(
    away: TeamStats, home: TeamStats, league: LeagueAverages, weight: float,
    max_points: float = 0.5,
) -> Factor:
    """Defensive ratings worse than league push the total up."""
    away_delta = (away.drtg - league.drtg) / 8.0
    home_delta = (home.drtg - league.drtg) / 8.0
    erosion = (away_delta + home_delta) / 2
    return _totals_factor(
        "defErosion",
        "Defensive Erosion",
        erosion,
        weight,
        max_points,
        {"away_drtg": away.drtg, "home_drtg": home.drtg, "league_drtg": league.drtg},
        f"Average DRtg delta {erosion * 8:+.1f} vs league",
    )


def three_point_environment(
    away: TeamStats, home: TeamStats, league: LeagueAverages, weight: float,
    max_points: float = 0.4,
) -> Factor:
    """Three-point attempt rate plus recent shooting variance."""
    env_rate = (away.three_par + home.three_par + away.opp_three_par + home.opp_three_par) / 4
    rate_delta = env_rate - league.three_par

    recent = [away.three_pct_last10, home.three_pct_last10]
    mean = sum(recent) / len(recent)
    stdev = math.sqrt(sum((x - mean) ** 2 for x in recent) / len(recent))
    hot_variance = max(0.0, stdev - league.three_par_stdev)

    return _totals_factor(
        "threeEnv",
        "3-Point Environment",
        2 * rate_delta + hot_variance,
        weight,
        max_points,
        {"env_rate": env_rate, "league_three_par": league.three_par,
         "recent_stdev": stdev, "hot_variance": hot_variance},
        f"3PAR environment {env_rate:.3f} vs league {league.three_par:.3f}",
    )


def whistle_environment(
    away: TeamStats, home: TeamStats, league: LeagueAverages, weight: float,
    max_points: float = 0.3,
) -> Factor:
    """Free-throw rate environment; more whistles, more points."""
    ftr_env = (away.ftr + home.ftr + away.opp_ftr + home.opp_ftr) / 4
    delta = ftr_env - league.ftr
    return _totals_factor(
        "whistleEnv",
        "Free-Throw Environment",
        delta / 0.06,
        weight,
        max_points,
        {"ftr_env": ftr_env, "league_ftr": league.ftr},
        f"FTr environment {ftr_env:.3f} vs league {league.ftr:.3f}",
    )
