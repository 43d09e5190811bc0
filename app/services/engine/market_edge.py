"""Market-edge factor builder.

Compares a model prediction with the frozen market line and turns the
disagreement into a factor:

    TOTAL:  edge_pct = (predicted - line) / line,   signal = tanh(edge_pct * 10)
    SPREAD: edge_pct = (margin - spread) / 3.0,     signal = tanh(edge_pct * 1)

The spread margin is from the away team's perspective (positive means away
wins); the market spread is from the home team's perspective (negative means
home favoured), so ``margin - spread`` is how far the away side covers by.

``tanh`` bounds the factor smoothly: a 2-point and a 20-point edge both move
confidence, but the marginal effect shrinks. The factor is always fully
weighted (100) since market disagreement is not analyst-configurable.
"""

import math

import structlog

from app.services.engine.errors import ValidationError
from app.services.engine.types import BetType, Factor, directional_payload

logger = structlog.get_logger(__name__)

MARKET_EDGE_WEIGHT = 100.0
SATURATION_THRESHOLD = 0.99

TOTAL_EDGE_KEY = "edgeVsMarket"
SPREAD_EDGE_KEY = "edgeVsMarketSpread"


def market_edge_key(bet_type: BetType) -> str:
    """Factor key used for the market-edge factor of a bet type."""
    return TOTAL_EDGE_KEY if bet_type == BetType.TOTAL else SPREAD_EDGE_KEY


def build_market_edge_factor(
    bet_type: BetType,
    predicted_value: float,
    market_line: float,
    max_points: float = 5.0,
    *,
    total_sensitivity: float = 10.0,
    spread_reference: float = 3.0,
    spread_sensitivity: float = 1.0,
) -> Factor:
    """Build the market-edge factor for one bet type.

    Args:
        bet_type: TOTAL or SPREAD
        predicted_value: Predicted total points, or predicted away margin
        market_line: Market total, or market spread (home perspective)
        max_points: Points split onto the favoured side in the payload

    Raises:
        ValidationError: On non-finite inputs or a zero totals line
    """
    if not (math.isfinite(predicted_value) and math.isfinite(market_line)):
        raise ValidationError(
            f"Market edge needs finite inputs, got {predicted_value}, {market_line}"
        )

    edge_pts = predicted_value - market_line
    if bet_type == BetType.TOTAL:
        if market_line == 0:
            raise ValidationError("Totals market line cannot be zero")
        reference = market_line
        sensitivity = total_sensitivity
    else:
        reference = spread_reference
        sensitivity = spread_sensitivity

    edge_pct = edge_pts / reference
    signal = math.tanh(edge_pct * sensitivity)
    saturated = abs(signal) >= SATURATION_THRESHOLD

    if saturated:
        logger.info(
            "market_edge_saturated",
            bet_type=bet_type.value,
            edge_pts=edge_pts,
            signal=signal,
        )

    if bet_type == BetType.TOTAL:
        notes = (
            f"Predicted {predicted_value:.1f} vs market {market_line:.1f} "
            f"({edge_pts:+.1f} pts)"
        )
        display_name = "Edge vs Market (Total)"
    else:
        notes = (
            f"Predicted away margin {predicted_value:+.1f} vs home spread "
            f"{market_line:+.1f} ({edge_pts:+.1f} pts)"
        )
        display_name = "Edge vs Market (Spread)"

    return Factor(
        key=market_edge_key(bet_type),
        display_name=display_name,
        normalized_value=signal,
        weight_percent=MARKET_EDGE_WEIGHT,
        raw_inputs={
            "predicted_value": predicted_value,
            "market_line": market_line,
            "edge_pts": edge_pts,
            "edge_pct": edge_pct,
            "reference_scale": reference,
            "sensitivity": sensitivity,
        },
        notes=notes,
        was_capped=saturated,
        cap_reason="signal saturated" if saturated else None,
        payload=directional_payload(bet_type, signal, max_points),
    )
