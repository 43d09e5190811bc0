"""Confidence aggregation.

Combines factors into a raw directional edge and a calibrated confidence:

    edge_raw   = sum(weight_percent * normalized_value)
    edge_pct   = sigmoid(edge_raw * scaling_constant)
    conf_score = base_min + (base_max - base_min) * edge_pct

``side_conf_score`` applies the same scale to ``|2 * edge_pct - 1|``, the
conviction in whichever side the edge points to. Aggregation is pure: no
clock, no randomness, no rounding.
"""

import math
from collections.abc import Sequence

from app.services.engine.errors import InsufficientSignal, ValidationError
from app.services.engine.types import (
    ConfidenceResult,
    ConfidenceScale,
    Factor,
    FactorContribution,
)

DEFAULT_SCALING_CONSTANT = 2.5
DEFAULT_SCALE = ConfidenceScale(base_min=0.0, base_max=5.0)


def sigmoid(x: float) -> float:
    """Logistic function, stable for large |x|.

    Satisfies ``sigmoid(-x) == 1 - sigmoid(x)`` up to float precision.
    """
    if x >= 0:
        return 1.0 / (1.0 + math.exp(-x))
    z = math.exp(x)
    return z / (1.0 + z)


def aggregate(
    factors: Sequence[Factor],
    scaling_constant: float = DEFAULT_SCALING_CONSTANT,
    scale: ConfidenceScale = DEFAULT_SCALE,
) -> ConfidenceResult:
    """Aggregate factors into a ConfidenceResult.

    Args:
        factors: Factors to combine, in audit order
        scaling_constant: Sigmoid steepness; higher saturates faster
        scale: Target confidence range

    Raises:
        InsufficientSignal: If no factors are supplied
        ValidationError: If factor keys collide or the constant is not positive
    """
    if not factors:
        raise InsufficientSignal("Cannot aggregate an empty factor set")
    if not scaling_constant > 0:
        raise ValidationError(f"Scaling constant must be positive, got {scaling_constant}")

    seen: set[str] = set()
    contributions = []
    edge_raw = 0.0
    for factor in factors:
        if factor.key in seen:
            raise ValidationError(f"Duplicate factor key {factor.key}")
        seen.add(factor.key)

        # Factor construction already clamps; clamp again for subclasses.
        value = max(-1.0, min(1.0, factor.normalized_value))
        contribution = factor.weight_percent * value
        edge_raw += contribution
        contributions.append(
            FactorContribution(
                key=factor.key,
                display_name=factor.display_name,
                weight_percent=factor.weight_percent,
                normalized_value=value,
                contribution=contribution,
                was_capped=factor.was_capped,
            )
        )

    edge_pct = sigmoid(edge_raw * scaling_constant)
    conviction = abs(2.0 * edge_pct - 1.0)

    if edge_raw > 0:
        direction = 1
    elif edge_raw < 0:
        direction = -1
    else:
        direction = 0

    return ConfidenceResult(
        edge_raw=edge_raw,
        edge_pct=edge_pct,
        conf_score=scale.scale(edge_pct),
        side_conf_score=scale.scale(conviction),
        direction=direction,
        contributions=tuple(contributions),
        scaling_constant=scaling_constant,
    )
