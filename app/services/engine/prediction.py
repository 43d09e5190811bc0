"""Linear prediction from the aggregated edge.

TOTAL predicts game points: ``baseline + edge_raw * edge_scale``.
SPREAD predicts the away margin: ``baseline + edge_raw * edge_scale``
(positive means the away team wins). Both are clamped to the model's
plausible range.
"""

import math
from dataclasses import dataclass

from app.services.engine.errors import ValidationError
from app.services.engine.types import BetType


@dataclass(frozen=True)
class PredictionModel:
    """Per-bet-type linear scaling anchored to a baseline."""

    edge_scale: float
    baseline: float
    floor: float
    ceiling: float

    def __post_init__(self):
        if self.floor >= self.ceiling:
            raise ValidationError(
                f"Prediction floor {self.floor} must be below ceiling {self.ceiling}"
            )


@dataclass(frozen=True)
class Prediction:
    """A model prediction for one run."""

    bet_type: BetType
    predicted_value: float
    baseline: float
    edge_raw: float
    was_clamped: bool = False


def predict(
    bet_type: BetType,
    edge_raw: float,
    model: PredictionModel,
    baseline: float | None = None,
) -> Prediction:
    """Convert an aggregated edge into a predicted total or margin.

    Args:
        bet_type: TOTAL or SPREAD
        edge_raw: Raw weighted edge from the aggregator
        model: Scaling constants for this bet type
        baseline: Sport/game baseline; defaults to the model's baseline
    """
    anchor = model.baseline if baseline is None else baseline
    if not (math.isfinite(edge_raw) and math.isfinite(anchor)):
        raise ValidationError(f"Prediction needs finite inputs, got {edge_raw}, {anchor}")

    value = anchor + edge_raw * model.edge_scale
    clamped = max(model.floor, min(model.ceiling, value))
    return Prediction(
        bet_type=bet_type,
        predicted_value=clamped,
        baseline=anchor,
        edge_raw=edge_raw,
        was_clamped=clamped != value,
    )
