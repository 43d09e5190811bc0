"""Canonical engine types.

The engine accepts exactly these shapes. Anything arriving from providers or
legacy storage is converted by the adapters in ``app.services.providers``
before it reaches here.
"""

import math
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Literal

from app.services.engine.errors import ValidationError


class BetType(str, Enum):
    """Markets the engine can decide on."""

    TOTAL = "TOTAL"
    SPREAD = "SPREAD"


class Side(str, Enum):
    """Selections within a market."""

    OVER = "OVER"
    UNDER = "UNDER"
    HOME = "HOME"
    AWAY = "AWAY"


class Verdict(str, Enum):
    """Decision outcome."""

    PICK = "PICK"
    PASS = "PASS"


@dataclass(frozen=True)
class TotalsPayload:
    """Points a factor awards to each side of a totals market."""

    over_score: float
    under_score: float
    kind: Literal["TOTAL"] = "TOTAL"


@dataclass(frozen=True)
class SpreadPayload:
    """Points a factor awards to each side of a spread market."""

    away_score: float
    home_score: float
    kind: Literal["SPREAD"] = "SPREAD"


FactorPayload = TotalsPayload | SpreadPayload


def directional_payload(
    bet_type: BetType, signal: float, max_points: float
) -> FactorPayload:
    """Split ``|signal| * max_points`` onto the side the signal favours.

    Positive signals favour OVER (totals) or AWAY (spread).
    """
    favoured = max(signal, 0.0) * max_points
    against = max(-signal, 0.0) * max_points
    if bet_type == BetType.TOTAL:
        return TotalsPayload(over_score=favoured, under_score=against)
    return SpreadPayload(away_score=favoured, home_score=against)


@dataclass(frozen=True)
class Factor:
    """A single normalized analytical signal."""

    key: str
    display_name: str
    normalized_value: float
    weight_percent: float
    raw_inputs: dict[str, Any] = field(default_factory=dict)
    notes: str = ""
    was_capped: bool = False
    cap_reason: str | None = None
    payload: FactorPayload | None = None

    def __post_init__(self):
        if not self.key:
            raise ValidationError("Factor key must be non-empty")
        value = float(self.normalized_value)
        if not math.isfinite(value):
            raise ValidationError(f"Factor {self.key} has non-finite value {value}")
        weight = float(self.weight_percent)
        if not math.isfinite(weight) or not 0.0 <= weight <= 100.0:
            raise ValidationError(
                f"Factor {self.key} weight {weight} outside [0, 100]"
            )
        if value > 1.0 or value < -1.0:
            object.__setattr__(self, "was_capped", True)
            if self.cap_reason is None:
                object.__setattr__(
                    self, "cap_reason", "normalized value clamped to [-1, 1]"
                )
            value = max(-1.0, min(1.0, value))
        object.__setattr__(self, "normalized_value", value)
        object.__setattr__(self, "weight_percent", weight)

    @property
    def contribution(self) -> float:
        """Weight-scaled directional contribution to the raw edge."""
        return self.weight_percent * self.normalized_value

    def with_weight(self, weight_percent: float) -> "Factor":
        """Return a copy carrying a different weight."""
        return Factor(
            key=self.key,
            display_name=self.display_name,
            normalized_value=self.normalized_value,
            weight_percent=weight_percent,
            raw_inputs=self.raw_inputs,
            notes=self.notes,
            was_capped=self.was_capped,
            cap_reason=self.cap_reason,
            payload=self.payload,
        )


@dataclass(frozen=True)
class FactorContribution:
    """Audit record of one factor's share of an aggregation."""

    key: str
    display_name: str
    weight_percent: float
    normalized_value: float
    contribution: float
    was_capped: bool = False


@dataclass(frozen=True)
class ConfidenceScale:
    """Target range for confidence scores."""

    base_min: float = 0.0
    base_max: float = 5.0

    def __post_init__(self):
        if not self.base_max > self.base_min:
            raise ValidationError(
                f"Confidence scale max {self.base_max} must exceed min {self.base_min}"
            )

    def scale(self, pct: float) -> float:
        """Map a probability-like value in [0, 1] onto the scale."""
        return self.base_min + (self.base_max - self.base_min) * pct


@dataclass(frozen=True)
class ConfidenceResult:
    """Output of one aggregation call."""

    edge_raw: float
    edge_pct: float
    conf_score: float
    side_conf_score: float
    direction: int
    contributions: tuple[FactorContribution, ...]
    scaling_constant: float

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for storage."""
        return {
            "edge_raw": self.edge_raw,
            "edge_pct": self.edge_pct,
            "conf_score": self.conf_score,
            "side_conf_score": self.side_conf_score,
            "direction": self.direction,
            "scaling_constant": self.scaling_constant,
            "contributions": [
                {
                    "key": c.key,
                    "weight_percent": c.weight_percent,
                    "normalized_value": c.normalized_value,
                    "contribution": c.contribution,
                }
                for c in self.contributions
            ],
        }


@dataclass(frozen=True)
class BookLines:
    """Lines reported by a single sportsbook. Missing markets are None."""

    book: str
    moneyline_home: float | None = None
    moneyline_away: float | None = None
    spread_home: float | None = None
    total: float | None = None


@dataclass(frozen=True)
class OddsSnapshot:
    """Market lines averaged across books, frozen for the rest of a run.

    ``spread_line`` is from the home team's perspective (negative means the
    home team is favoured).
    """

    game_id: str
    captured_at: datetime
    books_considered: int
    moneyline_home: float | None = None
    moneyline_away: float | None = None
    spread_line: float | None = None
    total_line: float | None = None
    books_by_market: dict[str, int] = field(default_factory=dict)

    def line_for(self, bet_type: BetType) -> float | None:
        """Return the averaged line for a bet type."""
        if bet_type == BetType.TOTAL:
            return self.total_line
        return self.spread_line
