"""Pick decision engine.

Maps a confidence score to stake units and a PICK/PASS verdict, and picks
between a side and a total when both edges are present. Unit thresholds and
edge caps are profile configuration, never constants.
"""

import math
from dataclasses import dataclass, field
from typing import Any

from app.services.engine.errors import PreconditionFailed, ValidationError
from app.services.engine.types import BetType, Side, Verdict


@dataclass(frozen=True)
class UnitThresholds:
    """Step function from confidence to units.

    Each threshold the score reaches adds one unit, up to ``max_units``.
    ``strict`` thresholds must be exceeded (``>``); otherwise reaching them is
    enough (``>=``).
    """

    thresholds: tuple[float, ...]
    max_units: int
    strict: bool = False

    def __post_init__(self):
        if not self.thresholds:
            raise ValidationError("Unit thresholds cannot be empty")
        if any(b <= a for a, b in zip(self.thresholds, self.thresholds[1:])):
            raise ValidationError(
                f"Unit thresholds must be strictly increasing: {self.thresholds}"
            )
        if self.max_units < 1:
            raise ValidationError(f"max_units must be >= 1, got {self.max_units}")

    @property
    def pass_threshold(self) -> float:
        return self.thresholds[0]

    def units_for(self, conf_score: float) -> int:
        """Units for a confidence score. Zero means PASS."""
        if self.strict:
            crossed = sum(1 for t in self.thresholds if conf_score > t)
        else:
            crossed = sum(1 for t in self.thresholds if conf_score >= t)
        return min(crossed, self.max_units)


@dataclass(frozen=True)
class EdgeCaps:
    """Absolute caps for raw point edges, per market."""

    side: float = 6.0
    total: float = 12.0

    def __post_init__(self):
        if self.side <= 0 or self.total <= 0:
            raise ValidationError(f"Edge caps must be positive: {self}")


@dataclass(frozen=True)
class CappedEdge:
    """A raw edge after capping."""

    value: float
    raw: float
    cap: float
    was_capped: bool = False
    reason: str | None = None

    @property
    def normalized(self) -> float:
        """Magnitude relative to the cap, in [0, 1]."""
        return abs(self.value) / self.cap


class Capper:
    """Clamp raw edges to a symmetric cap."""

    def __init__(self, cap: float):
        if not cap > 0:
            raise ValidationError(f"Cap must be positive, got {cap}")
        self.cap = cap

    def clamp(self, value: float) -> CappedEdge:
        if not math.isfinite(value):
            raise ValidationError(f"Cannot cap non-finite edge {value}")
        if abs(value) > self.cap:
            capped = math.copysign(self.cap, value)
            return CappedEdge(
                value=capped,
                raw=value,
                cap=self.cap,
                was_capped=True,
                reason=f"edge {value:+.2f} exceeds cap {self.cap:.1f}",
            )
        return CappedEdge(value=value, raw=value, cap=self.cap)


@dataclass(frozen=True)
class Decision:
    """Result of a decide() call."""

    verdict: Verdict
    units: int
    bet_type: BetType
    conf_score: float
    selection: Side | None = None
    line: float | None = None
    edge: CappedEdge | None = None
    edge_side: CappedEdge | None = None
    edge_total: CappedEdge | None = None
    reason: str = ""
    details: dict[str, Any] = field(default_factory=dict)

    @property
    def is_pick(self) -> bool:
        return self.verdict == Verdict.PICK


class DecisionEngine:
    """Decide verdict, units and bet type from a final confidence score."""

    def __init__(self, thresholds: UnitThresholds, caps: EdgeCaps | None = None):
        self.thresholds = thresholds
        self.caps = caps or EdgeCaps()
        self._side_capper = Capper(self.caps.side)
        self._total_capper = Capper(self.caps.total)

    def decide(
        self,
        conf_score: float,
        edge_side_pts: float | None,
        edge_total_pts: float | None,
        market_spread: float | None,
        market_total: float | None,
    ) -> Decision:
        """Make a decision.

        Args:
            conf_score: Final confidence on the profile's scale
            edge_side_pts: Away-perspective spread edge in points, or None
            edge_total_pts: Predicted minus market total, or None
            market_spread: Market spread, home perspective
            market_total: Market total

        Raises:
            ValidationError: If both edges are None or inputs are non-finite
            PreconditionFailed: If the chosen market has no line
        """
        if not math.isfinite(conf_score):
            raise ValidationError(f"Confidence must be finite, got {conf_score}")

        side = (
            self._side_capper.clamp(edge_side_pts) if edge_side_pts is not None else None
        )
        total = (
            self._total_capper.clamp(edge_total_pts)
            if edge_total_pts is not None
            else None
        )
        if side is None and total is None:
            raise ValidationError("decide() needs at least one of side or total edge")

        # Normalized magnitudes compete; ties go to the total.
        if total is not None and (side is None or total.normalized >= side.normalized):
            bet_type, edge = BetType.TOTAL, total
        else:
            bet_type, edge = BetType.SPREAD, side

        units = self.thresholds.units_for(conf_score)
        common = {
            "bet_type": bet_type,
            "conf_score": conf_score,
            "edge": edge,
            "edge_side": side,
            "edge_total": total,
            "details": {
                "side_normalized": side.normalized if side else None,
                "total_normalized": total.normalized if total else None,
                "thresholds": list(self.thresholds.thresholds),
                "strict": self.thresholds.strict,
            },
        }

        if edge.value == 0:
            return Decision(verdict=Verdict.PASS, units=0, reason="no edge", **common)

        if bet_type == BetType.TOTAL:
            selection = Side.OVER if edge.value > 0 else Side.UNDER
            line = market_total
        else:
            selection = Side.AWAY if edge.value > 0 else Side.HOME
            if market_spread is None:
                line = None
            else:
                line = -market_spread if selection == Side.AWAY else market_spread

        if line is None:
            raise PreconditionFailed(f"No market line for {bet_type.value} decision")

        if units == 0:
            return Decision(
                verdict=Verdict.PASS,
                units=0,
                selection=selection,
                line=line,
                reason=(
                    f"confidence {conf_score:.2f} below pass threshold "
                    f"{self.thresholds.pass_threshold:.2f}"
                ),
                **common,
            )

        return Decision(
            verdict=Verdict.PICK,
            units=units,
            selection=selection,
            line=line,
            reason=f"{units} unit(s) at confidence {conf_score:.2f}",
            **common,
        )


def decide(
    conf_score: float,
    edge_side_pts: float | None,
    edge_total_pts: float | None,
    market_spread: float | None,
    market_total: float | None,
    *,
    thresholds: UnitThresholds,
    caps: EdgeCaps | None = None,
) -> Decision:
    """Convenience function for one-off decisions."""
    engine = DecisionEngine(thresholds, caps)
    return engine.decide(
        conf_score, edge_side_pts, edge_total_pts, market_spread, market_total
    )
