"""Factor computation contracts.

A capper's WeightConfig decides which factors are enabled and how much each
one counts. Factor providers compute the enabled factors for a game and hand
back canonical Factor objects.
"""

import math
from collections.abc import Callable, Iterator, Mapping
from dataclasses import dataclass, field
from typing import Any, Protocol

from app.config.profiles import LeagueAverages
from app.services.engine.errors import ConfigurationError, ValidationError
from app.services.engine.types import BetType, Factor


class WeightConfig(Mapping[str, float]):
    """Read-only mapping from factor key to weight percentage.

    Fails closed: an empty config is a ConfigurationError, and a weight
    outside [0, 100] is a ValidationError.
    """

    def __init__(self, weights: Mapping[str, float], source: str = "unknown"):
        if not weights:
            raise ConfigurationError(f"No enabled factor weights found ({source})")
        cleaned: dict[str, float] = {}
        for key, weight in weights.items():
            try:
                value = float(weight)
            except (TypeError, ValueError):
                raise ValidationError(f"Weight for {key} is not a number: {weight!r}") from None
            if not math.isfinite(value) or not 0.0 <= value <= 100.0:
                raise ValidationError(f"Weight for {key} is {value}, expected 0-100")
            cleaned[key] = value
        self._weights = cleaned
        self.source = source

    def __getitem__(self, key: str) -> float:
        return self._weights[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._weights)

    def __len__(self) -> int:
        return len(self._weights)

    @property
    def total_weight(self) -> float:
        return sum(self._weights.values())

    def weight_for(self, key: str) -> float:
        try:
            return self._weights[key]
        except KeyError:
            raise ConfigurationError(
                f"Factor {key} computed without a configured weight ({self.source})"
            ) from None

    def to_dict(self) -> dict[str, float]:
        return dict(self._weights)


@dataclass(frozen=True)
class FactorContext:
    """Everything a provider needs to compute factors for one run."""

    game_id: str
    home_team: str
    away_team: str
    sport: str
    bet_type: BetType
    league_averages: LeagueAverages
    weights: WeightConfig


@dataclass(frozen=True)
class FactorComputation:
    """Provider result: the factors plus the sport baseline they imply."""

    factors: list[Factor]
    baseline_avg: float
    details: dict[str, Any] = field(default_factory=dict)


class FactorProvider(Protocol):
    async def compute_factors(self, ctx: FactorContext) -> FactorComputation: ...


class WeightConfigSource(Protocol):
    async def load_weight_config(
        self, capper: str, sport: str, bet_type: BetType
    ) -> WeightConfig: ...


@dataclass(frozen=True)
class FactorSpec:
    """Catalogue entry for an analytical factor."""

    key: str
    name: str
    description: str
    bet_type: BetType
    default_weight: float
    max_points: float
    compute: Callable[..., Factor]


class FactorRegistry:
    """Catalogue of known factors, keyed by factor key."""

    def __init__(self):
        self._specs: dict[str, FactorSpec] = {}

    def register(self, spec: FactorSpec) -> FactorSpec:
        if spec.key in self._specs:
            raise ConfigurationError(f"Factor {spec.key} registered twice")
        self._specs[spec.key] = spec
        return spec

    def get(self, key: str) -> FactorSpec:
        try:
            return self._specs[key]
        except KeyError:
            raise ConfigurationError(f"Unknown factor {key}") from None

    def for_bet_type(self, bet_type: BetType) -> list[FactorSpec]:
        return [s for s in self._specs.values() if s.bet_type == bet_type]

    def __contains__(self, key: object) -> bool:
        return key in self._specs

    def __iter__(self) -> Iterator[FactorSpec]:
        return iter(self._specs.values())


class StaticWeightSource:
    """Weight source backed by an in-memory mapping.

    Keys are ``(capper, sport, bet_type)``.
    """

    def __init__(self, weights: Mapping[tuple[str, str, BetType], Mapping[str, float]]):
        self._weights = dict(weights)

    async def load_weight_config(
        self, capper: str, sport: str, bet_type: BetType
    ) -> WeightConfig:
        source = f"{capper}/{sport}/{bet_type.value}"
        return WeightConfig(self._weights.get((capper, sport, bet_type), {}), source)
