"""Versioned engine profiles.

A profile bundles everything that makes a decision reproducible: the
confidence scale, sigmoid steepness, unit thresholds, edge caps, market-edge
sensitivities and prediction constants. Profiles live in defaults.yaml under
``engine.profiles`` and are selected by version.

Two historical unit tables exist and both are kept:
- shiva_v1: 0-5 scale, 3 tiers at >= 2/3/4, max 3 units
- shiva_v2: 0-10 scale, 5 tiers at > 5/6/7/8/9, max 5 units
"""

from dataclasses import dataclass, field
from functools import lru_cache
from typing import Any

import structlog

from app.config.settings import get_settings
from app.services.engine.decision import EdgeCaps, UnitThresholds
from app.services.engine.errors import ConfigurationError
from app.services.engine.prediction import PredictionModel
from app.services.engine.types import BetType, ConfidenceScale

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class MarketEdgeConfig:
    """Sensitivity of the market-edge factor."""

    max_points: float = 5.0
    total_sensitivity: float = 10.0
    spread_reference: float = 3.0
    spread_sensitivity: float = 1.0


@dataclass(frozen=True)
class LeagueAverages:
    """League-wide reference values for analytical factors."""

    pace: float = 100.1
    ortg: float = 114.5
    drtg: float = 114.5
    three_par: float = 0.39
    three_par_stdev: float = 0.036
    ftr: float = 0.24
    ppg: float = 114.0

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "LeagueAverages":
        known = {k: float(v) for k, v in data.items() if k in cls.__dataclass_fields__}
        return cls(**known)


def _default_prediction_models() -> dict[BetType, PredictionModel]:
    return {
        BetType.TOTAL: PredictionModel(2.0, 220.0, 180.0, 280.0),
        BetType.SPREAD: PredictionModel(1.5, 0.0, -30.0, 30.0),
    }


@dataclass(frozen=True)
class EngineProfile:
    """Complete engine configuration for one profile version."""

    version: str
    scaling_constant: float = 2.5
    scale: ConfidenceScale = field(default_factory=ConfidenceScale)
    units: UnitThresholds = field(
        default_factory=lambda: UnitThresholds((2.0, 3.0, 4.0), max_units=3)
    )
    caps: EdgeCaps = field(default_factory=EdgeCaps)
    market_edge: MarketEdgeConfig = field(default_factory=MarketEdgeConfig)
    prediction: dict[BetType, PredictionModel] = field(
        default_factory=lambda: _default_prediction_models()
    )

    def prediction_model(self, bet_type: BetType) -> PredictionModel:
        try:
            return self.prediction[bet_type]
        except KeyError:
            raise ConfigurationError(
                f"Profile {self.version} has no prediction model for {bet_type.value}"
            ) from None

    @classmethod
    def from_dict(cls, version: str, data: dict[str, Any]) -> "EngineProfile":
        """Build a profile from its defaults.yaml block."""
        try:
            scale = data.get("confidence_scale", {})
            units = data["units"]
            caps = data.get("edge_caps", {})
            prediction = {
                BetType(bet_type): PredictionModel(
                    edge_scale=float(model["edge_scale"]),
                    baseline=float(model["baseline"]),
                    floor=float(model["floor"]),
                    ceiling=float(model["ceiling"]),
                )
                for bet_type, model in data.get("prediction", {}).items()
            }
            return cls(
                version=version,
                scaling_constant=float(data.get("scaling_constant", 2.5)),
                scale=ConfidenceScale(
                    base_min=float(scale.get("min", 0.0)),
                    base_max=float(scale.get("max", 5.0)),
                ),
                units=UnitThresholds(
                    thresholds=tuple(float(t) for t in units["thresholds"]),
                    max_units=int(units["max_units"]),
                    strict=bool(units.get("strict", False)),
                ),
                caps=EdgeCaps(
                    side=float(caps.get("side", 6.0)),
                    total=float(caps.get("total", 12.0)),
                ),
                market_edge=MarketEdgeConfig(**data.get("market_edge", {})),
                prediction=prediction or _default_prediction_models(),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise ConfigurationError(f"Invalid engine profile {version}: {e}") from e

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for API responses and run audit."""
        return {
            "version": self.version,
            "scaling_constant": self.scaling_constant,
            "confidence_scale": {"min": self.scale.base_min, "max": self.scale.base_max},
            "units": {
                "thresholds": list(self.units.thresholds),
                "max_units": self.units.max_units,
                "strict": self.units.strict,
            },
            "edge_caps": {"side": self.caps.side, "total": self.caps.total},
            "market_edge": {
                "max_points": self.market_edge.max_points,
                "total_sensitivity": self.market_edge.total_sensitivity,
                "spread_reference": self.market_edge.spread_reference,
                "spread_sensitivity": self.market_edge.spread_sensitivity,
            },
            "prediction": {
                bet_type.value: {
                    "edge_scale": m.edge_scale,
                    "baseline": m.baseline,
                    "floor": m.floor,
                    "ceiling": m.ceiling,
                }
                for bet_type, m in self.prediction.items()
            },
        }


def _fallback_profiles() -> dict[str, EngineProfile]:
    """In-code profiles used if defaults.yaml is not found."""
    return {
        "shiva_v1": EngineProfile(version="shiva_v1"),
        "shiva_v2": EngineProfile(
            version="shiva_v2",
            scale=ConfidenceScale(base_min=0.0, base_max=10.0),
            units=UnitThresholds(
                (5.0, 6.0, 7.0, 8.0, 9.0), max_units=5, strict=True
            ),
        ),
    }


class ProfileCatalog:
    """All known engine profiles plus league reference values."""

    def __init__(
        self,
        profiles: dict[str, EngineProfile],
        default_version: str,
        league_averages: dict[str, LeagueAverages] | None = None,
    ):
        self.profiles = profiles
        self.default_version = default_version
        self.league_averages = league_averages or {}

    @classmethod
    def from_config(cls, config: dict[str, Any]) -> "ProfileCatalog":
        engine = config.get("engine") or {}
        raw_profiles = engine.get("profiles") or {}
        if raw_profiles:
            profiles = {
                version: EngineProfile.from_dict(version, block)
                for version, block in raw_profiles.items()
            }
        else:
            logger.warning("engine_profiles_missing_using_fallback")
            profiles = _fallback_profiles()
        leagues = {
            sport.upper(): LeagueAverages.from_dict(values)
            for sport, values in (config.get("league_averages") or {}).items()
        }
        return cls(
            profiles=profiles,
            default_version=engine.get("default_version", "shiva_v2"),
            league_averages=leagues,
        )

    def get(self, version: str | None = None) -> EngineProfile:
        """Get a profile by version, or the default."""
        version = version or self.default_version
        try:
            return self.profiles[version]
        except KeyError:
            raise ConfigurationError(f"Unknown engine profile version {version}") from None

    def league(self, sport: str) -> LeagueAverages:
        """League averages for a sport. Unknown sports fail closed."""
        try:
            return self.league_averages[sport.upper()]
        except KeyError:
            raise ConfigurationError(f"No league averages configured for {sport}") from None


@lru_cache
def get_profile_catalog() -> ProfileCatalog:
    """Load the profile catalog from defaults.yaml (cached)."""
    settings = get_settings()
    catalog = ProfileCatalog.from_config(settings.load_defaults_config())
    if not catalog.league_averages:
        catalog.league_averages = {"NBA": LeagueAverages()}
    return catalog

