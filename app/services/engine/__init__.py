"""Deterministic confidence and pick-decision engine."""

from app.services.engine.aggregator import aggregate, sigmoid
from app.services.engine.decision import (
    Capper,
    CappedEdge,
    Decision,
    DecisionEngine,
    EdgeCaps,
    UnitThresholds,
    decide,
)
from app.services.engine.errors import (
    ConfigurationError,
    EngineError,
    ErrorKind,
    ExternalProviderError,
    InsufficientSignal,
    PreconditionFailed,
    ValidationError,
)
from app.services.engine.market_edge import build_market_edge_factor
from app.services.engine.prediction import Prediction, PredictionModel, predict
from app.services.engine.types import (
    BetType,
    BookLines,
    ConfidenceResult,
    ConfidenceScale,
    Factor,
    OddsSnapshot,
    Side,
    SpreadPayload,
    TotalsPayload,
    Verdict,
)

__all__ = [
    "aggregate",
    "sigmoid",
    "build_market_edge_factor",
    "predict",
    "decide",
    "Capper",
    "CappedEdge",
    "Decision",
    "DecisionEngine",
    "EdgeCaps",
    "UnitThresholds",
    "Prediction",
    "PredictionModel",
    "BetType",
    "BookLines",
    "ConfidenceResult",
    "ConfidenceScale",
    "Factor",
    "OddsSnapshot",
    "Side",
    "SpreadPayload",
    "TotalsPayload",
    "Verdict",
    "EngineError",
    "ErrorKind",
    "PreconditionFailed",
    "ConfigurationError",
    "InsufficientSignal",
    "ExternalProviderError",
    "ValidationError",
]
