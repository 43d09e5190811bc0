"""Analytical factor computation."""

from app.services.factors.base import (
    FactorComputation,
    FactorContext,
    FactorProvider,
    FactorRegistry,
    FactorSpec,
    StaticWeightSource,
    WeightConfig,
    WeightConfigSource,
)
from app.services.factors.provider import AnalyticalFactorProvider
from app.services.factors.registry import build_default_registry

__all__ = [
    "AnalyticalFactorProvider",
    "FactorComputation",
    "FactorContext",
    "FactorProvider",
    "FactorRegistry",
    "FactorSpec",
    "StaticWeightSource",
    "WeightConfig",
    "WeightConfigSource",
    "build_default_registry",
]
