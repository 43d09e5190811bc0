"""Configuration API endpoints."""

from fastapi import APIRouter
from pydantic import BaseModel

from app.config import get_settings
from app.config.profiles import get_profile_catalog
from app.services.engine.types import BetType
from app.services.factors.registry import build_default_registry

router = APIRouter(prefix="/api/config", tags=["config"])


class FactorCatalogEntry(BaseModel):
    """Factor catalogue entry."""

    key: str
    name: str
    description: str
    bet_type: BetType
    default_weight: float
    max_points: float


@router.get("/engine")
async def get_engine_config():
    """Get every engine profile and the default version."""
    catalog = get_profile_catalog()
    return {
        "default_version": get_settings().engine_profile_version,
        "profiles": {v: p.to_dict() for v, p in sorted(catalog.profiles.items())},
    }


@router.get("/engine/{version}")
async def get_engine_profile(version: str):
    """Get one engine profile. Unknown versions are a ConfigurationError."""
    return get_profile_catalog().get(version).to_dict()


@router.get("/factors", response_model=list[FactorCatalogEntry])
async def list_factors(bet_type: BetType | None = None):
    """List the analytical factor catalogue."""
    registry = build_default_registry()
    specs = registry.for_bet_type(bet_type) if bet_type else list(registry)
    return [
        FactorCatalogEntry(
            key=s.key,
            name=s.name,
            description=s.description,
            bet_type=s.bet_type,
            default_weight=s.default_weight,
            max_points=s.max_points,
        )
        for s in specs
    ]
