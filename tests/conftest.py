"""Pytest configuration and fixtures for Sharpline tests."""

import asyncio
from datetime import datetime, timezone
from typing import Any, AsyncGenerator

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from app.config import get_settings
from app.config.profiles import ProfileCatalog
from app.models.base import Base
from app.services.engine.errors import ExternalProviderError
from app.services.engine.types import BetType, BookLines, Factor
from app.services.factors.base import FactorComputation, FactorContext, StaticWeightSource
from app.services.pipeline.orchestrator import RunOrchestrator
from app.services.pipeline.repository import RunRepository
from app.services.pipeline.stages import RunRequest
from app.services.providers.narrative import Narrative

FIXED_NOW = datetime(2026, 10, 18, 16, 0, tzinfo=timezone.utc)


class FakeMarket:
    """Market data collaborator returning canned per-book lines."""

    def __init__(self, books: list[BookLines], delay: float = 0.0):
        self.books = books
        self.delay = delay
        self.calls = 0

    async def get_odds_snapshot(self, game_id: str, sport: str) -> list[BookLines]:
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        return self.books


class FakeFactors:
    """Factor provider returning fixed (key, value) signals."""

    def __init__(self, values: dict[str, float], baseline_avg: float = 228.0):
        self.values = values
        self.baseline_avg = baseline_avg
        self.calls = 0

    async def compute_factors(self, ctx: FactorContext) -> FactorComputation:
        self.calls += 1
        factors = [
            Factor(
                key=key,
                display_name=key,
                normalized_value=value,
                weight_percent=ctx.weights[key],
            )
            for key, value in self.values.items()
            if key in ctx.weights
        ]
        return FactorComputation(factors=factors, baseline_avg=self.baseline_avg)


class FakeNarrative:
    """Narrative collaborator; raises when given an error."""

    def __init__(self, error: Exception | None = None):
        self.error = error
        self.calls = 0

    async def generate_narrative(self, context: dict[str, Any]) -> Narrative:
        self.calls += 1
        if self.error is not None:
            raise self.error
        return Narrative(predictions=["Over"], narrative=f"Lean on {context['game']}.")


@pytest.fixture
async def db_engine():
    """Create an in-memory SQLite engine shared by every session."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create a database session for testing."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def catalog() -> ProfileCatalog:
    """Engine profiles as shipped in defaults.yaml."""
    return ProfileCatalog.from_config(get_settings().load_defaults_config())


@pytest.fixture
def total_request() -> RunRequest:
    return RunRequest(
        capper="shiva",
        sport="NBA",
        bet_type=BetType.TOTAL,
        game_id="evt-1001",
        home_team="Boston Celtics",
        away_team="Denver Nuggets",
    )


@pytest.fixture
def total_weights() -> StaticWeightSource:
    """30/20/50 totals profile for capper shiva."""
    return StaticWeightSource({
        ("shiva", "NBA", BetType.TOTAL): {
            "paceIndex": 30.0,
            "offForm": 20.0,
            "defErosion": 50.0,
        },
    })


@pytest.fixture
def sample_books() -> list[BookLines]:
    return [
        BookLines(book="draftkings", moneyline_home=-150, moneyline_away=130,
                  spread_home=-3.5, total=225.5),
        BookLines(book="fanduel", moneyline_home=-145, moneyline_away=125,
                  spread_home=-3.0, total=226.0),
        BookLines(book="betmgm", moneyline_home=-155, moneyline_away=135,
                  spread_home=-3.5, total=225.0),
    ]


@pytest.fixture
def make_orchestrator(db_session, catalog, total_weights, sample_books):
    """Build an orchestrator over the test session with fake collaborators."""

    def _make(**overrides) -> RunOrchestrator:
        options = {
            "repository": RunRepository(db_session),
            "market": FakeMarket(sample_books),
            "factors": FakeFactors({"paceIndex": 0.6, "offForm": -0.2, "defErosion": 0.5}),
            "weights": total_weights,
            "catalog": catalog,
            "narrative": None,
            "clock": lambda: FIXED_NOW,
            "stage_timeout": 1.0,
            "write_enabled": True,
        }
        options.update(overrides)
        return RunOrchestrator(**options)

    return _make
