"""Unit tests for scheduled pick generation."""

import hashlib
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import pytest
from sqlalchemy import func, select

from app.config.settings import Settings
from app.models.domain import CapperProfile, JobRun, Pick, Run
from app.services.engine.errors import ExternalProviderError
from app.services.engine.types import BetType
from app.services.pipeline.repository import ProfileWeightSource
from app.services.pipeline.stages import RunRequest
from app.services.providers.odds import GameListing
from app.tasks import auto_picks
from app.tasks.auto_picks import auto_pick_key, eligible_games

NOW = datetime(2026, 10, 18, 16, 0, tzinfo=timezone.utc)


def _game(game_id: str, hours_from_now: float) -> GameListing:
    return GameListing(
        game_id=game_id,
        sport="NBA",
        home_team="Boston Celtics",
        away_team="Denver Nuggets",
        commence_time=NOW + timedelta(hours=hours_from_now),
    )


class TestAutoPickKey:
    """Scheduled runs are keyed per capper, game, bet type and date."""

    def test_key_format(self):
        key = auto_pick_key("shiva", "evt-1001", BetType.TOTAL, NOW)

        expected = hashlib.sha256(b"shiva|evt-1001|TOTAL|2026-10-18").hexdigest()
        assert key == expected

    def test_same_day_same_key(self):
        morning = auto_pick_key("shiva", "evt-1001", BetType.TOTAL, NOW)
        evening = auto_pick_key(
            "shiva", "evt-1001", BetType.TOTAL, NOW + timedelta(hours=6)
        )
        assert morning == evening

    def test_bet_type_and_capper_change_key(self):
        total = auto_pick_key("shiva", "evt-1001", BetType.TOTAL, NOW)

        assert auto_pick_key("shiva", "evt-1001", BetType.SPREAD, NOW) != total
        assert auto_pick_key("ifrit", "evt-1001", BetType.TOTAL, NOW) != total


class TestEligibleGames:
    """Only games that have not started and fall inside the window."""

    def test_window_filter(self):
        games = [
            _game("started", -0.5),
            _game("tipoff-now", 0.0),
            _game("soon", 2.0),
            _game("edge", 12.0),
            _game("tomorrow", 30.0),
        ]

        selected = eligible_games(games, NOW, window_hours=12)

        assert [g.game_id for g in selected] == ["soon", "edge"]

    def test_empty(self):
        assert eligible_games([], NOW, window_hours=12) == []


class FakeOddsListing:
    """Odds client that only lists games."""

    def __init__(self, games: list[GameListing] | None = None, error: Exception | None = None):
        self.games = games or []
        self.error = error
        self.calls = 0

    async def list_games(self, sport: str) -> list[GameListing]:
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.games


def _upcoming(game_id: str, hours_from_now: float) -> GameListing:
    return GameListing(
        game_id=game_id,
        sport="NBA",
        home_team="Boston Celtics",
        away_team="Denver Nuggets",
        commence_time=datetime.now(timezone.utc) + timedelta(hours=hours_from_now),
    )


@pytest.fixture
def auto_pick_env(monkeypatch, db_session, make_orchestrator):
    """Point the scheduled job at the test session and fake providers."""

    def _install(odds: FakeOddsListing) -> None:
        @asynccontextmanager
        async def task_session():
            yield db_session

        @asynccontextmanager
        async def clients(settings=None, cache=None):
            yield SimpleNamespace(odds=odds)

        monkeypatch.setattr(auto_picks, "get_task_session", task_session)
        monkeypatch.setattr(auto_picks, "provider_clients", clients)
        monkeypatch.setattr(
            auto_picks,
            "build_orchestrator",
            lambda session, clients, settings: make_orchestrator(
                weights=ProfileWeightSource(session)
            ),
        )
        monkeypatch.setattr(
            auto_picks,
            "get_settings",
            lambda: Settings(auto_pick_enabled=True, auto_pick_window_hours=12),
        )

    return _install


async def _add_auto_profile(session) -> None:
    session.add(
        CapperProfile(
            capper="shiva",
            sport="NBA",
            bet_type="TOTAL",
            auto_run=True,
            factors=[
                {"key": "paceIndex", "weight": 30},
                {"key": "offForm", "weight": 20},
                {"key": "defErosion", "weight": 50},
            ],
        )
    )
    await session.commit()


async def _picks_for(session, game_id: str) -> int:
    result = await session.execute(
        select(func.count()).select_from(Pick).where(Pick.game_id == game_id)
    )
    return result.scalar_one()


class TestGenerateAutoPicks:
    """The scheduled job end to end over fake providers."""

    async def test_skips_existing_picks_and_games_outside_window(
        self, auto_pick_env, db_session, make_orchestrator
    ):
        await _add_auto_profile(db_session)
        manual = await make_orchestrator(weights=ProfileWeightSource(db_session)).execute_pipeline(
            RunRequest(
                capper="shiva",
                sport="NBA",
                bet_type=BetType.TOTAL,
                game_id="evt-1002",
                home_team="Boston Celtics",
                away_team="Denver Nuggets",
            ),
            "manual-evt-1002",
        )
        assert manual.pick is not None
        auto_pick_env(
            FakeOddsListing([
                _upcoming("evt-1001", 2),
                _upcoming("evt-1002", 3),
                _upcoming("evt-1003", 30),
            ])
        )

        stats = await auto_picks._generate_auto_picks_async(None)

        assert stats["profiles"] == 1
        assert stats["games_considered"] == 2
        assert stats["skipped_existing_pick"] == 1
        assert stats["skipped_window"] == 1
        assert stats["runs"] == 1
        assert stats["picks"] == 1
        assert await _picks_for(db_session, "evt-1001") == 1
        assert await _picks_for(db_session, "evt-1002") == 1
        assert await _picks_for(db_session, "evt-1003") == 0

        run = (
            await db_session.execute(select(Run).where(Run.game_id == "evt-1001"))
        ).scalar_one()
        assert run.trigger == "scheduled"

    async def test_repeated_beat_creates_no_second_pick(self, auto_pick_env, db_session):
        await _add_auto_profile(db_session)
        auto_pick_env(FakeOddsListing([_upcoming("evt-1001", 2)]))

        first = await auto_picks._generate_auto_picks_async(None)
        second = await auto_picks._generate_auto_picks_async(None)

        assert first["picks"] == 1
        assert second["runs"] == 0
        assert second["skipped_existing_pick"] == 1
        assert await _picks_for(db_session, "evt-1001") == 1

        jobs = (
            await db_session.execute(select(JobRun).order_by(JobRun.id))
        ).scalars().all()
        assert [j.status for j in jobs] == ["success", "success"]
        assert jobs[0].job_name == "generate_auto_picks"
        assert jobs[0].records_processed == 1
        assert jobs[0].job_metadata == first
        assert jobs[1].job_metadata == second
        assert jobs[0].completed_at is not None

    async def test_listing_failure_is_not_fatal(self, auto_pick_env, db_session):
        await _add_auto_profile(db_session)
        odds = FakeOddsListing(error=ExternalProviderError("odds down"))
        auto_pick_env(odds)

        stats = await auto_picks._generate_auto_picks_async(None)

        assert odds.calls == 1
        assert stats["runs"] == 0
        job = (await db_session.execute(select(JobRun))).scalar_one()
        assert job.status == "success"

    async def test_disabled_job_does_nothing(self, auto_pick_env, monkeypatch, db_session):
        auto_pick_env(FakeOddsListing([_upcoming("evt-1001", 2)]))
        monkeypatch.setattr(
            auto_picks, "get_settings", lambda: Settings(auto_pick_enabled=False)
        )

        stats = await auto_picks._generate_auto_picks_async(None)

        assert stats["runs"] == 0
        assert (await db_session.execute(select(JobRun))).first() is None
