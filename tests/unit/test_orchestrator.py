"""Unit tests for the run orchestrator.

CRITICAL TESTS:
- A repeated call with the same idempotency key replays, never re-executes
- Missing market lines fail the run with PreconditionFailed and no pick
- Dry runs compute everything and write nothing
"""

import asyncio

import httpx
import pytest
from sqlalchemy import func, select

from app.config.settings import Settings
from app.models.domain import IdempotencyRecord, Pick, Run, RunFactor, RunStage
from app.services.engine.errors import ExternalProviderError, ValidationError
from app.services.engine.types import BetType, BookLines
from app.services.factors.base import StaticWeightSource
from app.services.pipeline.factory import stage_timeout
from app.services.pipeline.orchestrator import run_id_for
from app.services.pipeline.stages import RunRequest
from app.services.pipeline.states import PipelineState, RunStatus, StageName
from app.services.providers.odds import OddsClient
from app.services.providers.retry import RetryPolicy
from conftest import FakeFactors, FakeMarket, FakeNarrative


async def _count(session, model) -> int:
    result = await session.execute(select(func.count()).select_from(model))
    return result.scalar_one()


class TestPipelineHappyPath:
    """Full pipeline runs against fake collaborators."""

    async def test_total_over_pick_at_max_units(self, make_orchestrator, total_request, db_session):
        orchestrator = make_orchestrator()

        result = await orchestrator.execute_pipeline(total_request, "key-over")

        assert result.success is True
        assert result.state == PipelineState.FINALIZED
        assert result.status == RunStatus.COMPLETE
        assert list(result.stages) == [s.value for s in StageName]
        assert result.pick["selection"] == "OVER"
        assert result.pick["units"] == 5
        assert result.pick["line"] == pytest.approx(225.5)
        assert result.pick["locked_odds"]["total_line"] == pytest.approx(225.5)

        predict = result.stages["predict"]["output"]
        assert predict["confidence"]["edge_raw"] == pytest.approx(39.0)
        assert predict["prediction"]["predicted_value"] == pytest.approx(280.0)
        assert predict["prediction"]["was_clamped"] is True

        assert await _count(db_session, Pick) == 1
        assert await _count(db_session, RunStage) == len(StageName)

    async def test_total_under_sizes_like_over(self, make_orchestrator, total_request):
        """Equal-strength UNDER and OVER signals get the same units."""
        orchestrator = make_orchestrator(
            factors=FakeFactors({"paceIndex": -0.6, "offForm": 0.2, "defErosion": -0.5})
        )

        result = await orchestrator.execute_pipeline(total_request, "key-under")

        assert result.pick["selection"] == "UNDER"
        assert result.pick["units"] == 5
        prediction = result.stages["predict"]["output"]["prediction"]
        assert prediction["predicted_value"] == pytest.approx(180.0)

    async def test_spread_pick_reports_line_from_selected_side(self, make_orchestrator):
        request = RunRequest(
            capper="shiva",
            bet_type=BetType.SPREAD,
            game_id="evt-2002",
            home_team="Boston Celtics",
            away_team="Denver Nuggets",
        )
        orchestrator = make_orchestrator(
            weights=StaticWeightSource({
                ("shiva", "NBA", BetType.SPREAD): {"netRatingDiff": 60, "homeAwaySplits": 40},
            }),
            factors=FakeFactors({"netRatingDiff": 0.05, "homeAwaySplits": -0.05}),
        )

        result = await orchestrator.execute_pipeline(request, "key-spread")

        assert result.success is True
        market = result.stages["market"]["output"]
        assert market["market_line"] == pytest.approx(-3.3)
        assert market["edge_side_pts"] == pytest.approx(1.5 + 3.3)
        assert market["edge_total_pts"] is None
        assert result.pick["selection"] == "AWAY"
        assert result.pick["line"] == pytest.approx(3.3)

    async def test_no_edge_passes_without_pick(self, make_orchestrator, total_request, db_session):
        orchestrator = make_orchestrator(
            factors=FakeFactors(
                {"paceIndex": 0.0, "offForm": 0.0, "defErosion": 0.0}, baseline_avg=225.5
            )
        )

        result = await orchestrator.execute_pipeline(total_request, "key-flat")

        assert result.success is True
        assert result.pick is None
        decision = result.stages["finalize"]["output"]["decision"]
        assert decision["verdict"] == "PASS"
        assert decision["units"] == 0
        assert decision["reason"] == "no edge"
        assert await _count(db_session, Pick) == 0

        run = await db_session.get(Run, result.run_id)
        assert run.status == "COMPLETE"
        assert run.verdict == "PASS"

    async def test_factor_and_market_rows_are_audited(self, make_orchestrator, total_request, db_session):
        orchestrator = make_orchestrator()
        result = await orchestrator.execute_pipeline(total_request, "key-audit")

        rows = await db_session.execute(
            select(RunFactor).where(RunFactor.run_id == result.run_id).order_by(RunFactor.id)
        )
        factors = rows.scalars().all()
        assert [(f.stage, f.key) for f in factors] == [
            ("factors", "paceIndex"),
            ("factors", "offForm"),
            ("factors", "defErosion"),
            ("market", "edgeVsMarket"),
        ]
        assert factors[0].contribution == pytest.approx(18.0)


class TestIdempotency:
    """Replays and dry runs."""

    async def test_replay_returns_stored_result_and_one_pick(
        self, make_orchestrator, total_request, db_session, sample_books
    ):
        market = FakeMarket(sample_books)
        orchestrator = make_orchestrator(market=market)

        first = await orchestrator.execute_pipeline(total_request, "key-replay")
        second = await orchestrator.execute_pipeline(total_request, "key-replay")

        assert first.replayed is False
        assert second.replayed is True
        assert second.run_id == first.run_id
        assert second.stages == first.stages
        assert second.pick == first.pick
        assert market.calls == 1
        assert await _count(db_session, Pick) == 1

    async def test_new_key_derives_new_run(self, make_orchestrator, total_request, db_session):
        orchestrator = make_orchestrator()

        first = await orchestrator.execute_pipeline(total_request, "key-a")
        second = await orchestrator.execute_pipeline(total_request, "key-b")

        assert first.run_id == run_id_for("key-a")
        assert second.run_id == run_id_for("key-b")
        assert first.run_id != second.run_id
        assert await _count(db_session, Run) == 2

    async def test_reused_key_with_different_request_rejected(
        self, make_orchestrator, total_request
    ):
        orchestrator = make_orchestrator()
        await orchestrator.execute_pipeline(total_request, "key-reuse")

        other = total_request.model_copy(update={"game_id": "evt-9999"})
        with pytest.raises(ValidationError):
            await orchestrator.execute_pipeline(other, "key-reuse")

    async def test_dry_run_writes_nothing(self, make_orchestrator, total_request, db_session):
        orchestrator = make_orchestrator()

        result = await orchestrator.execute_pipeline(total_request, "key-dry", dry_run=True)

        assert result.dry_run is True
        assert result.success is True
        assert result.pick["units"] == 5
        assert await _count(db_session, Run) == 0
        assert await _count(db_session, RunStage) == 0
        assert await _count(db_session, Pick) == 0
        assert await _count(db_session, IdempotencyRecord) == 0

    async def test_write_disabled_forces_dry_run(self, make_orchestrator, total_request, db_session):
        orchestrator = make_orchestrator(write_enabled=False)

        result = await orchestrator.execute_pipeline(total_request, "key-readonly")

        assert result.dry_run is True
        assert await _count(db_session, Run) == 0

    async def test_single_stage_replay(self, make_orchestrator, total_request):
        orchestrator = make_orchestrator()
        created = await orchestrator.execute_pipeline(
            total_request, "key-steps", through=StageName.SELECT
        )
        assert created.state == PipelineState.CREATED

        first = await orchestrator.execute_stage(created.run_id, StageName.SNAPSHOT, "snap-1")
        again = await orchestrator.execute_stage(created.run_id, StageName.SNAPSHOT, "snap-1")

        assert first.status_code == 200
        assert first.replayed is False
        assert again.replayed is True
        assert again.status_code == first.status_code
        assert again.body == first.body

    async def test_out_of_order_stage_does_not_fail_run(
        self, make_orchestrator, total_request, db_session
    ):
        orchestrator = make_orchestrator()
        created = await orchestrator.execute_pipeline(
            total_request, "key-order", through=StageName.SELECT
        )

        result = await orchestrator.execute_stage(created.run_id, StageName.FINALIZE, "fin-1")

        assert result.status_code == 412
        assert result.body["kind"] == "PreconditionFailed"
        run = await db_session.get(Run, created.run_id)
        assert run.state == "CREATED"


class TestFailures:
    """Stage errors halt and fail the run."""

    async def test_no_book_lines_fails_run(self, make_orchestrator, total_request, db_session):
        market = FakeMarket([BookLines(book="draftkings", spread_home=-3.5)])
        orchestrator = make_orchestrator(market=market)

        result = await orchestrator.execute_pipeline(total_request, "key-nolines")

        assert result.success is False
        assert result.state == PipelineState.FAILED
        assert result.error["kind"] == "PreconditionFailed"
        assert result.error["stage"] == "snapshot"
        assert await _count(db_session, Pick) == 0

        run = await db_session.get(Run, result.run_id)
        assert run.status == "FAILED"
        assert run.error_kind == "PreconditionFailed"
        assert run.error_stage == "snapshot"

    async def test_failed_run_replays_failure(self, make_orchestrator, total_request):
        market = FakeMarket([])
        orchestrator = make_orchestrator(market=market)

        first = await orchestrator.execute_pipeline(total_request, "key-fail")
        second = await orchestrator.execute_pipeline(total_request, "key-fail")

        assert first.success is False
        assert second.success is False
        assert second.replayed is True
        assert second.error == first.error
        assert list(second.stages) == ["select", "snapshot"]
        assert second.stages == first.stages
        assert second.model_dump(mode="json") == first.model_dump(mode="json")
        assert market.calls == 1

    async def test_stage_timeout_is_external_error(
        self, make_orchestrator, total_request, sample_books
    ):
        orchestrator = make_orchestrator(
            market=FakeMarket(sample_books, delay=0.2), stage_timeout=0.05
        )

        result = await orchestrator.execute_pipeline(total_request, "key-slow")

        assert result.success is False
        assert result.error["kind"] == "ExternalProviderError"
        assert result.error["stage"] == "snapshot"

    async def test_missing_weights_is_configuration_error(self, make_orchestrator, total_request):
        orchestrator = make_orchestrator(weights=StaticWeightSource({}))

        result = await orchestrator.execute_pipeline(total_request, "key-noweights")

        assert result.error["kind"] == "ConfigurationError"
        assert result.error["stage"] == "factors"

    async def test_unknown_profile_version_fails_select(self, make_orchestrator, total_request, db_session):
        request = total_request.model_copy(update={"profile_version": "shiva_v9"})
        orchestrator = make_orchestrator()

        result = await orchestrator.execute_pipeline(request, "key-badprofile")

        assert result.error["kind"] == "ConfigurationError"
        assert result.error["stage"] == "select"
        assert await _count(db_session, Run) == 0


class TestEnrichment:
    """Narrative enrichment is optional and never fatal."""

    async def test_narrative_recorded(self, make_orchestrator, total_request):
        orchestrator = make_orchestrator(narrative=FakeNarrative())

        result = await orchestrator.execute_pipeline(total_request, "key-story")

        enrich = result.stages["enrich"]["output"]
        assert enrich["skipped"] is False
        assert enrich["narrative"] == "Lean on Denver Nuggets @ Boston Celtics."

    async def test_narrative_failure_is_not_fatal(self, make_orchestrator, total_request):
        narrative = FakeNarrative(error=ExternalProviderError("model unavailable"))
        orchestrator = make_orchestrator(narrative=narrative)

        result = await orchestrator.execute_pipeline(total_request, "key-nostory")

        assert result.success is True
        assert result.pick is not None
        enrich = result.stages["enrich"]["output"]
        assert enrich["skipped"] is True
        assert "model unavailable" in enrich["reason"]

    async def test_skip_enrichment_by_request(self, make_orchestrator, total_request):
        narrative = FakeNarrative()
        orchestrator = make_orchestrator(narrative=narrative)
        request = total_request.model_copy(update={"skip_enrichment": True})

        result = await orchestrator.execute_pipeline(request, "key-skip")

        assert result.stages["enrich"]["output"]["reason"] == "skipped by request"
        assert narrative.calls == 0


ODDS_EVENT = {
    "id": "evt-1001",
    "home_team": "Boston Celtics",
    "away_team": "Denver Nuggets",
    "bookmakers": [
        {
            "key": "draftkings",
            "markets": [
                {"key": "totals", "outcomes": [
                    {"name": "Over", "point": 225.5},
                    {"name": "Under", "point": 225.5},
                ]},
            ],
        },
    ],
}


class TestProviderRetriesWithinStage:
    """A stage waits long enough for the provider's own retries."""

    async def test_stalled_first_request_is_retried(self, make_orchestrator, total_request):
        request_timeout = 0.2
        policy = RetryPolicy(max_attempts=3, base_delay=0.0)
        calls = []

        async def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            if len(calls) == 1:
                await asyncio.sleep(request_timeout)
                raise httpx.ReadTimeout("stalled", request=request)
            return httpx.Response(200, json=ODDS_EVENT)

        odds = OddsClient(
            "https://odds.test/v4",
            "secret",
            {"NBA": "basketball_nba"},
            retry_policy=policy,
            timeout=request_timeout,
            http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
        )
        orchestrator = make_orchestrator(
            market=odds, stage_timeout=policy.total_budget(request_timeout)
        )

        result = await orchestrator.execute_pipeline(
            total_request, "key-stall", through=StageName.SNAPSHOT
        )

        assert result.success is True
        assert len(calls) == 2
        assert result.stages["snapshot"]["output"]["snapshot"]["total_line"] == 225.5

    def test_stage_timeout_covers_every_attempt(self):
        settings = Settings(
            provider_timeout_seconds=6.0,
            retry_max_attempts=3,
            retry_base_delay=0.3,
            retry_multiplier=3.0,
        )

        assert stage_timeout(settings) == pytest.approx(3 * 6.0 + 0.3 + 0.9)

    def test_stage_timeout_override(self):
        settings = Settings(stage_timeout_seconds=45.0)

        assert stage_timeout(settings) == 45.0
