"""Run orchestrator.

Drives one Run through its stages:

    select -> snapshot -> factors -> predict -> market -> [enrich] -> finalize

Each side-effecting stage is executed at most once per idempotency key; a
repeated call replays the stored status and body. A stage error halts the run
and marks it FAILED; only enrichment errors are tolerated.
"""

import asyncio
import uuid
from collections.abc import Awaitable, Callable
from datetime import datetime, timezone
from typing import Any, Protocol, TypeVar

import structlog

from app.config.profiles import EngineProfile, ProfileCatalog
from app.services.engine.aggregator import aggregate
from app.services.engine.decision import DecisionEngine
from app.services.engine.errors import (
    EngineError,
    ExternalProviderError,
    InsufficientSignal,
    PreconditionFailed,
    ValidationError,
    error_from_dict,
)
from app.services.engine.market_edge import build_market_edge_factor
from app.services.engine.prediction import predict
from app.services.engine.types import BetType, BookLines
from app.services.factors.base import FactorContext, FactorProvider, WeightConfigSource
from app.services.pipeline.aggregate import RunAggregate
from app.services.pipeline.idempotency import IdempotencyGuard, WriteConflict
from app.services.pipeline.repository import RunRepository
from app.services.pipeline.stages import (
    EnrichOutput,
    FactorsOutput,
    FinalizeOutput,
    MarketOutput,
    PickPayload,
    PipelineResult,
    PredictOutput,
    RunRequest,
    SelectOutput,
    SnapshotOutput,
    StageOutput,
    StageResult,
)
from app.services.pipeline.states import (
    TRANSITIONS,
    RunStatus,
    StageName,
    stages_through,
)
from app.services.providers.adapters import build_odds_snapshot
from app.services.providers.narrative import Narrative

logger = structlog.get_logger(__name__)

RUN_NAMESPACE = uuid.UUID("6f1c3a52-8d0e-4b7a-9f26-2c4e8b1d7a90")

T = TypeVar("T")


class MarketDataProvider(Protocol):
    async def get_odds_snapshot(self, game_id: str, sport: str) -> list[BookLines]: ...


class NarrativeProvider(Protocol):
    async def generate_narrative(self, context: dict[str, Any]) -> Narrative: ...


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def run_id_for(idempotency_key: str) -> str:
    """Deterministic run id for a client idempotency key."""
    return str(uuid.uuid5(RUN_NAMESPACE, idempotency_key))


class RunOrchestrator:
    """
    Execute pipeline stages against injected collaborators.

    Nothing here is a module-level singleton: build one per request or task
    with ``build_orchestrator``.
    """

    def __init__(
        self,
        *,
        repository: RunRepository,
        market: MarketDataProvider,
        factors: FactorProvider,
        weights: WeightConfigSource,
        catalog: ProfileCatalog,
        narrative: NarrativeProvider | None = None,
        clock: Callable[[], datetime] = utcnow,
        stage_timeout: float = 20.0,
        write_enabled: bool = True,
        default_profile_version: str | None = None,
    ):
        self.repository = repository
        self.guard = IdempotencyGuard(repository)
        self.market = market
        self.factors = factors
        self.weights = weights
        self.catalog = catalog
        self.narrative = narrative
        self.clock = clock
        self.stage_timeout = stage_timeout
        self.write_enabled = write_enabled
        self.default_profile_version = default_profile_version

    # Public API

    async def execute_pipeline(
        self,
        request: RunRequest,
        idempotency_key: str,
        dry_run: bool = False,
        through: StageName = StageName.FINALIZE,
    ) -> PipelineResult:
        """Run every stage up to ``through`` for one request.

        The run id is derived from the idempotency key, so repeating a call
        with the same key replays the stored results. A different request
        under a reused key is rejected.
        """
        if not idempotency_key:
            raise ValidationError("Idempotency key is required")
        dry_run = dry_run or not self.write_enabled
        run_id = run_id_for(idempotency_key)

        agg = await self.repository.load_aggregate(run_id)
        if agg is None:
            agg = RunAggregate(run_id=run_id, request=request)
        elif agg.request != request:
            raise ValidationError(
                f"Idempotency key already used for a different request (run {run_id})"
            )

        if agg.failed:
            logger.info("run_failure_replayed", run_id=run_id, error=agg.error)
            stored = await self._stored_bodies(agg, idempotency_key)
            return self._result(agg, stored, replayed=True, dry_run=dry_run, success=False)

        stage_bodies: dict[str, dict[str, Any]] = {}
        replayed = True
        for stage in stages_through(through):
            result = await self._execute(agg, stage, idempotency_key, dry_run)
            stage_bodies[stage.value] = result.body
            replayed = replayed and result.replayed
            if not result.ok:
                return self._result(
                    agg, stage_bodies, replayed=replayed, dry_run=dry_run, success=False
                )

        return self._result(agg, stage_bodies, replayed=replayed, dry_run=dry_run)

    async def execute_stage(
        self,
        run_id: str,
        stage: StageName,
        idempotency_key: str,
        dry_run: bool = False,
    ) -> StageResult:
        """Execute (or replay) a single stage of an existing run."""
        if not idempotency_key:
            raise ValidationError("Idempotency key is required")
        agg = await self.repository.load_aggregate(run_id)
        if agg is None:
            raise PreconditionFailed(f"Run {run_id} does not exist", stage=stage.value)
        return await self._execute(
            agg, stage, idempotency_key, dry_run or not self.write_enabled
        )

    # Stage execution

    async def _execute(
        self, agg: RunAggregate, stage: StageName, key: str, dry_run: bool
    ) -> StageResult:
        run_id = agg.run_id

        stored = await self.guard.lookup(run_id, stage, key)
        if stored is None and agg.completed(stage):
            stored = await self.guard.lookup_stage(run_id, stage)
        if stored is not None:
            logger.info("stage_replayed", run_id=run_id, stage=stage.value)
            return StageResult(
                run_id=run_id,
                stage=stage,
                status_code=stored.status,
                body=stored.body,
                replayed=True,
                dry_run=dry_run,
            )
        if agg.completed(stage):
            output = agg.outputs[stage]
            return StageResult(
                run_id=run_id,
                stage=stage,
                status_code=self._status_for(stage, output),
                body=self._body(agg, stage, output),
                replayed=True,
                dry_run=dry_run,
            )

        if agg.failed:
            return StageResult(
                run_id=run_id,
                stage=stage,
                status_code=error_from_dict(agg.error).http_status,
                body=agg.error,
                replayed=True,
                dry_run=dry_run,
            )

        try:
            agg.check_ready(stage)
        except EngineError as e:
            # Out-of-order call; the run itself is untouched.
            return StageResult(
                run_id=run_id,
                stage=stage,
                status_code=e.http_status,
                body=e.to_dict(),
                dry_run=dry_run,
            )

        try:
            output = await self._compute(agg, stage)
        except EngineError as e:
            return await self._fail(agg, stage, e, dry_run)

        status = self._status_for(stage, output)

        if dry_run:
            agg.apply(stage, output)
            logger.info("stage_completed", run_id=run_id, stage=stage.value, dry_run=True)
            return StageResult(
                run_id=run_id,
                stage=stage,
                status_code=status,
                body=self._body(agg, stage, output),
                dry_run=True,
            )

        async def persist() -> tuple[int, dict[str, Any]]:
            await self._persist(agg, stage, output)
            return status, self._body(agg, stage, output, advance=True)

        try:
            status, body, replayed = await self.guard.execute(run_id, stage, key, persist)
        except EngineError as e:
            return await self._fail(agg, stage, e, dry_run)

        if replayed:
            await self._reload(agg)
            logger.info("stage_replayed", run_id=run_id, stage=stage.value, conflict=True)
        else:
            agg.apply(stage, output)
            logger.info("stage_completed", run_id=run_id, stage=stage.value, status=status)
            if stage == StageName.FINALIZE and output.pick is not None:
                logger.info(
                    "pick_created",
                    run_id=run_id,
                    selection=output.pick.selection.value,
                    units=output.pick.units,
                    line=output.pick.line,
                )

        return StageResult(
            run_id=run_id,
            stage=stage,
            status_code=status,
            body=body,
            replayed=replayed,
        )

    async def _fail(
        self, agg: RunAggregate, stage: StageName, error: EngineError, dry_run: bool
    ) -> StageResult:
        error.with_stage(stage.value)
        detail = error.to_dict()
        logger.warning(
            "stage_failed",
            run_id=agg.run_id,
            stage=stage.value,
            kind=detail["kind"],
            message=detail["message"],
        )
        if not dry_run and agg.exists:
            await self.repository.rollback()
            await self.repository.append_stage(agg.run_id, stage, error=detail)
            await self.repository.mark_failed(agg.run_id, detail)
            await self.repository.commit()
        agg.fail(detail)
        return StageResult(
            run_id=agg.run_id,
            stage=stage,
            status_code=error.http_status,
            body=detail,
            dry_run=dry_run,
        )

    async def _reload(self, agg: RunAggregate) -> None:
        fresh = await self.repository.load_aggregate(agg.run_id)
        if fresh is None:
            return
        agg.state = fresh.state
        agg.status = fresh.status
        agg.outputs = fresh.outputs
        agg.error = fresh.error

    async def _stored_bodies(
        self, agg: RunAggregate, key: str
    ) -> dict[str, dict[str, Any]]:
        """Stage bodies of a failed run, as first returned to the caller."""
        bodies: dict[str, dict[str, Any]] = {}
        for stage in StageName:
            if not agg.completed(stage):
                continue
            stored = await self.guard.lookup(agg.run_id, stage, key)
            if stored is None:
                stored = await self.guard.lookup_stage(agg.run_id, stage)
            if stored is not None:
                bodies[stage.value] = stored.body
        if agg.error and agg.error.get("stage"):
            bodies[agg.error["stage"]] = agg.error
        return bodies

    async def _call(self, name: str, awaitable: Awaitable[T]) -> T:
        """Await a collaborator, retries included, under the stage timeout."""
        try:
            return await asyncio.wait_for(awaitable, timeout=self.stage_timeout)
        except asyncio.TimeoutError:
            raise ExternalProviderError(
                f"{name} timed out after {self.stage_timeout:.1f}s"
            ) from None
        except EngineError:
            raise
        except Exception as e:
            raise ExternalProviderError(f"{name} failed: {e}") from e

    def _profile(self, agg: RunAggregate) -> EngineProfile:
        select_out = agg.output(StageName.SELECT, SelectOutput)
        return self.catalog.get(select_out.profile_version)

    def _status_for(self, stage: StageName, output: StageOutput) -> int:
        if stage == StageName.SELECT:
            return 201
        if isinstance(output, FinalizeOutput) and output.pick is not None:
            return 201
        return 200

    def _body(
        self,
        agg: RunAggregate,
        stage: StageName,
        output: StageOutput,
        advance: bool = False,
    ) -> dict[str, Any]:
        state = TRANSITIONS[stage].produces if advance else agg.state
        return {
            "run_id": agg.run_id,
            "stage": stage.value,
            "state": state.value if state else None,
            "output": output.model_dump(mode="json"),
        }

    async def _compute(self, agg: RunAggregate, stage: StageName) -> StageOutput:
        handlers = {
            StageName.SELECT: self._select,
            StageName.SNAPSHOT: self._snapshot,
            StageName.FACTORS: self._factors,
            StageName.PREDICT: self._predict,
            StageName.MARKET: self._market,
            StageName.ENRICH: self._enrich,
            StageName.FINALIZE: self._finalize,
        }
        return await handlers[stage](agg)

    async def _persist(self, agg: RunAggregate, stage: StageName, output: StageOutput) -> None:
        repo = self.repository
        run_id = agg.run_id

        if stage == StageName.SELECT:
            await repo.add_run(run_id, agg.request, output.profile_version)
        else:
            transition = TRANSITIONS[stage]
            fields: dict[str, Any] = {}
            status = RunStatus.IN_PROGRESS
            if isinstance(output, PredictOutput):
                fields["conf_predicted"] = output.confidence.side_conf_score
            elif isinstance(output, MarketOutput):
                fields["conf_final"] = output.confidence.side_conf_score
            elif isinstance(output, FinalizeOutput):
                status = RunStatus.COMPLETE
                fields.update(
                    verdict=output.decision.verdict.value,
                    units=output.decision.units,
                    completed_at=self.clock(),
                )
            advanced = await repo.transition(
                run_id, transition.requires, transition.produces, status, **fields
            )
            if not advanced:
                raise WriteConflict(f"{run_id} left {transition.requires.value}")

        await repo.append_stage(run_id, stage, payload=output.model_dump(mode="json"))
        if isinstance(output, FactorsOutput):
            await repo.add_factors(run_id, stage, output.factors)
        elif isinstance(output, MarketOutput):
            await repo.add_factors(run_id, stage, [output.market_factor])
        elif isinstance(output, FinalizeOutput) and output.pick is not None:
            await repo.add_pick(output.pick, agg.request.sport)

    # Stages

    async def _select(self, agg: RunAggregate) -> SelectOutput:
        request = agg.request
        profile = self.catalog.get(request.profile_version or self.default_profile_version)
        self.catalog.league(request.sport)
        return SelectOutput(request=request, profile_version=profile.version)

    async def _snapshot(self, agg: RunAggregate) -> SnapshotOutput:
        request = agg.request
        books = await self._call(
            "market data", self.market.get_odds_snapshot(request.game_id, request.sport)
        )
        snapshot = build_odds_snapshot(request.game_id, books, self.clock())
        if snapshot.line_for(request.bet_type) is None:
            raise PreconditionFailed(
                f"No book reports a {request.bet_type.value} line for {request.game_id}"
            )
        logger.info(
            "odds_snapshot_captured",
            run_id=agg.run_id,
            books=snapshot.books_considered,
            spread=snapshot.spread_line,
            total=snapshot.total_line,
        )
        return SnapshotOutput(snapshot=snapshot, books=books)

    async def _factors(self, agg: RunAggregate) -> FactorsOutput:
        request = agg.request
        weights = await self._call(
            "weight config",
            self.weights.load_weight_config(request.capper, request.sport, request.bet_type),
        )
        ctx = FactorContext(
            game_id=request.game_id,
            home_team=request.home_team,
            away_team=request.away_team,
            sport=request.sport,
            bet_type=request.bet_type,
            league_averages=self.catalog.league(request.sport),
            weights=weights,
        )
        computation = await self._call("factor provider", self.factors.compute_factors(ctx))
        if not computation.factors:
            raise InsufficientSignal("Factor provider returned no factors")

        factors = [f.with_weight(weights.weight_for(f.key)) for f in computation.factors]
        return FactorsOutput(
            factors=factors,
            weights=weights.to_dict(),
            weight_source=weights.source,
            baseline_avg=computation.baseline_avg,
        )

    async def _predict(self, agg: RunAggregate) -> PredictOutput:
        profile = self._profile(agg)
        factors_out = agg.output(StageName.FACTORS, FactorsOutput)
        bet_type = agg.request.bet_type

        confidence = aggregate(factors_out.factors, profile.scaling_constant, profile.scale)
        baseline = factors_out.baseline_avg if bet_type == BetType.TOTAL else None
        prediction = predict(
            bet_type, confidence.edge_raw, profile.prediction_model(bet_type), baseline
        )
        return PredictOutput(confidence=confidence, prediction=prediction)

    async def _market(self, agg: RunAggregate) -> MarketOutput:
        profile = self._profile(agg)
        bet_type = agg.request.bet_type
        snapshot = agg.output(StageName.SNAPSHOT, SnapshotOutput).snapshot
        factors_out = agg.output(StageName.FACTORS, FactorsOutput)
        predicted = agg.output(StageName.PREDICT, PredictOutput).prediction

        line = snapshot.line_for(bet_type)
        if line is None:
            raise PreconditionFailed(f"Snapshot has no {bet_type.value} line")

        settings = profile.market_edge
        market_factor = build_market_edge_factor(
            bet_type,
            predicted.predicted_value,
            line,
            settings.max_points,
            total_sensitivity=settings.total_sensitivity,
            spread_reference=settings.spread_reference,
            spread_sensitivity=settings.spread_sensitivity,
        )
        confidence = aggregate(
            [*factors_out.factors, market_factor], profile.scaling_constant, profile.scale
        )
        edge_pts = market_factor.raw_inputs["edge_pts"]
        return MarketOutput(
            market_factor=market_factor,
            confidence=confidence,
            market_line=line,
            edge_total_pts=edge_pts if bet_type == BetType.TOTAL else None,
            edge_side_pts=edge_pts if bet_type == BetType.SPREAD else None,
        )

    async def _enrich(self, agg: RunAggregate) -> EnrichOutput:
        if agg.request.skip_enrichment:
            return EnrichOutput(skipped=True, reason="skipped by request")
        if self.narrative is None:
            return EnrichOutput(skipped=True, reason="narrative provider not configured")

        request = agg.request
        market = agg.output(StageName.MARKET, MarketOutput)
        predicted = agg.output(StageName.PREDICT, PredictOutput).prediction
        context = {
            "game": f"{request.away_team} @ {request.home_team}",
            "bet_type": request.bet_type.value,
            "market_line": market.market_line,
            "predicted_value": predicted.predicted_value,
            "confidence": market.confidence.side_conf_score,
            "factors": [
                {"key": c.key, "weight": c.weight_percent, "value": c.normalized_value}
                for c in market.confidence.contributions
            ],
        }
        try:
            narrative = await self._call(
                "narrative", self.narrative.generate_narrative(context)
            )
        except EngineError as e:
            logger.warning("enrichment_failed", run_id=agg.run_id, error=e.message)
            return EnrichOutput(skipped=True, reason=f"enrichment failed: {e.message}")

        return EnrichOutput(
            skipped=False,
            predictions=narrative.predictions,
            narrative=narrative.narrative,
        )

    async def _finalize(self, agg: RunAggregate) -> FinalizeOutput:
        profile = self._profile(agg)
        request = agg.request
        snapshot = agg.output(StageName.SNAPSHOT, SnapshotOutput).snapshot
        market = agg.output(StageName.MARKET, MarketOutput)

        engine = DecisionEngine(profile.units, profile.caps)
        decision = engine.decide(
            market.confidence.side_conf_score,
            market.edge_side_pts,
            market.edge_total_pts,
            snapshot.spread_line,
            snapshot.total_line,
        )

        pick = None
        if decision.is_pick:
            pick = PickPayload(
                run_id=agg.run_id,
                capper=request.capper,
                game_id=request.game_id,
                bet_type=decision.bet_type,
                selection=decision.selection,
                line=decision.line,
                units=decision.units,
                confidence=decision.conf_score,
                locked_odds=snapshot,
                locked_at=self.clock(),
            )
        logger.info(
            "decision_made",
            run_id=agg.run_id,
            verdict=decision.verdict.value,
            units=decision.units,
            reason=decision.reason,
        )
        return FinalizeOutput(decision=decision, pick=pick)

    # Results

    def _result(
        self,
        agg: RunAggregate,
        stage_bodies: dict[str, dict[str, Any]],
        replayed: bool,
        dry_run: bool,
        success: bool = True,
    ) -> PipelineResult:
        pick = None
        finalize = agg.outputs.get(StageName.FINALIZE)
        if isinstance(finalize, FinalizeOutput) and finalize.pick is not None:
            pick = finalize.pick.model_dump(mode="json")
        return PipelineResult(
            run_id=agg.run_id,
            success=success and not agg.failed,
            state=agg.state,
            status=agg.status,
            stages=stage_bodies,
            pick=pick,
            error=agg.error,
            replayed=replayed and bool(stage_bodies or agg.failed),
            dry_run=dry_run,
        )

