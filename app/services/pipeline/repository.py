"""Persistence for runs, stage audit records, picks and idempotency records.

The repository never commits on its own except through ``commit``; the
caller (the idempotency guard) decides the transaction boundary so a stage's
writes and its idempotency record land together.
"""

from datetime import datetime
from typing import Any

import structlog
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.domain import (
    CapperProfile,
    IdempotencyRecord,
    Pick,
    Run,
    RunFactor,
    RunStage,
)
from app.services.engine.types import BetType, Factor
from app.services.factors.base import WeightConfig
from app.services.pipeline.aggregate import RunAggregate
from app.services.pipeline.stages import STAGE_MODELS, PickPayload, RunRequest
from app.services.pipeline.states import (
    TRANSITIONS,
    PipelineState,
    RunStatus,
    StageName,
)
from app.services.providers.adapters import weight_config_from_profile

logger = structlog.get_logger(__name__)

STAGE_COMPLETED = "completed"
STAGE_FAILED = "failed"


class RunRepository:
    """Async SQLAlchemy access for the run pipeline."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def commit(self) -> None:
        await self.session.commit()

    async def rollback(self) -> None:
        await self.session.rollback()

    # Runs

    async def get_run(self, run_id: str) -> Run | None:
        result = await self.session.execute(
            select(Run)
            .where(Run.run_id == run_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def load_aggregate(self, run_id: str) -> RunAggregate | None:
        """Rebuild a run's in-memory view from its audit trail."""
        run = await self.get_run(run_id)
        if run is None:
            return None

        stages = await self.session.execute(
            select(RunStage)
            .where(RunStage.run_id == run_id, RunStage.status == STAGE_COMPLETED)
            .order_by(RunStage.id)
        )
        outputs = {}
        for row in stages.scalars():
            stage = StageName(row.stage)
            outputs[stage] = STAGE_MODELS[stage].model_validate(row.payload)

        error = None
        if run.error_kind:
            error = {
                "kind": run.error_kind,
                "message": run.error_message,
                "stage": run.error_stage,
            }

        return RunAggregate(
            run_id=run.run_id,
            request=RunRequest.model_validate(run.request),
            state=PipelineState(run.state),
            status=RunStatus(run.status),
            outputs=outputs,
            error=error,
        )

    async def add_run(
        self, run_id: str, request: RunRequest, profile_version: str
    ) -> Run:
        run = Run(
            run_id=run_id,
            capper=request.capper,
            sport=request.sport,
            bet_type=request.bet_type.value,
            game_id=request.game_id,
            home_team=request.home_team,
            away_team=request.away_team,
            game_time=request.game_time,
            profile_version=profile_version,
            trigger=request.trigger,
            state=PipelineState.CREATED.value,
            status=RunStatus.IN_PROGRESS.value,
            request=request.model_dump(mode="json"),
        )
        self.session.add(run)
        await self.session.flush()
        return run

    async def transition(
        self,
        run_id: str,
        expected: PipelineState,
        new_state: PipelineState,
        new_status: RunStatus = RunStatus.IN_PROGRESS,
        **fields: Any,
    ) -> bool:
        """Compare-and-set the run state. Returns False if another writer won."""
        result = await self.session.execute(
            update(Run)
            .where(Run.run_id == run_id, Run.state == expected.value)
            .values(state=new_state.value, status=new_status.value, **fields)
        )
        return result.rowcount == 1

    async def mark_failed(self, run_id: str, error: dict[str, Any]) -> None:
        await self.session.execute(
            update(Run)
            .where(Run.run_id == run_id)
            .values(
                state=PipelineState.FAILED.value,
                status=RunStatus.FAILED.value,
                error_kind=error.get("kind"),
                error_message=error.get("message"),
                error_stage=error.get("stage"),
            )
        )

    # Audit trail

    async def append_stage(
        self,
        run_id: str,
        stage: StageName,
        payload: dict[str, Any] | None = None,
        error: dict[str, Any] | None = None,
    ) -> RunStage:
        row = RunStage(
            run_id=run_id,
            stage=stage.value,
            stage_number=TRANSITIONS[stage].number,
            status=STAGE_FAILED if error else STAGE_COMPLETED,
            payload=payload,
            error=error,
        )
        self.session.add(row)
        return row

    async def add_factors(
        self, run_id: str, stage: StageName, factors: list[Factor]
    ) -> None:
        for factor in factors:
            self.session.add(
                RunFactor(
                    run_id=run_id,
                    stage=stage.value,
                    key=factor.key,
                    display_name=factor.display_name,
                    normalized_value=factor.normalized_value,
                    weight_percent=factor.weight_percent,
                    contribution=factor.contribution,
                    was_capped=factor.was_capped,
                    cap_reason=factor.cap_reason,
                    raw_inputs=factor.raw_inputs,
                    notes=factor.notes,
                )
            )

    async def add_pick(self, pick: PickPayload, sport: str) -> Pick:
        row = Pick(
            run_id=pick.run_id,
            capper=pick.capper,
            sport=sport,
            game_id=pick.game_id,
            bet_type=pick.bet_type.value,
            selection=pick.selection.value,
            line=pick.line,
            units=pick.units,
            confidence=pick.confidence,
            locked_odds=pick.model_dump(mode="json")["locked_odds"],
            locked_at=pick.locked_at,
        )
        self.session.add(row)
        await self.session.flush()
        return row

    async def has_pick(self, capper: str, game_id: str, bet_type: BetType) -> bool:
        result = await self.session.execute(
            select(Pick.id)
            .where(
                Pick.capper == capper,
                Pick.game_id == game_id,
                Pick.bet_type == bet_type.value,
            )
            .limit(1)
        )
        return result.first() is not None

    # Idempotency

    async def get_idempotency(
        self, run_id: str, stage: StageName, key: str
    ) -> IdempotencyRecord | None:
        result = await self.session.execute(
            select(IdempotencyRecord).where(
                IdempotencyRecord.run_id == run_id,
                IdempotencyRecord.stage == stage.value,
                IdempotencyRecord.key == key,
            )
        )
        return result.scalar_one_or_none()

    async def get_stage_record(
        self, run_id: str, stage: StageName
    ) -> IdempotencyRecord | None:
        """First stored result for a stage, whichever key wrote it."""
        result = await self.session.execute(
            select(IdempotencyRecord)
            .where(
                IdempotencyRecord.run_id == run_id,
                IdempotencyRecord.stage == stage.value,
            )
            .order_by(IdempotencyRecord.created_at)
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def add_idempotency(
        self,
        run_id: str,
        stage: StageName,
        key: str,
        status: int,
        body: dict[str, Any],
    ) -> None:
        self.session.add(
            IdempotencyRecord(
                run_id=run_id,
                stage=stage.value,
                key=key,
                stored_status=status,
                stored_body=body,
            )
        )

    # Listings

    async def list_runs(
        self,
        capper: str | None = None,
        status: RunStatus | None = None,
        game_id: str | None = None,
        limit: int = 50,
    ) -> list[Run]:
        query = select(Run).order_by(Run.created_at.desc()).limit(limit)
        if capper:
            query = query.where(Run.capper == capper)
        if status:
            query = query.where(Run.status == status.value)
        if game_id:
            query = query.where(Run.game_id == game_id)
        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def list_picks(
        self,
        capper: str | None = None,
        since: datetime | None = None,
        limit: int = 50,
    ) -> list[Pick]:
        query = select(Pick).order_by(Pick.locked_at.desc()).limit(limit)
        if capper:
            query = query.where(Pick.capper == capper)
        if since:
            query = query.where(Pick.locked_at >= since)
        result = await self.session.execute(query)
        return list(result.scalars().all())


class ProfileWeightSource:
    """Load a capper's WeightConfig from ``capper_profiles``."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_profile(
        self, capper: str, sport: str, bet_type: BetType
    ) -> CapperProfile | None:
        result = await self.session.execute(
            select(CapperProfile).where(
                CapperProfile.capper == capper,
                CapperProfile.sport == sport.upper(),
                CapperProfile.bet_type == bet_type.value,
                CapperProfile.is_active == True,
            )
        )
        return result.scalar_one_or_none()

    async def load_weight_config(
        self, capper: str, sport: str, bet_type: BetType
    ) -> WeightConfig:
        source = f"{capper}/{sport}/{bet_type.value}"
        profile = await self.get_profile(capper, sport, bet_type)
        if profile is None:
            return weight_config_from_profile(None, source=source)
        return weight_config_from_profile(profile.factors, source=source)

    async def list_auto_run_profiles(self) -> list[CapperProfile]:
        result = await self.session.execute(
            select(CapperProfile)
            .where(CapperProfile.auto_run == True, CapperProfile.is_active == True)
            .order_by(CapperProfile.capper, CapperProfile.bet_type)
        )
        return list(result.scalars().all())
