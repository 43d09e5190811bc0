"""Run pipeline API endpoints."""

from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends, Header, HTTPException, Query
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.dependencies import get_db, get_orchestrator
from app.services.engine.errors import ValidationError, error_from_dict
from app.services.pipeline.orchestrator import RunOrchestrator
from app.services.pipeline.repository import RunRepository
from app.services.pipeline.stages import RunRequest
from app.services.pipeline.states import RunStatus, StageName

router = APIRouter(prefix="/api", tags=["runs"])

TRUTHY = {"1", "true", "yes", "on"}


class StageResponse(BaseModel):
    """Audit row for one stage."""

    stage: str
    stage_number: int
    status: str
    payload: dict[str, Any] | None
    error: dict[str, Any] | None
    created_at: datetime


class FactorResponse(BaseModel):
    """Factor as used by an aggregation."""

    stage: str
    key: str
    display_name: str
    normalized_value: float
    weight_percent: float
    contribution: float
    was_capped: bool
    cap_reason: str | None
    notes: str | None


class PickResponse(BaseModel):
    """Immutable pick."""

    run_id: str
    capper: str
    sport: str
    game_id: str
    bet_type: str
    selection: str
    line: float | None
    units: int
    confidence: float
    locked_odds: dict[str, Any]
    locked_at: datetime

    class Config:
        from_attributes = True


class RunSummary(BaseModel):
    """Run in list response."""

    run_id: str
    capper: str
    sport: str
    bet_type: str
    game_id: str
    home_team: str
    away_team: str
    profile_version: str
    trigger: str
    state: str
    status: str
    conf_final: float | None
    verdict: str | None
    units: int | None
    error_kind: str | None
    created_at: datetime
    completed_at: datetime | None

    class Config:
        from_attributes = True


class RunDetail(RunSummary):
    """Run with its audit trail."""

    conf_predicted: float | None
    error_message: str | None
    error_stage: str | None
    request: dict[str, Any]
    stages: list[StageResponse]
    factors: list[FactorResponse]
    pick: PickResponse | None


def _require_key(idempotency_key: str | None) -> str:
    if not idempotency_key:
        raise ValidationError("Idempotency-Key header is required")
    return idempotency_key


def _dry_run_header(dry_run: bool) -> dict[str, str]:
    return {"X-Dry-Run": "1" if dry_run else "0"}


@router.post("/runs")
async def create_run(
    request: RunRequest,
    through: StageName = Query(StageName.FINALIZE, description="Last stage to run"),
    idempotency_key: str | None = Header(None, alias="Idempotency-Key"),
    x_dry_run: str | None = Header(None, alias="X-Dry-Run"),
    orchestrator: RunOrchestrator = Depends(get_orchestrator),
):
    """
    Run the pipeline for one game and bet type.

    Repeating the call with the same Idempotency-Key replays the stored
    result instead of re-executing.
    """
    key = _require_key(idempotency_key)
    dry_run = (x_dry_run or "").lower() in TRUTHY
    result = await orchestrator.execute_pipeline(request, key, dry_run=dry_run, through=through)

    if result.error:
        status_code = error_from_dict(result.error).http_status
    elif result.pick is not None:
        status_code = 201
    else:
        status_code = 200
    headers = _dry_run_header(result.dry_run)
    if result.replayed:
        headers["X-Idempotent-Replay"] = "1"
    return JSONResponse(
        status_code=status_code,
        content=result.model_dump(mode="json"),
        headers=headers,
    )


@router.post("/runs/{run_id}/stages/{stage}")
async def execute_stage(
    run_id: str,
    stage: StageName,
    idempotency_key: str | None = Header(None, alias="Idempotency-Key"),
    x_dry_run: str | None = Header(None, alias="X-Dry-Run"),
    orchestrator: RunOrchestrator = Depends(get_orchestrator),
):
    """Execute (or replay) a single stage of an existing run."""
    key = _require_key(idempotency_key)
    if await orchestrator.repository.get_run(run_id) is None:
        raise HTTPException(status_code=404, detail="Run not found")

    dry_run = (x_dry_run or "").lower() in TRUTHY
    result = await orchestrator.execute_stage(run_id, stage, key, dry_run=dry_run)
    headers = _dry_run_header(result.dry_run)
    if result.replayed:
        headers["X-Idempotent-Replay"] = "1"
    return JSONResponse(status_code=result.status_code, content=result.body, headers=headers)


@router.get("/runs", response_model=list[RunSummary])
async def list_runs(
    db: AsyncSession = Depends(get_db),
    capper: str | None = None,
    status: RunStatus | None = None,
    game_id: str | None = None,
    limit: int = Query(50, ge=1, le=500),
):
    """List runs, newest first."""
    runs = await RunRepository(db).list_runs(
        capper=capper, status=status, game_id=game_id, limit=limit
    )
    return [RunSummary.model_validate(r, from_attributes=True) for r in runs]


@router.get("/runs/{run_id}", response_model=RunDetail)
async def get_run(run_id: str, db: AsyncSession = Depends(get_db)):
    """Get a run with its stages, factors and pick."""
    run = await RunRepository(db).get_run(run_id)
    if not run:
        raise HTTPException(status_code=404, detail="Run not found")

    return RunDetail(
        run_id=run.run_id,
        capper=run.capper,
        sport=run.sport,
        bet_type=run.bet_type,
        game_id=run.game_id,
        home_team=run.home_team,
        away_team=run.away_team,
        profile_version=run.profile_version,
        trigger=run.trigger,
        state=run.state,
        status=run.status,
        conf_predicted=run.conf_predicted,
        conf_final=run.conf_final,
        verdict=run.verdict,
        units=run.units,
        error_kind=run.error_kind,
        error_message=run.error_message,
        error_stage=run.error_stage,
        request=run.request,
        created_at=run.created_at,
        completed_at=run.completed_at,
        stages=[
            StageResponse(
                stage=s.stage,
                stage_number=s.stage_number,
                status=s.status,
                payload=s.payload,
                error=s.error,
                created_at=s.created_at,
            )
            for s in run.stages
        ],
        factors=[
            FactorResponse(
                stage=f.stage,
                key=f.key,
                display_name=f.display_name,
                normalized_value=f.normalized_value,
                weight_percent=f.weight_percent,
                contribution=f.contribution,
                was_capped=f.was_capped,
                cap_reason=f.cap_reason,
                notes=f.notes,
            )
            for f in run.factors
        ],
        pick=PickResponse.model_validate(run.pick, from_attributes=True) if run.pick else None,
    )


@router.get("/picks", response_model=list[PickResponse])
async def list_picks(
    db: AsyncSession = Depends(get_db),
    capper: str | None = None,
    since: datetime | None = None,
    limit: int = Query(50, ge=1, le=500),
):
    """List picks, most recently locked first."""
    picks = await RunRepository(db).list_picks(capper=capper, since=since, limit=limit)
    return [PickResponse.model_validate(p, from_attributes=True) for p in picks]
