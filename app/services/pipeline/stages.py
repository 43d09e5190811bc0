"""Typed stage inputs and outputs.

Every stage output is a pydantic model so it can be stored as JSON in the
audit trail and rebuilt exactly on replay.
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from app.services.engine.decision import Decision
from app.services.engine.prediction import Prediction
from app.services.engine.types import (
    BetType,
    BookLines,
    ConfidenceResult,
    Factor,
    OddsSnapshot,
    Side,
)
from app.services.pipeline.states import PipelineState, RunStatus, StageName


class RunRequest(BaseModel):
    """A (game, bet type) decision attempt for one capper."""

    model_config = ConfigDict(frozen=True)

    capper: str = Field(min_length=1, max_length=50)
    sport: str = Field(default="NBA", min_length=1, max_length=10)
    bet_type: BetType
    game_id: str = Field(min_length=1, max_length=100)
    home_team: str = Field(min_length=1, max_length=100)
    away_team: str = Field(min_length=1, max_length=100)
    game_time: datetime | None = None
    profile_version: str | None = None
    trigger: str = "manual"
    skip_enrichment: bool = False


class StageOutput(BaseModel):
    model_config = ConfigDict(frozen=True)


class SelectOutput(StageOutput):
    request: RunRequest
    profile_version: str


class SnapshotOutput(StageOutput):
    snapshot: OddsSnapshot
    books: list[BookLines]


class FactorsOutput(StageOutput):
    factors: list[Factor]
    weights: dict[str, float]
    weight_source: str
    baseline_avg: float


class PredictOutput(StageOutput):
    confidence: ConfidenceResult
    prediction: Prediction


class MarketOutput(StageOutput):
    market_factor: Factor
    confidence: ConfidenceResult
    market_line: float
    edge_total_pts: float | None = None
    edge_side_pts: float | None = None


class EnrichOutput(StageOutput):
    skipped: bool
    reason: str | None = None
    predictions: list[str] = Field(default_factory=list)
    narrative: str = ""


class PickPayload(BaseModel):
    """Immutable pick, bound to the odds snapshot it was decided against."""

    model_config = ConfigDict(frozen=True)

    run_id: str
    capper: str
    game_id: str
    bet_type: BetType
    selection: Side
    line: float | None
    units: int
    confidence: float
    locked_odds: OddsSnapshot
    locked_at: datetime


class FinalizeOutput(StageOutput):
    decision: Decision
    pick: PickPayload | None = None


STAGE_MODELS: dict[StageName, type[StageOutput]] = {
    StageName.SELECT: SelectOutput,
    StageName.SNAPSHOT: SnapshotOutput,
    StageName.FACTORS: FactorsOutput,
    StageName.PREDICT: PredictOutput,
    StageName.MARKET: MarketOutput,
    StageName.ENRICH: EnrichOutput,
    StageName.FINALIZE: FinalizeOutput,
}


class StageResult(BaseModel):
    """What a caller gets back from executing (or replaying) one stage."""

    run_id: str
    stage: StageName
    status_code: int
    body: dict[str, Any]
    replayed: bool = False
    dry_run: bool = False

    @property
    def ok(self) -> bool:
        return self.status_code < 400


class PipelineResult(BaseModel):
    """Outcome of running the pipeline (or part of it) for one run."""

    run_id: str
    success: bool
    state: PipelineState | None
    status: RunStatus | None
    stages: dict[str, dict[str, Any]] = Field(default_factory=dict)
    pick: dict[str, Any] | None = None
    error: dict[str, Any] | None = None
    replayed: bool = Field(default=False, exclude=True)
    dry_run: bool = False
