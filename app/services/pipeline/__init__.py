"""Run pipeline: state machine, persistence, idempotency and orchestration."""

from app.services.pipeline.aggregate import RunAggregate
from app.services.pipeline.idempotency import IdempotencyGuard
from app.services.pipeline.orchestrator import RunOrchestrator, run_id_for
from app.services.pipeline.repository import ProfileWeightSource, RunRepository
from app.services.pipeline.stages import PipelineResult, RunRequest, StageResult
from app.services.pipeline.states import PipelineState, RunStatus, StageName

__all__ = [
    "IdempotencyGuard",
    "PipelineResult",
    "PipelineState",
    "ProfileWeightSource",
    "RunAggregate",
    "RunOrchestrator",
    "RunRepository",
    "RunRequest",
    "RunStatus",
    "StageName",
    "StageResult",
    "run_id_for",
]
