"""Run pipeline state machine.

    CREATED -> SNAPSHOT_CAPTURED -> FACTORS_COMPUTED -> PREDICTED
            -> MARKET_ADJUSTED -> FINALIZED

FAILED is terminal and reachable from any stage. Enrichment runs in
MARKET_ADJUSTED and does not advance the state, so it can be skipped.
"""

from dataclasses import dataclass
from enum import Enum


class PipelineState(str, Enum):
    CREATED = "CREATED"
    SNAPSHOT_CAPTURED = "SNAPSHOT_CAPTURED"
    FACTORS_COMPUTED = "FACTORS_COMPUTED"
    PREDICTED = "PREDICTED"
    MARKET_ADJUSTED = "MARKET_ADJUSTED"
    FINALIZED = "FINALIZED"
    FAILED = "FAILED"


class RunStatus(str, Enum):
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETE = "COMPLETE"
    FAILED = "FAILED"


class StageName(str, Enum):
    SELECT = "select"
    SNAPSHOT = "snapshot"
    FACTORS = "factors"
    PREDICT = "predict"
    MARKET = "market"
    ENRICH = "enrich"
    FINALIZE = "finalize"


@dataclass(frozen=True)
class Transition:
    """State a stage requires and the state it leaves behind."""

    number: int
    requires: PipelineState | None
    produces: PipelineState


TRANSITIONS: dict[StageName, Transition] = {
    StageName.SELECT: Transition(1, None, PipelineState.CREATED),
    StageName.SNAPSHOT: Transition(
        2, PipelineState.CREATED, PipelineState.SNAPSHOT_CAPTURED
    ),
    StageName.FACTORS: Transition(
        3, PipelineState.SNAPSHOT_CAPTURED, PipelineState.FACTORS_COMPUTED
    ),
    StageName.PREDICT: Transition(
        4, PipelineState.FACTORS_COMPUTED, PipelineState.PREDICTED
    ),
    StageName.MARKET: Transition(
        5, PipelineState.PREDICTED, PipelineState.MARKET_ADJUSTED
    ),
    StageName.ENRICH: Transition(
        6, PipelineState.MARKET_ADJUSTED, PipelineState.MARKET_ADJUSTED
    ),
    StageName.FINALIZE: Transition(
        7, PipelineState.MARKET_ADJUSTED, PipelineState.FINALIZED
    ),
}

STAGE_ORDER: list[StageName] = sorted(TRANSITIONS, key=lambda s: TRANSITIONS[s].number)


def stages_through(last: StageName) -> list[StageName]:
    """Stages in order, up to and including ``last``."""
    return STAGE_ORDER[: TRANSITIONS[last].number]
