"""In-memory view of a Run while the orchestrator works on it."""

from dataclasses import dataclass, field
from typing import Any, TypeVar

from app.services.engine.errors import PreconditionFailed
from app.services.pipeline.stages import RunRequest, StageOutput
from app.services.pipeline.states import (
    TRANSITIONS,
    PipelineState,
    RunStatus,
    StageName,
)

O = TypeVar("O", bound=StageOutput)


@dataclass
class RunAggregate:
    """Run state plus the outputs of every completed stage.

    ``state`` is None until the select stage has created the run.
    """

    run_id: str
    request: RunRequest
    state: PipelineState | None = None
    status: RunStatus | None = None
    outputs: dict[StageName, StageOutput] = field(default_factory=dict)
    error: dict[str, Any] | None = None

    @property
    def exists(self) -> bool:
        return self.state is not None

    @property
    def failed(self) -> bool:
        return self.status == RunStatus.FAILED

    def completed(self, stage: StageName) -> bool:
        return stage in self.outputs

    def output(self, stage: StageName, model: type[O]) -> O:
        """Output of a prior stage; missing output is a precondition failure."""
        out = self.outputs.get(stage)
        if out is None:
            raise PreconditionFailed(f"Stage {stage.value} has not completed")
        if not isinstance(out, model):
            raise PreconditionFailed(
                f"Stage {stage.value} output is {type(out).__name__}, expected {model.__name__}"
            )
        return out

    def check_ready(self, stage: StageName) -> None:
        """Raise unless the run is in the state this stage requires."""
        if self.failed:
            raise PreconditionFailed(f"Run {self.run_id} has failed", stage=stage.value)
        required = TRANSITIONS[stage].requires
        if self.state != required:
            current = self.state.value if self.state else "NOT_CREATED"
            expected = required.value if required else "NOT_CREATED"
            raise PreconditionFailed(
                f"Stage {stage.value} requires run state {expected}, run is {current}",
                stage=stage.value,
            )

    def apply(self, stage: StageName, output: StageOutput) -> None:
        """Record a completed stage and advance the state."""
        self.outputs[stage] = output
        self.state = TRANSITIONS[stage].produces
        if stage == StageName.FINALIZE:
            self.status = RunStatus.COMPLETE
        elif self.status is None:
            self.status = RunStatus.IN_PROGRESS

    def fail(self, error: dict[str, Any]) -> None:
        self.state = PipelineState.FAILED
        self.status = RunStatus.FAILED
        self.error = error
