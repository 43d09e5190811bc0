"""Engine error taxonomy.

Every failure the engine or the run pipeline can report is one of five kinds.
Errors carry the stage they were raised in so callers always receive
``{kind, message, stage}``.
"""

from enum import Enum
from typing import Any


class ErrorKind(str, Enum):
    """Closed set of engine error kinds."""

    PRECONDITION_FAILED = "PreconditionFailed"
    CONFIGURATION_ERROR = "ConfigurationError"
    INSUFFICIENT_SIGNAL = "InsufficientSignal"
    EXTERNAL_PROVIDER_ERROR = "ExternalProviderError"
    VALIDATION_ERROR = "ValidationError"


class EngineError(Exception):
    """Base class for engine errors."""

    kind: ErrorKind = ErrorKind.VALIDATION_ERROR
    http_status: int = 400
    retryable: bool = False

    def __init__(
        self,
        message: str,
        stage: str | None = None,
        retryable: bool | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.stage = stage
        if retryable is not None:
            self.retryable = retryable

    def with_stage(self, stage: str) -> "EngineError":
        """Attach the stage name if the raiser did not know it."""
        if self.stage is None:
            self.stage = stage
        return self

    def to_dict(self) -> dict[str, Any]:
        """Structured form returned to callers and stored on failed runs."""
        return {
            "kind": self.kind.value,
            "message": self.message,
            "stage": self.stage,
        }

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.message!r}, stage={self.stage!r})"


class PreconditionFailed(EngineError):
    """Required market data is missing. Not retryable without new data."""

    kind = ErrorKind.PRECONDITION_FAILED
    http_status = 412


class ConfigurationError(EngineError):
    """Weight configuration or engine profile is missing or empty."""

    kind = ErrorKind.CONFIGURATION_ERROR
    http_status = 409


class InsufficientSignal(EngineError):
    """Aggregation was asked to score zero factors."""

    kind = ErrorKind.INSUFFICIENT_SIGNAL
    http_status = 422


class ExternalProviderError(EngineError):
    """A collaborator call failed or timed out."""

    kind = ErrorKind.EXTERNAL_PROVIDER_ERROR
    http_status = 502
    retryable = True

    def __init__(
        self,
        message: str,
        stage: str | None = None,
        retryable: bool | None = None,
        status_code: int | None = None,
    ):
        super().__init__(message, stage=stage, retryable=retryable)
        self.status_code = status_code


class ValidationError(EngineError):
    """Malformed input shape."""

    kind = ErrorKind.VALIDATION_ERROR
    http_status = 400


ERRORS_BY_KIND: dict[ErrorKind, type[EngineError]] = {
    cls.kind: cls
    for cls in (
        PreconditionFailed,
        ConfigurationError,
        InsufficientSignal,
        ExternalProviderError,
        ValidationError,
    )
}


def error_from_dict(data: dict[str, Any]) -> EngineError:
    """Rebuild an error from its stored ``to_dict`` form."""
    try:
        cls = ERRORS_BY_KIND[ErrorKind(data["kind"])]
    except (KeyError, ValueError):
        raise ValidationError(f"Unknown stored error shape: {data!r}") from None
    return cls(data.get("message", ""), stage=data.get("stage"))
