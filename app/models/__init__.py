"""Database models for Sharpline."""

from app.models.base import Base, get_default_session_factory, get_task_session
from app.models.domain import (
    CapperProfile,
    IdempotencyRecord,
    JobRun,
    Pick,
    Run,
    RunFactor,
    RunStage,
)

__all__ = [
    # Base
    "Base",
    "get_default_session_factory",
    "get_task_session",
    # Domain models
    "CapperProfile",
    "Run",
    "RunStage",
    "RunFactor",
    "Pick",
    "IdempotencyRecord",
    "JobRun",
]
