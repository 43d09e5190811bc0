"""Domain models for Sharpline.

A Run is the aggregate root: one (game, bet type) decision attempt. Its stage
outputs, factors and pick are append-only audit records so every decision can
be replayed from the database alone.
"""

from datetime import datetime
from typing import Any

from sqlalchemy import (
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.models.base import Base, JSONType, TimestampMixin


class CapperProfile(Base, TimestampMixin):
    """
    Analyst profile: which factors are enabled and how much each weighs.

    ``factors`` is stored in whichever historical shape the profile was
    written in; the capper-profile adapter converts it to a WeightConfig.
    """

    __tablename__ = "capper_profiles"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    capper: Mapped[str] = mapped_column(String(50), nullable=False)
    sport: Mapped[str] = mapped_column(String(10), nullable=False)
    bet_type: Mapped[str] = mapped_column(String(10), nullable=False)
    factors: Mapped[Any] = mapped_column(JSONType, nullable=True)
    profile_version: Mapped[str | None] = mapped_column(
        String(30), nullable=True, doc="Engine profile version; null uses the default"
    )
    auto_run: Mapped[bool] = mapped_column(Boolean, default=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    __table_args__ = (
        UniqueConstraint("capper", "sport", "bet_type", name="uq_capper_profile"),
    )

    def __repr__(self) -> str:
        return f"<CapperProfile {self.capper} {self.sport}/{self.bet_type}>"


class Run(Base, TimestampMixin):
    """
    One end-to-end pipeline execution for a single game and bet type.

    ``state`` follows CREATED -> ... -> FINALIZED (or FAILED);
    ``status`` is the coarse IN_PROGRESS/COMPLETE/FAILED view.
    """

    __tablename__ = "runs"

    run_id: Mapped[str] = mapped_column(String(36), primary_key=True)
    capper: Mapped[str] = mapped_column(String(50), nullable=False)
    sport: Mapped[str] = mapped_column(String(10), nullable=False)
    bet_type: Mapped[str] = mapped_column(String(10), nullable=False)
    game_id: Mapped[str] = mapped_column(String(100), nullable=False)
    home_team: Mapped[str] = mapped_column(String(100), nullable=False)
    away_team: Mapped[str] = mapped_column(String(100), nullable=False)
    game_time: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    profile_version: Mapped[str] = mapped_column(String(30), nullable=False)
    trigger: Mapped[str] = mapped_column(
        String(20), default="manual", doc="'manual' or 'scheduled'"
    )

    state: Mapped[str] = mapped_column(String(30), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False)

    # Headline numbers, denormalised from stage payloads for listing
    conf_predicted: Mapped[float | None] = mapped_column(Float, nullable=True)
    conf_final: Mapped[float | None] = mapped_column(Float, nullable=True)
    verdict: Mapped[str | None] = mapped_column(String(10), nullable=True)
    units: Mapped[int | None] = mapped_column(Integer, nullable=True)

    error_kind: Mapped[str | None] = mapped_column(String(40), nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    error_stage: Mapped[str | None] = mapped_column(String(20), nullable=True)

    request: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False)
    completed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    # Relationships
    stages: Mapped[list["RunStage"]] = relationship(
        "RunStage", lazy="selectin", order_by="RunStage.id", viewonly=True
    )
    factors: Mapped[list["RunFactor"]] = relationship(
        "RunFactor", lazy="selectin", order_by="RunFactor.id", viewonly=True
    )
    pick: Mapped["Pick"] = relationship(
        "Pick", lazy="selectin", uselist=False, viewonly=True
    )

    __table_args__ = (
        Index("idx_runs_game", "game_id", "bet_type"),
        Index("idx_runs_capper_status", "capper", "status"),
    )

    def __repr__(self) -> str:
        return f"<Run {self.run_id} {self.state}/{self.status}>"


class RunStage(Base):
    """Append-only audit record of one stage's output (or failure)."""

    __tablename__ = "run_stages"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    run_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("runs.run_id"), nullable=False
    )
    stage: Mapped[str] = mapped_column(String(20), nullable=False)
    stage_number: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, doc="'completed' or 'failed'"
    )
    payload: Mapped[dict[str, Any] | None] = mapped_column(JSONType, nullable=True)
    error: Mapped[dict[str, Any] | None] = mapped_column(JSONType, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    __table_args__ = (Index("idx_run_stages_run", "run_id", "stage"),)

    def __repr__(self) -> str:
        return f"<RunStage {self.run_id} {self.stage} {self.status}>"


class RunFactor(Base):
    """Factor snapshot as used by an aggregation (stage 3 or 5)."""

    __tablename__ = "run_factors"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    run_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("runs.run_id"), nullable=False
    )
    stage: Mapped[str] = mapped_column(String(20), nullable=False)
    key: Mapped[str] = mapped_column(String(50), nullable=False)
    display_name: Mapped[str] = mapped_column(String(100), nullable=False)
    normalized_value: Mapped[float] = mapped_column(Float, nullable=False)
    weight_percent: Mapped[float] = mapped_column(Float, nullable=False)
    contribution: Mapped[float] = mapped_column(Float, nullable=False)
    was_capped: Mapped[bool] = mapped_column(Boolean, default=False)
    cap_reason: Mapped[str | None] = mapped_column(String(200), nullable=True)
    raw_inputs: Mapped[dict[str, Any] | None] = mapped_column(JSONType, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    __table_args__ = (Index("idx_run_factors_run", "run_id", "stage"),)


class Pick(Base):
    """
    Immutable recommended bet.

    At most one per run (unique run_id); the odds it was decided against are
    locked at creation.
    """

    __tablename__ = "picks"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    run_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("runs.run_id"), nullable=False, unique=True
    )
    capper: Mapped[str] = mapped_column(String(50), nullable=False)
    sport: Mapped[str] = mapped_column(String(10), nullable=False)
    game_id: Mapped[str] = mapped_column(String(100), nullable=False)
    bet_type: Mapped[str] = mapped_column(String(10), nullable=False)
    selection: Mapped[str] = mapped_column(String(10), nullable=False)
    line: Mapped[float | None] = mapped_column(Float, nullable=True)
    units: Mapped[int] = mapped_column(Integer, nullable=False)
    confidence: Mapped[float] = mapped_column(Float, nullable=False)
    locked_odds: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False)
    locked_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    __table_args__ = (
        Index("idx_picks_capper_game", "capper", "game_id", "bet_type"),
    )

    def __repr__(self) -> str:
        return f"<Pick {self.run_id} {self.bet_type} {self.selection} {self.units}u>"


class IdempotencyRecord(Base):
    """Stored result of a side-effecting stage under a client key."""

    __tablename__ = "idempotency_records"

    run_id: Mapped[str] = mapped_column(String(36), primary_key=True)
    stage: Mapped[str] = mapped_column(String(20), primary_key=True)
    key: Mapped[str] = mapped_column(String(200), primary_key=True)
    stored_status: Mapped[int] = mapped_column(Integer, nullable=False)
    stored_body: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    def __repr__(self) -> str:
        return f"<IdempotencyRecord {self.run_id}/{self.stage}/{self.key}>"


class JobRun(Base):
    """
    Task execution audit log.

    Every scheduled task run is logged here for:
    1. Monitoring and alerting
    2. Debugging failures
    3. Performance tracking
    """

    __tablename__ = "job_runs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    job_name: Mapped[str] = mapped_column(String(100), nullable=False)
    started_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )
    completed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, doc="'running', 'success', 'failed'"
    )
    records_processed: Mapped[int] = mapped_column(Integer, default=0)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    job_metadata: Mapped[dict[str, Any] | None] = mapped_column(
        "metadata", JSONType, nullable=True
    )

    __table_args__ = (Index("idx_job_runs_name_started", "job_name", "started_at"),)

    def __repr__(self) -> str:
        return f"<JobRun {self.job_name} status={self.status}>"
