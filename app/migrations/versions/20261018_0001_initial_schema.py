"""Initial schema for Sharpline.

Revision ID: 0001
Revises:
Create Date: 2026-10-18

Creates the run pipeline tables:
- capper_profiles: factor weight configuration per capper/sport/bet type
- runs: pipeline aggregate root
- run_stages, run_factors: append-only audit trail
- picks: immutable decisions, one per run
- idempotency_records: stored stage results keyed by (run, stage, key)
- job_runs: scheduled task audit log
"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "0001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
    ]


def upgrade() -> None:
    op.create_table(
        "capper_profiles",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("capper", sa.String(length=50), nullable=False),
        sa.Column("sport", sa.String(length=10), nullable=False),
        sa.Column("bet_type", sa.String(length=10), nullable=False),
        sa.Column("factors", postgresql.JSONB(), nullable=True),
        sa.Column("profile_version", sa.String(length=30), nullable=True),
        sa.Column("auto_run", sa.Boolean(), nullable=True, default=False),
        sa.Column("is_active", sa.Boolean(), nullable=True, default=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("capper", "sport", "bet_type", name="uq_capper_profile"),
    )

    op.create_table(
        "runs",
        sa.Column("run_id", sa.String(length=36), nullable=False),
        sa.Column("capper", sa.String(length=50), nullable=False),
        sa.Column("sport", sa.String(length=10), nullable=False),
        sa.Column("bet_type", sa.String(length=10), nullable=False),
        sa.Column("game_id", sa.String(length=100), nullable=False),
        sa.Column("home_team", sa.String(length=100), nullable=False),
        sa.Column("away_team", sa.String(length=100), nullable=False),
        sa.Column("game_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("profile_version", sa.String(length=30), nullable=False),
        sa.Column("trigger", sa.String(length=20), nullable=True),
        sa.Column("state", sa.String(length=30), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("conf_predicted", sa.Float(), nullable=True),
        sa.Column("conf_final", sa.Float(), nullable=True),
        sa.Column("verdict", sa.String(length=10), nullable=True),
        sa.Column("units", sa.Integer(), nullable=True),
        sa.Column("error_kind", sa.String(length=40), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("error_stage", sa.String(length=20), nullable=True),
        sa.Column("request", postgresql.JSONB(), nullable=False),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("run_id"),
    )
    op.create_index("idx_runs_game", "runs", ["game_id", "bet_type"])
    op.create_index("idx_runs_capper_status", "runs", ["capper", "status"])

    op.create_table(
        "run_stages",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("run_id", sa.String(length=36), nullable=False),
        sa.Column("stage", sa.String(length=20), nullable=False),
        sa.Column("stage_number", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("payload", postgresql.JSONB(), nullable=True),
        sa.Column("error", postgresql.JSONB(), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.ForeignKeyConstraint(["run_id"], ["runs.run_id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("idx_run_stages_run", "run_stages", ["run_id", "stage"])

    op.create_table(
        "run_factors",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("run_id", sa.String(length=36), nullable=False),
        sa.Column("stage", sa.String(length=20), nullable=False),
        sa.Column("key", sa.String(length=50), nullable=False),
        sa.Column("display_name", sa.String(length=100), nullable=False),
        sa.Column("normalized_value", sa.Float(), nullable=False),
        sa.Column("weight_percent", sa.Float(), nullable=False),
        sa.Column("contribution", sa.Float(), nullable=False),
        sa.Column("was_capped", sa.Boolean(), nullable=True),
        sa.Column("cap_reason", sa.String(length=200), nullable=True),
        sa.Column("raw_inputs", postgresql.JSONB(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.ForeignKeyConstraint(["run_id"], ["runs.run_id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("idx_run_factors_run", "run_factors", ["run_id", "stage"])

    op.create_table(
        "picks",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("run_id", sa.String(length=36), nullable=False),
        sa.Column("capper", sa.String(length=50), nullable=False),
        sa.Column("sport", sa.String(length=10), nullable=False),
        sa.Column("game_id", sa.String(length=100), nullable=False),
        sa.Column("bet_type", sa.String(length=10), nullable=False),
        sa.Column("selection", sa.String(length=10), nullable=False),
        sa.Column("line", sa.Float(), nullable=True),
        sa.Column("units", sa.Integer(), nullable=False),
        sa.Column("confidence", sa.Float(), nullable=False),
        sa.Column("locked_odds", postgresql.JSONB(), nullable=False),
        sa.Column("locked_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.ForeignKeyConstraint(["run_id"], ["runs.run_id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("run_id"),
    )
    op.create_index("idx_picks_capper_game", "picks", ["capper", "game_id", "bet_type"])

    op.create_table(
        "idempotency_records",
        sa.Column("run_id", sa.String(length=36), nullable=False),
        sa.Column("stage", sa.String(length=20), nullable=False),
        sa.Column("key", sa.String(length=200), nullable=False),
        sa.Column("stored_status", sa.Integer(), nullable=False),
        sa.Column("stored_body", postgresql.JSONB(), nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.PrimaryKeyConstraint("run_id", "stage", "key"),
    )

    op.create_table(
        "job_runs",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("job_name", sa.String(length=100), nullable=False),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("records_processed", sa.Integer(), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("metadata", postgresql.JSONB(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("idx_job_runs_name_started", "job_runs", ["job_name", "started_at"])


def downgrade() -> None:
    op.drop_index("idx_job_runs_name_started", table_name="job_runs")
    op.drop_table("job_runs")
    op.drop_table("idempotency_records")
    op.drop_index("idx_picks_capper_game", table_name="picks")
    op.drop_table("picks")
    op.drop_index("idx_run_factors_run", table_name="run_factors")
    op.drop_table("run_factors")
    op.drop_index("idx_run_stages_run", table_name="run_stages")
    op.drop_table("run_stages")
    op.drop_index("idx_runs_capper_status", table_name="runs")
    op.drop_index("idx_runs_game", table_name="runs")
    op.drop_table("runs")
    op.drop_table("capper_profiles")
