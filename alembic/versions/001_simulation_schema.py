"""Simulation schema: batches, board snapshots, runs, results, team aggregates.

Revision ID: 001
Revises:
Create Date: 2026-10-16
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB, UUID

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # -- Batches (OPERATIONAL) --
    op.create_table(
        "simulation_batches",
        sa.Column("batch_id", UUID(as_uuid=True), primary_key=True),
        sa.Column("event_id", UUID(as_uuid=True), nullable=False),
        sa.Column("name", sa.String(255), server_default=""),
        sa.Column("execution_mode", sa.String(20), nullable=False),
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column("seed", sa.String(255), nullable=False),
        sa.Column("total_runs", sa.Integer, nullable=False, server_default="0"),
        sa.Column("error_message", sa.Text, nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_simulation_batches_event_id", "simulation_batches", ["event_id"])
    op.create_index("ix_simulation_batches_status", "simulation_batches", ["status"])

    # -- Snapshots (IMMUTABLE) --
    op.create_table(
        "board_snapshots",
        sa.Column(
            "batch_id", UUID(as_uuid=True),
            sa.ForeignKey("simulation_batches.batch_id", ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column("version", sa.Integer, nullable=False),
        sa.Column("payload", sa.Text, nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )

    # -- Runs (OPERATIONAL) --
    op.create_table(
        "simulation_runs",
        sa.Column("run_id", UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "batch_id", UUID(as_uuid=True),
            sa.ForeignKey("simulation_batches.batch_id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("team_id", UUID(as_uuid=True), nullable=False),
        sa.Column("ordinal", sa.Integer, nullable=False),
        sa.Column("seed", sa.BigInteger, nullable=False),
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column("attempt_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("last_error", sa.Text, nullable=True),
        sa.Column("claim_token", UUID(as_uuid=True), nullable=True),
        sa.Column("lease_expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index(
        "ix_simulation_runs_batch_status", "simulation_runs", ["batch_id", "status"],
    )
    op.create_index(
        "ix_simulation_runs_status_lease", "simulation_runs", ["status", "lease_expires_at"],
    )

    # -- Results (IMMUTABLE) --
    op.create_table(
        "run_results",
        sa.Column(
            "run_id", UUID(as_uuid=True),
            sa.ForeignKey("simulation_runs.run_id", ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column("batch_id", UUID(as_uuid=True), nullable=False),
        sa.Column("team_id", UUID(as_uuid=True), nullable=False),
        sa.Column("board_completed", sa.Boolean, nullable=False),
        sa.Column("elapsed_seconds", sa.Float, nullable=False),
        sa.Column("payload", JSONB, nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_run_results_batch_id", "run_results", ["batch_id"])

    # -- Aggregates (OPERATIONAL, upserted) --
    op.create_table(
        "team_aggregates",
        sa.Column(
            "batch_id", UUID(as_uuid=True),
            sa.ForeignKey("simulation_batches.batch_id", ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column("team_id", UUID(as_uuid=True), primary_key=True),
        sa.Column("completion_rate", sa.Float, nullable=False),
        sa.Column("payload", JSONB, nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )


def downgrade() -> None:
    op.drop_table("team_aggregates")
    op.drop_index("ix_run_results_batch_id", table_name="run_results")
    op.drop_table("run_results")
    op.drop_index("ix_simulation_runs_status_lease", table_name="simulation_runs")
    op.drop_index("ix_simulation_runs_batch_status", table_name="simulation_runs")
    op.drop_table("simulation_runs")
    op.drop_table("board_snapshots")
    op.drop_index("ix_simulation_batches_status", table_name="simulation_batches")
    op.drop_index("ix_simulation_batches_event_id", table_name="simulation_batches")
    op.drop_table("simulation_batches")
