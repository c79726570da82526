"""SQLAlchemy ORM table models for BingoSim.

Uses FlexJSON (JSONB on Postgres, JSON on SQLite) for nested payloads.

Categories:
- IMMUTABLE: BoardSnapshotRow, RunResultRow (written once)
- OPERATIONAL: SimulationBatchRow, SimulationRunRow (status updates allowed),
               TeamAggregateRow (recomputed and upserted)
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import (
    BigInteger,
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.types import JSON

from bingosim.db.session import Base

# JSONB on PostgreSQL, plain JSON on SQLite (for tests)
FlexJSON = JSONB().with_variant(JSON(), "sqlite")


# ---------------------------------------------------------------------------
# Batches (OPERATIONAL)
# ---------------------------------------------------------------------------


class SimulationBatchRow(Base):
    __tablename__ = "simulation_batches"

    batch_id: Mapped[UUID] = mapped_column(primary_key=True)
    event_id: Mapped[UUID] = mapped_column(nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), default="")
    execution_mode: Mapped[str] = mapped_column(String(20), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, index=True)
    seed: Mapped[str] = mapped_column(String(255), nullable=False)
    total_runs: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


# ---------------------------------------------------------------------------
# Snapshots (IMMUTABLE)
# ---------------------------------------------------------------------------


class BoardSnapshotRow(Base):
    """Versioned JSON blob of the board frozen at batch start."""

    __tablename__ = "board_snapshots"

    batch_id: Mapped[UUID] = mapped_column(
        ForeignKey("simulation_batches.batch_id", ondelete="CASCADE"), primary_key=True,
    )
    version: Mapped[int] = mapped_column(Integer, nullable=False)
    payload: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


# ---------------------------------------------------------------------------
# Runs (OPERATIONAL)
# ---------------------------------------------------------------------------


class SimulationRunRow(Base):
    __tablename__ = "simulation_runs"
    __table_args__ = (
        Index("ix_simulation_runs_batch_status", "batch_id", "status"),
        Index("ix_simulation_runs_status_lease", "status", "lease_expires_at"),
    )

    run_id: Mapped[UUID] = mapped_column(primary_key=True)
    batch_id: Mapped[UUID] = mapped_column(
        ForeignKey("simulation_batches.batch_id", ondelete="CASCADE"), nullable=False,
    )
    team_id: Mapped[UUID] = mapped_column(nullable=False)
    ordinal: Mapped[int] = mapped_column(Integer, nullable=False)
    seed: Mapped[int] = mapped_column(BigInteger, nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    attempt_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    claim_token: Mapped[UUID | None] = mapped_column(nullable=True)
    lease_expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


# ---------------------------------------------------------------------------
# Results (IMMUTABLE)
# ---------------------------------------------------------------------------


class RunResultRow(Base):
    """One row per run id. The primary key makes the write exactly-once."""

    __tablename__ = "run_results"

    run_id: Mapped[UUID] = mapped_column(
        ForeignKey("simulation_runs.run_id", ondelete="CASCADE"), primary_key=True,
    )
    batch_id: Mapped[UUID] = mapped_column(nullable=False, index=True)
    team_id: Mapped[UUID] = mapped_column(nullable=False)
    board_completed: Mapped[bool] = mapped_column(Boolean, nullable=False)
    elapsed_seconds: Mapped[float] = mapped_column(Float, nullable=False)
    payload: Mapped[dict] = mapped_column(FlexJSON, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


# ---------------------------------------------------------------------------
# Aggregates (OPERATIONAL, full recompute and upsert)
# ---------------------------------------------------------------------------


class TeamAggregateRow(Base):
    __tablename__ = "team_aggregates"

    batch_id: Mapped[UUID] = mapped_column(
        ForeignKey("simulation_batches.batch_id", ondelete="CASCADE"), primary_key=True,
    )
    team_id: Mapped[UUID] = mapped_column(primary_key=True)
    completion_rate: Mapped[float] = mapped_column(Float, nullable=False)
    payload: Mapped[dict] = mapped_column(FlexJSON, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
