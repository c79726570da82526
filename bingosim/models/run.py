"""Batch and run models: SimulationBatch, SimulationRun, RunResult (immutable),
TeamAggregate."""

from datetime import datetime
from uuid import UUID

from pydantic import Field

from bingosim.models.board import ItemStack
from bingosim.models.common import (
    BatchStatus,
    BingoSimBase,
    ExecutionMode,
    RunStatus,
    TerminationReason,
    UTCTimestamp,
    UUIDv7,
    new_uuid7,
    utc_now,
)


class SimulationBatch(BingoSimBase):
    """A requested set of runs against one board snapshot.

    COMPLETED is reached only once every run is terminal; ERROR is reserved
    for orchestration failures, never for individual run failures.
    """

    batch_id: UUIDv7 = Field(default_factory=new_uuid7)
    event_id: UUID
    name: str = ""
    execution_mode: ExecutionMode = ExecutionMode.LOCAL
    status: BatchStatus = BatchStatus.PENDING
    seed: str = Field(..., min_length=1)
    total_runs: int = Field(default=0, ge=0)
    error_message: str | None = None
    created_at: UTCTimestamp = Field(default_factory=utc_now)
    completed_at: datetime | None = None


class SimulationRun(BingoSimBase):
    """One execution unit of a batch, for one team."""

    run_id: UUIDv7 = Field(default_factory=new_uuid7)
    batch_id: UUID
    team_id: UUID
    ordinal: int = Field(..., ge=0)
    seed: int = Field(..., ge=0)
    status: RunStatus = RunStatus.PENDING
    attempt_count: int = Field(default=0, ge=0)
    last_error: str | None = None
    claim_token: UUID | None = None
    lease_expires_at: datetime | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None


class RunResult(BingoSimBase, frozen=True):
    """Immutable output of one simulated run.

    Written exactly once per run id. Carries no wall-clock data: the same run
    re-executed with the same seed yields an identical result.
    """

    run_id: UUID
    batch_id: UUID
    team_id: UUID
    seed: int
    strategy_key: str
    rows_completed: int = Field(..., ge=0)
    board_completed: bool
    termination: TerminationReason
    elapsed_seconds: float = Field(..., ge=0)
    attempts: int = Field(..., ge=0)
    points: int = Field(..., ge=0)
    tasks_completed: int = Field(..., ge=0)
    items: tuple[ItemStack, ...] = Field(default_factory=tuple)
    row_completion_seconds: tuple[float, ...] = Field(
        default_factory=tuple,
        description="Simulated time at which each completed row was finished, in row order.",
    )


class CompletionTimeSummary(BingoSimBase, frozen=True):
    """Distribution of board-completion times over the completed runs."""

    mean: float
    minimum: float
    maximum: float
    p50: float
    p90: float
    p95: float


class TeamAggregate(BingoSimBase):
    """Per (batch, team) statistics. Always recomputable from the result set."""

    batch_id: UUID
    team_id: UUID
    team_name: str = ""
    strategy_key: str = ""
    total_runs: int = Field(..., ge=0)
    results_observed: int = Field(..., ge=0)
    completed_runs: int = Field(..., ge=0)
    completion_rate: float = Field(..., ge=0.0, le=1.0)
    completion_time: CompletionTimeSummary | None = None
    mean_points: float = 0.0
    mean_rows_completed: float = 0.0
    max_rows_completed: int = 0
    resource_totals: dict[str, int] = Field(default_factory=dict)
    updated_at: UTCTimestamp = Field(default_factory=utc_now)


class BatchProgress(BingoSimBase):
    """Run-status counts of a batch, plus throughput since batch creation."""

    batch_id: UUID
    status: BatchStatus
    total_runs: int = 0
    pending: int = 0
    running: int = 0
    completed: int = 0
    failed: int = 0
    retried: int = 0
    runs_per_second: float | None = None

    @property
    def terminal(self) -> int:
        return self.completed + self.failed
