"""Collaborator contracts of the execution engine.

- SimulationStore: batches, runs, snapshots, results and aggregates.
- RunQueue: local FIFO of run ids.
- RunPublisher: hands run ids to whatever executes them (local queue or bus).
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Protocol
from uuid import UUID

from bingosim.models.board import BoardSnapshot, StrategyConfig
from bingosim.models.common import BatchStatus, RunStatus
from bingosim.models.run import RunResult, SimulationBatch, SimulationRun, TeamAggregate


@dataclass(frozen=True)
class Claim:
    """Runs moved PENDING -> RUNNING by one claim call, fenced by ``token``."""

    token: UUID
    run_ids: tuple[UUID, ...] = field(default_factory=tuple)

    def __bool__(self) -> bool:
        return bool(self.run_ids)

    def __contains__(self, run_id: object) -> bool:
        return run_id in self.run_ids


@dataclass(frozen=True)
class RunCounts:
    pending: int = 0
    running: int = 0
    completed: int = 0
    failed: int = 0
    retried: int = 0

    @property
    def total(self) -> int:
        return self.pending + self.running + self.completed + self.failed

    @property
    def all_terminal(self) -> bool:
        return self.total > 0 and self.pending == 0 and self.running == 0


class SimulationStore(Protocol):
    # --- Batches ---

    async def create_batch(
        self,
        batch: SimulationBatch,
        snapshot: BoardSnapshot,
        runs: list[SimulationRun],
    ) -> None: ...

    async def get_batch(self, batch_id: UUID) -> SimulationBatch | None: ...

    async def list_batches(
        self, status: BatchStatus | None = None,
    ) -> list[SimulationBatch]: ...

    async def transition_batch(
        self,
        batch_id: UUID,
        *,
        from_status: BatchStatus,
        to_status: BatchStatus,
        error_message: str | None = None,
    ) -> bool:
        """Conditionally move a batch between statuses. False if it was not in from_status."""
        ...

    # --- Snapshots ---

    async def get_snapshot(self, batch_id: UUID) -> BoardSnapshot:
        """Raises NotFoundError or SnapshotUnreadableError."""
        ...

    async def get_strategy_config(self, batch_id: UUID, team_id: UUID) -> StrategyConfig: ...

    # --- Runs ---

    async def get_run(self, run_id: UUID) -> SimulationRun | None: ...

    async def list_runs(
        self, batch_id: UUID, status: RunStatus | None = None,
    ) -> list[SimulationRun]: ...

    async def claim_runs(
        self, run_ids: list[UUID], *, lease_seconds: int, now: datetime | None = None,
    ) -> Claim:
        """Atomically move every claimable (PENDING) id to RUNNING in one round trip."""
        ...

    async def complete_run(self, run_id: UUID, claim_token: UUID, result: RunResult) -> bool:
        """Store the result and mark the run COMPLETED. False if the claim is stale."""
        ...

    async def fail_run(
        self, run_id: UUID, claim_token: UUID, cause: str, *, max_attempts: int,
    ) -> RunStatus | None:
        """Record a failed attempt. Returns PENDING (retry), FAILED, or None if stale."""
        ...

    async def release_run(self, run_id: UUID, claim_token: UUID) -> bool:
        """Return a cancelled run to PENDING without counting an attempt."""
        ...

    async def reclaim_expired(
        self, *, now: datetime | None = None, max_attempts: int,
    ) -> list[UUID]:
        """Reset RUNNING runs whose lease expired. Returns ids now PENDING."""
        ...

    async def count_runs(self, batch_id: UUID) -> RunCounts: ...

    async def runs_per_team(self, batch_id: UUID) -> dict[UUID, int]: ...

    # --- Results & aggregates ---

    async def get_result(self, run_id: UUID) -> RunResult | None: ...

    async def list_results(self, batch_id: UUID) -> list[RunResult]: ...

    async def save_aggregate(self, aggregate: TeamAggregate) -> None:
        """Upsert by (batch_id, team_id)."""
        ...

    async def list_aggregates(self, batch_id: UUID) -> list[TeamAggregate]: ...


class RunQueue(Protocol):
    async def enqueue(self, run_id: UUID) -> None: ...

    async def dequeue(self) -> UUID | None:
        """Next run id, or None when the queue is empty."""
        ...


class RunPublisher(Protocol):
    async def publish(self, run_id: UUID) -> None: ...

    async def publish_batch(self, run_ids: list[UUID]) -> None: ...
