"""In-memory SimulationStore for single-process local execution and tests.

Every method runs to completion without awaiting in between reads and
writes, so on one event loop each call is atomic. Snapshots are kept as
serialized blobs; every read returns a fresh copy.
"""

from datetime import datetime, timedelta
from uuid import UUID

from bingosim.dispatch.contracts import Claim, RunCounts
from bingosim.engine.serialization import dump_snapshot, load_snapshot
from bingosim.models.board import BoardSnapshot, StrategyConfig
from bingosim.models.common import BatchStatus, RunStatus, new_uuid7, utc_now
from bingosim.models.faults import NotFoundError
from bingosim.models.run import RunResult, SimulationBatch, SimulationRun, TeamAggregate


class InMemorySimulationStore:
    def __init__(self) -> None:
        self._batches: dict[UUID, SimulationBatch] = {}
        self._snapshots: dict[UUID, str] = {}
        self._runs: dict[UUID, SimulationRun] = {}
        self._results: dict[UUID, RunResult] = {}
        self._aggregates: dict[tuple[UUID, UUID], TeamAggregate] = {}

    # --- Batches ---

    async def create_batch(
        self,
        batch: SimulationBatch,
        snapshot: BoardSnapshot,
        runs: list[SimulationRun],
    ) -> None:
        if batch.batch_id in self._batches:
            msg = f"Batch {batch.batch_id} already exists"
            raise ValueError(msg)
        self._batches[batch.batch_id] = batch.model_copy()
        self._snapshots[batch.batch_id] = dump_snapshot(snapshot)
        for run in runs:
            self._runs[run.run_id] = run.model_copy()

    async def get_batch(self, batch_id: UUID) -> SimulationBatch | None:
        batch = self._batches.get(batch_id)
        return batch.model_copy() if batch is not None else None

    async def list_batches(self, status: BatchStatus | None = None) -> list[SimulationBatch]:
        return [
            b.model_copy() for b in self._batches.values()
            if status is None or b.status == status
        ]

    async def transition_batch(
        self,
        batch_id: UUID,
        *,
        from_status: BatchStatus,
        to_status: BatchStatus,
        error_message: str | None = None,
    ) -> bool:
        batch = self._batches.get(batch_id)
        if batch is None:
            raise NotFoundError("batch", batch_id)
        if batch.status != from_status:
            return False
        terminal = to_status in (BatchStatus.COMPLETED, BatchStatus.ERROR)
        self._batches[batch_id] = batch.model_copy(update={
            "status": to_status,
            "error_message": error_message,
            "completed_at": utc_now() if terminal else batch.completed_at,
        })
        return True

    # --- Snapshots ---

    async def get_snapshot(self, batch_id: UUID) -> BoardSnapshot:
        payload = self._snapshots.get(batch_id)
        if payload is None:
            raise NotFoundError("snapshot", batch_id)
        return load_snapshot(payload)

    async def get_strategy_config(self, batch_id: UUID, team_id: UUID) -> StrategyConfig:
        snapshot = await self.get_snapshot(batch_id)
        return snapshot.strategy_for(team_id)

    # --- Runs ---

    async def get_run(self, run_id: UUID) -> SimulationRun | None:
        run = self._runs.get(run_id)
        return run.model_copy() if run is not None else None

    async def list_runs(
        self, batch_id: UUID, status: RunStatus | None = None,
    ) -> list[SimulationRun]:
        runs = [
            r for r in self._runs.values()
            if r.batch_id == batch_id and (status is None or r.status == status)
        ]
        return [r.model_copy() for r in sorted(runs, key=lambda r: r.ordinal)]

    async def claim_runs(
        self, run_ids: list[UUID], *, lease_seconds: int, now: datetime | None = None,
    ) -> Claim:
        now = now or utc_now()
        token = new_uuid7()
        claimed: list[UUID] = []
        for run_id in dict.fromkeys(run_ids):
            run = self._runs.get(run_id)
            if run is None or run.status != RunStatus.PENDING:
                continue
            self._runs[run_id] = run.model_copy(update={
                "status": RunStatus.RUNNING,
                "claim_token": token,
                "started_at": now,
                "lease_expires_at": now + timedelta(seconds=lease_seconds),
            })
            claimed.append(run_id)
        return Claim(token=token, run_ids=tuple(claimed))

    def _claimed(self, run_id: UUID, claim_token: UUID) -> SimulationRun | None:
        run = self._runs.get(run_id)
        if run is None or run.status != RunStatus.RUNNING or run.claim_token != claim_token:
            return None
        return run

    async def complete_run(self, run_id: UUID, claim_token: UUID, result: RunResult) -> bool:
        run = self._claimed(run_id, claim_token)
        if run is None or run_id in self._results:
            return False
        self._results[run_id] = result
        self._runs[run_id] = run.model_copy(update={
            "status": RunStatus.COMPLETED,
            "claim_token": None,
            "lease_expires_at": None,
            "completed_at": utc_now(),
        })
        return True

    async def fail_run(
        self, run_id: UUID, claim_token: UUID, cause: str, *, max_attempts: int,
    ) -> RunStatus | None:
        run = self._claimed(run_id, claim_token)
        if run is None:
            return None
        attempts = run.attempt_count + 1
        status = RunStatus.FAILED if attempts >= max_attempts else RunStatus.PENDING
        self._runs[run_id] = run.model_copy(update={
            "status": status,
            "attempt_count": attempts,
            "last_error": cause,
            "claim_token": None,
            "lease_expires_at": None,
            "completed_at": utc_now() if status == RunStatus.FAILED else None,
        })
        return status

    async def release_run(self, run_id: UUID, claim_token: UUID) -> bool:
        run = self._claimed(run_id, claim_token)
        if run is None:
            return False
        self._runs[run_id] = run.model_copy(update={
            "status": RunStatus.PENDING,
            "claim_token": None,
            "lease_expires_at": None,
            "started_at": None,
        })
        return True

    async def reclaim_expired(
        self, *, now: datetime | None = None, max_attempts: int,
    ) -> list[UUID]:
        now = now or utc_now()
        reset: list[UUID] = []
        for run in list(self._runs.values()):
            if run.status != RunStatus.RUNNING or run.lease_expires_at is None:
                continue
            if run.lease_expires_at > now:
                continue
            status = await self.fail_run(
                run.run_id, run.claim_token, "lease expired", max_attempts=max_attempts,
            )
            if status == RunStatus.PENDING:
                reset.append(run.run_id)
        return reset

    async def count_runs(self, batch_id: UUID) -> RunCounts:
        counts = {status: 0 for status in RunStatus}
        retried = 0
        for run in self._runs.values():
            if run.batch_id != batch_id:
                continue
            counts[run.status] += 1
            if run.attempt_count > 0:
                retried += 1
        return RunCounts(
            pending=counts[RunStatus.PENDING],
            running=counts[RunStatus.RUNNING],
            completed=counts[RunStatus.COMPLETED],
            failed=counts[RunStatus.FAILED],
            retried=retried,
        )

    async def runs_per_team(self, batch_id: UUID) -> dict[UUID, int]:
        totals: dict[UUID, int] = {}
        for run in self._runs.values():
            if run.batch_id == batch_id:
                totals[run.team_id] = totals.get(run.team_id, 0) + 1
        return totals

    # --- Results & aggregates ---

    async def get_result(self, run_id: UUID) -> RunResult | None:
        return self._results.get(run_id)

    async def list_results(self, batch_id: UUID) -> list[RunResult]:
        return [r for r in self._results.values() if r.batch_id == batch_id]

    async def save_aggregate(self, aggregate: TeamAggregate) -> None:
        self._aggregates[(aggregate.batch_id, aggregate.team_id)] = aggregate.model_copy()

    async def list_aggregates(self, batch_id: UUID) -> list[TeamAggregate]:
        return [
            a.model_copy() for (b, _), a in sorted(
                self._aggregates.items(), key=lambda kv: str(kv[0][1]),
            )
            if b == batch_id
        ]
