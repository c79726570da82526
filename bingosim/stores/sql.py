"""SQLAlchemy-backed SimulationStore shared by the API, local runtime and workers.

Each operation is its own unit of work: it opens a session from the factory,
drives the repositories and commits. Run-state writes after a claim are
fenced by the claim token, so an executor whose lease was reclaimed can no
longer complete or fail the run.
"""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from bingosim.dispatch.contracts import Claim, RunCounts
from bingosim.engine.serialization import dump_snapshot, load_snapshot
from bingosim.models.board import BoardSnapshot, StrategyConfig
from bingosim.models.common import BatchStatus, RunStatus, new_uuid7, utc_now
from bingosim.models.faults import NotFoundError
from bingosim.models.run import RunResult, SimulationBatch, SimulationRun, TeamAggregate
from bingosim.repositories.simulation import (
    BatchRepository,
    RunRepository,
    RunResultRepository,
    SnapshotRepository,
    TeamAggregateRepository,
)

logger = logging.getLogger(__name__)


def _as_utc(value: datetime | None) -> datetime | None:
    # SQLite hands back naive datetimes; everything is stored in UTC.
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _batch_from_row(row) -> SimulationBatch:
    return SimulationBatch(
        batch_id=row.batch_id,
        event_id=row.event_id,
        name=row.name,
        execution_mode=row.execution_mode,
        status=row.status,
        seed=row.seed,
        total_runs=row.total_runs,
        error_message=row.error_message,
        created_at=_as_utc(row.created_at),
        completed_at=_as_utc(row.completed_at),
    )


def _run_from_row(row) -> SimulationRun:
    return SimulationRun(
        run_id=row.run_id,
        batch_id=row.batch_id,
        team_id=row.team_id,
        ordinal=row.ordinal,
        seed=row.seed,
        status=row.status,
        attempt_count=row.attempt_count,
        last_error=row.last_error,
        claim_token=row.claim_token,
        lease_expires_at=_as_utc(row.lease_expires_at),
        started_at=_as_utc(row.started_at),
        completed_at=_as_utc(row.completed_at),
    )


class SqlSimulationStore:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    @asynccontextmanager
    async def _unit_of_work(self) -> AsyncIterator[AsyncSession]:
        async with self._session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    # --- Batches ---

    async def create_batch(
        self,
        batch: SimulationBatch,
        snapshot: BoardSnapshot,
        runs: list[SimulationRun],
    ) -> None:
        async with self._unit_of_work() as session:
            await BatchRepository(session).create(
                batch_id=batch.batch_id,
                event_id=batch.event_id,
                name=batch.name,
                execution_mode=batch.execution_mode.value,
                status=batch.status.value,
                seed=batch.seed,
                total_runs=batch.total_runs,
                created_at=batch.created_at,
            )
            await SnapshotRepository(session).create(
                batch_id=batch.batch_id,
                version=snapshot.version,
                payload=dump_snapshot(snapshot),
            )
            await RunRepository(session).create_many([
                run.model_dump(exclude={"claim_token", "lease_expires_at",
                                        "started_at", "completed_at"})
                | {"status": run.status.value}
                for run in runs
            ])

    async def get_batch(self, batch_id: UUID) -> SimulationBatch | None:
        async with self._unit_of_work() as session:
            row = await BatchRepository(session).get(batch_id)
            return _batch_from_row(row) if row is not None else None

    async def list_batches(self, status: BatchStatus | None = None) -> list[SimulationBatch]:
        async with self._unit_of_work() as session:
            rows = await BatchRepository(session).list_all(
                status.value if status is not None else None,
            )
            return [_batch_from_row(r) for r in rows]

    async def transition_batch(
        self,
        batch_id: UUID,
        *,
        from_status: BatchStatus,
        to_status: BatchStatus,
        error_message: str | None = None,
    ) -> bool:
        terminal = to_status in (BatchStatus.COMPLETED, BatchStatus.ERROR)
        async with self._unit_of_work() as session:
            repo = BatchRepository(session)
            if await repo.get(batch_id) is None:
                raise NotFoundError("batch", batch_id)
            return await repo.transition(
                batch_id,
                from_status=from_status.value,
                to_status=to_status.value,
                error_message=error_message,
                completed_at=utc_now() if terminal else None,
            )

    # --- Snapshots ---

    async def get_snapshot(self, batch_id: UUID) -> BoardSnapshot:
        async with self._unit_of_work() as session:
            row = await SnapshotRepository(session).get(batch_id)
            if row is None:
                raise NotFoundError("snapshot", batch_id)
            payload = row.payload
        return load_snapshot(payload)

    async def get_strategy_config(self, batch_id: UUID, team_id: UUID) -> StrategyConfig:
        snapshot = await self.get_snapshot(batch_id)
        return snapshot.strategy_for(team_id)

    # --- Runs ---

    async def get_run(self, run_id: UUID) -> SimulationRun | None:
        async with self._unit_of_work() as session:
            row = await RunRepository(session).get(run_id)
            return _run_from_row(row) if row is not None else None

    async def list_runs(
        self, batch_id: UUID, status: RunStatus | None = None,
    ) -> list[SimulationRun]:
        async with self._unit_of_work() as session:
            rows = await RunRepository(session).list_for_batch(
                batch_id, status.value if status is not None else None,
            )
            return [_run_from_row(r) for r in rows]

    async def claim_runs(
        self, run_ids: list[UUID], *, lease_seconds: int, now: datetime | None = None,
    ) -> Claim:
        token = new_uuid7()
        async with self._unit_of_work() as session:
            claimed = await RunRepository(session).claim(
                list(dict.fromkeys(run_ids)),
                token=token,
                now=now or utc_now(),
                lease_seconds=lease_seconds,
            )
        return Claim(token=token, run_ids=tuple(claimed))

    async def complete_run(self, run_id: UUID, claim_token: UUID, result: RunResult) -> bool:
        try:
            async with self._unit_of_work() as session:
                won = await RunRepository(session).transition_claimed(
                    run_id,
                    claim_token,
                    status=RunStatus.COMPLETED.value,
                    claim_token=None,
                    lease_expires_at=None,
                    completed_at=utc_now(),
                )
                if not won:
                    return False
                await RunResultRepository(session).create(
                    run_id=run_id,
                    batch_id=result.batch_id,
                    team_id=result.team_id,
                    board_completed=result.board_completed,
                    elapsed_seconds=result.elapsed_seconds,
                    payload=result.model_dump(mode="json"),
                )
        except IntegrityError:
            logger.warning("Result for run %s already recorded", run_id)
            return False
        return True

    async def fail_run(
        self, run_id: UUID, claim_token: UUID, cause: str, *, max_attempts: int,
    ) -> RunStatus | None:
        async with self._unit_of_work() as session:
            repo = RunRepository(session)
            row = await repo.get(run_id)
            if row is None:
                return None
            attempts = row.attempt_count + 1
            status = RunStatus.FAILED if attempts >= max_attempts else RunStatus.PENDING
            won = await repo.transition_claimed(
                run_id,
                claim_token,
                status=status.value,
                attempt_count=attempts,
                last_error=cause,
                claim_token=None,
                lease_expires_at=None,
                completed_at=utc_now() if status == RunStatus.FAILED else None,
            )
            return status if won else None

    async def release_run(self, run_id: UUID, claim_token: UUID) -> bool:
        async with self._unit_of_work() as session:
            return await RunRepository(session).transition_claimed(
                run_id,
                claim_token,
                status=RunStatus.PENDING.value,
                claim_token=None,
                lease_expires_at=None,
                started_at=None,
            )

    async def reclaim_expired(
        self, *, now: datetime | None = None, max_attempts: int,
    ) -> list[UUID]:
        async with self._unit_of_work() as session:
            expired = await RunRepository(session).list_expired(now or utc_now())
            candidates = [(row.run_id, row.claim_token) for row in expired]
        reset: list[UUID] = []
        for run_id, token in candidates:
            status = await self.fail_run(run_id, token, "lease expired", max_attempts=max_attempts)
            if status == RunStatus.PENDING:
                reset.append(run_id)
        return reset

    async def count_runs(self, batch_id: UUID) -> RunCounts:
        async with self._unit_of_work() as session:
            repo = RunRepository(session)
            counts = await repo.count_by_status(batch_id)
            retried = await repo.count_retried(batch_id)
        return RunCounts(
            pending=counts.get(RunStatus.PENDING.value, 0),
            running=counts.get(RunStatus.RUNNING.value, 0),
            completed=counts.get(RunStatus.COMPLETED.value, 0),
            failed=counts.get(RunStatus.FAILED.value, 0),
            retried=retried,
        )

    async def runs_per_team(self, batch_id: UUID) -> dict[UUID, int]:
        async with self._unit_of_work() as session:
            return await RunRepository(session).count_by_team(batch_id)

    # --- Results & aggregates ---

    async def get_result(self, run_id: UUID) -> RunResult | None:
        async with self._unit_of_work() as session:
            row = await RunResultRepository(session).get(run_id)
            return RunResult.model_validate(row.payload) if row is not None else None

    async def list_results(self, batch_id: UUID) -> list[RunResult]:
        async with self._unit_of_work() as session:
            rows = await RunResultRepository(session).list_for_batch(batch_id)
            return [RunResult.model_validate(r.payload) for r in rows]

    async def save_aggregate(self, aggregate: TeamAggregate) -> None:
        payload = aggregate.model_dump(mode="json")
        for attempt in range(2):
            try:
                async with self._unit_of_work() as session:
                    await TeamAggregateRepository(session).upsert(
                        batch_id=aggregate.batch_id,
                        team_id=aggregate.team_id,
                        completion_rate=aggregate.completion_rate,
                        payload=payload,
                    )
                return
            except IntegrityError:
                # A concurrent recompute inserted the row first; update it instead.
                if attempt:
                    raise

    async def list_aggregates(self, batch_id: UUID) -> list[TeamAggregate]:
        async with self._unit_of_work() as session:
            rows = await TeamAggregateRepository(session).list_for_batch(batch_id)
            return [TeamAggregate.model_validate(r.payload) for r in rows]
