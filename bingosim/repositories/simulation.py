"""Simulation repositories: batches, snapshots, runs, results, aggregates.

Repositories only add/flush/execute. The caller owns the transaction.
"""

from datetime import datetime, timedelta
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from bingosim.db.tables import (
    BoardSnapshotRow,
    RunResultRow,
    SimulationBatchRow,
    SimulationRunRow,
    TeamAggregateRow,
)
from bingosim.models.common import RunStatus, utc_now


class BatchRepository:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(self, *, batch_id: UUID, event_id: UUID, name: str,
                     execution_mode: str, status: str, seed: str,
                     total_runs: int, created_at: datetime | None = None) -> SimulationBatchRow:
        row = SimulationBatchRow(
            batch_id=batch_id, event_id=event_id, name=name,
            execution_mode=execution_mode, status=status, seed=seed,
            total_runs=total_runs, created_at=created_at or utc_now(),
        )
        self._session.add(row)
        await self._session.flush()
        return row

    async def get(self, batch_id: UUID) -> SimulationBatchRow | None:
        return await self._session.get(SimulationBatchRow, batch_id, populate_existing=True)

    async def list_all(self, status: str | None = None) -> list[SimulationBatchRow]:
        stmt = (
            select(SimulationBatchRow)
            .order_by(SimulationBatchRow.created_at)
            .execution_options(populate_existing=True)
        )
        if status is not None:
            stmt = stmt.where(SimulationBatchRow.status == status)
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def transition(self, batch_id: UUID, *, from_status: str, to_status: str,
                         error_message: str | None = None,
                         completed_at: datetime | None = None) -> bool:
        """Compare-and-set on status. Returns False if the batch was not in from_status."""
        values: dict = {"status": to_status, "error_message": error_message}
        if completed_at is not None:
            values["completed_at"] = completed_at
        stmt = (
            update(SimulationBatchRow)
            .where(
                SimulationBatchRow.batch_id == batch_id,
                SimulationBatchRow.status == from_status,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        return result.rowcount == 1


class SnapshotRepository:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(self, *, batch_id: UUID, version: int, payload: str) -> BoardSnapshotRow:
        row = BoardSnapshotRow(
            batch_id=batch_id, version=version, payload=payload, created_at=utc_now(),
        )
        self._session.add(row)
        await self._session.flush()
        return row

    async def get(self, batch_id: UUID) -> BoardSnapshotRow | None:
        return await self._session.get(BoardSnapshotRow, batch_id)


class RunRepository:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create_many(self, runs: list[dict]) -> None:
        self._session.add_all(SimulationRunRow(**run) for run in runs)
        await self._session.flush()

    async def get(self, run_id: UUID) -> SimulationRunRow | None:
        return await self._session.get(SimulationRunRow, run_id, populate_existing=True)

    async def list_for_batch(self, batch_id: UUID,
                             status: str | None = None) -> list[SimulationRunRow]:
        stmt = (
            select(SimulationRunRow)
            .where(SimulationRunRow.batch_id == batch_id)
            .order_by(SimulationRunRow.ordinal)
            .execution_options(populate_existing=True)
        )
        if status is not None:
            stmt = stmt.where(SimulationRunRow.status == status)
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def claim(self, run_ids: list[UUID], *, token: UUID, now: datetime,
                    lease_seconds: int) -> list[UUID]:
        """PENDING -> RUNNING for every claimable id, in a single UPDATE ... RETURNING."""
        if not run_ids:
            return []
        stmt = (
            update(SimulationRunRow)
            .where(
                SimulationRunRow.run_id.in_(run_ids),
                SimulationRunRow.status == RunStatus.PENDING.value,
            )
            .values(
                status=RunStatus.RUNNING.value,
                claim_token=token,
                started_at=now,
                lease_expires_at=now + timedelta(seconds=lease_seconds),
            )
            .returning(SimulationRunRow.run_id)
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def transition_claimed(self, run_id: UUID, token: UUID, **values) -> bool:
        """Update a RUNNING run only while ``token`` still holds its claim."""
        stmt = (
            update(SimulationRunRow)
            .where(
                SimulationRunRow.run_id == run_id,
                SimulationRunRow.status == RunStatus.RUNNING.value,
                SimulationRunRow.claim_token == token,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        return result.rowcount == 1

    async def list_expired(self, now: datetime) -> list[SimulationRunRow]:
        stmt = select(SimulationRunRow).where(
            SimulationRunRow.status == RunStatus.RUNNING.value,
            SimulationRunRow.lease_expires_at.is_not(None),
            SimulationRunRow.lease_expires_at <= now,
        ).execution_options(populate_existing=True)
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def count_by_status(self, batch_id: UUID) -> dict[str, int]:
        stmt = (
            select(SimulationRunRow.status, func.count())
            .where(SimulationRunRow.batch_id == batch_id)
            .group_by(SimulationRunRow.status)
        )
        result = await self._session.execute(stmt)
        return {status: count for status, count in result.all()}

    async def count_retried(self, batch_id: UUID) -> int:
        stmt = select(func.count(SimulationRunRow.run_id)).where(
            SimulationRunRow.batch_id == batch_id,
            SimulationRunRow.attempt_count > 0,
        )
        result = await self._session.execute(stmt)
        return int(result.scalar_one())

    async def count_by_team(self, batch_id: UUID) -> dict[UUID, int]:
        stmt = (
            select(SimulationRunRow.team_id, func.count())
            .where(SimulationRunRow.batch_id == batch_id)
            .group_by(SimulationRunRow.team_id)
        )
        result = await self._session.execute(stmt)
        return {team_id: count for team_id, count in result.all()}


class RunResultRepository:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(self, *, run_id: UUID, batch_id: UUID, team_id: UUID,
                     board_completed: bool, elapsed_seconds: float,
                     payload: dict) -> RunResultRow:
        row = RunResultRow(
            run_id=run_id, batch_id=batch_id, team_id=team_id,
            board_completed=board_completed, elapsed_seconds=elapsed_seconds,
            payload=payload, created_at=utc_now(),
        )
        self._session.add(row)
        await self._session.flush()
        return row

    async def get(self, run_id: UUID) -> RunResultRow | None:
        return await self._session.get(RunResultRow, run_id)

    async def list_for_batch(self, batch_id: UUID) -> list[RunResultRow]:
        result = await self._session.execute(
            select(RunResultRow).where(RunResultRow.batch_id == batch_id)
        )
        return list(result.scalars().all())


class TeamAggregateRepository:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def upsert(self, *, batch_id: UUID, team_id: UUID,
                     completion_rate: float, payload: dict) -> TeamAggregateRow:
        row = await self._session.get(TeamAggregateRow, (batch_id, team_id))
        if row is None:
            row = TeamAggregateRow(batch_id=batch_id, team_id=team_id)
            self._session.add(row)
        row.completion_rate = completion_rate
        row.payload = payload
        row.updated_at = utc_now()
        await self._session.flush()
        return row

    async def list_for_batch(self, batch_id: UUID) -> list[TeamAggregateRow]:
        result = await self._session.execute(
            select(TeamAggregateRow)
            .where(TeamAggregateRow.batch_id == batch_id)
            .order_by(TeamAggregateRow.team_id)
        )
        return list(result.scalars().all())
