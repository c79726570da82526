"""Batch service: start simulation batches and report on them.

start_batch freezes the board into a snapshot, creates one run per
(team, run index) with a seed derived from the batch seed and the run's
ordinal, moves the batch to RUNNING and hands the run ids to the publisher
of the requested execution mode. If the ids cannot be handed over the batch
goes to ERROR; individual run failures never do that.
"""

import logging
from uuid import UUID

from bingosim.dispatch.contracts import RunPublisher, SimulationStore
from bingosim.engine.seeds import derive_run_seed
from bingosim.engine.strategies import StrategyRegistry
from bingosim.engine.timing import TimeSamplerRegistry
from bingosim.models.board import BoardSnapshot, freeze_snapshot
from bingosim.models.common import BatchStatus, ExecutionMode, new_uuid7, utc_now
from bingosim.models.faults import NotFoundError, summarize_cause
from bingosim.models.run import (
    BatchProgress,
    RunResult,
    SimulationBatch,
    SimulationRun,
    TeamAggregate,
)
from bingosim.services.aggregates import AggregationService

logger = logging.getLogger(__name__)


class SimulationBatchService:
    def __init__(
        self,
        store: SimulationStore,
        strategies: StrategyRegistry,
        time_samplers: TimeSamplerRegistry,
        aggregation: AggregationService,
        *,
        local_publisher: RunPublisher | None = None,
        distributed_publisher: RunPublisher | None = None,
    ) -> None:
        self._store = store
        self._strategies = strategies
        self._time_samplers = time_samplers
        self._aggregation = aggregation
        self._publishers: dict[ExecutionMode, RunPublisher] = {}
        if local_publisher is not None:
            self._publishers[ExecutionMode.LOCAL] = local_publisher
        if distributed_publisher is not None:
            self._publishers[ExecutionMode.DISTRIBUTED] = distributed_publisher

    @property
    def execution_modes(self) -> list[ExecutionMode]:
        return list(self._publishers)

    async def start_batch(
        self,
        board: BoardSnapshot | dict,
        *,
        runs_per_team: int,
        execution_mode: ExecutionMode = ExecutionMode.LOCAL,
        seed: str | None = None,
        name: str = "",
    ) -> SimulationBatch:
        """Create and publish a batch.

        Raises:
            ValueError: Invalid board, runs_per_team or strategy params, or no
                publisher for the execution mode.
            KeyError: Unknown strategy or custom time sampler key.
        """
        if runs_per_team < 1:
            msg = f"runs_per_team must be >= 1, got {runs_per_team}"
            raise ValueError(msg)
        publisher = self._publishers.get(execution_mode)
        if publisher is None:
            msg = f"Execution mode {execution_mode} is not available in this process"
            raise ValueError(msg)

        snapshot = freeze_snapshot(board)
        for team in snapshot.teams:
            self._strategies.validate(team.strategy)
        self._time_samplers.validate(t for row in snapshot.rows for t in row.tasks)

        batch_id = new_uuid7()
        batch_seed = (seed or "").strip() or str(batch_id)
        runs: list[SimulationRun] = []
        for team in snapshot.teams:
            for _ in range(runs_per_team):
                ordinal = len(runs)
                runs.append(SimulationRun(
                    batch_id=batch_id,
                    team_id=team.team_id,
                    ordinal=ordinal,
                    seed=derive_run_seed(batch_seed, ordinal),
                ))

        batch = SimulationBatch(
            batch_id=batch_id,
            event_id=snapshot.event_id,
            name=name or snapshot.event_name,
            execution_mode=execution_mode,
            status=BatchStatus.PENDING,
            seed=batch_seed,
            total_runs=len(runs),
        )
        await self._store.create_batch(batch, snapshot, runs)
        await self._store.transition_batch(
            batch_id, from_status=BatchStatus.PENDING, to_status=BatchStatus.RUNNING,
        )

        try:
            await publisher.publish_batch([r.run_id for r in runs])
        except Exception as exc:
            logger.exception("Publishing runs of batch %s failed", batch_id)
            await self._store.transition_batch(
                batch_id,
                from_status=BatchStatus.RUNNING,
                to_status=BatchStatus.ERROR,
                error_message=summarize_cause(exc),
            )
        else:
            logger.info(
                "Batch %s started: %d teams x %d runs (%s)",
                batch_id, len(snapshot.teams), runs_per_team, execution_mode,
            )
        return await self.get_batch(batch_id)

    async def get_batch(self, batch_id: UUID) -> SimulationBatch:
        batch = await self._store.get_batch(batch_id)
        if batch is None:
            raise NotFoundError("batch", batch_id)
        return batch

    async def get_progress(self, batch_id: UUID) -> BatchProgress:
        batch = await self.get_batch(batch_id)
        counts = await self._store.count_runs(batch_id)
        end = batch.completed_at or utc_now()
        elapsed = (end - batch.created_at).total_seconds()
        terminal = counts.completed + counts.failed
        return BatchProgress(
            batch_id=batch_id,
            status=batch.status,
            total_runs=counts.total,
            pending=counts.pending,
            running=counts.running,
            completed=counts.completed,
            failed=counts.failed,
            retried=counts.retried,
            runs_per_second=terminal / elapsed if elapsed > 0 and terminal else None,
        )

    async def get_aggregates(self, batch_id: UUID) -> list[TeamAggregate]:
        """Aggregates of a batch; recomputed unless the batch is finished."""
        batch = await self.get_batch(batch_id)
        if batch.status == BatchStatus.COMPLETED:
            stored = await self._store.list_aggregates(batch_id)
            if stored:
                return stored
        return await self._aggregation.recompute(batch_id, persist=False)

    async def get_result(self, run_id: UUID) -> RunResult:
        result = await self._store.get_result(run_id)
        if result is None:
            raise NotFoundError("result", run_id)
        return result
