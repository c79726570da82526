"""Batch finalization and lease maintenance.

A batch becomes COMPLETED once every one of its runs is terminal, failed
runs included. Aggregates are recomputed before the transition, so a
COMPLETED batch always has them. Both steps are idempotent, so any number of
executors may race to finalize the same batch.

The maintenance sweep resets RUNNING runs whose lease expired (their
executor died), republishes them, and finalizes whatever is finished.
"""

import logging
from uuid import UUID

from bingosim.dispatch.contracts import RunPublisher, SimulationStore
from bingosim.engine.cancellation import CancellationToken, RunCancelledError
from bingosim.models.common import BatchStatus
from bingosim.services.aggregates import AggregationService

logger = logging.getLogger(__name__)


class BatchFinalizer:
    def __init__(self, store: SimulationStore, aggregation: AggregationService) -> None:
        self._store = store
        self._aggregation = aggregation

    async def try_finalize(self, batch_id: UUID) -> bool:
        """Complete the batch if all runs are terminal. True if this call completed it."""
        counts = await self._store.count_runs(batch_id)
        if not counts.all_terminal:
            return False

        batch = await self._store.get_batch(batch_id)
        if batch is None or batch.status != BatchStatus.RUNNING:
            return False

        await self._aggregation.recompute(batch_id)
        won = await self._store.transition_batch(
            batch_id,
            from_status=BatchStatus.RUNNING,
            to_status=BatchStatus.COMPLETED,
        )
        if won:
            logger.info(
                "Batch %s completed: %d completed, %d failed runs",
                batch_id, counts.completed, counts.failed,
            )
        return won


class BatchMaintenance:
    def __init__(
        self,
        store: SimulationStore,
        finalizer: BatchFinalizer,
        publisher: RunPublisher,
        *,
        max_attempts: int,
    ) -> None:
        self._store = store
        self._finalizer = finalizer
        self._publisher = publisher
        self._max_attempts = max_attempts

    async def sweep(self) -> list[UUID]:
        """One pass. Returns the run ids that were reset and republished."""
        reset = await self._store.reclaim_expired(max_attempts=self._max_attempts)
        if reset:
            logger.warning("Lease expired for %d runs; republishing", len(reset))
            await self._publisher.publish_batch(reset)

        for batch in await self._store.list_batches(BatchStatus.RUNNING):
            await self._finalizer.try_finalize(batch.batch_id)
        return reset

    async def run(self, token: CancellationToken, *, interval_seconds: float) -> None:
        """Sweep every ``interval_seconds`` until cancelled."""
        while not token.cancelled:
            try:
                await self.sweep()
            except Exception:
                logger.exception("Maintenance sweep failed")
            try:
                await token.sleep(interval_seconds)
            except RunCancelledError:
                break
        logger.info("Maintenance loop stopped")

