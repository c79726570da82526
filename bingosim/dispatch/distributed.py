"""Distributed dispatch over Celery (DISTRIBUTED execution mode).

Messages carry run identifiers only; workers read everything else from the
shared database. Two message kinds:
- bingosim.execute_run        one run id
- bingosim.execute_run_batch  a list of run ids, claimed in one round trip

With WORKER_COUNT > 1 the publisher routes each id to the queue of the
worker that owns its partition. A worker that still receives ids it does not
own (unpartitioned publisher, resized fleet) forwards them to the owner's
queue instead of dropping them.
"""

import asyncio
import logging
from itertools import islice
from uuid import UUID

from pydantic import BaseModel, Field

from bingosim.config.settings import Settings, get_settings
from bingosim.dispatch.contracts import RunPublisher, SimulationStore
from bingosim.dispatch.executor import RunExecutor
from bingosim.dispatch.partition import (
    SHARED_QUEUE,
    WorkerPartition,
    partition_key,
    partition_queue,
)
from bingosim.engine.cancellation import CancellationToken, RunCancelledError
from bingosim.models.faults import DispatchError, RunOutcome

logger = logging.getLogger(__name__)

EXECUTE_RUN_TASK = "bingosim.execute_run"
EXECUTE_RUN_BATCH_TASK = "bingosim.execute_run_batch"


# ---------------------------------------------------------------------------
# Message payloads
# ---------------------------------------------------------------------------


class ExecuteRunMessage(BaseModel):
    run_id: UUID


class ExecuteRunBatchMessage(BaseModel):
    run_ids: list[UUID] = Field(..., min_length=1)


# ---------------------------------------------------------------------------
# Celery app (lazy init)
# ---------------------------------------------------------------------------

_celery_app = None


def get_celery_app(settings: Settings | None = None):
    """Get or create the Celery application, with the run tasks registered."""
    global _celery_app
    if _celery_app is None:
        from celery import Celery

        settings = settings or get_settings()
        _celery_app = Celery(
            "bingosim",
            broker=settings.broker_url,
            backend=settings.broker_url,
        )
        _celery_app.conf.task_serializer = "json"
        _celery_app.conf.result_serializer = "json"
        _celery_app.conf.accept_content = ["json"]
        _celery_app.conf.task_default_queue = SHARED_QUEUE
        _celery_app.conf.task_acks_late = True
        _celery_app.conf.task_reject_on_worker_lost = True
        _celery_app.conf.worker_prefetch_multiplier = 1
        _celery_app.conf.task_ignore_result = True
        _celery_app.task(name=EXECUTE_RUN_TASK)(_celery_execute_run)
        _celery_app.task(name=EXECUTE_RUN_BATCH_TASK)(_celery_execute_run_batch)
    return _celery_app


# ---------------------------------------------------------------------------
# Publishing
# ---------------------------------------------------------------------------


def _chunks(items: list[UUID], size: int):
    iterator = iter(items)
    while chunk := list(islice(iterator, size)):
        yield chunk


class CeleryRunPublisher:
    """RunPublisher that sends run ids to Celery queues."""

    def __init__(self, app, *, worker_count: int = 1, batch_size: int = 20) -> None:
        self._app = app
        self._worker_count = worker_count
        self._batch_size = batch_size

    def queue_for(self, run_id: UUID) -> str:
        if self._worker_count <= 1:
            return SHARED_QUEUE
        return partition_queue(partition_key(run_id, self._worker_count))

    async def _send(self, name: str, args: list, queue: str) -> None:
        try:
            await asyncio.to_thread(self._app.send_task, name, args=args, queue=queue)
        except Exception as exc:
            msg = f"Publishing {name} to {queue} failed: {exc}"
            raise DispatchError(msg) from exc

    async def publish(self, run_id: UUID) -> None:
        message = ExecuteRunMessage(run_id=run_id)
        await self._send(
            EXECUTE_RUN_TASK, [str(message.run_id)], self.queue_for(run_id),
        )

    async def publish_batch(self, run_ids: list[UUID]) -> None:
        by_queue: dict[str, list[UUID]] = {}
        for run_id in run_ids:
            by_queue.setdefault(self.queue_for(run_id), []).append(run_id)
        for queue, ids in by_queue.items():
            for chunk in _chunks(ids, self._batch_size):
                message = ExecuteRunBatchMessage(run_ids=chunk)
                await self._send(
                    EXECUTE_RUN_BATCH_TASK,
                    [[str(r) for r in message.run_ids]],
                    queue,
                )
        logger.info("Published %d runs to %d queues", len(run_ids), len(by_queue))


# ---------------------------------------------------------------------------
# Consuming
# ---------------------------------------------------------------------------


class RunBatchConsumer:
    """Claims a message's runs in one round trip, then executes them in order."""

    def __init__(
        self,
        store: SimulationStore,
        executor: RunExecutor,
        partition: WorkerPartition,
        forwarder: RunPublisher,
        *,
        lease_seconds: int,
    ) -> None:
        self._store = store
        self._executor = executor
        self._partition = partition
        self._forwarder = forwarder
        self._lease_seconds = lease_seconds

    async def consume(self, run_ids: list[UUID], token: CancellationToken) -> list[RunOutcome]:
        """Execute the runs this worker owns.

        Raises:
            DispatchError: Forwarding or claiming failed. Nothing was executed;
                the broker redelivers the message.
            RunCancelledError: Cancelled; every unfinished run is left PENDING.
        """
        owned, foreign = self._partition.split(run_ids)
        if foreign:
            logger.info(
                "Worker %s forwarding %d runs owned by other partitions",
                self._partition.worker_index, len(foreign),
            )
            await self._forwarder.publish_batch(foreign)
        if not owned:
            return []

        try:
            claim = await self._store.claim_runs(owned, lease_seconds=self._lease_seconds)
        except Exception as exc:
            msg = f"Claiming {len(owned)} runs failed: {exc}"
            raise DispatchError(msg) from exc
        if len(claim.run_ids) < len(owned):
            logger.debug(
                "%d of %d runs were no longer claimable",
                len(owned) - len(claim.run_ids), len(owned),
            )

        outcomes: list[RunOutcome] = []
        remaining = list(claim.run_ids)
        try:
            while remaining:
                run_id = remaining[0]
                outcomes.append(
                    await self._executor.execute(run_id, token, claim_token=claim.token)
                )
                remaining.pop(0)
        except (RunCancelledError, asyncio.CancelledError):
            for run_id in remaining[1:]:
                await self._store.release_run(run_id, claim.token)
            raise
        return outcomes


# ---------------------------------------------------------------------------
# Celery task wrappers
# ---------------------------------------------------------------------------


def _consume_in_worker(run_ids: list[str]) -> int:
    """Run one message through this process's worker runtime.

    Returns the number of runs executed.
    """
    from bingosim.dispatch.runtime import get_worker_runtime

    runtime = get_worker_runtime()
    ids = [UUID(r) for r in run_ids]

    async def _run() -> int:
        outcomes = await runtime.consumer().consume(ids, CancellationToken())
        return sum(1 for o in outcomes if o.executed)

    return asyncio.run(_run())


def _celery_execute_run(run_id_str: str) -> int:
    """Celery task: execute one run."""
    return _consume_in_worker([run_id_str])


def _celery_execute_run_batch(run_id_strs: list[str]) -> int:
    """Celery task: claim and execute a list of runs."""
    return _consume_in_worker(run_id_strs)
