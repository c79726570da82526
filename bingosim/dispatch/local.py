"""Local dispatch: a FIFO of run ids drained by a bounded pool of executions.

One polling loop dequeues run ids. Before each dispatch it takes a capacity
slot (default 4 simultaneous runs); the slot is released when the run ends,
whatever the outcome. An empty queue is polled again after a short fixed
interval. A failing run never stops the loop; cancellation does, and leaves
interrupted runs PENDING.
"""

import asyncio
import logging
from collections import deque
from uuid import UUID

from bingosim.dispatch.executor import RunExecutor
from bingosim.engine.cancellation import CancellationToken, RunCancelledError

logger = logging.getLogger(__name__)


class InMemoryRunQueue:
    """Process-local FIFO of run ids. Also serves as the local RunPublisher."""

    def __init__(self) -> None:
        self._ids: deque[UUID] = deque()

    async def enqueue(self, run_id: UUID) -> None:
        self._ids.append(run_id)

    async def dequeue(self) -> UUID | None:
        return self._ids.popleft() if self._ids else None

    async def publish(self, run_id: UUID) -> None:
        await self.enqueue(run_id)

    async def publish_batch(self, run_ids: list[UUID]) -> None:
        for run_id in run_ids:
            await self.enqueue(run_id)

    def __len__(self) -> int:
        return len(self._ids)


class LocalDispatcher:
    def __init__(
        self,
        queue: InMemoryRunQueue,
        executor: RunExecutor,
        *,
        max_concurrent: int = 4,
        poll_interval_seconds: float = 0.1,
        delay_seconds: float = 0.0,
    ) -> None:
        if max_concurrent < 1:
            msg = f"max_concurrent must be >= 1, got {max_concurrent}"
            raise ValueError(msg)
        self._queue = queue
        self._executor = executor
        self._max_concurrent = max_concurrent
        self._poll_interval = poll_interval_seconds
        self._delay = delay_seconds
        self._in_flight: set[asyncio.Task] = set()

    @property
    def in_flight(self) -> int:
        return len(self._in_flight)

    async def run(self, token: CancellationToken, *, stop_when_idle: bool = False) -> None:
        """Drain the queue until cancelled (or, with stop_when_idle, until empty and idle)."""
        capacity = asyncio.Semaphore(self._max_concurrent)
        logger.info("Local dispatcher started (capacity %d)", self._max_concurrent)
        try:
            while not token.cancelled:
                run_id = await self._queue.dequeue()
                if run_id is None:
                    if stop_when_idle and not self._in_flight:
                        break
                    await token.sleep(self._poll_interval)
                    continue
                try:
                    await token.acquire(capacity)
                except RunCancelledError:
                    await self._queue.enqueue(run_id)
                    raise
                task = asyncio.create_task(self._dispatch(run_id, capacity, token))
                self._in_flight.add(task)
                task.add_done_callback(self._in_flight.discard)
        except RunCancelledError:
            logger.info("Local dispatcher cancelled")
        finally:
            if self._in_flight:
                await asyncio.gather(*self._in_flight, return_exceptions=True)
            logger.info("Local dispatcher stopped")

    async def _dispatch(
        self, run_id: UUID, capacity: asyncio.Semaphore, token: CancellationToken,
    ) -> None:
        try:
            if self._delay > 0:
                await token.sleep(self._delay)
            outcome = await self._executor.execute(run_id, token)
            if outcome.fault is not None:
                logger.warning(
                    "Run %s ended with %s: %s",
                    run_id, outcome.fault.kind, outcome.fault.message,
                )
        except RunCancelledError:
            logger.debug("Run %s interrupted by cancellation", run_id)
        except Exception:
            logger.exception("Dispatch of run %s failed", run_id)
        finally:
            capacity.release()
