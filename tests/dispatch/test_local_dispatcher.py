"""Tests for the local queue and the bounded local dispatcher."""

import asyncio

import pytest
from uuid_extensions import uuid7

from bingosim.dispatch.local import InMemoryRunQueue, LocalDispatcher
from bingosim.dispatch.runtime import build_local_runtime
from bingosim.engine.cancellation import CancellationToken
from bingosim.models.common import BatchStatus, RunStatus
from bingosim.models.faults import RunOutcome
from bingosim.stores.memory import InMemorySimulationStore


class _RecordingExecutor:
    """Stands in for RunExecutor: tracks concurrency, fails chosen ids."""

    def __init__(self, *, hold: float = 0.02, failing: set | None = None) -> None:
        self.hold = hold
        self.failing = failing or set()
        self.active = 0
        self.peak = 0
        self.executed: list = []

    async def execute(self, run_id, token):
        self.active += 1
        self.peak = max(self.peak, self.active)
        try:
            await token.sleep(self.hold)
            if run_id in self.failing:
                raise RuntimeError(f"boom {run_id}")
            self.executed.append(run_id)
            return RunOutcome(run_id, RunStatus.COMPLETED, executed=True)
        finally:
            self.active -= 1


class TestInMemoryRunQueue:
    @pytest.mark.anyio
    async def test_fifo(self) -> None:
        queue = InMemoryRunQueue()
        ids = [uuid7() for _ in range(3)]
        await queue.publish_batch(ids)
        assert len(queue) == 3
        assert [await queue.dequeue() for _ in range(3)] == ids
        assert await queue.dequeue() is None

    @pytest.mark.anyio
    async def test_publish_single(self) -> None:
        queue = InMemoryRunQueue()
        run_id = uuid7()
        await queue.publish(run_id)
        assert await queue.dequeue() == run_id


class TestLocalDispatcher:
    """Capacity, fault isolation and cancellation."""

    def test_capacity_must_be_positive(self) -> None:
        with pytest.raises(ValueError, match="max_concurrent"):
            LocalDispatcher(InMemoryRunQueue(), _RecordingExecutor(), max_concurrent=0)

    @pytest.mark.anyio
    async def test_never_exceeds_capacity(self) -> None:
        queue = InMemoryRunQueue()
        ids = [uuid7() for _ in range(20)]
        await queue.publish_batch(ids)
        executor = _RecordingExecutor()
        dispatcher = LocalDispatcher(queue, executor, max_concurrent=4, poll_interval_seconds=0.005)

        await dispatcher.run(CancellationToken(), stop_when_idle=True)

        assert sorted(executor.executed) == sorted(ids)
        assert executor.peak == 4
        assert dispatcher.in_flight == 0

    @pytest.mark.anyio
    async def test_failing_run_does_not_stop_loop(self) -> None:
        queue = InMemoryRunQueue()
        ids = [uuid7() for _ in range(6)]
        await queue.publish_batch(ids)
        executor = _RecordingExecutor(failing={ids[1], ids[3]})
        dispatcher = LocalDispatcher(queue, executor, max_concurrent=2, poll_interval_seconds=0.005)

        await dispatcher.run(CancellationToken(), stop_when_idle=True)

        assert sorted(executor.executed) == sorted([ids[0], ids[2], ids[4], ids[5]])

    @pytest.mark.anyio
    async def test_cancellation_stops_loop(self) -> None:
        queue = InMemoryRunQueue()
        await queue.publish_batch([uuid7() for _ in range(10)])
        executor = _RecordingExecutor(hold=10.0)
        dispatcher = LocalDispatcher(queue, executor, max_concurrent=2, poll_interval_seconds=0.005)
        token = CancellationToken()

        loop_task = asyncio.create_task(dispatcher.run(token))
        await asyncio.sleep(0.05)
        token.cancel()
        await asyncio.wait_for(loop_task, timeout=2.0)

        assert executor.executed == []
        assert dispatcher.in_flight == 0
        # Nothing beyond the two in-flight runs left the queue.
        assert len(queue) == 8

    @pytest.mark.anyio
    async def test_idle_queue_keeps_polling_until_cancelled(self) -> None:
        dispatcher = LocalDispatcher(
            InMemoryRunQueue(), _RecordingExecutor(), poll_interval_seconds=0.005,
        )
        token = CancellationToken()
        loop_task = asyncio.create_task(dispatcher.run(token))
        await asyncio.sleep(0.03)
        assert not loop_task.done()
        token.cancel()
        await asyncio.wait_for(loop_task, timeout=2.0)


class TestLocalBatchEndToEnd:
    """A LOCAL batch through the real executor and in-memory store."""

    @pytest.mark.anyio
    async def test_batch_completes_with_aggregates(self, runtime, make_board) -> None:
        batch = await runtime.batches.start_batch(make_board(), runs_per_team=10, seed="e2e")
        assert batch.status == BatchStatus.RUNNING
        assert batch.total_runs == 20

        await runtime.local_dispatcher().run(CancellationToken(), stop_when_idle=True)

        finished = await runtime.batches.get_batch(batch.batch_id)
        assert finished.status == BatchStatus.COMPLETED
        assert finished.completed_at is not None
        counts = await runtime.store.count_runs(batch.batch_id)
        assert counts.completed == 20
        aggregates = await runtime.store.list_aggregates(batch.batch_id)
        assert {a.team_name for a in aggregates} == {"Alpha", "Bravo"}
        assert all(a.total_runs == 10 and a.results_observed == 10 for a in aggregates)

    @pytest.mark.anyio
    async def test_cancelled_batch_leaves_runs_non_terminal(self, test_settings, make_board) -> None:
        slow = test_settings.model_copy(update={"SIMULATION_DELAY_MS": 10_000})
        runtime = build_local_runtime(slow, InMemorySimulationStore())
        batch = await runtime.batches.start_batch(make_board(), runs_per_team=4)

        token = CancellationToken()
        loop_task = asyncio.create_task(runtime.local_dispatcher().run(token))
        await asyncio.sleep(0.05)
        token.cancel()
        await asyncio.wait_for(loop_task, timeout=2.0)

        runs = await runtime.store.list_runs(batch.batch_id)
        assert all(r.status == RunStatus.PENDING for r in runs)
        assert await runtime.store.list_results(batch.batch_id) == []
        assert (await runtime.batches.get_batch(batch.batch_id)).status == BatchStatus.RUNNING

    @pytest.mark.anyio
    async def test_same_seed_same_results(self, test_settings, make_board) -> None:
        async def _results(concurrency: int) -> list[tuple]:
            settings = test_settings.model_copy(update={"MAX_CONCURRENT_RUNS": concurrency})
            rt = build_local_runtime(settings, InMemorySimulationStore())
            batch = await rt.batches.start_batch(make_board(), runs_per_team=6, seed="fixed")
            await rt.local_dispatcher().run(CancellationToken(), stop_when_idle=True)
            runs = await rt.store.list_runs(batch.batch_id)
            out = []
            for run in runs:
                result = await rt.store.get_result(run.run_id)
                out.append((run.ordinal, run.seed, result.elapsed_seconds, result.points))
            return out

        assert await _results(1) == await _results(4)
