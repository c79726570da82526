"""SimulationStore contract, run against both the in-memory and the SQL store."""

from datetime import timedelta

import pytest
from uuid_extensions import uuid7

from bingosim.engine.seeds import derive_run_seed
from bingosim.models.common import BatchStatus, RunStatus, TerminationReason, utc_now
from bingosim.models.faults import NotFoundError
from bingosim.models.run import RunResult, SimulationBatch, SimulationRun, TeamAggregate
from bingosim.stores.memory import InMemorySimulationStore
from bingosim.stores.sql import SqlSimulationStore


@pytest.fixture(params=["memory", "sql"])
def store(request, session_factory):
    if request.param == "memory":
        return InMemorySimulationStore()
    return SqlSimulationStore(session_factory)


async def _create(store, board, *, runs_per_team: int = 2,
                  status: BatchStatus = BatchStatus.RUNNING) -> tuple[SimulationBatch, list[SimulationRun]]:
    batch = SimulationBatch(event_id=board.event_id, seed="contract", status=status)
    runs = [
        SimulationRun(
            batch_id=batch.batch_id,
            team_id=team.team_id,
            ordinal=i,
            seed=derive_run_seed(batch.seed, i),
        )
        for i, team in enumerate(t for t in board.teams for _ in range(runs_per_team))
    ]
    batch = batch.model_copy(update={"total_runs": len(runs)})
    await store.create_batch(batch, board, runs)
    return batch, runs


def _result(run: SimulationRun, *, completed: bool = True) -> RunResult:
    return RunResult(
        run_id=run.run_id,
        batch_id=run.batch_id,
        team_id=run.team_id,
        seed=run.seed,
        strategy_key="row_unlocking",
        rows_completed=2 if completed else 0,
        board_completed=completed,
        termination=(
            TerminationReason.BOARD_COMPLETE if completed else TerminationReason.ATTEMPT_BUDGET
        ),
        elapsed_seconds=123.5,
        attempts=10,
        points=8,
        tasks_completed=3,
    )


class TestBatches:
    @pytest.mark.anyio
    async def test_create_and_get(self, store, make_board) -> None:
        batch, _ = await _create(store, make_board())
        fetched = await store.get_batch(batch.batch_id)
        assert fetched.batch_id == batch.batch_id
        assert fetched.status == BatchStatus.RUNNING
        assert fetched.total_runs == 4
        assert fetched.created_at.tzinfo is not None

    @pytest.mark.anyio
    async def test_get_missing(self, store) -> None:
        assert await store.get_batch(uuid7()) is None

    @pytest.mark.anyio
    async def test_list_by_status(self, store, make_board) -> None:
        running, _ = await _create(store, make_board())
        await _create(store, make_board(), status=BatchStatus.PENDING)
        listed = await store.list_batches(BatchStatus.RUNNING)
        assert [b.batch_id for b in listed] == [running.batch_id]
        assert len(await store.list_batches()) == 2

    @pytest.mark.anyio
    async def test_transition_is_compare_and_set(self, store, make_board) -> None:
        batch, _ = await _create(store, make_board())
        assert await store.transition_batch(
            batch.batch_id, from_status=BatchStatus.RUNNING, to_status=BatchStatus.COMPLETED,
        )
        assert not await store.transition_batch(
            batch.batch_id, from_status=BatchStatus.RUNNING, to_status=BatchStatus.ERROR,
        )
        fetched = await store.get_batch(batch.batch_id)
        assert fetched.status == BatchStatus.COMPLETED
        assert fetched.completed_at is not None

    @pytest.mark.anyio
    async def test_transition_missing(self, store) -> None:
        with pytest.raises(NotFoundError):
            await store.transition_batch(
                uuid7(), from_status=BatchStatus.RUNNING, to_status=BatchStatus.COMPLETED,
            )


class TestSnapshots:
    @pytest.mark.anyio
    async def test_snapshot_round_trip(self, store, make_board) -> None:
        board = make_board()
        batch, _ = await _create(store, board)
        snapshot = await store.get_snapshot(batch.batch_id)
        assert snapshot.model_dump() == board.model_dump()

    @pytest.mark.anyio
    async def test_missing_snapshot(self, store) -> None:
        with pytest.raises(NotFoundError):
            await store.get_snapshot(uuid7())

    @pytest.mark.anyio
    async def test_strategy_config(self, store, make_board) -> None:
        board = make_board()
        batch, _ = await _create(store, board)
        config = await store.get_strategy_config(batch.batch_id, board.teams[1].team_id)
        assert config.strategy_key == "greedy_points"


class TestClaims:
    """A run id is claimed by at most one caller."""

    @pytest.mark.anyio
    async def test_claim_is_exclusive(self, store, make_board) -> None:
        _, runs = await _create(store, make_board())
        ids = [r.run_id for r in runs]

        first = await store.claim_runs(ids, lease_seconds=60)
        second = await store.claim_runs(ids, lease_seconds=60)

        assert sorted(first.run_ids) == sorted(ids)
        assert not second
        assert first.token != second.token

    @pytest.mark.anyio
    async def test_partial_claim(self, store, make_board) -> None:
        _, runs = await _create(store, make_board())
        await store.claim_runs([runs[0].run_id], lease_seconds=60)
        claim = await store.claim_runs([r.run_id for r in runs] + [uuid7()], lease_seconds=60)
        assert sorted(claim.run_ids) == sorted(r.run_id for r in runs[1:])

    @pytest.mark.anyio
    async def test_claim_sets_lease(self, store, make_board) -> None:
        _, runs = await _create(store, make_board())
        now = utc_now()
        claim = await store.claim_runs([runs[0].run_id], lease_seconds=60, now=now)
        run = await store.get_run(runs[0].run_id)
        assert run.status == RunStatus.RUNNING
        assert run.claim_token == claim.token
        assert abs(run.lease_expires_at - (now + timedelta(seconds=60))) < timedelta(seconds=1)

    @pytest.mark.anyio
    async def test_claim_empty(self, store) -> None:
        assert not await store.claim_runs([], lease_seconds=60)


class TestRunTransitions:
    """Writes after a claim are fenced by the claim token."""

    @pytest.mark.anyio
    async def test_complete_exactly_once(self, store, make_board) -> None:
        _, runs = await _create(store, make_board())
        run = runs[0]
        claim = await store.claim_runs([run.run_id], lease_seconds=60)

        assert await store.complete_run(run.run_id, claim.token, _result(run))
        assert not await store.complete_run(run.run_id, claim.token, _result(run))

        stored = await store.get_result(run.run_id)
        assert stored.model_dump() == _result(run).model_dump()
        fetched = await store.get_run(run.run_id)
        assert fetched.status == RunStatus.COMPLETED
        assert fetched.claim_token is None

    @pytest.mark.anyio
    async def test_stale_token_rejected(self, store, make_board) -> None:
        _, runs = await _create(store, make_board())
        run = runs[0]
        await store.claim_runs([run.run_id], lease_seconds=60)
        assert not await store.complete_run(run.run_id, uuid7(), _result(run))
        assert await store.fail_run(run.run_id, uuid7(), "x", max_attempts=3) is None
        assert not await store.release_run(run.run_id, uuid7())
        assert await store.get_result(run.run_id) is None

    @pytest.mark.anyio
    async def test_fail_retries_until_max(self, store, make_board) -> None:
        _, runs = await _create(store, make_board())
        run_id = runs[0].run_id
        for expected in (RunStatus.PENDING, RunStatus.PENDING, RunStatus.FAILED):
            claim = await store.claim_runs([run_id], lease_seconds=60)
            assert await store.fail_run(run_id, claim.token, "boom", max_attempts=3) == expected

        run = await store.get_run(run_id)
        assert run.status == RunStatus.FAILED
        assert run.attempt_count == 3
        assert run.last_error == "boom"
        assert run.completed_at is not None
        assert not await store.claim_runs([run_id], lease_seconds=60)

    @pytest.mark.anyio
    async def test_release_does_not_count_attempt(self, store, make_board) -> None:
        _, runs = await _create(store, make_board())
        run_id = runs[0].run_id
        claim = await store.claim_runs([run_id], lease_seconds=60)

        assert await store.release_run(run_id, claim.token)

        run = await store.get_run(run_id)
        assert run.status == RunStatus.PENDING
        assert run.attempt_count == 0
        assert run.claim_token is None
        assert await store.claim_runs([run_id], lease_seconds=60)

    @pytest.mark.anyio
    async def test_reclaim_expired(self, store, make_board) -> None:
        _, runs = await _create(store, make_board())
        past = utc_now() - timedelta(minutes=10)
        expired = await store.claim_runs([runs[0].run_id], lease_seconds=60, now=past)
        await store.claim_runs([runs[1].run_id], lease_seconds=600)

        reset = await store.reclaim_expired(max_attempts=5)

        assert reset == [runs[0].run_id]
        run = await store.get_run(runs[0].run_id)
        assert run.status == RunStatus.PENDING
        assert run.attempt_count == 1
        assert (await store.get_run(runs[1].run_id)).status == RunStatus.RUNNING
        # The old executor can no longer write.
        assert not await store.complete_run(runs[0].run_id, expired.token, _result(runs[0]))


class TestCounts:
    @pytest.mark.anyio
    async def test_count_runs(self, store, make_board) -> None:
        batch, runs = await _create(store, make_board())
        claim = await store.claim_runs([r.run_id for r in runs[:3]], lease_seconds=60)
        await store.complete_run(runs[0].run_id, claim.token, _result(runs[0]))
        await store.fail_run(runs[1].run_id, claim.token, "x", max_attempts=1)

        counts = await store.count_runs(batch.batch_id)

        assert (counts.pending, counts.running, counts.completed, counts.failed) == (1, 1, 1, 1)
        assert counts.retried == 1
        assert counts.total == 4
        assert not counts.all_terminal

    @pytest.mark.anyio
    async def test_runs_per_team(self, store, make_board) -> None:
        board = make_board()
        batch, _ = await _create(store, board, runs_per_team=3)
        assert await store.runs_per_team(batch.batch_id) == {t.team_id: 3 for t in board.teams}

    @pytest.mark.anyio
    async def test_list_runs_ordered_and_filtered(self, store, make_board) -> None:
        batch, runs = await _create(store, make_board())
        await store.claim_runs([runs[2].run_id], lease_seconds=60)
        listed = await store.list_runs(batch.batch_id)
        assert [r.ordinal for r in listed] == [0, 1, 2, 3]
        running = await store.list_runs(batch.batch_id, RunStatus.RUNNING)
        assert [r.run_id for r in running] == [runs[2].run_id]


class TestResultsAndAggregates:
    @pytest.mark.anyio
    async def test_list_results(self, store, make_board) -> None:
        batch, runs = await _create(store, make_board())
        claim = await store.claim_runs([r.run_id for r in runs], lease_seconds=60)
        for run in runs[:2]:
            await store.complete_run(run.run_id, claim.token, _result(run))
        results = await store.list_results(batch.batch_id)
        assert sorted(r.run_id for r in results) == sorted(r.run_id for r in runs[:2])

    @pytest.mark.anyio
    async def test_aggregate_upsert(self, store, make_board) -> None:
        board = make_board()
        batch, _ = await _create(store, board)
        team_id = board.teams[0].team_id
        base = dict(batch_id=batch.batch_id, team_id=team_id, total_runs=2, completed_runs=0,
                    results_observed=0, completion_rate=0.0)

        await store.save_aggregate(TeamAggregate(**base))
        await store.save_aggregate(TeamAggregate(**{**base, "completed_runs": 1,
                                                    "results_observed": 2,
                                                    "completion_rate": 0.5}))

        (aggregate,) = await store.list_aggregates(batch.batch_id)
        assert aggregate.completion_rate == 0.5
        assert aggregate.results_observed == 2
