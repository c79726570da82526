"""Tests for per-team aggregation over run results."""

import pytest
from uuid_extensions import uuid7

from bingosim.engine.aggregation import aggregate_team, summarize_completion_times
from bingosim.models.board import ItemStack
from bingosim.models.common import TerminationReason
from bingosim.models.run import RunResult

BATCH_ID = uuid7()
TEAM_ID = uuid7()


def _result(*, completed: bool, elapsed: float, points: int = 0, rows: int = 0,
            items: tuple[ItemStack, ...] = (), team_id=TEAM_ID) -> RunResult:
    return RunResult(
        run_id=uuid7(),
        batch_id=BATCH_ID,
        team_id=team_id,
        seed=1,
        strategy_key="row_unlocking",
        rows_completed=rows,
        board_completed=completed,
        termination=(
            TerminationReason.BOARD_COMPLETE if completed else TerminationReason.ATTEMPT_BUDGET
        ),
        elapsed_seconds=elapsed,
        attempts=1,
        points=points,
        tasks_completed=0,
        items=items,
    )


class TestSummarizeCompletionTimes:
    def test_empty(self) -> None:
        assert summarize_completion_times([]) is None

    def test_percentiles(self) -> None:
        summary = summarize_completion_times([float(v) for v in range(1, 101)])
        assert summary.mean == pytest.approx(50.5)
        assert summary.minimum == 1.0
        assert summary.maximum == 100.0
        assert summary.p50 == pytest.approx(50.5)
        assert summary.p90 == pytest.approx(90.1)
        assert summary.p95 == pytest.approx(95.05)


class TestAggregateTeam:
    """Completion rate is over all of the team's runs."""

    def test_rate_over_total_runs(self) -> None:
        results = [
            _result(completed=True, elapsed=100.0, points=10, rows=3),
            _result(completed=False, elapsed=500.0, points=4, rows=1),
        ]
        agg = aggregate_team(batch_id=BATCH_ID, team_id=TEAM_ID, total_runs=4, results=results)
        assert agg.completed_runs == 1
        assert agg.results_observed == 2
        assert agg.completion_rate == pytest.approx(0.25)
        assert agg.mean_points == pytest.approx(7.0)
        assert agg.mean_rows_completed == pytest.approx(2.0)
        assert agg.max_rows_completed == 3
        assert agg.strategy_key == "row_unlocking"

    def test_completion_time_covers_completed_runs_only(self) -> None:
        results = [
            _result(completed=True, elapsed=100.0),
            _result(completed=True, elapsed=300.0),
            _result(completed=False, elapsed=10_000.0),
        ]
        agg = aggregate_team(batch_id=BATCH_ID, team_id=TEAM_ID, total_runs=3, results=results)
        assert agg.completion_time.mean == pytest.approx(200.0)
        assert agg.completion_time.maximum == 300.0

    def test_no_completions(self) -> None:
        agg = aggregate_team(
            batch_id=BATCH_ID, team_id=TEAM_ID, total_runs=2,
            results=[_result(completed=False, elapsed=1.0)],
        )
        assert agg.completion_rate == 0.0
        assert agg.completion_time is None

    def test_no_results(self) -> None:
        agg = aggregate_team(batch_id=BATCH_ID, team_id=TEAM_ID, total_runs=5, results=[])
        assert agg.results_observed == 0
        assert agg.completion_rate == 0.0
        assert agg.mean_points == 0.0

    def test_resource_totals_coalesced(self) -> None:
        results = [
            _result(completed=False, elapsed=1.0, items=(ItemStack(name="Shark", quantity=12),)),
            _result(completed=False, elapsed=1.0, items=(ItemStack(name="shark", quantity=3),)),
        ]
        agg = aggregate_team(batch_id=BATCH_ID, team_id=TEAM_ID, total_runs=2, results=results)
        assert agg.resource_totals == {"Shark": 15}

    def test_foreign_result_rejected(self) -> None:
        with pytest.raises(ValueError, match="does not belong"):
            aggregate_team(
                batch_id=BATCH_ID, team_id=TEAM_ID, total_runs=1,
                results=[_result(completed=True, elapsed=1.0, team_id=uuid7())],
            )

    def test_more_results_than_runs_rejected(self) -> None:
        with pytest.raises(ValueError, match="results for"):
            aggregate_team(
                batch_id=BATCH_ID, team_id=TEAM_ID, total_runs=1,
                results=[_result(completed=True, elapsed=1.0)] * 2,
            )
