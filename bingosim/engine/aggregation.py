"""Aggregation: per-team statistics over a set of run results.

Completion rate is the share of a team's runs whose board was completed,
over the team's total runs (not just the results observed so far). The
completion-time summary covers completed runs only.
"""

from collections.abc import Sequence
from uuid import UUID

import numpy as np

from bingosim.engine.sampling import merge_stacks
from bingosim.models.run import CompletionTimeSummary, RunResult, TeamAggregate


def summarize_completion_times(times: Sequence[float]) -> CompletionTimeSummary | None:
    if not times:
        return None
    values = np.asarray(times, dtype=np.float64)
    p50, p90, p95 = np.percentile(values, [50, 90, 95])
    return CompletionTimeSummary(
        mean=float(values.mean()),
        minimum=float(values.min()),
        maximum=float(values.max()),
        p50=float(p50),
        p90=float(p90),
        p95=float(p95),
    )


def aggregate_team(
    *,
    batch_id: UUID,
    team_id: UUID,
    total_runs: int,
    results: Sequence[RunResult],
    team_name: str = "",
    strategy_key: str = "",
) -> TeamAggregate:
    """Build the aggregate for one team from whatever results exist.

    Raises:
        ValueError: A result belongs to another batch or team, or there are
            more results than runs.
    """
    for result in results:
        if result.batch_id != batch_id or result.team_id != team_id:
            msg = f"Result {result.run_id} does not belong to team {team_id} of batch {batch_id}"
            raise ValueError(msg)
    if len(results) > total_runs:
        msg = f"{len(results)} results for {total_runs} runs of team {team_id}"
        raise ValueError(msg)

    completed = [r for r in results if r.board_completed]
    rate = len(completed) / total_runs if total_runs else 0.0

    if results:
        points = np.asarray([r.points for r in results], dtype=np.float64)
        rows = np.asarray([r.rows_completed for r in results], dtype=np.int64)
        mean_points = float(points.mean())
        mean_rows = float(rows.mean())
        max_rows = int(rows.max())
    else:
        mean_points = mean_rows = 0.0
        max_rows = 0

    totals = merge_stacks(stack for r in results for stack in r.items)

    return TeamAggregate(
        batch_id=batch_id,
        team_id=team_id,
        team_name=team_name,
        strategy_key=strategy_key or (results[0].strategy_key if results else ""),
        total_runs=total_runs,
        results_observed=len(results),
        completed_runs=len(completed),
        completion_rate=rate,
        completion_time=summarize_completion_times([r.elapsed_seconds for r in completed]),
        mean_points=mean_points,
        mean_rows_completed=mean_rows,
        max_rows_completed=max_rows,
        resource_totals={s.name: s.quantity for s in totals},
    )
