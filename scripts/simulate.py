"""Simulate script: run a LOCAL batch in-process and print team aggregates.

Uses the in-memory store, so no database or broker is needed. Without a
board file it runs the built-in sample board (three rows, two teams).

Usage:
    python -m scripts simulate                       # sample board
    python -m scripts simulate board.json --runs 500 --concurrency 8 --seed demo
"""

import json
from pathlib import Path
from uuid import UUID

from bingosim.config.settings import Settings
from bingosim.dispatch.runtime import SimulationRuntime, build_local_runtime
from bingosim.engine.cancellation import CancellationToken
from bingosim.models.board import BoardSnapshot
from bingosim.models.run import SimulationBatch, TeamAggregate
from bingosim.stores.memory import InMemorySimulationStore

# ---------------------------------------------------------------------------
# Sample board. Tests depend on these constants.
# ---------------------------------------------------------------------------

SAMPLE_EVENT_ID = UUID("01920000-0000-7000-8000-000000000001")
SAMPLE_TEAM_RUSH_ID = UUID("01920000-0000-7000-8000-0000000000a1")
SAMPLE_TEAM_GREEDY_ID = UUID("01920000-0000-7000-8000-0000000000a2")


def _task(key: str, points: int, probability: float, min_s: float, max_s: float,
          time: dict | None = None, **extra) -> dict:
    return {
        "key": key,
        "name": key.replace("_", " ").title(),
        "points": points,
        "probability": probability,
        "time_model": {"min_seconds": min_s, "max_seconds": max_s, **(time or {})},
        **extra,
    }


def build_sample_board() -> BoardSnapshot:
    """Three rows: fishing, bossing with a drop requirement, and a raid finale."""
    return BoardSnapshot.model_validate({
        "event_id": SAMPLE_EVENT_ID,
        "event_name": "Sample Bingo",
        "max_attempts": 5_000,
        "time_budget_seconds": 7 * 24 * 3600.0,
        "rows": [
            {
                "index": 0,
                "required_tasks": 2,
                "tasks": [
                    _task("catch_sharks", 1, 0.5, 30, 60,
                          roll_scope="PER_PLAYER", required_successes=20,
                          drops={"guaranteed": [{"name": "Shark", "quantity": 1}]}),
                    _task("chop_magic_logs", 1, 0.3, 20, 40, roll_scope="PER_PLAYER",
                          required_successes=10),
                    _task("mine_runite", 2, 0.1, 60, 90, required_successes=3),
                ],
            },
            {
                "index": 1,
                "tasks": [
                    _task("zulrah_scales", 3, 1.0, 90, 150,
                          time={"distribution": "NORMAL_APPROX"},
                          required_successes=0,
                          required_items={"Zulrah's scales": 2000},
                          drops={"main": [{
                              "kind": "simple", "item": "Zulrah's scales",
                              "weight": 1.0, "quantity_min": 100, "quantity_max": 300,
                          }]}),
                    _task("vorkath_head", 3, 1.0, 120, 180, required_successes=0,
                          required_items={"Vorkath's head": 1},
                          drops={
                              "main": [{
                                  "kind": "composite", "name": "Vorkath rare table",
                                  "weight": 0.02,
                                  "options": [
                                      {"name": "head", "weight": 1,
                                       "items": [{"name": "Vorkath's head", "quantity": 1}]},
                                      {"name": "visage", "weight": 1,
                                       "items": [{"name": "Draconic visage", "quantity": 1}]},
                                  ],
                              }],
                              "tertiary": [{"item": "Vorkath's head", "probability": 0.02}],
                          }),
                ],
            },
            {
                "index": 2,
                "tasks": [
                    _task("raid_purple", 5, 0.05, 1800, 2700,
                          time={"distribution": "CUSTOM", "custom_key": "triangular"}),
                ],
            },
        ],
        "teams": [
            {
                "team_id": SAMPLE_TEAM_RUSH_ID,
                "name": "Row Rushers",
                "player_count": 5,
                "strategy": {"strategy_key": "row_unlocking"},
            },
            {
                "team_id": SAMPLE_TEAM_GREEDY_ID,
                "name": "Point Hunters",
                "player_count": 5,
                "strategy": {"strategy_key": "greedy_points"},
            },
        ],
    })


def load_board(path: Path | None) -> BoardSnapshot:
    if path is None:
        return build_sample_board()
    return BoardSnapshot.model_validate(json.loads(path.read_text(encoding="utf-8")))


async def simulate(
    board: BoardSnapshot,
    *,
    runs_per_team: int,
    seed: str | None = None,
    settings: Settings | None = None,
) -> tuple[SimulationBatch, list[TeamAggregate], SimulationRuntime]:
    """Run a batch to completion against an in-memory store."""
    runtime = build_local_runtime(settings or Settings(), InMemorySimulationStore())
    batch = await runtime.batches.start_batch(board, runs_per_team=runs_per_team, seed=seed)
    await runtime.local_dispatcher().run(CancellationToken(), stop_when_idle=True)
    aggregates = await runtime.batches.get_aggregates(batch.batch_id)
    return await runtime.batches.get_batch(batch.batch_id), aggregates, runtime


def format_aggregates(batch: SimulationBatch, aggregates: list[TeamAggregate]) -> str:
    lines = [
        f"Batch {batch.batch_id} [{batch.status}] seed={batch.seed!r} runs={batch.total_runs}",
        f"  {'Team':<16} {'Strategy':<14} {'Done':>6} {'Rate':>7} {'Rows':>6}"
        f" {'Points':>7} {'p50 h':>7} {'p90 h':>7}",
    ]
    for agg in aggregates:
        ct = agg.completion_time
        p50 = f"{ct.p50 / 3600:7.1f}" if ct else f"{'-':>7}"
        p90 = f"{ct.p90 / 3600:7.1f}" if ct else f"{'-':>7}"
        lines.append(
            f"  {agg.team_name:<16} {agg.strategy_key:<14} {agg.completed_runs:>6}"
            f" {agg.completion_rate:>7.1%} {agg.mean_rows_completed:>6.2f}"
            f" {agg.mean_points:>7.1f} {p50} {p90}"
        )
    return "\n".join(lines)
