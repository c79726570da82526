"""Run simulator: one deterministic Monte Carlo playthrough of a board.

Pure and synchronous: no I/O, no clocks, no global state. Every draw comes
from an ``Rng`` seeded with the run's seed, so the same (snapshot, team,
strategy, seed) always produces the same RunResult.

Turn loop:
1. Stop if the board is complete or a budget is exhausted.
2. Ask the strategy for the next task (None ends the run).
3. Sample the attempt duration from the task's time model. Every attempt
   consumes simulated time, successful or not.
4. Roll success: one Bernoulli trial per player (PER_PLAYER) or one shared
   trial (PER_GROUP). Each success adds progress and rolls the drop table.
5. Settle: complete tasks whose requirements are met, unlock rows.
"""

from dataclasses import dataclass
from uuid import UUID

from bingosim.engine.board_state import BoardState
from bingosim.engine.cancellation import CancellationToken
from bingosim.engine.sampling import ResourcePool, Rng, roll_drops
from bingosim.engine.strategies import Strategy
from bingosim.engine.timing import TimeSamplerRegistry, default_time_samplers
from bingosim.models.board import BoardSnapshot, TaskSnapshot, TeamSnapshot
from bingosim.models.common import RollScope, TerminationReason
from bingosim.models.run import RunResult


@dataclass(frozen=True)
class RunContext:
    """Identifiers stamped onto the result; they do not influence the simulation."""

    run_id: UUID
    batch_id: UUID


class RunSimulator:
    def __init__(self, time_samplers: TimeSamplerRegistry | None = None) -> None:
        self._time_samplers = time_samplers or default_time_samplers()

    def simulate(
        self,
        *,
        context: RunContext,
        snapshot: BoardSnapshot,
        team: TeamSnapshot,
        strategy: Strategy,
        seed: int,
        cancel: CancellationToken | None = None,
    ) -> RunResult:
        """Play one run to termination.

        Raises:
            RunCancelledError: The token was cancelled mid-run.
            ValueError: The strategy picked a task that is not open.
        """
        rng = Rng(seed)
        rows = snapshot.ordered_rows()
        state = BoardState(rows, team.player_count)
        pool = ResourcePool()
        attempts = 0
        budget = snapshot.time_budget_seconds

        state.settle(pool)
        while True:
            if cancel is not None:
                cancel.raise_if_cancelled()
            if state.board_completed:
                termination = TerminationReason.BOARD_COMPLETE
                break
            if attempts >= snapshot.max_attempts:
                termination = TerminationReason.ATTEMPT_BUDGET
                break
            if budget is not None and state.elapsed_seconds >= budget:
                termination = TerminationReason.TIME_BUDGET
                break

            task = strategy.select_next_task(state, pool)
            if task is None:
                termination = TerminationReason.NO_ELIGIBLE_TASK
                break
            if not state.is_open(task):
                msg = f"Strategy {strategy.key!r} selected task {task.key!r}, which is not open"
                raise ValueError(msg)

            attempts += 1
            duration = self._time_samplers.sample(task.time_model, rng)
            if budget is not None and state.elapsed_seconds + duration > budget:
                # The attempt does not finish inside the event window.
                state.elapsed_seconds = budget
                termination = TerminationReason.TIME_BUDGET
                break

            successes = self._roll_successes(task, team.player_count, rng)
            pool.add(roll_drops(task.drops, rng, successes=successes))
            state.record_attempt(task, duration, successes)
            state.settle(pool)

        completed = [t for row in rows for t in row.tasks if state.is_completed(t)]
        return RunResult(
            run_id=context.run_id,
            batch_id=context.batch_id,
            team_id=team.team_id,
            seed=seed,
            strategy_key=strategy.key,
            rows_completed=state.rows_completed,
            board_completed=state.board_completed,
            termination=termination,
            elapsed_seconds=state.elapsed_seconds,
            attempts=attempts,
            points=sum(t.points for t in completed),
            tasks_completed=len(completed),
            items=pool.stacks(),
            row_completion_seconds=tuple(state.row_completion_seconds),
        )

    @staticmethod
    def _roll_successes(task: TaskSnapshot, player_count: int, rng: Rng) -> int:
        trials = player_count if task.roll_scope == RollScope.PER_PLAYER else 1
        return sum(1 for _ in range(trials) if rng.chance(task.probability))
