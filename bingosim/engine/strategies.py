"""Strategy engine: which task a team attempts next.

Strategies are pure and deterministic: given the same board state and
resource pool they return the same task, and they never draw randomness.
They are looked up by key in a ``StrategyRegistry`` that is built once per
process and handed to the executor explicitly.

Catalog:
- row_unlocking: race to the next row. Targets the furthest unlocked row and
  picks its task with the smallest expected time to completion.
- greedy_points: best points per expected second across every unlocked row.
- sequential: first open task in board order.
"""

import math
from abc import ABC, abstractmethod
from collections.abc import Callable
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from bingosim.engine.board_state import BoardState
from bingosim.engine.sampling import ResourcePool, expected_quantity
from bingosim.models.board import StrategyConfig, TaskSnapshot
from bingosim.models.common import RollScope

ROW_UNLOCKING = "row_unlocking"
GREEDY_POINTS = "greedy_points"
SEQUENTIAL = "sequential"


# ---------------------------------------------------------------------------
# Expected-cost estimates
# ---------------------------------------------------------------------------


def expected_successes_per_attempt(task: TaskSnapshot, player_count: int) -> float:
    if task.roll_scope == RollScope.PER_PLAYER:
        return task.probability * player_count
    return task.probability


def expected_attempts_remaining(
    task: TaskSnapshot, state: BoardState, pool: ResourcePool,
) -> float:
    """Attempts still needed on average; ``inf`` if the task cannot progress."""
    rate = expected_successes_per_attempt(task, state.player_count)
    progress = state.progress[task.key]
    needed = [0.0]

    remaining_successes = max(0, task.required_successes - progress.successes)
    if remaining_successes:
        needed.append(remaining_successes / rate if rate > 0 else math.inf)

    for item, quantity in task.required_items.items():
        deficit = pool.deficit(item, quantity)
        if deficit:
            per_attempt = rate * expected_quantity(task.drops, item)
            needed.append(deficit / per_attempt if per_attempt > 0 else math.inf)

    return max(needed)


def expected_seconds_remaining(
    task: TaskSnapshot, state: BoardState, pool: ResourcePool,
) -> float:
    attempts = expected_attempts_remaining(task, state, pool)
    if math.isinf(attempts):
        return math.inf
    # Even a satisfied task costs at least one attempt to be picked again.
    return max(attempts, 1.0) * max(task.time_model.mean_seconds, 1e-9)


# ---------------------------------------------------------------------------
# Strategies
# ---------------------------------------------------------------------------


class _Params(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)


class Strategy(ABC):
    key: str

    @abstractmethod
    def select_next_task(
        self, board_state: BoardState, resource_pool: ResourcePool,
    ) -> TaskSnapshot | None:
        """Return an open task on an unlocked row, or None to stop."""


class RowUnlockingParams(_Params):
    tie_breaker: Literal["points", "key"] = "points"


class RowUnlockingStrategy(Strategy):
    """Finish the current row as fast as possible to unlock the next one.

    Tasks on earlier rows are only considered when the furthest unlocked row
    has nothing open (it is complete but is the last row).
    """

    key = ROW_UNLOCKING

    def __init__(self, params: RowUnlockingParams) -> None:
        self.params = params

    def _rank(self, task: TaskSnapshot, state: BoardState, pool: ResourcePool) -> tuple:
        cost = expected_seconds_remaining(task, state, pool)
        if self.params.tie_breaker == "points":
            return (cost, -task.points, task.key)
        return (cost, task.key)

    def select_next_task(
        self, board_state: BoardState, resource_pool: ResourcePool,
    ) -> TaskSnapshot | None:
        candidates = board_state.open_tasks(board_state.current_row())
        if not candidates:
            candidates = board_state.open_tasks()
        if not candidates:
            return None
        return min(candidates, key=lambda t: self._rank(t, board_state, resource_pool))


class GreedyPointsParams(_Params):
    min_probability: float = Field(default=0.0, ge=0.0, le=1.0)


class GreedyPointsStrategy(Strategy):
    """Maximise points per expected second over every open task."""

    key = GREEDY_POINTS

    def __init__(self, params: GreedyPointsParams) -> None:
        self.params = params

    def select_next_task(
        self, board_state: BoardState, resource_pool: ResourcePool,
    ) -> TaskSnapshot | None:
        candidates = [
            t for t in board_state.open_tasks()
            if t.probability >= self.params.min_probability
        ]
        if not candidates:
            return None

        def rank(task: TaskSnapshot) -> tuple:
            seconds = expected_seconds_remaining(task, board_state, resource_pool)
            rate = 0.0 if math.isinf(seconds) else task.points / seconds
            return (-rate, seconds, task.key)

        return min(candidates, key=rank)


class SequentialStrategy(Strategy):
    key = SEQUENTIAL

    def __init__(self, params: _Params) -> None:
        self.params = params

    def select_next_task(
        self, board_state: BoardState, resource_pool: ResourcePool,
    ) -> TaskSnapshot | None:
        open_tasks = board_state.open_tasks()
        return open_tasks[0] if open_tasks else None


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------

StrategyFactory = Callable[[dict[str, Any]], Strategy]


class StrategyRegistry:
    """Maps strategy keys to factories. Unknown keys fail at run setup."""

    def __init__(self) -> None:
        self._factories: dict[str, StrategyFactory] = {}

    def register(self, key: str, factory: StrategyFactory) -> None:
        if key in self._factories:
            msg = f"Strategy {key!r} already registered"
            raise ValueError(msg)
        self._factories[key] = factory

    def keys(self) -> list[str]:
        return sorted(self._factories)

    def __contains__(self, key: object) -> bool:
        return key in self._factories

    def create(self, config: StrategyConfig) -> Strategy:
        """Instantiate the strategy named by ``config``.

        Raises:
            KeyError: Unknown strategy key.
            ValueError: Invalid strategy params.
        """
        try:
            factory = self._factories[config.strategy_key]
        except KeyError:
            msg = (
                f"Unknown strategy {config.strategy_key!r}; "
                f"known: {', '.join(self.keys())}"
            )
            raise KeyError(msg) from None
        try:
            return factory(dict(config.params))
        except ValidationError as exc:
            msg = f"Invalid params for strategy {config.strategy_key!r}: {exc}"
            raise ValueError(msg) from exc

    def validate(self, config: StrategyConfig) -> None:
        self.create(config)


def default_strategy_registry() -> StrategyRegistry:
    registry = StrategyRegistry()
    registry.register(
        ROW_UNLOCKING,
        lambda params: RowUnlockingStrategy(RowUnlockingParams(**params)),
    )
    registry.register(
        GREEDY_POINTS,
        lambda params: GreedyPointsStrategy(GreedyPointsParams(**params)),
    )
    registry.register(
        SEQUENTIAL,
        lambda params: SequentialStrategy(_Params(**params)),
    )
    return registry
