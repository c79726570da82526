"""Tests for the strategy engine and its registry."""

import math

import pytest

from bingosim.engine.board_state import BoardState
from bingosim.engine.sampling import ResourcePool
from bingosim.engine.strategies import (
    GREEDY_POINTS,
    ROW_UNLOCKING,
    SEQUENTIAL,
    GreedyPointsStrategy,
    RowUnlockingStrategy,
    SequentialStrategy,
    default_strategy_registry,
    expected_attempts_remaining,
    expected_seconds_remaining,
    expected_successes_per_attempt,
)
from bingosim.models.board import (
    DropTable,
    RowSnapshot,
    SimpleLootEntry,
    StrategyConfig,
    TaskSnapshot,
    TimeModel,
)
from bingosim.models.common import RollScope


def _task(key: str, *, points: int = 1, probability: float = 1.0, seconds: float = 10.0,
          **kwargs) -> TaskSnapshot:
    return TaskSnapshot(
        key=key,
        points=points,
        probability=probability,
        time_model=TimeModel(min_seconds=seconds, max_seconds=seconds),
        **kwargs,
    )


def _create(key: str, **params):
    return default_strategy_registry().create(StrategyConfig(strategy_key=key, params=params))


@pytest.fixture
def split_board() -> BoardState:
    """Row 0 needs one of two tasks; "done" is complete so row 1 is unlocked."""
    rows = (
        RowSnapshot(
            index=0,
            tasks=(_task("done"), _task("leftover", points=1, probability=1.0)),
            required_tasks=1,
        ),
        RowSnapshot(index=1, tasks=(_task("far", points=1, probability=0.1),)),
    )
    state = BoardState(rows, player_count=1)
    state.record_attempt(rows[0].tasks[0], 10.0, 1)
    state.settle(ResourcePool())
    return state


class TestRegistry:
    """Strategies are resolved by key; bad configs fail fast."""

    def test_catalog(self) -> None:
        assert default_strategy_registry().keys() == [GREEDY_POINTS, ROW_UNLOCKING, SEQUENTIAL]

    def test_contains(self) -> None:
        registry = default_strategy_registry()
        assert ROW_UNLOCKING in registry
        assert "made_up" not in registry

    def test_create_types(self) -> None:
        assert isinstance(_create(ROW_UNLOCKING), RowUnlockingStrategy)
        assert isinstance(_create(GREEDY_POINTS), GreedyPointsStrategy)
        assert isinstance(_create(SEQUENTIAL), SequentialStrategy)

    def test_unknown_key(self) -> None:
        with pytest.raises(KeyError, match="made_up"):
            _create("made_up")

    def test_unknown_param(self) -> None:
        with pytest.raises(ValueError, match="Invalid params"):
            _create(ROW_UNLOCKING, bogus=1)

    def test_out_of_range_param(self) -> None:
        with pytest.raises(ValueError):
            _create(GREEDY_POINTS, min_probability=2.0)

    def test_duplicate_registration(self) -> None:
        registry = default_strategy_registry()
        with pytest.raises(ValueError, match="already registered"):
            registry.register(SEQUENTIAL, lambda params: SequentialStrategy(None))


class TestExpectations:
    """Expected-cost estimates."""

    def test_per_player_scales_with_team(self) -> None:
        task = _task("t", probability=0.2, roll_scope=RollScope.PER_PLAYER)
        assert expected_successes_per_attempt(task, 5) == pytest.approx(1.0)

    def test_per_group_ignores_team(self) -> None:
        task = _task("t", probability=0.2)
        assert expected_successes_per_attempt(task, 5) == pytest.approx(0.2)

    def test_item_deficit_drives_attempts(self) -> None:
        task = _task(
            "scales",
            probability=0.5,
            roll_scope=RollScope.PER_PLAYER,
            required_successes=0,
            required_items={"Scales": 100},
            drops=DropTable(main=(SimpleLootEntry(item="Scales", weight=1.0, quantity_min=10),)),
        )
        state = BoardState((RowSnapshot(index=0, tasks=(task,)),), player_count=2)
        assert expected_attempts_remaining(task, state, ResourcePool()) == pytest.approx(10.0)

    def test_impossible_task_is_infinite(self) -> None:
        task = _task("never", probability=0.0)
        state = BoardState((RowSnapshot(index=0, tasks=(task,)),), player_count=1)
        assert math.isinf(expected_seconds_remaining(task, state, ResourcePool()))


class TestRowUnlocking:
    """Races to the next row."""

    def test_targets_furthest_row(self, split_board: BoardState) -> None:
        task = _create(ROW_UNLOCKING).select_next_task(split_board, ResourcePool())
        assert task.key == "far"

    def test_fastest_task_wins(self) -> None:
        row = RowSnapshot(index=0, tasks=(
            _task("slow", probability=0.25, seconds=30),
            _task("quick", probability=0.5, seconds=15),
        ))
        state = BoardState((row,), player_count=1)
        assert _create(ROW_UNLOCKING).select_next_task(state, ResourcePool()).key == "quick"

    def test_tie_breakers(self) -> None:
        row = RowSnapshot(index=0, tasks=(
            _task("a_small", points=1),
            _task("b_big", points=10),
        ))
        state = BoardState((row,), player_count=1)
        pool = ResourcePool()
        assert _create(ROW_UNLOCKING).select_next_task(state, pool).key == "b_big"
        assert _create(ROW_UNLOCKING, tie_breaker="key").select_next_task(state, pool).key == "a_small"

    def test_none_when_nothing_open(self) -> None:
        row = RowSnapshot(index=0, tasks=(_task("only"),))
        state = BoardState((row,), player_count=1)
        state.record_attempt(row.tasks[0], 1.0, 1)
        state.settle(ResourcePool())
        assert _create(ROW_UNLOCKING).select_next_task(state, ResourcePool()) is None


class TestGreedyPoints:
    """Best points per expected second over every unlocked row."""

    def test_prefers_cheap_points(self, split_board: BoardState) -> None:
        task = _create(GREEDY_POINTS).select_next_task(split_board, ResourcePool())
        assert task.key == "leftover"

    def test_min_probability_filter(self, split_board: BoardState) -> None:
        strategy = _create(GREEDY_POINTS, min_probability=0.5)
        assert strategy.select_next_task(split_board, ResourcePool()).key == "leftover"

    def test_filter_can_exclude_everything(self) -> None:
        row = RowSnapshot(index=0, tasks=(_task("rare", probability=0.01),))
        state = BoardState((row,), player_count=1)
        strategy = _create(GREEDY_POINTS, min_probability=0.5)
        assert strategy.select_next_task(state, ResourcePool()) is None


class TestSequential:
    def test_board_order(self, split_board: BoardState) -> None:
        task = _create(SEQUENTIAL).select_next_task(split_board, ResourcePool())
        assert task.key == "leftover"


class TestDeterminism:
    """Strategies never draw randomness: repeated calls agree."""

    @pytest.mark.parametrize("key", [ROW_UNLOCKING, GREEDY_POINTS, SEQUENTIAL])
    def test_repeatable(self, key: str, split_board: BoardState) -> None:
        strategy = _create(key)
        picks = {strategy.select_next_task(split_board, ResourcePool()).key for _ in range(10)}
        assert len(picks) == 1
