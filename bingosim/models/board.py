"""Board snapshot models: the immutable copy of a board a batch runs against.

A snapshot is frozen at batch start (``freeze_snapshot``) and stored as a JSON
blob; every run deserializes its own copy, so later edits to the live board
never reach in-flight or historical runs.
"""

from typing import Annotated, Any, Literal
from uuid import UUID

from pydantic import Field, model_validator

from bingosim.models.common import BingoSimBase, RollScope, TimeDistribution
from bingosim.models.faults import NotFoundError

SNAPSHOT_VERSION = 1


class ItemStack(BingoSimBase, frozen=True):
    """A quantity of one named item."""

    name: str = Field(..., min_length=1)
    quantity: int = Field(default=1, ge=0)


class TimeModel(BingoSimBase, frozen=True):
    """Duration of one attempt at a task, in simulated seconds."""

    distribution: TimeDistribution = TimeDistribution.UNIFORM
    min_seconds: float = Field(..., ge=0)
    max_seconds: float = Field(..., ge=0)
    custom_key: str | None = None

    @model_validator(mode="after")
    def _check_bounds(self) -> "TimeModel":
        if self.max_seconds < self.min_seconds:
            msg = (
                f"max_seconds ({self.max_seconds}) must be >= "
                f"min_seconds ({self.min_seconds})"
            )
            raise ValueError(msg)
        if self.distribution == TimeDistribution.CUSTOM and not self.custom_key:
            msg = "CUSTOM time distribution requires custom_key"
            raise ValueError(msg)
        return self

    @property
    def mean_seconds(self) -> float:
        return (self.min_seconds + self.max_seconds) / 2.0


# ---------------------------------------------------------------------------
# Drop tables
# ---------------------------------------------------------------------------


class SimpleLootEntry(BingoSimBase, frozen=True):
    """Fires with probability ``weight`` and yields one item stack."""

    kind: Literal["simple"] = "simple"
    item: str = Field(..., min_length=1)
    weight: float = Field(..., ge=0.0, le=1.0)
    quantity_min: int = Field(default=1, ge=0)
    quantity_max: int | None = Field(default=None, ge=0)

    @model_validator(mode="after")
    def _check_quantity(self) -> "SimpleLootEntry":
        if self.quantity_max is not None and self.quantity_max < self.quantity_min:
            msg = f"quantity_max < quantity_min for loot entry {self.item!r}"
            raise ValueError(msg)
        return self


class DropOption(BingoSimBase, frozen=True):
    """One mutually exclusive bundle of a composite loot entry."""

    name: str = Field(..., min_length=1)
    weight: float = Field(default=1.0, gt=0.0)
    items: tuple[ItemStack, ...] = Field(default_factory=tuple)


class CompositeLootEntry(BingoSimBase, frozen=True):
    """Fires with probability ``weight``; a second draw then picks one option."""

    kind: Literal["composite"] = "composite"
    name: str = Field(..., min_length=1)
    weight: float = Field(..., ge=0.0, le=1.0)
    options: tuple[DropOption, ...] = Field(..., min_length=1)


LootEntry = Annotated[
    SimpleLootEntry | CompositeLootEntry,
    Field(discriminator="kind"),
]


class TertiaryDrop(BingoSimBase, frozen=True):
    """Rolled once per successful attempt, independent of the main table."""

    item: str = Field(..., min_length=1)
    probability: float = Field(..., ge=0.0, le=1.0)
    quantity_min: int = Field(default=1, ge=0)
    quantity_max: int | None = Field(default=None, ge=0)


class DropTable(BingoSimBase, frozen=True):
    guaranteed: tuple[ItemStack, ...] = Field(default_factory=tuple)
    main: tuple[LootEntry, ...] = Field(default_factory=tuple)
    tertiary: tuple[TertiaryDrop, ...] = Field(default_factory=tuple)


# ---------------------------------------------------------------------------
# Board structure
# ---------------------------------------------------------------------------


class TaskSnapshot(BingoSimBase, frozen=True):
    """A board tile: what one attempt costs and what completing it requires."""

    key: str = Field(..., min_length=1)
    name: str = ""
    points: int = Field(default=1, ge=0)
    probability: float = Field(..., ge=0.0, le=1.0)
    roll_scope: RollScope = RollScope.PER_GROUP
    time_model: TimeModel
    required_successes: int = Field(default=1, ge=0)
    required_items: dict[str, int] = Field(default_factory=dict)
    drops: DropTable = Field(default_factory=DropTable)


class RowSnapshot(BingoSimBase, frozen=True):
    index: int = Field(..., ge=0)
    tasks: tuple[TaskSnapshot, ...] = Field(..., min_length=1)
    required_tasks: int | None = Field(
        default=None,
        ge=1,
        description="Tasks needed to unlock the next row. None means all of them.",
    )

    @property
    def tasks_required(self) -> int:
        if self.required_tasks is None:
            return len(self.tasks)
        return min(self.required_tasks, len(self.tasks))


class StrategyConfig(BingoSimBase, frozen=True):
    """Strategy selection for a team. The key is resolved against the registry."""

    strategy_key: str = Field(..., min_length=1)
    params: dict[str, Any] = Field(default_factory=dict)


class TeamSnapshot(BingoSimBase, frozen=True):
    team_id: UUID
    name: str = Field(..., min_length=1)
    player_count: int = Field(default=1, ge=1)
    strategy: StrategyConfig


class BoardSnapshot(BingoSimBase, frozen=True):
    """Immutable deep copy of an event board taken at batch start."""

    version: int = SNAPSHOT_VERSION
    event_id: UUID
    event_name: str = ""
    rows: tuple[RowSnapshot, ...] = Field(default_factory=tuple)
    teams: tuple[TeamSnapshot, ...] = Field(default_factory=tuple)
    max_attempts: int = Field(default=100_000, ge=1)
    time_budget_seconds: float | None = Field(default=None, gt=0)

    @model_validator(mode="after")
    def _check_unique_keys(self) -> "BoardSnapshot":
        seen_tasks: set[str] = set()
        for row in self.rows:
            for task in row.tasks:
                if task.key in seen_tasks:
                    msg = f"Duplicate task key {task.key!r}"
                    raise ValueError(msg)
                seen_tasks.add(task.key)
        indexes = [row.index for row in self.rows]
        if len(indexes) != len(set(indexes)):
            msg = f"Duplicate row index in {indexes}"
            raise ValueError(msg)
        team_ids = [team.team_id for team in self.teams]
        if len(team_ids) != len(set(team_ids)):
            msg = "Duplicate team id"
            raise ValueError(msg)
        return self

    def ordered_rows(self) -> tuple[RowSnapshot, ...]:
        return tuple(sorted(self.rows, key=lambda r: r.index))

    def team(self, team_id: UUID) -> TeamSnapshot:
        for team in self.teams:
            if team.team_id == team_id:
                return team
        raise NotFoundError("team", team_id)

    def strategy_for(self, team_id: UUID) -> StrategyConfig:
        return self.team(team_id).strategy


def freeze_snapshot(board: BoardSnapshot | dict) -> BoardSnapshot:
    """Deep-copy a live board definition into a detached snapshot.

    Raises:
        ValueError: The board has no rows or no teams, or fails validation.
    """
    if isinstance(board, BoardSnapshot):
        snapshot = BoardSnapshot.model_validate_json(board.model_dump_json())
    else:
        snapshot = BoardSnapshot.model_validate(board)
    if not snapshot.rows:
        msg = f"Board for event {snapshot.event_id} has no rows"
        raise ValueError(msg)
    if not snapshot.teams:
        msg = f"Board for event {snapshot.event_id} has no teams"
        raise ValueError(msg)
    return snapshot
