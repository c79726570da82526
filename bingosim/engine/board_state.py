"""Mutable progress of one team across one board during one run."""

from dataclasses import dataclass

from bingosim.engine.sampling import ResourcePool
from bingosim.models.board import RowSnapshot, TaskSnapshot


@dataclass
class TaskProgress:
    successes: int = 0
    attempts: int = 0
    completed_at: float | None = None

    @property
    def completed(self) -> bool:
        return self.completed_at is not None


class BoardState:
    """Row unlocking and per-task progress.

    Row 0 is unlocked from the start. Row n+1 unlocks once row n has its
    required number of tasks complete. Strategies only read this object.
    """

    def __init__(self, rows: tuple[RowSnapshot, ...], player_count: int) -> None:
        self.rows = tuple(sorted(rows, key=lambda r: r.index))
        self.player_count = player_count
        self.elapsed_seconds = 0.0
        self.progress: dict[str, TaskProgress] = {
            task.key: TaskProgress() for row in self.rows for task in row.tasks
        }
        self.row_completion_seconds: list[float] = []

    # --- Queries ---

    @property
    def rows_completed(self) -> int:
        return len(self.row_completion_seconds)

    @property
    def board_completed(self) -> bool:
        return bool(self.rows) and self.rows_completed == len(self.rows)

    @property
    def current_row_position(self) -> int:
        """Position (in row order) of the furthest unlocked row."""
        return min(self.rows_completed, len(self.rows) - 1) if self.rows else 0

    def unlocked_rows(self) -> tuple[RowSnapshot, ...]:
        if not self.rows:
            return ()
        return self.rows[: self.current_row_position + 1]

    def current_row(self) -> RowSnapshot | None:
        if not self.rows:
            return None
        return self.rows[self.current_row_position]

    def is_completed(self, task: TaskSnapshot) -> bool:
        return self.progress[task.key].completed

    def open_tasks(self, row: RowSnapshot | None = None) -> list[TaskSnapshot]:
        """Incomplete tasks on ``row``, or on every unlocked row."""
        rows = (row,) if row is not None else self.unlocked_rows()
        return [t for r in rows for t in r.tasks if not self.is_completed(t)]

    def is_open(self, task: TaskSnapshot) -> bool:
        return any(t.key == task.key for t in self.open_tasks())

    def completed_in_row(self, row: RowSnapshot) -> int:
        return sum(1 for t in row.tasks if self.is_completed(t))

    # --- Mutations ---

    def record_attempt(self, task: TaskSnapshot, duration: float, successes: int) -> None:
        progress = self.progress[task.key]
        progress.attempts += 1
        progress.successes += successes
        self.elapsed_seconds += duration

    def settle(self, pool: ResourcePool) -> list[TaskSnapshot]:
        """Complete every open task whose requirements are now met, then unlock rows.

        Returns the tasks completed by this call, in board order.
        """
        newly_completed: list[TaskSnapshot] = []
        while True:
            changed = False
            for task in self.open_tasks():
                progress = self.progress[task.key]
                if (
                    progress.successes >= task.required_successes
                    and pool.holds(task.required_items)
                ):
                    progress.completed_at = self.elapsed_seconds
                    newly_completed.append(task)
                    changed = True
            row = self.current_row()
            if (
                row is not None
                and not self.board_completed
                and self.completed_in_row(row) >= row.tasks_required
            ):
                self.row_completion_seconds.append(self.elapsed_seconds)
                changed = True
            if not changed:
                return newly_completed
