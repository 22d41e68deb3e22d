"""Dense 0-based task ordering inside each column."""

from __future__ import annotations

from loguru import logger

from .columns import ColumnSequence
from .context import OperationContext
from .errors import (
    AlreadyFirstTaskError,
    AlreadyLastTaskError,
    NoNextColumnError,
    NoPrevColumnError,
    TaskNotFoundError,
    ValidationError,
)
from .models import MoveOutcome, Task
from .storage.interfaces import TaskRepository
from .validation import _require_id


def _densify(tasks: list[Task]) -> list[Task]:
    """Assign positions 0..n-1 in list order; return only the rows that changed."""
    changed: list[Task] = []
    for idx, task in enumerate(tasks):
        if task.position != idx:
            task.position = idx
            changed.append(task)
    return changed


class TaskPosition:
    def __init__(self, tasks: TaskRepository, columns: ColumnSequence) -> None:
        self._tasks = tasks
        self._columns = columns

    def _task(self, ctx: OperationContext, task_id: int) -> Task:
        ctx.check()
        _require_id(task_id, "task")
        task = self._tasks.get(task_id)
        if task is None:
            raise TaskNotFoundError(f"task {task_id} not found", task_id=task_id)
        return task

    def ordered(self, ctx: OperationContext, column_id: int) -> list[Task]:
        ctx.check()
        return self._tasks.list_by_column(column_id)

    def append(self, ctx: OperationContext, column_id: int) -> int:
        """Position a new task would take at the end of *column_id*."""
        column = self._columns.get(ctx, column_id)
        return self._tasks.count_by_column(column.id)

    # ------------------------------------------------------------------
    # Adjacent swaps
    # ------------------------------------------------------------------

    def swap_up(self, ctx: OperationContext, task_id: int) -> Task:
        return self._swap(ctx, task_id, -1)

    def swap_down(self, ctx: OperationContext, task_id: int) -> Task:
        return self._swap(ctx, task_id, 1)

    def _swap(self, ctx: OperationContext, task_id: int, step: int) -> Task:
        task = self._task(ctx, task_id)
        siblings = self._tasks.list_by_column(task.column_id)
        idx = next(i for i, t in enumerate(siblings) if t.id == task.id)
        target = idx + step
        if target < 0:
            raise AlreadyFirstTaskError("task is already at the top of the column", task_id=task.id)
        if target >= len(siblings):
            raise AlreadyLastTaskError("task is already at the bottom of the column", task_id=task.id)

        siblings[idx], siblings[target] = siblings[target], siblings[idx]
        changed = _densify(siblings)
        ctx.check("swap task positions")
        self._tasks.update_many(changed)
        logger.debug("Task {} moved {} to position {}", task.id, "up" if step < 0 else "down", target)
        return next(t for t in siblings if t.id == task.id)

    # ------------------------------------------------------------------
    # Cross-column relocation
    # ------------------------------------------------------------------

    def move_to_column(self, ctx: OperationContext, task_id: int, target_column_id: int) -> MoveOutcome:
        """Append the task to *target_column_id*, closing the gap it leaves behind.

        The task row and its renumbered former siblings are written in one
        commit.  Moving to the column the task is already in changes nothing.
        """
        task = self._task(ctx, task_id)
        source = self._columns.get(ctx, task.column_id)
        if target_column_id == source.id:
            return MoveOutcome(task=task, from_column=source, to_column=source, moved=False)

        target = self._columns.get(ctx, target_column_id)
        if target.project_id != source.project_id:
            raise ValidationError(
                "cannot move a task to a column of another project",
                task_id=task.id,
                column_id=target.id,
            )

        remaining = [t for t in self._tasks.list_by_column(source.id) if t.id != task.id]
        changed = _densify(remaining)
        task.column_id = target.id
        task.position = self._tasks.count_by_column(target.id)

        ctx.check("move task")
        self._tasks.update_many([task, *changed])
        logger.debug("Task {} moved from column {} to {} at position {}", task.id, source.id, target.id, task.position)
        return MoveOutcome(task=task, from_column=source, to_column=target)

    def move_to_next(self, ctx: OperationContext, task_id: int) -> MoveOutcome:
        task = self._task(ctx, task_id)
        target = self._columns.next(ctx, task.column_id)
        if target is None:
            raise NoNextColumnError("task is already in the last column", task_id=task.id)
        return self.move_to_column(ctx, task.id, target.id)

    def move_to_prev(self, ctx: OperationContext, task_id: int) -> MoveOutcome:
        task = self._task(ctx, task_id)
        target = self._columns.prev(ctx, task.column_id)
        if target is None:
            raise NoPrevColumnError("task is already in the first column", task_id=task.id)
        return self.move_to_column(ctx, task.id, target.id)

    # ------------------------------------------------------------------
    # Repair
    # ------------------------------------------------------------------

    def close_gap(self, ctx: OperationContext, column_id: int) -> list[Task]:
        """Renumber a column after one of its tasks left it."""
        changed = _densify(self._tasks.list_by_column(column_id))
        if changed:
            ctx.check("close position gap")
            self._tasks.update_many(changed)
        return changed

    def renumber(self, ctx: OperationContext, column_id: int) -> int:
        """Rewrite sparse or duplicated positions as 0..n-1; return rows fixed."""
        column = self._columns.get(ctx, column_id)
        changed = _densify(self._tasks.list_by_column(column.id))
        if changed:
            ctx.check("renumber column")
            self._tasks.update_many(changed)
            logger.warning("Repaired {} task position(s) in column '{}'", len(changed), column.name)
        return len(changed)
