"""Per-project column chain.

Columns form a doubly linked chain through ``prev_id`` / ``next_id``.  The
links are integer keys into the column store (an arena), so splicing a new
column in or unlinking one only rewrites the two neighbouring rows.
"""

from __future__ import annotations

from typing import Any, Iterable, Mapping, Optional, Sequence

from loguru import logger

from .constants import DEFAULT_COLUMNS, MAX_COLUMN_NAME
from .context import OperationContext
from .errors import (
    ColumnNotEmptyError,
    ColumnNotFoundError,
    NoRoleColumnConfigured,
    RoleColumnExistsError,
    StorageError,
    ValidationError,
)
from .models import Column, ColumnRole
from .storage.interfaces import ColumnRepository, TaskRepository
from .validation import _require_id, _require_text


def _roles(raw: Iterable[Any]) -> list[ColumnRole]:
    out: list[ColumnRole] = []
    for role in raw:
        try:
            parsed = role if isinstance(role, ColumnRole) else ColumnRole(str(role).strip().lower().replace("-", "_"))
        except ValueError as exc:
            raise ValidationError(f"unknown column role {role!r}", role=role) from exc
        if parsed not in out:
            out.append(parsed)
    return out


class ColumnSequence:
    def __init__(self, repo: ColumnRepository, tasks: TaskRepository) -> None:
        self._repo = repo
        self._tasks = tasks

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def _index(self, project_id: int) -> dict[int, Column]:
        return {c.id: c for c in self._repo.list_for_project(project_id)}

    def get(self, ctx: OperationContext, column_id: int) -> Column:
        ctx.check()
        _require_id(column_id, "column")
        column = self._repo.get(column_id)
        if column is None:
            raise ColumnNotFoundError(f"column {column_id} not found", column_id=column_id)
        return column

    def next(self, ctx: OperationContext, column_id: int) -> Optional[Column]:
        """The column after *column_id*, or ``None`` at the tail."""
        column = self.get(ctx, column_id)
        return self._repo.get(column.next_id) if column.next_id is not None else None

    def prev(self, ctx: OperationContext, column_id: int) -> Optional[Column]:
        """The column before *column_id*, or ``None`` at the head."""
        column = self.get(ctx, column_id)
        return self._repo.get(column.prev_id) if column.prev_id is not None else None

    def head(self, ctx: OperationContext, project_id: int) -> Optional[Column]:
        ordered = self.ordered(ctx, project_id)
        return ordered[0] if ordered else None

    def tail(self, ctx: OperationContext, project_id: int) -> Optional[Column]:
        ordered = self.ordered(ctx, project_id)
        return ordered[-1] if ordered else None

    def ordered(self, ctx: OperationContext, project_id: int) -> list[Column]:
        """Walk the chain head to tail.

        Raises:
            StorageError: If the stored links do not form one chain covering
                every column of the project.
        """
        ctx.check()
        index = self._index(project_id)
        if not index:
            return []
        heads = [c for c in index.values() if c.prev_id is None]
        if len(heads) != 1:
            raise StorageError(
                f"project {project_id} column chain has {len(heads)} heads",
                project_id=project_id,
            )
        out: list[Column] = []
        seen: set[int] = set()
        cur: Optional[Column] = heads[0]
        while cur is not None:
            if cur.id in seen:
                raise StorageError(f"column chain loops at column {cur.id}", project_id=project_id)
            seen.add(cur.id)
            out.append(cur)
            if cur.next_id is None:
                break
            nxt = index.get(cur.next_id)
            if nxt is None or nxt.prev_id != cur.id:
                raise StorageError(
                    f"column {cur.id} links to missing or mismatched column {cur.next_id}",
                    project_id=project_id,
                )
            cur = nxt
        if len(out) != len(index):
            raise StorageError(
                f"column chain covers {len(out)} of {len(index)} columns",
                project_id=project_id,
            )
        return out

    def find_by_name(self, ctx: OperationContext, project_id: int, name: str) -> Optional[Column]:
        wanted = name.strip().lower()
        for column in self.ordered(ctx, project_id):
            if column.name.lower() == wanted:
                return column
        return None

    def find_role(self, ctx: OperationContext, project_id: int, role: ColumnRole) -> Optional[Column]:
        ctx.check()
        for column in self._repo.list_for_project(project_id):
            if column.holds(role):
                return column
        return None

    def role_column(self, ctx: OperationContext, project_id: int, role: ColumnRole) -> Column:
        column = self.find_role(ctx, project_id, role)
        if column is None:
            raise NoRoleColumnConfigured(
                f"no {role.display} column configured for project {project_id}",
                project_id=project_id,
                role=role.value,
            )
        return column

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def insert_after(
        self,
        ctx: OperationContext,
        project_id: int,
        name: str,
        after_column_id: Optional[int] = None,
        roles: Sequence[Any] = (),
    ) -> Column:
        """Create a column after *after_column_id*, or at the tail when omitted."""
        _require_id(project_id, "project")
        name = _require_text(name, "column name", MAX_COLUMN_NAME)
        wanted_roles = _roles(roles)
        index = self._index(project_id)

        for role in wanted_roles:
            holder = next((c for c in index.values() if c.holds(role)), None)
            if holder is not None:
                raise RoleColumnExistsError(
                    f"column '{holder.name}' already holds the {role.display} role",
                    column_id=holder.id,
                    role=role.value,
                )

        if after_column_id is not None:
            _require_id(after_column_id, "column")
            after = index.get(after_column_id)
            if after is None:
                raise ColumnNotFoundError(
                    f"column {after_column_id} not found in project {project_id}",
                    column_id=after_column_id,
                )
        else:
            after = next((c for c in index.values() if c.next_id is None), None)

        following = index.get(after.next_id) if after is not None and after.next_id is not None else None
        column = Column(
            project_id=project_id,
            name=name,
            prev_id=after.id if after is not None else None,
            next_id=following.id if following is not None else None,
        )
        for role in wanted_roles:
            setattr(column, role.flag, True)

        ctx.check("insert column")
        self._repo.insert_linked(column)
        logger.debug("Column {} '{}' inserted after {}", column.id, column.name, column.prev_id)
        return column

    def remove(self, ctx: OperationContext, column_id: int) -> Column:
        """Unlink and delete an empty column."""
        column = self.get(ctx, column_id)
        remaining = self._tasks.count_by_column(column.id)
        if remaining:
            raise ColumnNotEmptyError(
                f"cannot delete column '{column.name}' with {remaining} task(s)",
                column_id=column.id,
                task_count=remaining,
            )

        ctx.check("delete column")
        self._repo.delete_linked(column.id)
        logger.debug("Column {} '{}' removed", column.id, column.name)
        return column

    def rename(self, ctx: OperationContext, column_id: int, name: str) -> Column:
        column = self.get(ctx, column_id)
        column.name = _require_text(name, "column name", MAX_COLUMN_NAME)
        ctx.check("rename column")
        self._repo.update_many([column])
        return column

    def assign_role(self, ctx: OperationContext, column_id: int, role: Any) -> Column:
        """Give *role* to the column, taking it from whichever column held it."""
        role = _roles([role])[0]
        column = self.get(ctx, column_id)
        changed: list[Column] = []
        for other in self._repo.list_for_project(column.project_id):
            if other.id != column.id and other.holds(role):
                setattr(other, role.flag, False)
                changed.append(other)
        if not column.holds(role):
            setattr(column, role.flag, True)
            changed.append(column)
        if changed:
            ctx.check("assign column role")
            self._repo.update_many(changed)
            logger.debug("Column {} now holds the {} role", column.id, role.value)
        return column

    def clear_role(self, ctx: OperationContext, column_id: int, role: Any) -> Column:
        role = _roles([role])[0]
        column = self.get(ctx, column_id)
        if column.holds(role):
            setattr(column, role.flag, False)
            ctx.check("clear column role")
            self._repo.update_many([column])
        return column

    def create_defaults(
        self,
        ctx: OperationContext,
        project_id: int,
        specs: Sequence[Mapping[str, Any]] = DEFAULT_COLUMNS,
    ) -> list[Column]:
        created: list[Column] = []
        for spec in specs:
            role = spec.get("role")
            after = created[-1].id if created else None
            created.append(self.insert_after(ctx, project_id, spec["name"], after, roles=[role] if role else ()))
        return created

    def delete_all(self, ctx: OperationContext, project_id: int) -> int:
        """Drop every column row of a project (used when the project goes)."""
        removed = 0
        for column in self._repo.list_for_project(project_id):
            ctx.check("delete column")
            if self._repo.delete(column.id):
                removed += 1
        return removed
