"""Graph rules over task relations.

All relation kinds share one reachability graph: closing a loop is rejected
whether the loop is made of parent/child, blocking or related edges, or any
mix of them.  Blocked status only looks at blocking edges: a task is blocked
while it is the ``from`` end of at least one of them.
"""

from __future__ import annotations

from collections import deque
from typing import Any, Optional

from loguru import logger

from .columns import ColumnSequence
from .constants import MAX_TREE_DEPTH
from .context import OperationContext
from .errors import CircularDependencyError, SelfReferenceError, TaskNotFoundError, ValidationError
from .models import ColumnRole, Relation, RelationKind, Task, TaskReference, TaskTreeNode
from .relations import Adjacency, RelationStore
from .storage.interfaces import TaskRepository
from .validation import _require_id


def _parse_kind(raw: Any) -> RelationKind:
    try:
        return RelationKind.parse(raw)
    except (KeyError, ValueError, TypeError) as exc:
        raise ValidationError(f"unknown relation type {raw!r}", kind=raw) from exc


def _reaches(adj: Adjacency, start: int, goal: int) -> bool:
    """BFS over every edge kind: is *goal* reachable from *start*?"""
    visited: set[int] = set()
    queue: deque[int] = deque([start])
    while queue:
        current = queue.popleft()
        if current == goal:
            return True
        if current in visited:
            continue
        visited.add(current)
        for nxt, _kind in adj.get(current, ()):
            if nxt not in visited:
                queue.append(nxt)
    return False


class RelationGraph:
    def __init__(self, relations: RelationStore, tasks: TaskRepository, columns: ColumnSequence) -> None:
        self._relations = relations
        self._tasks = tasks
        self._columns = columns

    def _task(self, task_id: int) -> Task:
        _require_id(task_id, "task")
        task = self._tasks.get(task_id)
        if task is None:
            raise TaskNotFoundError(f"task {task_id} not found", task_id=task_id)
        return task

    # ------------------------------------------------------------------
    # Edges
    # ------------------------------------------------------------------

    def check_edge(self, ctx: OperationContext, from_id: int, to_id: int, kind: Any = RelationKind.PARENT_CHILD) -> RelationKind:
        """Validate an edge without writing it; return the parsed kind."""
        ctx.check()
        _require_id(from_id, "task")
        _require_id(to_id, "task")
        parsed = _parse_kind(kind)
        if from_id == to_id:
            raise SelfReferenceError("task cannot have a relationship with itself", task_id=from_id)
        self._task(from_id)
        self._task(to_id)
        if _reaches(self._relations.adjacency(), to_id, from_id):
            raise CircularDependencyError(
                "circular relationship detected",
                from_id=from_id,
                to_id=to_id,
            )
        return parsed

    def add_edge(self, ctx: OperationContext, from_id: int, to_id: int, kind: Any = RelationKind.PARENT_CHILD) -> Relation:
        """Add ``from_id -> to_id``, replacing the kind if the pair is already linked.

        Raises:
            SelfReferenceError: ``from_id == to_id``.
            TaskNotFoundError: Either endpoint is missing.
            CircularDependencyError: ``to_id`` already reaches ``from_id``.
        """
        parsed = self.check_edge(ctx, from_id, to_id, kind)
        return self._relations.upsert(ctx, from_id, to_id, parsed)

    def remove_edge(self, ctx: OperationContext, from_id: int, to_id: int) -> bool:
        _require_id(from_id, "task")
        _require_id(to_id, "task")
        return self._relations.delete(ctx, from_id, to_id)

    # ------------------------------------------------------------------
    # Blocked / ready
    # ------------------------------------------------------------------

    def _blocked_ids(self) -> set[int]:
        return {r.from_id for r in self._relations.all() if r.kind.is_blocking}

    def is_blocked(self, ctx: OperationContext, task_id: int) -> bool:
        ctx.check()
        _require_id(task_id, "task")
        return any(r.kind.is_blocking for r in self._relations.outgoing(task_id))

    def blockers(self, ctx: OperationContext, task_id: int) -> list[int]:
        """Tasks *task_id* waits on."""
        ctx.check()
        return sorted(r.to_id for r in self._relations.outgoing(task_id) if r.kind.is_blocking)

    def dependents(self, ctx: OperationContext, task_id: int) -> list[int]:
        """Tasks waiting on *task_id*."""
        ctx.check()
        return sorted(r.from_id for r in self._relations.incoming(task_id) if r.kind.is_blocking)

    def ready_set(self, ctx: OperationContext, project_id: int) -> list[Task]:
        ctx.check()
        column = self._columns.find_role(ctx, project_id, ColumnRole.READY)
        if column is None:
            return []
        blocked = self._blocked_ids()
        return [t for t in self._tasks.list_by_column(column.id) if t.id not in blocked]

    def blocked_set(self, ctx: OperationContext, project_id: int) -> list[Task]:
        columns = self._columns.ordered(ctx, project_id)
        blocked = self._blocked_ids()
        if not blocked:
            return []
        return [t for t in self._tasks.query([c.id for c in columns]) if t.id in blocked]

    # ------------------------------------------------------------------
    # Neighbour views
    # ------------------------------------------------------------------

    def _reference(self, other_id: int, kind: RelationKind, label: str) -> Optional[TaskReference]:
        other = self._tasks.get(other_id)
        if other is None:
            return None
        return TaskReference(id=other.id, title=other.title, ticket_number=other.ticket_number, kind=kind, label=label)

    def parents(self, ctx: OperationContext, task_id: int) -> list[TaskReference]:
        """Tasks with an edge into *task_id*, labelled from the parent's side."""
        ctx.check()
        refs = [self._reference(r.from_id, r.kind, r.kind.from_label) for r in self._relations.incoming(task_id)]
        return sorted((r for r in refs if r is not None), key=_ref_key)

    def children(self, ctx: OperationContext, task_id: int) -> list[TaskReference]:
        ctx.check()
        refs = [self._reference(r.to_id, r.kind, r.kind.to_label) for r in self._relations.outgoing(task_id)]
        return sorted((r for r in refs if r is not None), key=_ref_key)

    # ------------------------------------------------------------------
    # Tree
    # ------------------------------------------------------------------

    def tree(self, ctx: OperationContext, project_id: int) -> list[TaskTreeNode]:
        """Nest the project's tasks along outgoing edges.

        Roots are tasks with no incoming edge from another task of the
        project.  A task reachable along several paths appears under each of
        them; a branch stops at ``MAX_TREE_DEPTH`` or on revisiting a task.
        """
        columns = self._columns.ordered(ctx, project_id)
        names = {c.id: c.name for c in columns}
        tasks = {t.id: t for t in self._tasks.query(list(names))}
        adj: Adjacency = {}
        has_parent: set[int] = set()
        for rel in self._relations.all():
            if rel.from_id in tasks and rel.to_id in tasks:
                adj.setdefault(rel.from_id, []).append((rel.to_id, rel.kind))
                has_parent.add(rel.to_id)

        def build(task_id: int, relation: Optional[RelationKind], depth: int, path: frozenset[int]) -> TaskTreeNode:
            task = tasks[task_id]
            node = TaskTreeNode(
                id=task.id,
                title=task.title,
                ticket_number=task.ticket_number,
                column_name=names.get(task.column_id, ""),
                relation=relation,
            )
            if depth >= MAX_TREE_DEPTH:
                logger.warning("Task tree depth limit reached at task {}", task_id)
                return node
            for child_id, kind in sorted(adj.get(task_id, ()), key=lambda e: _task_key(tasks[e[0]])):
                if child_id in path:
                    continue
                node.children.append(build(child_id, kind, depth + 1, path | {child_id}))
            return node

        roots = sorted((t for t in tasks.values() if t.id not in has_parent), key=_task_key)
        ctx.check()
        return [build(t.id, None, 0, frozenset({t.id})) for t in roots]


def _ref_key(ref: TaskReference) -> tuple[int, int]:
    return (ref.ticket_number or 0, ref.id)


def _task_key(task: Task) -> tuple[int, int]:
    return (task.ticket_number or 0, task.id)
