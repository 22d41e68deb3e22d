"""Board engine: every observable mutation of projects, columns and tasks.

:class:`BoardEngine` composes the relation graph, the column chain and task
positions.  Each public method takes an :class:`OperationContext` first;
the project a call applies to is carried there or passed explicitly, never
read from process state.

Validation happens before the first write.  After that, each repository
call is its own commit, so a deadline that fires midway leaves the earlier
steps in place.  ``create_task`` is the one exception: it undoes its own
partial work if a requested relation cannot be added.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterable, Mapping, Optional

from loguru import logger

from .columns import ColumnSequence
from .config import EngineSettings, resolve_settings
from .constants import (
    MAX_COMMENT_LENGTH,
    MAX_LABEL_NAME,
    MAX_PROJECT_NAME,
    MAX_TASK_TITLE,
    MOVE_NEXT,
    MOVE_PREV,
)
from .context import OperationContext
from .errors import (
    ColumnNotFoundError,
    LabelNotFoundError,
    ProjectNotEmptyError,
    ProjectNotFoundError,
    TaskAlreadyInTargetColumn,
    TaskNotFoundError,
    ValidationError,
)
from .graph import RelationGraph
from .models import (
    BoardColumn,
    Column,
    ColumnRole,
    Comment,
    Label,
    MoveOutcome,
    Priority,
    Project,
    Relation,
    RelationKind,
    Task,
    TaskDetail,
    TaskTreeNode,
    TaskType,
)
from .positions import TaskPosition
from .relations import RelationStore
from .storage.container import StoreContainer
from .utils import _parse_iso
from .validation import _require_color, _require_id, _require_ids, _require_text

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def _coerce(enum_cls: type, raw: Any, what: str) -> Any:
    if isinstance(raw, enum_cls):
        return raw
    try:
        if isinstance(raw, str) and not raw.strip().isdigit():
            return enum_cls[raw.strip().upper().replace("-", "_")]
        return enum_cls(int(raw))
    except (KeyError, ValueError, TypeError) as exc:
        raise ValidationError(f"invalid {what}: {raw!r}", **{what: raw}) from exc


def _comment_key(comment: Comment) -> tuple[datetime, int]:
    return (_parse_iso(comment.created_at) or _EPOCH, comment.id)


@dataclass
class CreateTaskRequest:
    title: str
    column_id: int
    description: str = ""
    priority: Any = Priority.MEDIUM
    task_type: Any = TaskType.TASK
    label_ids: list[int] = field(default_factory=list)
    parent_ids: list[int] = field(default_factory=list)  # parent -> new task
    blocked_by_ids: list[int] = field(default_factory=list)  # new task -> blocker
    blocks_ids: list[int] = field(default_factory=list)  # blocked task -> new task


class BoardEngine:
    def __init__(self, store: StoreContainer, settings: Optional[EngineSettings] = None) -> None:
        self.store = store
        self.settings = settings or EngineSettings()
        self.relations = RelationStore(store.relations)
        self.columns = ColumnSequence(store.columns, store.tasks)
        self.positions = TaskPosition(store.tasks, self.columns)
        self.graph = RelationGraph(self.relations, store.tasks, self.columns)

    @classmethod
    def open(cls, project_dir: Path, env: Optional[Mapping[str, str]] = None) -> "BoardEngine":
        """Build an engine over ``<project_dir>/.kanban`` (or the configured data dir)."""
        settings = resolve_settings(project_dir, env)
        store = StoreContainer(settings.state_root(project_dir))
        logger.debug("Opened board store at {}", store.state_root)
        return cls(store, settings)

    def context(self, project_id: Optional[int] = None) -> OperationContext:
        """A fresh context using the configured deadline."""
        return OperationContext.with_timeout(self.settings.deadline_seconds, project_id=project_id)

    # ------------------------------------------------------------------
    # Internal lookups
    # ------------------------------------------------------------------

    def _project(self, ctx: OperationContext, project_id: Optional[int] = None) -> Project:
        ctx.check()
        pid = ctx.resolve_project(project_id)
        project = self.store.projects.get(pid)
        if project is None:
            raise ProjectNotFoundError(f"project {pid} not found", project_id=pid)
        return project

    def _task(self, ctx: OperationContext, task_id: int) -> Task:
        ctx.check()
        _require_id(task_id, "task")
        task = self.store.tasks.get(task_id)
        if task is None:
            raise TaskNotFoundError(f"task {task_id} not found", task_id=task_id)
        return task

    def _label(self, ctx: OperationContext, label_id: int) -> Label:
        ctx.check()
        _require_id(label_id, "label")
        label = self.store.labels.get(label_id)
        if label is None:
            raise LabelNotFoundError(f"label {label_id} not found", label_id=label_id)
        return label

    def _project_tasks(self, ctx: OperationContext, project_id: int) -> list[Task]:
        columns = self.columns.ordered(ctx, project_id)
        return self.store.tasks.query([c.id for c in columns])

    # ------------------------------------------------------------------
    # Projects
    # ------------------------------------------------------------------

    def create_project(
        self,
        ctx: OperationContext,
        name: str,
        description: str = "",
        *,
        with_default_columns: bool = True,
    ) -> Project:
        name = _require_text(name, "project name", MAX_PROJECT_NAME)
        ctx.check("insert project")
        project = self.store.projects.insert(Project(name=name, description=description or ""))
        if with_default_columns:
            specs = [spec.model_dump() for spec in self.settings.default_columns]
            self.columns.create_defaults(ctx, project.id, specs)
        logger.info("Created project {} '{}'", project.id, project.name)
        return project

    def get_project(self, ctx: OperationContext, project_id: Optional[int] = None) -> Project:
        return self._project(ctx, project_id)

    def list_projects(self, ctx: OperationContext) -> list[Project]:
        ctx.check()
        return self.store.projects.list()

    def update_project(
        self,
        ctx: OperationContext,
        project_id: Optional[int] = None,
        *,
        name: Optional[str] = None,
        description: Optional[str] = None,
    ) -> Project:
        project = self._project(ctx, project_id)
        if name is not None:
            project.name = _require_text(name, "project name", MAX_PROJECT_NAME)
        if description is not None:
            project.description = description
        ctx.check("update project")
        return self.store.projects.update(project)

    def delete_project(self, ctx: OperationContext, project_id: Optional[int] = None, *, force: bool = False) -> None:
        """Delete a project with its columns and labels.

        A project that still has tasks is only deleted with ``force=True``,
        in which case its tasks go first.
        """
        project = self._project(ctx, project_id)
        tasks = self._project_tasks(ctx, project.id)
        if tasks and not force:
            raise ProjectNotEmptyError(
                f"cannot delete project '{project.name}' with {len(tasks)} task(s); use force",
                project_id=project.id,
                task_count=len(tasks),
            )
        for task in tasks:
            self._delete_task_rows(ctx, task)
        self.columns.delete_all(ctx, project.id)
        for label in self.store.labels.list_for_project(project.id):
            ctx.check("delete label")
            self.store.labels.detach_label_everywhere(label.id)
            self.store.labels.delete(label.id)
        ctx.check("delete project")
        self.store.projects.delete(project.id)
        logger.info("Deleted project {} '{}' ({} task(s))", project.id, project.name, len(tasks))

    # ------------------------------------------------------------------
    # Columns
    # ------------------------------------------------------------------

    def create_column(
        self,
        ctx: OperationContext,
        name: str,
        *,
        project_id: Optional[int] = None,
        after_column_id: Optional[int] = None,
        roles: Iterable[Any] = (),
    ) -> Column:
        project = self._project(ctx, project_id)
        return self.columns.insert_after(ctx, project.id, name, after_column_id, roles=list(roles))

    def rename_column(self, ctx: OperationContext, column_id: int, name: str) -> Column:
        return self.columns.rename(ctx, column_id, name)

    def set_column_role(self, ctx: OperationContext, column_id: int, role: Any, enabled: bool = True) -> Column:
        if enabled:
            return self.columns.assign_role(ctx, column_id, role)
        return self.columns.clear_role(ctx, column_id, role)

    def list_columns(self, ctx: OperationContext, project_id: Optional[int] = None) -> list[Column]:
        project = self._project(ctx, project_id)
        return self.columns.ordered(ctx, project.id)

    def delete_column(self, ctx: OperationContext, column_id: int) -> Column:
        """Unlink and delete an empty column; its tasks must be moved first."""
        return self.columns.remove(ctx, column_id)

    # ------------------------------------------------------------------
    # Task creation and deletion
    # ------------------------------------------------------------------

    def create_task(self, ctx: OperationContext, request: CreateTaskRequest) -> Task:
        """Append a task to its column and add the requested relations.

        Every referenced id is checked before anything is written.  If adding
        a relation still fails (for instance because it would close a loop),
        the task and whatever was attached to it are removed again and the
        first error propagates.
        """
        column = self.columns.get(ctx, request.column_id)
        title = _require_text(request.title, "title", MAX_TASK_TITLE)
        priority = _coerce(Priority, request.priority, "priority")
        task_type = _coerce(TaskType, request.task_type, "task_type")

        label_ids = _require_ids(request.label_ids, "label")
        for label_id in label_ids:
            label = self._label(ctx, label_id)
            if label.project_id != column.project_id:
                raise ValidationError(
                    f"label '{label.name}' belongs to another project",
                    label_id=label_id,
                )
        parent_ids = _require_ids(request.parent_ids, "task")
        blocked_by_ids = _require_ids(request.blocked_by_ids, "task")
        blocks_ids = _require_ids(request.blocks_ids, "task")
        for related_id in {*parent_ids, *blocked_by_ids, *blocks_ids}:
            self._task(ctx, related_id)

        position = self.positions.append(ctx, column.id)
        ctx.check("allocate ticket number")
        ticket = self.store.projects.allocate_ticket_number(column.project_id)
        ctx.check("insert task")
        task = self.store.tasks.insert(
            Task(
                column_id=column.id,
                title=title,
                description=request.description or "",
                priority=priority,
                task_type=task_type,
                position=position,
                ticket_number=ticket,
            )
        )

        edges: list[tuple[int, int, RelationKind]] = []
        edges += [(pid, task.id, RelationKind.PARENT_CHILD) for pid in parent_ids]
        edges += [(task.id, bid, RelationKind.BLOCKING) for bid in blocked_by_ids]
        edges += [(xid, task.id, RelationKind.BLOCKING) for xid in blocks_ids]

        try:
            for label_id in label_ids:
                ctx.check("attach label")
                self.store.labels.attach(task.id, label_id)
            for from_id, to_id, kind in edges:
                self.graph.add_edge(ctx, from_id, to_id, kind)
        except Exception as exc:
            logger.warning("Rolling back task {} after failed setup: {}", task.id, exc)
            cleanup = OperationContext.background(project_id=column.project_id)
            self._delete_task_rows(cleanup, task)
            self.positions.close_gap(cleanup, column.id)
            raise

        logger.debug("Created task {} '{}' in column {} at position {}", task.id, task.title, column.id, task.position)
        return task

    def _delete_task_rows(self, ctx: OperationContext, task: Task) -> None:
        self.relations.delete_for_task(ctx, task.id)
        ctx.check("detach labels")
        self.store.labels.detach_all_for_task(task.id)
        ctx.check("delete comments")
        self.store.comments.delete_for_task(task.id)
        ctx.check("delete task")
        self.store.tasks.delete(task.id)

    def delete_task(self, ctx: OperationContext, task_id: int) -> Task:
        """Delete a task and everything it owns, then close its column's gap.

        Tasks on the other end of its relations are left alone.
        """
        task = self._task(ctx, task_id)
        self._delete_task_rows(ctx, task)
        self.positions.close_gap(ctx, task.column_id)
        logger.debug("Deleted task {} '{}'", task.id, task.title)
        return task

    # ------------------------------------------------------------------
    # Task reads and field updates
    # ------------------------------------------------------------------

    def get_task(self, ctx: OperationContext, task_id: int) -> Task:
        return self._task(ctx, task_id)

    def update_task(
        self,
        ctx: OperationContext,
        task_id: int,
        *,
        title: Optional[str] = None,
        description: Optional[str] = None,
        priority: Any = None,
        task_type: Any = None,
    ) -> Task:
        task = self._task(ctx, task_id)
        if title is not None:
            task.title = _require_text(title, "title", MAX_TASK_TITLE)
        if description is not None:
            task.description = description
        if priority is not None:
            task.priority = _coerce(Priority, priority, "priority")
        if task_type is not None:
            task.task_type = _coerce(TaskType, task_type, "task_type")
        ctx.check("update task")
        self.store.tasks.update_many([task])
        return task

    def get_task_detail(self, ctx: OperationContext, task_id: int) -> TaskDetail:
        task = self._task(ctx, task_id)
        column = self.columns.get(ctx, task.column_id)
        project = self._project(ctx, column.project_id)
        label_ids = self.store.labels.label_ids_for_task(task.id)
        labels = [label for label in map(self.store.labels.get, label_ids) if label is not None]
        return TaskDetail(
            task=task,
            column_name=column.name,
            project_id=project.id,
            project_name=project.name,
            labels=sorted(labels, key=lambda label: label.name.lower()),
            parents=self.graph.parents(ctx, task.id),
            children=self.graph.children(ctx, task.id),
            comments=self.list_comments(ctx, task.id),
            is_blocked=self.graph.is_blocked(ctx, task.id),
        )

    def list_tasks(
        self,
        ctx: OperationContext,
        *,
        project_id: Optional[int] = None,
        column_id: Optional[int] = None,
        search: Optional[str] = None,
        offset: int = 0,
        limit: Optional[int] = None,
    ) -> list[Task]:
        """Tasks of one column, or of the whole project in board order."""
        if offset < 0 or (limit is not None and limit < 0):
            raise ValidationError("offset and limit must not be negative", offset=offset, limit=limit)
        if column_id is not None:
            column_ids = [self.columns.get(ctx, column_id).id]
        else:
            project = self._project(ctx, project_id)
            column_ids = [c.id for c in self.columns.ordered(ctx, project.id)]
        return self.store.tasks.query(column_ids, search=search, offset=offset, limit=limit)

    def board(self, ctx: OperationContext, project_id: Optional[int] = None) -> list[BoardColumn]:
        return [
            BoardColumn(column=column, tasks=self.store.tasks.list_by_column(column.id))
            for column in self.list_columns(ctx, project_id)
        ]

    def task_tree(self, ctx: OperationContext, project_id: Optional[int] = None) -> list[TaskTreeNode]:
        project = self._project(ctx, project_id)
        return self.graph.tree(ctx, project.id)

    # ------------------------------------------------------------------
    # Relocation
    # ------------------------------------------------------------------

    def move_task(self, ctx: OperationContext, task_id: int, target: str) -> MoveOutcome:
        """Move to a column named *target* (any case), or to ``"next"`` / ``"prev"``.

        A column actually called "Next" or "Prev" wins over the direction.
        A task already in the named column is reported with ``moved=False``.
        """
        wanted = (target or "").strip()
        if not wanted:
            raise ValidationError("target column is required")

        task = self._task(ctx, task_id)
        current = self.columns.get(ctx, task.column_id)
        column = self.columns.find_by_name(ctx, current.project_id, wanted)
        if column is not None:
            return self.positions.move_to_column(ctx, task.id, column.id)
        if wanted.lower() == MOVE_NEXT:
            return self.positions.move_to_next(ctx, task.id)
        if wanted.lower() == MOVE_PREV:
            return self.positions.move_to_prev(ctx, task.id)
        raise ColumnNotFoundError(f"column '{wanted}' not found", column_name=wanted)

    def move_task_to_role(self, ctx: OperationContext, task_id: int, role: Any) -> MoveOutcome:
        """Move into the project's column holding *role*.

        Raises:
            NoRoleColumnConfigured: No column holds the role.
            TaskAlreadyInTargetColumn: The task is already there.
        """
        role = _coerce(ColumnRole, role, "role")
        task = self._task(ctx, task_id)
        current = self.columns.get(ctx, task.column_id)
        column = self.columns.role_column(ctx, current.project_id, role)
        if column.id == task.column_id:
            raise TaskAlreadyInTargetColumn(
                f"task is already in target column '{column.name}'",
                task_id=task.id,
                column_id=column.id,
            )
        return self.positions.move_to_column(ctx, task.id, column.id)

    def move_task_to_ready(self, ctx: OperationContext, task_id: int) -> MoveOutcome:
        return self.move_task_to_role(ctx, task_id, ColumnRole.READY)

    def move_task_to_in_progress(self, ctx: OperationContext, task_id: int) -> MoveOutcome:
        return self.move_task_to_role(ctx, task_id, ColumnRole.IN_PROGRESS)

    def move_task_to_completed(self, ctx: OperationContext, task_id: int) -> MoveOutcome:
        return self.move_task_to_role(ctx, task_id, ColumnRole.COMPLETED)

    def move_task_to_column(self, ctx: OperationContext, task_id: int, column_id: int) -> MoveOutcome:
        return self.positions.move_to_column(ctx, task_id, column_id)

    def move_task_to_next(self, ctx: OperationContext, task_id: int) -> MoveOutcome:
        return self.positions.move_to_next(ctx, task_id)

    def move_task_to_prev(self, ctx: OperationContext, task_id: int) -> MoveOutcome:
        return self.positions.move_to_prev(ctx, task_id)

    def move_task_up(self, ctx: OperationContext, task_id: int) -> Task:
        return self.positions.swap_up(ctx, task_id)

    def move_task_down(self, ctx: OperationContext, task_id: int) -> Task:
        return self.positions.swap_down(ctx, task_id)

    # ------------------------------------------------------------------
    # Relations
    # ------------------------------------------------------------------

    def link_tasks(self, ctx: OperationContext, from_id: int, to_id: int, kind: Any = RelationKind.PARENT_CHILD) -> Relation:
        return self.graph.add_edge(ctx, from_id, to_id, kind)

    def unlink_tasks(self, ctx: OperationContext, from_id: int, to_id: int) -> bool:
        return self.graph.remove_edge(ctx, from_id, to_id)

    def ready_tasks(self, ctx: OperationContext, project_id: Optional[int] = None) -> list[Task]:
        project = self._project(ctx, project_id)
        return self.graph.ready_set(ctx, project.id)

    def blocked_tasks(self, ctx: OperationContext, project_id: Optional[int] = None) -> list[Task]:
        project = self._project(ctx, project_id)
        return self.graph.blocked_set(ctx, project.id)

    def is_blocked(self, ctx: OperationContext, task_id: int) -> bool:
        return self.graph.is_blocked(ctx, task_id)

    # ------------------------------------------------------------------
    # Labels
    # ------------------------------------------------------------------

    def create_label(
        self,
        ctx: OperationContext,
        name: str,
        color: str = "#7D56F4",
        *,
        project_id: Optional[int] = None,
    ) -> Label:
        project = self._project(ctx, project_id)
        label = Label(
            project_id=project.id,
            name=_require_text(name, "label name", MAX_LABEL_NAME),
            color=_require_color(color),
        )
        ctx.check("insert label")
        return self.store.labels.insert(label)

    def list_labels(self, ctx: OperationContext, project_id: Optional[int] = None) -> list[Label]:
        project = self._project(ctx, project_id)
        return self.store.labels.list_for_project(project.id)

    def delete_label(self, ctx: OperationContext, label_id: int) -> Label:
        label = self._label(ctx, label_id)
        ctx.check("detach label")
        self.store.labels.detach_label_everywhere(label.id)
        ctx.check("delete label")
        self.store.labels.delete(label.id)
        return label

    def attach_label(self, ctx: OperationContext, task_id: int, label_id: int) -> bool:
        task = self._task(ctx, task_id)
        label = self._label(ctx, label_id)
        column = self.columns.get(ctx, task.column_id)
        if label.project_id != column.project_id:
            raise ValidationError(f"label '{label.name}' belongs to another project", label_id=label.id)
        ctx.check("attach label")
        return self.store.labels.attach(task.id, label.id)

    def detach_label(self, ctx: OperationContext, task_id: int, label_id: int) -> bool:
        task = self._task(ctx, task_id)
        label = self._label(ctx, label_id)
        ctx.check("detach label")
        return self.store.labels.detach(task.id, label.id)

    # ------------------------------------------------------------------
    # Comments
    # ------------------------------------------------------------------

    def add_comment(self, ctx: OperationContext, task_id: int, message: str, author: str = "") -> Comment:
        task = self._task(ctx, task_id)
        text = _require_text(message, "comment", MAX_COMMENT_LENGTH)
        ctx.check("add comment")
        return self.store.comments.add(Comment(task_id=task.id, message=text, author=author or ""))

    def list_comments(self, ctx: OperationContext, task_id: int) -> list[Comment]:
        task = self._task(ctx, task_id)
        comments = self.store.comments.list_for_task(task.id)
        return sorted(comments, key=_comment_key)
