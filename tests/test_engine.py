"""Tests for the board engine (engine.py)."""

from __future__ import annotations

from pathlib import Path

import pytest

from kanban_graph.context import OperationContext
from kanban_graph.engine import BoardEngine, CreateTaskRequest
from kanban_graph.errors import (
    CircularDependencyError,
    ColumnNotEmptyError,
    ColumnNotFoundError,
    DeadlineExceeded,
    LabelNotFoundError,
    NoNextColumnError,
    NoRoleColumnConfigured,
    ProjectNotEmptyError,
    ProjectNotFoundError,
    StateError,
    TaskAlreadyInTargetColumn,
    TaskNotFoundError,
    ValidationError,
)
from kanban_graph.models import Column, ColumnRole, Priority, Project, RelationKind, Task, TaskType
from kanban_graph.storage import StoreContainer


@pytest.fixture
def engine(tmp_path: Path) -> BoardEngine:
    return BoardEngine(StoreContainer(tmp_path / ".kanban"))


@pytest.fixture
def ctx() -> OperationContext:
    return OperationContext.background()


@pytest.fixture
def project(engine: BoardEngine, ctx: OperationContext) -> Project:
    return engine.create_project(ctx, "Engine")


@pytest.fixture
def board(engine: BoardEngine, ctx: OperationContext, project: Project) -> list[Column]:
    return engine.list_columns(ctx, project.id)


def _new(engine: BoardEngine, ctx: OperationContext, column: Column, title: str, **kwargs) -> Task:
    return engine.create_task(ctx, CreateTaskRequest(title=title, column_id=column.id, **kwargs))


# ---------------------------------------------------------------------------
# Projects and columns
# ---------------------------------------------------------------------------

class TestProjects:
    def test_create_project_has_default_columns(
        self, engine: BoardEngine, ctx: OperationContext, project: Project, board: list[Column]
    ) -> None:
        assert [c.name for c in board] == ["Todo", "In Progress", "Done"]
        assert board[0].holds(ColumnRole.READY)
        assert board[1].holds(ColumnRole.IN_PROGRESS)
        assert board[2].holds(ColumnRole.COMPLETED)

    def test_project_bound_to_context(self, engine: BoardEngine, project: Project) -> None:
        bound = OperationContext.background(project_id=project.id)
        assert engine.get_project(bound).name == "Engine"
        assert len(engine.list_columns(bound)) == 3

    def test_project_required(self, engine: BoardEngine, ctx: OperationContext) -> None:
        with pytest.raises(ValidationError, match="project id is required"):
            engine.list_columns(ctx)

    def test_update_and_list(self, engine: BoardEngine, ctx: OperationContext, project: Project) -> None:
        engine.update_project(ctx, project.id, name="Renamed", description="about")
        (listed,) = engine.list_projects(ctx)
        assert (listed.name, listed.description) == ("Renamed", "about")

    def test_name_too_long(self, engine: BoardEngine, ctx: OperationContext) -> None:
        with pytest.raises(ValidationError, match="too long"):
            engine.create_project(ctx, "p" * 101)

    def test_delete_requires_force_when_tasks_exist(
        self, engine: BoardEngine, ctx: OperationContext, project: Project, board: list[Column]
    ) -> None:
        task = _new(engine, ctx, board[0], "keep me")
        with pytest.raises(ProjectNotEmptyError):
            engine.delete_project(ctx, project.id)

        engine.delete_project(ctx, project.id, force=True)
        with pytest.raises(ProjectNotFoundError):
            engine.get_project(ctx, project.id)
        with pytest.raises(TaskNotFoundError):
            engine.get_task(ctx, task.id)
        assert engine.store.columns.list_for_project(project.id) == []

    def test_ticket_numbers_increase(self, engine: BoardEngine, ctx: OperationContext, board: list[Column]) -> None:
        first = _new(engine, ctx, board[0], "one")
        second = _new(engine, ctx, board[1], "two")
        assert (first.ticket_number, second.ticket_number) == (1, 2)


class TestColumns:
    def test_create_after_and_delete(
        self, engine: BoardEngine, ctx: OperationContext, project: Project, board: list[Column]
    ) -> None:
        review = engine.create_column(ctx, "Review", project_id=project.id, after_column_id=board[1].id)
        assert [c.name for c in engine.list_columns(ctx, project.id)] == ["Todo", "In Progress", "Review", "Done"]

        engine.delete_column(ctx, review.id)
        assert [c.name for c in engine.list_columns(ctx, project.id)] == ["Todo", "In Progress", "Done"]

    def test_delete_column_with_tasks(self, engine: BoardEngine, ctx: OperationContext, board: list[Column]) -> None:
        _new(engine, ctx, board[0], "stuck")
        with pytest.raises(ColumnNotEmptyError):
            engine.delete_column(ctx, board[0].id)

    def test_set_column_role_moves_flag(
        self, engine: BoardEngine, ctx: OperationContext, project: Project, board: list[Column]
    ) -> None:
        engine.set_column_role(ctx, board[2].id, ColumnRole.IN_PROGRESS)
        holders = [c.name for c in engine.list_columns(ctx, project.id) if c.holds(ColumnRole.IN_PROGRESS)]
        assert holders == ["Done"]

    def test_rename(self, engine: BoardEngine, ctx: OperationContext, board: list[Column]) -> None:
        assert engine.rename_column(ctx, board[0].id, "Backlog").name == "Backlog"


# ---------------------------------------------------------------------------
# Task creation
# ---------------------------------------------------------------------------

class TestCreateTask:
    def test_relations_applied(self, engine: BoardEngine, ctx: OperationContext, board: list[Column]) -> None:
        parent = _new(engine, ctx, board[0], "parent")
        blocker = _new(engine, ctx, board[0], "blocker")
        waiting = _new(engine, ctx, board[0], "waiting")

        task = _new(
            engine,
            ctx,
            board[0],
            "new",
            parent_ids=[parent.id],
            blocked_by_ids=[blocker.id],
            blocks_ids=[waiting.id],
        )

        assert engine.relations.get(parent.id, task.id).kind is RelationKind.PARENT_CHILD
        assert engine.relations.get(task.id, blocker.id).kind is RelationKind.BLOCKING
        assert engine.relations.get(waiting.id, task.id).kind is RelationKind.BLOCKING
        assert engine.is_blocked(ctx, task.id)
        assert engine.is_blocked(ctx, waiting.id)
        assert task.position == 3

    def test_fields_and_enums(self, engine: BoardEngine, ctx: OperationContext, board: list[Column]) -> None:
        task = _new(engine, ctx, board[0], "  bug  ", priority="high", task_type=3, description="details")
        stored = engine.get_task(ctx, task.id)
        assert stored.title == "bug"
        assert stored.priority is Priority.HIGH
        assert stored.task_type is TaskType.BUG
        assert stored.description == "details"

    @pytest.mark.parametrize(
        "kwargs",
        [{"priority": "urgent"}, {"task_type": 9}, {"parent_ids": [0]}],
    )
    def test_invalid_input_writes_nothing(
        self, engine: BoardEngine, ctx: OperationContext, board: list[Column], kwargs: dict
    ) -> None:
        with pytest.raises(ValidationError):
            _new(engine, ctx, board[0], "bad", **kwargs)
        assert engine.positions.ordered(ctx, board[0].id) == []

    def test_unknown_related_task_writes_nothing(
        self, engine: BoardEngine, ctx: OperationContext, board: list[Column]
    ) -> None:
        with pytest.raises(TaskNotFoundError):
            _new(engine, ctx, board[0], "orphan", blocked_by_ids=[77])
        assert engine.positions.ordered(ctx, board[0].id) == []

    def test_unknown_label(self, engine: BoardEngine, ctx: OperationContext, board: list[Column]) -> None:
        with pytest.raises(LabelNotFoundError):
            _new(engine, ctx, board[0], "x", label_ids=[5])

    def test_failing_edge_rolls_back(self, engine: BoardEngine, ctx: OperationContext, board: list[Column]) -> None:
        a = _new(engine, ctx, board[0], "A")
        b = _new(engine, ctx, board[0], "B")
        engine.link_tasks(ctx, a.id, b.id, RelationKind.BLOCKING)
        label = engine.create_label(ctx, "urgent", "#ff0000", project_id=board[0].project_id)

        # b -> new, then new -> a closes a loop a -> b -> new -> a.
        with pytest.raises(CircularDependencyError):
            _new(engine, ctx, board[0], "loop", parent_ids=[b.id], blocked_by_ids=[a.id], label_ids=[label.id])

        remaining = engine.positions.ordered(ctx, board[0].id)
        assert [(t.id, t.position) for t in remaining] == [(a.id, 0), (b.id, 1)]
        assert [r.key for r in engine.relations.all()] == [(a.id, b.id)]
        assert engine.store.labels.label_ids_for_task(b.id + 1) == []

    def test_io_failure_rolls_back(
        self, engine: BoardEngine, ctx: OperationContext, board: list[Column], monkeypatch: pytest.MonkeyPatch
    ) -> None:
        label = engine.create_label(ctx, "urgent", "#ff0000", project_id=board[0].project_id)

        def disk_full(task_id: int, label_id: int) -> bool:
            raise OSError(28, "No space left on device")

        monkeypatch.setattr(engine.store.labels, "attach", disk_full)
        with pytest.raises(OSError):
            _new(engine, ctx, board[0], "doomed", label_ids=[label.id])

        assert engine.positions.ordered(ctx, board[0].id) == []
        assert engine.list_tasks(ctx, project_id=board[0].project_id) == []

    def test_title_required(self, engine: BoardEngine, ctx: OperationContext, board: list[Column]) -> None:
        with pytest.raises(ValidationError, match="title cannot be empty"):
            _new(engine, ctx, board[0], "   ")


# ---------------------------------------------------------------------------
# Task deletion
# ---------------------------------------------------------------------------

class TestDeleteTask:
    def test_cascade_keeps_other_endpoints(
        self, engine: BoardEngine, ctx: OperationContext, board: list[Column]
    ) -> None:
        first = _new(engine, ctx, board[0], "first")
        doomed = _new(engine, ctx, board[0], "doomed")
        last = _new(engine, ctx, board[0], "last")
        engine.link_tasks(ctx, first.id, doomed.id)
        engine.link_tasks(ctx, doomed.id, last.id, RelationKind.BLOCKING)
        label = engine.create_label(ctx, "ops", project_id=board[0].project_id)
        engine.attach_label(ctx, doomed.id, label.id)
        engine.add_comment(ctx, doomed.id, "bye")

        engine.delete_task(ctx, doomed.id)

        with pytest.raises(TaskNotFoundError):
            engine.get_task(ctx, doomed.id)
        assert engine.relations.all() == []
        assert engine.store.labels.label_ids_for_task(doomed.id) == []
        assert engine.store.comments.list_for_task(doomed.id) == []
        assert [(t.id, t.position) for t in engine.positions.ordered(ctx, board[0].id)] == [
            (first.id, 0),
            (last.id, 1),
        ]

    def test_missing_task(self, engine: BoardEngine, ctx: OperationContext) -> None:
        with pytest.raises(TaskNotFoundError):
            engine.delete_task(ctx, 3)


# ---------------------------------------------------------------------------
# Moves
# ---------------------------------------------------------------------------

class TestMoves:
    def test_todo_to_done_traversal(self, engine: BoardEngine, ctx: OperationContext, board: list[Column]) -> None:
        todo, doing, done = board
        task = _new(engine, ctx, todo, "walk")

        assert engine.move_task(ctx, task.id, "next").to_column.id == doing.id
        assert engine.move_task(ctx, task.id, "next").to_column.id == done.id
        with pytest.raises(NoNextColumnError, match="no next column|last column"):
            engine.move_task(ctx, task.id, "next")
        assert engine.get_task(ctx, task.id).column_id == done.id

    def test_move_by_name(self, engine: BoardEngine, ctx: OperationContext, board: list[Column]) -> None:
        task = _new(engine, ctx, board[0], "named")
        outcome = engine.move_task(ctx, task.id, "DONE")
        assert outcome.moved
        assert outcome.message == "moved from 'Todo' to 'Done'"

        again = engine.move_task(ctx, task.id, "done")
        assert again.moved is False
        assert again.message == "already in 'Done'"

    def test_column_named_like_a_direction(
        self, engine: BoardEngine, ctx: OperationContext, project: Project, board: list[Column]
    ) -> None:
        todo, doing, done = board
        parked = engine.create_column(ctx, "Next", project_id=project.id)
        task = _new(engine, ctx, todo, "parked")

        assert engine.move_task(ctx, task.id, "next").to_column.id == parked.id
        assert engine.move_task(ctx, task.id, "prev").to_column.id == done.id
        assert engine.move_task(ctx, task.id, "prev").to_column.id == doing.id

    def test_move_by_unknown_name(self, engine: BoardEngine, ctx: OperationContext, board: list[Column]) -> None:
        task = _new(engine, ctx, board[0], "lost")
        with pytest.raises(ColumnNotFoundError):
            engine.move_task(ctx, task.id, "Archive")

    def test_role_moves(self, engine: BoardEngine, ctx: OperationContext, board: list[Column]) -> None:
        todo, doing, done = board
        task = _new(engine, ctx, todo, "roles")
        assert engine.move_task_to_in_progress(ctx, task.id).to_column.id == doing.id
        assert engine.move_task_to_completed(ctx, task.id).to_column.id == done.id
        assert engine.move_task_to_ready(ctx, task.id).to_column.id == todo.id

    def test_role_move_already_there(self, engine: BoardEngine, ctx: OperationContext, board: list[Column]) -> None:
        task = _new(engine, ctx, board[0], "here")
        with pytest.raises(TaskAlreadyInTargetColumn) as excinfo:
            engine.move_task_to_ready(ctx, task.id)
        assert isinstance(excinfo.value, StateError)
        assert excinfo.value.exit_code == 0

    def test_role_move_without_role_column(
        self, engine: BoardEngine, ctx: OperationContext, board: list[Column]
    ) -> None:
        task = _new(engine, ctx, board[0], "nowhere")
        engine.set_column_role(ctx, board[2].id, "completed", enabled=False)
        with pytest.raises(NoRoleColumnConfigured):
            engine.move_task_to_completed(ctx, task.id)

    def test_up_down(self, engine: BoardEngine, ctx: OperationContext, board: list[Column]) -> None:
        a = _new(engine, ctx, board[0], "a")
        b = _new(engine, ctx, board[0], "b")
        engine.move_task_up(ctx, b.id)
        assert [t.id for t in engine.positions.ordered(ctx, board[0].id)] == [b.id, a.id]
        engine.move_task_down(ctx, b.id)
        assert [t.id for t in engine.positions.ordered(ctx, board[0].id)] == [a.id, b.id]


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------

class TestReads:
    def test_list_tasks_paging_and_search(
        self, engine: BoardEngine, ctx: OperationContext, project: Project, board: list[Column]
    ) -> None:
        for i in range(4):
            _new(engine, ctx, board[0], f"alpha {i}")
        _new(engine, ctx, board[1], "beta")

        assert len(engine.list_tasks(ctx, project_id=project.id)) == 5
        page = engine.list_tasks(ctx, project_id=project.id, offset=1, limit=2)
        assert [t.title for t in page] == ["alpha 1", "alpha 2"]
        assert [t.title for t in engine.list_tasks(ctx, project_id=project.id, search="BETA")] == ["beta"]
        assert len(engine.list_tasks(ctx, column_id=board[1].id)) == 1

    def test_board_and_detail(self, engine: BoardEngine, ctx: OperationContext, project: Project, board: list[Column]) -> None:
        parent = _new(engine, ctx, board[0], "parent")
        child = _new(engine, ctx, board[1], "child", parent_ids=[parent.id])
        label = engine.create_label(ctx, "Frontend", "#00aa00", project_id=project.id)
        engine.attach_label(ctx, child.id, label.id)
        engine.add_comment(ctx, child.id, "first", author="sam")
        engine.add_comment(ctx, child.id, "second")

        columns = engine.board(ctx, project.id)
        assert [(bc.column.name, [t.title for t in bc.tasks]) for bc in columns] == [
            ("Todo", ["parent"]),
            ("In Progress", ["child"]),
            ("Done", []),
        ]

        detail = engine.get_task_detail(ctx, child.id)
        assert detail.column_name == "In Progress"
        assert detail.project_name == "Engine"
        assert [label.name for label in detail.labels] == ["Frontend"]
        assert detail.labels[0].color == "#00AA00"
        assert [p.id for p in detail.parents] == [parent.id]
        assert [c.message for c in detail.comments] == ["first", "second"]
        assert detail.is_blocked is False

    def test_task_tree(self, engine: BoardEngine, ctx: OperationContext, project: Project, board: list[Column]) -> None:
        parent = _new(engine, ctx, board[0], "parent")
        _new(engine, ctx, board[0], "child", parent_ids=[parent.id])
        (root,) = engine.task_tree(ctx, project.id)
        assert root.title == "parent"
        assert [c.title for c in root.children] == ["child"]

    def test_ready_and_blocked(self, engine: BoardEngine, ctx: OperationContext, project: Project, board: list[Column]) -> None:
        blocker = _new(engine, ctx, board[0], "blocker")
        waiting = _new(engine, ctx, board[0], "waiting", blocked_by_ids=[blocker.id])
        assert [t.id for t in engine.ready_tasks(ctx, project.id)] == [blocker.id]
        assert [t.id for t in engine.blocked_tasks(ctx, project.id)] == [waiting.id]
        engine.unlink_tasks(ctx, waiting.id, blocker.id)
        assert len(engine.ready_tasks(ctx, project.id)) == 2


# ---------------------------------------------------------------------------
# Labels and comments
# ---------------------------------------------------------------------------

class TestLabelsAndComments:
    def test_label_lifecycle(self, engine: BoardEngine, ctx: OperationContext, project: Project, board: list[Column]) -> None:
        task = _new(engine, ctx, board[0], "labelled")
        label = engine.create_label(ctx, "bug", "#123456", project_id=project.id)
        assert engine.attach_label(ctx, task.id, label.id) is True
        assert engine.attach_label(ctx, task.id, label.id) is False

        engine.delete_label(ctx, label.id)
        assert engine.list_labels(ctx, project.id) == []
        assert engine.store.labels.label_ids_for_task(task.id) == []

    def test_label_color_validated(self, engine: BoardEngine, ctx: OperationContext, project: Project) -> None:
        with pytest.raises(ValidationError, match="color"):
            engine.create_label(ctx, "bad", "red", project_id=project.id)

    def test_label_from_other_project(self, engine: BoardEngine, ctx: OperationContext, board: list[Column]) -> None:
        task = _new(engine, ctx, board[0], "mine")
        other = engine.create_project(ctx, "Other")
        label = engine.create_label(ctx, "theirs", project_id=other.id)
        with pytest.raises(ValidationError, match="another project"):
            engine.attach_label(ctx, task.id, label.id)

    def test_detach(self, engine: BoardEngine, ctx: OperationContext, project: Project, board: list[Column]) -> None:
        task = _new(engine, ctx, board[0], "t")
        label = engine.create_label(ctx, "x", project_id=project.id)
        engine.attach_label(ctx, task.id, label.id)
        assert engine.detach_label(ctx, task.id, label.id) is True
        assert engine.detach_label(ctx, task.id, label.id) is False

    def test_comment_length(self, engine: BoardEngine, ctx: OperationContext, board: list[Column]) -> None:
        task = _new(engine, ctx, board[0], "talk")
        with pytest.raises(ValidationError):
            engine.add_comment(ctx, task.id, "x" * 1001)
        assert engine.list_comments(ctx, task.id) == []


# ---------------------------------------------------------------------------
# Deadlines
# ---------------------------------------------------------------------------

class TestDeadlines:
    def test_expired_context_stops_before_write(
        self, engine: BoardEngine, ctx: OperationContext, board: list[Column]
    ) -> None:
        expired = OperationContext.with_timeout(0)
        with pytest.raises(DeadlineExceeded):
            engine.create_task(expired, CreateTaskRequest(title="late", column_id=board[0].id))
        assert engine.positions.ordered(ctx, board[0].id) == []

    def test_cancelled_context(self, engine: BoardEngine, board: list[Column]) -> None:
        cancelled = OperationContext.background()
        cancelled.cancel()
        with pytest.raises(DeadlineExceeded, match="cancelled"):
            engine.list_tasks(cancelled, column_id=board[0].id)

    def test_engine_context_uses_settings(self, engine: BoardEngine) -> None:
        fresh = engine.context(project_id=4)
        assert fresh.project_id == 4
        assert 0 < fresh.remaining() <= engine.settings.deadline_seconds

    def test_column_edits_interrupted_after_first_write(
        self, engine: BoardEngine, ctx: OperationContext, project: Project, board: list[Column]
    ) -> None:
        class ExpiresAfterFirstWrite(OperationContext):
            def check(self, step: str = "") -> None:
                super().check(step)
                if step:
                    self.cancel()

        inserted = engine.create_column(
            ExpiresAfterFirstWrite(), "Review", project_id=project.id, after_column_id=board[0].id
        )
        assert [c.name for c in engine.list_columns(ctx, project.id)] == ["Todo", "Review", "In Progress", "Done"]

        engine.delete_column(ExpiresAfterFirstWrite(), inserted.id)
        assert [c.name for c in engine.list_columns(ctx, project.id)] == ["Todo", "In Progress", "Done"]
