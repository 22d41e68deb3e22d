"""Board data model: projects, columns, tasks, relations, labels, comments.

Every record is a plain dataclass that serializes to a YAML-friendly dict via
``to_dict()`` and back via ``from_dict()``.  Ids are positive integers
allocated by the store; enum-valued fields persist as their integer or
string value and are coerced back gracefully on load.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import Enum, IntEnum
from typing import Any, Optional

from .utils import _coerce_bool, _now_iso, _optional_int


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class RelationKind(IntEnum):
    """Kind of a directed task relation.  Values are the persisted ids."""

    PARENT_CHILD = 1
    BLOCKING = 2
    RELATED = 3

    @property
    def is_blocking(self) -> bool:
        return self is RelationKind.BLOCKING

    @property
    def from_label(self) -> str:
        """Label shown on the ``from`` task (parent's perspective)."""
        return {1: "Parent", 2: "Blocked By", 3: "Related To"}[self.value]

    @property
    def to_label(self) -> str:
        """Label shown on the ``to`` task (child's perspective)."""
        return {1: "Child", 2: "Blocker", 3: "Related To"}[self.value]

    @classmethod
    def parse(cls, raw: Any) -> "RelationKind":
        if isinstance(raw, cls):
            return raw
        if isinstance(raw, str) and not raw.isdigit():
            key = raw.strip().lower().replace("-", "_")
            aliases = {"parent": "parent_child", "blocker": "blocking", "blocked_by": "blocking"}
            return cls[aliases.get(key, key).upper()]
        return cls(int(raw))


class TaskType(IntEnum):
    TASK = 1
    FEATURE = 2
    BUG = 3


class Priority(IntEnum):
    """Priority level; higher is more urgent."""

    TRIVIAL = 1
    LOW = 2
    MEDIUM = 3  # default
    HIGH = 4
    CRITICAL = 5


class ColumnRole(str, Enum):
    """Designation a column can hold for its project (at most one column each)."""

    READY = "ready"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"

    @property
    def flag(self) -> str:
        """Name of the boolean attribute on :class:`Column`."""
        return f"holds_{self.value}"

    @property
    def display(self) -> str:
        return self.value.replace("_", "-")


def _enum(enum_cls: type[Enum], raw: Any, default: Enum) -> Any:
    if raw is None:
        return default
    if isinstance(raw, enum_cls):
        return raw
    try:
        return enum_cls(int(raw)) if issubclass(enum_cls, IntEnum) else enum_cls(str(raw))
    except (ValueError, KeyError, TypeError):
        return default


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------

@dataclass
class Project:
    id: int = 0
    name: str = ""
    description: str = ""
    next_ticket_number: int = 1
    created_at: str = field(default_factory=_now_iso)
    updated_at: str = field(default_factory=_now_iso)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Project":
        return cls(
            id=int(data.get("id") or 0),
            name=str(data.get("name") or ""),
            description=str(data.get("description") or ""),
            next_ticket_number=int(data.get("next_ticket_number") or 1),
            created_at=str(data.get("created_at") or _now_iso()),
            updated_at=str(data.get("updated_at") or _now_iso()),
        )


@dataclass
class Column:
    """One node of a project's column chain.

    ``prev_id`` / ``next_id`` are stable integer keys into the column store,
    never object references; ``None`` marks the head / tail.
    """

    id: int = 0
    project_id: int = 0
    name: str = ""
    prev_id: Optional[int] = None
    next_id: Optional[int] = None
    holds_ready: bool = False
    holds_in_progress: bool = False
    holds_completed: bool = False

    def holds(self, role: ColumnRole) -> bool:
        return bool(getattr(self, role.flag))

    @property
    def roles(self) -> list[ColumnRole]:
        return [r for r in ColumnRole if self.holds(r)]

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Column":
        return cls(
            id=int(data.get("id") or 0),
            project_id=int(data.get("project_id") or 0),
            name=str(data.get("name") or ""),
            prev_id=_optional_int(data.get("prev_id")),
            next_id=_optional_int(data.get("next_id")),
            holds_ready=_coerce_bool(data.get("holds_ready")),
            holds_in_progress=_coerce_bool(data.get("holds_in_progress")),
            holds_completed=_coerce_bool(data.get("holds_completed")),
        )


@dataclass
class Task:
    id: int = 0
    column_id: int = 0
    title: str = ""
    description: str = ""
    priority: Priority = Priority.MEDIUM
    task_type: TaskType = TaskType.TASK
    position: int = 0
    ticket_number: Optional[int] = None
    created_at: str = field(default_factory=_now_iso)
    updated_at: str = field(default_factory=_now_iso)

    def touch(self) -> None:
        """Bump ``updated_at`` to now."""
        self.updated_at = _now_iso()

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["priority"] = int(self.priority)
        data["task_type"] = int(self.task_type)
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Task":
        return cls(
            id=int(data.get("id") or 0),
            column_id=int(data.get("column_id") or 0),
            title=str(data.get("title") or ""),
            description=str(data.get("description") or ""),
            priority=_enum(Priority, data.get("priority"), Priority.MEDIUM),
            task_type=_enum(TaskType, data.get("task_type"), TaskType.TASK),
            position=int(data.get("position") or 0),
            ticket_number=_optional_int(data.get("ticket_number")),
            created_at=str(data.get("created_at") or _now_iso()),
            updated_at=str(data.get("updated_at") or _now_iso()),
        )


@dataclass
class Relation:
    """Directed edge ``from_id -> to_id``; unique per ordered pair."""

    from_id: int
    to_id: int
    kind: RelationKind = RelationKind.PARENT_CHILD

    @property
    def key(self) -> tuple[int, int]:
        return (self.from_id, self.to_id)

    def other(self, task_id: int) -> int:
        return self.to_id if task_id == self.from_id else self.from_id

    def to_dict(self) -> dict[str, Any]:
        return {"from_id": self.from_id, "to_id": self.to_id, "kind": int(self.kind)}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Relation":
        return cls(
            from_id=int(data.get("from_id") or 0),
            to_id=int(data.get("to_id") or 0),
            kind=_enum(RelationKind, data.get("kind"), RelationKind.PARENT_CHILD),
        )


@dataclass
class Label:
    id: int = 0
    project_id: int = 0
    name: str = ""
    color: str = "#7D56F4"

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Label":
        return cls(
            id=int(data.get("id") or 0),
            project_id=int(data.get("project_id") or 0),
            name=str(data.get("name") or ""),
            color=str(data.get("color") or "#7D56F4"),
        )


@dataclass
class Comment:
    id: int = 0
    task_id: int = 0
    message: str = ""
    author: str = ""
    created_at: str = field(default_factory=_now_iso)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Comment":
        return cls(
            id=int(data.get("id") or 0),
            task_id=int(data.get("task_id") or 0),
            message=str(data.get("message") or ""),
            author=str(data.get("author") or ""),
            created_at=str(data.get("created_at") or _now_iso()),
        )


# ---------------------------------------------------------------------------
# Read models (derived, never persisted)
# ---------------------------------------------------------------------------

@dataclass
class TaskReference:
    """A related task as seen from another task's detail view."""

    id: int
    title: str
    ticket_number: Optional[int]
    kind: RelationKind
    label: str

    @property
    def is_blocking(self) -> bool:
        return self.kind.is_blocking


@dataclass
class TaskDetail:
    task: Task
    column_name: str
    project_id: int
    project_name: str
    labels: list[Label] = field(default_factory=list)
    parents: list[TaskReference] = field(default_factory=list)
    children: list[TaskReference] = field(default_factory=list)
    comments: list[Comment] = field(default_factory=list)
    is_blocked: bool = False


@dataclass
class TaskTreeNode:
    id: int
    title: str
    ticket_number: Optional[int]
    column_name: str
    relation: Optional[RelationKind] = None
    children: list["TaskTreeNode"] = field(default_factory=list)

    @property
    def relation_label(self) -> str:
        return self.relation.to_label if self.relation is not None else ""


@dataclass
class MoveOutcome:
    """Result of a relocation request; ``moved`` is False for idempotent no-ops."""

    task: Task
    from_column: Column
    to_column: Column
    moved: bool = True

    @property
    def message(self) -> str:
        if not self.moved:
            return f"already in '{self.to_column.name}'"
        return f"moved from '{self.from_column.name}' to '{self.to_column.name}'"


@dataclass
class BoardColumn:
    column: Column
    tasks: list[Task] = field(default_factory=list)
