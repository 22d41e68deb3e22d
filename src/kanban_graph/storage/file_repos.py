"""YAML-file repositories guarded by a process lock and a file lock.

Each collection lives in its own ``<name>.yaml`` next to a ``<name>.lock``.
Every public repository method is one load-modify-save cycle under both
locks, which is the unit of atomicity the engine relies on: a single call
either lands completely or not at all, but two calls are two commits.
"""

from __future__ import annotations

import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Callable, Generic, Iterable, Iterator, Optional, Sequence, TypeVar

from loguru import logger

from ..constants import STORE_VERSION
from ..errors import StorageError
from ..io_utils import FileLock, _atomic_write_yaml, _load_yaml_with_error
from ..models import Column, Comment, Label, Project, Relation, Task
from ..utils import _now_iso
from .interfaces import (
    ColumnRepository,
    CommentRepository,
    LabelRepository,
    ProjectRepository,
    RelationRepository,
    TaskRepository,
)

T = TypeVar("T")


class _CollectionTx(Generic[T]):
    """In-memory view of one collection; flushed on exit when ``dirty``."""

    def __init__(self, items: list[T], next_id: int) -> None:
        self.items = items
        self.next_id = next_id
        self.dirty = False

    def allocate_id(self) -> int:
        nid = self.next_id
        self.next_id += 1
        self.dirty = True
        return nid


class _YamlCollectionRepo(Generic[T]):
    def __init__(
        self,
        path: Path,
        lock_path: Path,
        key: str,
        loader: Callable[[dict[str, Any]], T],
        dumper: Callable[[T], dict[str, Any]],
    ) -> None:
        self._path = path
        self._lock = FileLock(lock_path)
        self._thread_lock = threading.RLock()
        self._key = key
        self._loader = loader
        self._dumper = dumper

    def _load(self) -> tuple[list[T], int]:
        raw, err = _load_yaml_with_error(self._path, {})
        if err:
            raise StorageError(f"cannot read {self._key} store: {err}", path=str(self._path))
        items = raw.get(self._key, [])
        if not isinstance(items, list):
            raise StorageError(f"{self._path.name}: '{self._key}' must be a list", path=str(self._path))
        out: list[T] = []
        for item in items:
            if isinstance(item, dict):
                out.append(self._loader(item))
        next_id = int(raw.get("next_id") or 1)
        return out, next_id

    def _save(self, items: list[T], next_id: int) -> None:
        payload = {"version": STORE_VERSION, "next_id": next_id, self._key: [self._dumper(item) for item in items]}
        try:
            _atomic_write_yaml(self._path, payload)
        except OSError as exc:
            raise StorageError(
                f"cannot write {self._key} store: {exc.__class__.__name__}: {exc}", path=str(self._path)
            ) from exc

    @contextmanager
    def transaction(self) -> Iterator[_CollectionTx[T]]:
        with self._thread_lock:
            with self._lock:
                items, next_id = self._load()
                tx = _CollectionTx(items, next_id)
                yield tx
                if tx.dirty:
                    self._save(tx.items, tx.next_id)

    def snapshot(self) -> list[T]:
        with self._thread_lock:
            with self._lock:
                return self._load()[0]


def _replace_by_id(items: list[Any], updated: Sequence[Any]) -> int:
    by_id = {u.id: u for u in updated}
    replaced = 0
    for idx, existing in enumerate(items):
        new = by_id.get(existing.id)
        if new is not None:
            items[idx] = new
            replaced += 1
    return replaced


class FileProjectRepository(ProjectRepository):
    def __init__(self, path: Path, lock_path: Path) -> None:
        self._repo = _YamlCollectionRepo[Project](path, lock_path, "projects", Project.from_dict, lambda p: p.to_dict())

    def list(self) -> list[Project]:
        return sorted(self._repo.snapshot(), key=lambda p: p.id)

    def get(self, project_id: int) -> Optional[Project]:
        for project in self._repo.snapshot():
            if project.id == project_id:
                return project
        return None

    def insert(self, project: Project) -> Project:
        with self._repo.transaction() as tx:
            project.id = tx.allocate_id()
            tx.items.append(project)
        return project

    def update(self, project: Project) -> Project:
        with self._repo.transaction() as tx:
            project.updated_at = _now_iso()
            if _replace_by_id(tx.items, [project]):
                tx.dirty = True
        return project

    def delete(self, project_id: int) -> bool:
        with self._repo.transaction() as tx:
            keep = [p for p in tx.items if p.id != project_id]
            if len(keep) == len(tx.items):
                return False
            tx.items = keep
            tx.dirty = True
        return True

    def allocate_ticket_number(self, project_id: int) -> int:
        with self._repo.transaction() as tx:
            for project in tx.items:
                if project.id == project_id:
                    number = project.next_ticket_number
                    project.next_ticket_number = number + 1
                    tx.dirty = True
                    return number
        raise StorageError(f"project {project_id} has no ticket counter", project_id=project_id)


class FileColumnRepository(ColumnRepository):
    def __init__(self, path: Path, lock_path: Path) -> None:
        self._repo = _YamlCollectionRepo[Column](path, lock_path, "columns", Column.from_dict, lambda c: c.to_dict())

    def get(self, column_id: int) -> Optional[Column]:
        for column in self._repo.snapshot():
            if column.id == column_id:
                return column
        return None

    def list_for_project(self, project_id: int) -> list[Column]:
        return [c for c in self._repo.snapshot() if c.project_id == project_id]

    def insert(self, column: Column) -> Column:
        with self._repo.transaction() as tx:
            column.id = tx.allocate_id()
            tx.items.append(column)
        return column

    def update_many(self, columns: Sequence[Column]) -> None:
        if not columns:
            return
        with self._repo.transaction() as tx:
            if _replace_by_id(tx.items, columns):
                tx.dirty = True

    def delete(self, column_id: int) -> bool:
        with self._repo.transaction() as tx:
            keep = [c for c in tx.items if c.id != column_id]
            if len(keep) == len(tx.items):
                return False
            tx.items = keep
            tx.dirty = True
        return True

    def insert_linked(self, column: Column) -> Column:
        with self._repo.transaction() as tx:
            column.id = tx.allocate_id()
            for existing in tx.items:
                if existing.project_id != column.project_id:
                    continue
                if existing.id == column.prev_id:
                    existing.next_id = column.id
                elif existing.id == column.next_id:
                    existing.prev_id = column.id
            tx.items.append(column)
        return column

    def delete_linked(self, column_id: int) -> Optional[Column]:
        with self._repo.transaction() as tx:
            column = next((c for c in tx.items if c.id == column_id), None)
            if column is None:
                return None
            for existing in tx.items:
                if existing.project_id != column.project_id:
                    continue
                if existing.id == column.prev_id:
                    existing.next_id = column.next_id
                elif existing.id == column.next_id:
                    existing.prev_id = column.prev_id
            tx.items = [c for c in tx.items if c.id != column_id]
            tx.dirty = True
        return column


class FileTaskRepository(TaskRepository):
    def __init__(self, path: Path, lock_path: Path) -> None:
        self._repo = _YamlCollectionRepo[Task](path, lock_path, "tasks", Task.from_dict, lambda t: t.to_dict())

    def get(self, task_id: int) -> Optional[Task]:
        for task in self._repo.snapshot():
            if task.id == task_id:
                return task
        return None

    def insert(self, task: Task) -> Task:
        with self._repo.transaction() as tx:
            task.id = tx.allocate_id()
            tx.items.append(task)
        return task

    def update_many(self, tasks: Sequence[Task]) -> None:
        if not tasks:
            return
        with self._repo.transaction() as tx:
            for task in tasks:
                task.touch()
            if _replace_by_id(tx.items, tasks):
                tx.dirty = True

    def delete(self, task_id: int) -> bool:
        with self._repo.transaction() as tx:
            keep = [t for t in tx.items if t.id != task_id]
            if len(keep) == len(tx.items):
                return False
            tx.items = keep
            tx.dirty = True
        return True

    def list_by_column(self, column_id: int) -> list[Task]:
        tasks = [t for t in self._repo.snapshot() if t.column_id == column_id]
        tasks.sort(key=lambda t: (t.position, t.id))
        return tasks

    def count_by_column(self, column_id: int) -> int:
        return sum(1 for t in self._repo.snapshot() if t.column_id == column_id)

    def query(
        self,
        column_ids: Iterable[int],
        *,
        search: Optional[str] = None,
        offset: int = 0,
        limit: Optional[int] = None,
    ) -> list[Task]:
        order = {cid: idx for idx, cid in enumerate(column_ids)}
        out: list[Task] = []
        q = search.lower() if search else None
        for t in self._repo.snapshot():
            if t.column_id not in order:
                continue
            if q and q not in t.title.lower() and q not in t.description.lower():
                continue
            out.append(t)
        out.sort(key=lambda t: (order[t.column_id], t.position, t.id))
        end = None if limit is None else offset + limit
        return out[offset:end]


class FileRelationRepository(RelationRepository):
    def __init__(self, path: Path, lock_path: Path) -> None:
        self._repo = _YamlCollectionRepo[Relation](path, lock_path, "relations", Relation.from_dict, lambda r: r.to_dict())

    def get(self, from_id: int, to_id: int) -> Optional[Relation]:
        for rel in self._repo.snapshot():
            if rel.key == (from_id, to_id):
                return rel
        return None

    def upsert(self, relation: Relation) -> Relation:
        with self._repo.transaction() as tx:
            for idx, existing in enumerate(tx.items):
                if existing.key == relation.key:
                    if existing.kind != relation.kind:
                        tx.items[idx] = relation
                        tx.dirty = True
                    return relation
            tx.items.append(relation)
            tx.dirty = True
        return relation

    def delete(self, from_id: int, to_id: int) -> bool:
        with self._repo.transaction() as tx:
            keep = [r for r in tx.items if r.key != (from_id, to_id)]
            if len(keep) == len(tx.items):
                return False
            tx.items = keep
            tx.dirty = True
        return True

    def for_task(self, task_id: int) -> list[Relation]:
        return [r for r in self._repo.snapshot() if task_id in (r.from_id, r.to_id)]

    def list(self) -> list[Relation]:
        return self._repo.snapshot()

    def delete_for_task(self, task_id: int) -> int:
        with self._repo.transaction() as tx:
            keep = [r for r in tx.items if task_id not in (r.from_id, r.to_id)]
            removed = len(tx.items) - len(keep)
            if removed:
                tx.items = keep
                tx.dirty = True
        return removed


class _TaskLabel:
    __slots__ = ("task_id", "label_id")

    def __init__(self, task_id: int, label_id: int) -> None:
        self.task_id = task_id
        self.label_id = label_id

    def to_dict(self) -> dict[str, Any]:
        return {"task_id": self.task_id, "label_id": self.label_id}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "_TaskLabel":
        return cls(int(data.get("task_id") or 0), int(data.get("label_id") or 0))


class FileLabelRepository(LabelRepository):
    def __init__(self, path: Path, lock_path: Path, links_path: Path, links_lock_path: Path) -> None:
        self._repo = _YamlCollectionRepo[Label](path, lock_path, "labels", Label.from_dict, lambda label: label.to_dict())
        self._links = _YamlCollectionRepo[_TaskLabel](
            links_path, links_lock_path, "task_labels", _TaskLabel.from_dict, lambda tl: tl.to_dict()
        )

    def get(self, label_id: int) -> Optional[Label]:
        for label in self._repo.snapshot():
            if label.id == label_id:
                return label
        return None

    def list_for_project(self, project_id: int) -> list[Label]:
        labels = [label for label in self._repo.snapshot() if label.project_id == project_id]
        labels.sort(key=lambda label: label.name.lower())
        return labels

    def insert(self, label: Label) -> Label:
        with self._repo.transaction() as tx:
            label.id = tx.allocate_id()
            tx.items.append(label)
        return label

    def delete(self, label_id: int) -> bool:
        with self._repo.transaction() as tx:
            keep = [label for label in tx.items if label.id != label_id]
            if len(keep) == len(tx.items):
                return False
            tx.items = keep
            tx.dirty = True
        return True

    def attach(self, task_id: int, label_id: int) -> bool:
        with self._links.transaction() as tx:
            if any(tl.task_id == task_id and tl.label_id == label_id for tl in tx.items):
                return False
            tx.items.append(_TaskLabel(task_id, label_id))
            tx.dirty = True
        return True

    def detach(self, task_id: int, label_id: int) -> bool:
        return self._drop_links(lambda tl: tl.task_id == task_id and tl.label_id == label_id) > 0

    def label_ids_for_task(self, task_id: int) -> list[int]:
        return [tl.label_id for tl in self._links.snapshot() if tl.task_id == task_id]

    def detach_all_for_task(self, task_id: int) -> int:
        return self._drop_links(lambda tl: tl.task_id == task_id)

    def detach_label_everywhere(self, label_id: int) -> int:
        return self._drop_links(lambda tl: tl.label_id == label_id)

    def _drop_links(self, predicate: Callable[[_TaskLabel], bool]) -> int:
        with self._links.transaction() as tx:
            keep = [tl for tl in tx.items if not predicate(tl)]
            removed = len(tx.items) - len(keep)
            if removed:
                tx.items = keep
                tx.dirty = True
        return removed


class FileCommentRepository(CommentRepository):
    def __init__(self, path: Path, lock_path: Path) -> None:
        self._repo = _YamlCollectionRepo[Comment](path, lock_path, "comments", Comment.from_dict, lambda c: c.to_dict())

    def add(self, comment: Comment) -> Comment:
        with self._repo.transaction() as tx:
            comment.id = tx.allocate_id()
            tx.items.append(comment)
        logger.debug("Added comment {} to task {}", comment.id, comment.task_id)
        return comment

    def list_for_task(self, task_id: int) -> list[Comment]:
        return [c for c in self._repo.snapshot() if c.task_id == task_id]

    def delete_for_task(self, task_id: int) -> int:
        with self._repo.transaction() as tx:
            keep = [c for c in tx.items if c.task_id != task_id]
            removed = len(tx.items) - len(keep)
            if removed:
                tx.items = keep
                tx.dirty = True
        return removed
