from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Iterable, Optional, Sequence

from ..models import Column, Comment, Label, Project, Relation, Task


class ProjectRepository(ABC):
    @abstractmethod
    def list(self) -> list[Project]:
        raise NotImplementedError

    @abstractmethod
    def get(self, project_id: int) -> Optional[Project]:
        raise NotImplementedError

    @abstractmethod
    def insert(self, project: Project) -> Project:
        raise NotImplementedError

    @abstractmethod
    def update(self, project: Project) -> Project:
        raise NotImplementedError

    @abstractmethod
    def delete(self, project_id: int) -> bool:
        raise NotImplementedError

    @abstractmethod
    def allocate_ticket_number(self, project_id: int) -> int:
        """Return the project's next ticket number and advance the counter."""
        raise NotImplementedError


class ColumnRepository(ABC):
    @abstractmethod
    def get(self, column_id: int) -> Optional[Column]:
        raise NotImplementedError

    @abstractmethod
    def list_for_project(self, project_id: int) -> list[Column]:
        raise NotImplementedError

    @abstractmethod
    def insert(self, column: Column) -> Column:
        raise NotImplementedError

    @abstractmethod
    def update_many(self, columns: Sequence[Column]) -> None:
        """Persist several column rows in one commit."""
        raise NotImplementedError

    @abstractmethod
    def delete(self, column_id: int) -> bool:
        raise NotImplementedError

    @abstractmethod
    def insert_linked(self, column: Column) -> Column:
        """Insert *column* and point its ``prev_id``/``next_id`` neighbours at it in one commit."""
        raise NotImplementedError

    @abstractmethod
    def delete_linked(self, column_id: int) -> Optional[Column]:
        """Delete a column and join its neighbours to each other in one commit."""
        raise NotImplementedError


class TaskRepository(ABC):
    @abstractmethod
    def get(self, task_id: int) -> Optional[Task]:
        raise NotImplementedError

    @abstractmethod
    def insert(self, task: Task) -> Task:
        raise NotImplementedError

    @abstractmethod
    def update_many(self, tasks: Sequence[Task]) -> None:
        """Persist several task rows in one commit."""
        raise NotImplementedError

    @abstractmethod
    def delete(self, task_id: int) -> bool:
        raise NotImplementedError

    @abstractmethod
    def list_by_column(self, column_id: int) -> list[Task]:
        """Tasks of one column ordered by ``(position, id)``."""
        raise NotImplementedError

    @abstractmethod
    def count_by_column(self, column_id: int) -> int:
        raise NotImplementedError

    @abstractmethod
    def query(
        self,
        column_ids: Iterable[int],
        *,
        search: Optional[str] = None,
        offset: int = 0,
        limit: Optional[int] = None,
    ) -> list[Task]:
        """Paged, filtered tasks across *column_ids*, ordered by ``(column, position, id)``."""
        raise NotImplementedError


class RelationRepository(ABC):
    @abstractmethod
    def get(self, from_id: int, to_id: int) -> Optional[Relation]:
        raise NotImplementedError

    @abstractmethod
    def upsert(self, relation: Relation) -> Relation:
        raise NotImplementedError

    @abstractmethod
    def delete(self, from_id: int, to_id: int) -> bool:
        raise NotImplementedError

    @abstractmethod
    def for_task(self, task_id: int) -> list[Relation]:
        """Edges where *task_id* is either endpoint."""
        raise NotImplementedError

    @abstractmethod
    def list(self) -> list[Relation]:
        raise NotImplementedError

    @abstractmethod
    def delete_for_task(self, task_id: int) -> int:
        raise NotImplementedError


class LabelRepository(ABC):
    @abstractmethod
    def get(self, label_id: int) -> Optional[Label]:
        raise NotImplementedError

    @abstractmethod
    def list_for_project(self, project_id: int) -> list[Label]:
        raise NotImplementedError

    @abstractmethod
    def insert(self, label: Label) -> Label:
        raise NotImplementedError

    @abstractmethod
    def delete(self, label_id: int) -> bool:
        raise NotImplementedError

    @abstractmethod
    def attach(self, task_id: int, label_id: int) -> bool:
        raise NotImplementedError

    @abstractmethod
    def detach(self, task_id: int, label_id: int) -> bool:
        raise NotImplementedError

    @abstractmethod
    def label_ids_for_task(self, task_id: int) -> list[int]:
        raise NotImplementedError

    @abstractmethod
    def detach_all_for_task(self, task_id: int) -> int:
        raise NotImplementedError

    @abstractmethod
    def detach_label_everywhere(self, label_id: int) -> int:
        raise NotImplementedError


class CommentRepository(ABC):
    @abstractmethod
    def add(self, comment: Comment) -> Comment:
        raise NotImplementedError

    @abstractmethod
    def list_for_task(self, task_id: int) -> list[Comment]:
        raise NotImplementedError

    @abstractmethod
    def delete_for_task(self, task_id: int) -> int:
        raise NotImplementedError
