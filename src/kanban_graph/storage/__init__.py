"""Repository interfaces and the YAML-file backend."""

from .container import StoreContainer
from .interfaces import (
    ColumnRepository,
    CommentRepository,
    LabelRepository,
    ProjectRepository,
    RelationRepository,
    TaskRepository,
)

__all__ = [
    "ColumnRepository",
    "CommentRepository",
    "LabelRepository",
    "ProjectRepository",
    "RelationRepository",
    "StoreContainer",
    "TaskRepository",
]
