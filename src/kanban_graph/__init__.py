"""Provide the public `kanban_graph` package exports."""

from __future__ import annotations

from loguru import logger

from .context import OperationContext
from .engine import BoardEngine, CreateTaskRequest
from .errors import KanbanError, exit_code_for
from .models import ColumnRole, Priority, RelationKind, TaskType

__version__ = "0.1.0"

# Silent when embedded; configure_logging() turns output on.
logger.disable("kanban_graph")

__all__ = [
    "BoardEngine",
    "ColumnRole",
    "CreateTaskRequest",
    "KanbanError",
    "OperationContext",
    "Priority",
    "RelationKind",
    "TaskType",
    "exit_code_for",
]
