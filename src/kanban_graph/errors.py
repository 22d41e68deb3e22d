"""Typed failures raised by the board engine.

Callers (CLI, TUI) translate these into exit codes or inline notifications;
the engine itself never prints or terminates the process. Each class carries
a stable ``code`` for machine-readable output and an ``exit_code`` following
the usual Unix conventions.
"""

from __future__ import annotations

from typing import Any, Optional

EXIT_SUCCESS = 0
EXIT_ERROR = 1
EXIT_USAGE = 2
EXIT_NOT_FOUND = 3
EXIT_DATA_ERR = 4
EXIT_VALIDATION = 5


class KanbanError(Exception):
    """Base class for all engine failures."""

    code = "ERROR"
    exit_code = EXIT_ERROR

    def __init__(self, message: str = "", **details: Any) -> None:
        super().__init__(message or self.__class__.__doc__ or self.code)
        self.details = details

    @property
    def message(self) -> str:
        return str(self.args[0]) if self.args else ""


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------

class ValidationError(KanbanError, ValueError):
    """Input or requested change violates a board invariant."""

    code = "VALIDATION_ERROR"
    exit_code = EXIT_VALIDATION


class SelfReferenceError(ValidationError):
    """A task cannot have a relationship with itself."""

    code = "SELF_RELATION"


class CircularDependencyError(ValidationError):
    """Circular relationship detected."""

    code = "CIRCULAR_RELATION"


class BoundaryError(ValidationError):
    """The task is already at the edge of its column or board."""

    code = "BOUNDARY"


class AlreadyFirstTaskError(BoundaryError):
    """Task is already at the top of the column."""

    code = "ALREADY_FIRST_TASK"


class AlreadyLastTaskError(BoundaryError):
    """Task is already at the bottom of the column."""

    code = "ALREADY_LAST_TASK"


class NoNextColumnError(BoundaryError):
    """No next column: task is already in the last column."""

    code = "NO_NEXT_COLUMN"


class NoPrevColumnError(BoundaryError):
    """No previous column: task is already in the first column."""

    code = "NO_PREV_COLUMN"


class ColumnNotEmptyError(ValidationError):
    """Cannot delete column with tasks."""

    code = "COLUMN_HAS_TASKS"


class ProjectNotEmptyError(ValidationError):
    """Cannot delete project with tasks."""

    code = "PROJECT_HAS_TASKS"


class RoleColumnExistsError(ValidationError):
    """Another column in the project already holds this role."""

    code = "ROLE_COLUMN_EXISTS"


# ---------------------------------------------------------------------------
# Lookups
# ---------------------------------------------------------------------------

class NotFoundError(KanbanError, LookupError):
    """Requested entity does not exist."""

    code = "NOT_FOUND"
    exit_code = EXIT_NOT_FOUND


class ProjectNotFoundError(NotFoundError):
    code = "PROJECT_NOT_FOUND"


class ColumnNotFoundError(NotFoundError):
    code = "COLUMN_NOT_FOUND"


class TaskNotFoundError(NotFoundError):
    code = "TASK_NOT_FOUND"


class LabelNotFoundError(NotFoundError):
    code = "LABEL_NOT_FOUND"


# ---------------------------------------------------------------------------
# Benign state signals, configuration, runtime
# ---------------------------------------------------------------------------

class StateError(KanbanError):
    """The request is already satisfied; callers render it as information."""

    code = "STATE"
    exit_code = EXIT_SUCCESS


class TaskAlreadyInTargetColumn(StateError):
    """Task is already in target column."""

    code = "ALREADY_IN_TARGET_COLUMN"


class ConfigurationError(KanbanError):
    """The board is missing required configuration."""

    code = "CONFIGURATION_ERROR"


class NoRoleColumnConfigured(ConfigurationError):
    """No column is designated for the requested role."""

    code = "NO_ROLE_COLUMN"


class DeadlineExceeded(KanbanError, TimeoutError):
    """Operation deadline expired or the operation was cancelled."""

    code = "DEADLINE_EXCEEDED"


class StorageError(KanbanError):
    """Persisted state is unreadable or structurally inconsistent."""

    code = "STORAGE_ERROR"
    exit_code = EXIT_DATA_ERR


def exit_code_for(exc: Optional[BaseException]) -> int:
    """Map an exception to a process exit code.

    Engine errors use their own ``exit_code``; anything else is a general
    failure. ``None`` means success.
    """
    if exc is None:
        return EXIT_SUCCESS
    if isinstance(exc, KanbanError):
        return exc.exit_code
    return EXIT_ERROR
