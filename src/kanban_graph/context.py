"""Per-operation context: explicit project selection, deadline, cancellation.

Every engine call receives an :class:`OperationContext`.  The "current
project" travels inside it instead of living in process-wide state, and the
deadline is checked before each storage write so a slow or cancelled
operation stops between commits rather than in the middle of one.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field, replace
from typing import Optional

from .constants import DEFAULT_DEADLINE_SECONDS
from .errors import DeadlineExceeded, ValidationError


@dataclass
class OperationContext:
    project_id: Optional[int] = None
    deadline: Optional[float] = None  # time.monotonic() value; None = no deadline
    _cancelled: bool = field(default=False, repr=False)

    @classmethod
    def with_timeout(
        cls,
        seconds: float = DEFAULT_DEADLINE_SECONDS,
        *,
        project_id: Optional[int] = None,
    ) -> "OperationContext":
        return cls(project_id=project_id, deadline=time.monotonic() + seconds)

    @classmethod
    def background(cls, *, project_id: Optional[int] = None) -> "OperationContext":
        """A context with no deadline (tests, one-shot scripts)."""
        return cls(project_id=project_id)

    def for_project(self, project_id: int) -> "OperationContext":
        """Return a copy bound to *project_id*, sharing the same deadline."""
        return replace(self, project_id=project_id)

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def remaining(self) -> Optional[float]:
        if self.deadline is None:
            return None
        return max(0.0, self.deadline - time.monotonic())

    def check(self, step: str = "") -> None:
        """Raise :class:`DeadlineExceeded` if the operation must stop now."""
        if self._cancelled:
            raise DeadlineExceeded(f"operation cancelled{f' before {step}' if step else ''}", step=step)
        if self.deadline is not None and time.monotonic() >= self.deadline:
            raise DeadlineExceeded(f"deadline exceeded{f' before {step}' if step else ''}", step=step)

    def resolve_project(self, project_id: Optional[int] = None) -> int:
        """Pick the explicit *project_id* argument, falling back to the context's."""
        pid = project_id if project_id is not None else self.project_id
        if pid is None:
            raise ValidationError("project id is required (pass it or bind it to the context)")
        if pid <= 0:
            raise ValidationError("invalid project ID", project_id=pid)
        return pid
