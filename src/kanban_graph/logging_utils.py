from __future__ import annotations

import sys
from typing import Any, Optional, TextIO

from loguru import logger

from .errors import KanbanError, exit_code_for

_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{module}</cyan>:<cyan>{line}</cyan>\n"
    "{message}"
)


def configure_logging(level: str = "INFO", sink: Optional[TextIO] = None) -> int:
    """Route engine logs to *sink* (stderr by default) and return the handler id."""
    logger.remove()
    handler_id = logger.add(sink or sys.stderr, level=level.upper(), format=_FORMAT)
    logger.enable("kanban_graph")
    return handler_id


def summarize_error(exc: BaseException) -> dict[str, Any]:
    if isinstance(exc, KanbanError):
        return {
            "code": exc.code,
            "message": exc.message,
            "exit_code": exc.exit_code,
            "details": dict(exc.details),
        }
    return {
        "code": "ERROR",
        "message": f"{exc.__class__.__name__}: {exc}",
        "exit_code": exit_code_for(exc),
        "details": {},
    }
