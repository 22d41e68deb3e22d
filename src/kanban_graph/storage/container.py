from __future__ import annotations

from pathlib import Path

from ..constants import (
    COLUMNS_FILE,
    COMMENTS_FILE,
    LABELS_FILE,
    PROJECTS_FILE,
    RELATIONS_FILE,
    TASK_LABELS_FILE,
    TASKS_FILE,
)
from .file_repos import (
    FileColumnRepository,
    FileCommentRepository,
    FileLabelRepository,
    FileProjectRepository,
    FileRelationRepository,
    FileTaskRepository,
)


def _lock_for(state_root: Path, filename: str) -> Path:
    return state_root / (Path(filename).stem + ".lock")


class StoreContainer:
    """Wire every file-backed repository under one state directory."""

    def __init__(self, state_root: Path) -> None:
        self.state_root = state_root.resolve()
        self.state_root.mkdir(parents=True, exist_ok=True)

        def repo_paths(filename: str) -> tuple[Path, Path]:
            return self.state_root / filename, _lock_for(self.state_root, filename)

        self.projects = FileProjectRepository(*repo_paths(PROJECTS_FILE))
        self.columns = FileColumnRepository(*repo_paths(COLUMNS_FILE))
        self.tasks = FileTaskRepository(*repo_paths(TASKS_FILE))
        self.relations = FileRelationRepository(*repo_paths(RELATIONS_FILE))
        self.labels = FileLabelRepository(*repo_paths(LABELS_FILE), *repo_paths(TASK_LABELS_FILE))
        self.comments = FileCommentRepository(*repo_paths(COMMENTS_FILE))
