"""Load optional engine configuration from `.kanban/config.yaml`."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Mapping, Optional

from pydantic import BaseModel, Field, ValidationError as PydanticValidationError, field_validator

from .constants import (
    CONFIG_FILE,
    DEFAULT_COLUMNS,
    DEFAULT_DEADLINE_SECONDS,
    DEFAULT_LOG_LEVEL,
    ENV_DATA_DIR,
    ENV_DEADLINE_SECONDS,
    ENV_LOG_LEVEL,
    MAX_COLUMN_NAME,
    STATE_DIR_NAME,
)
from .errors import ConfigurationError
from .io_utils import _load_yaml_with_error
from .models import ColumnRole

_LOG_LEVELS = {"TRACE", "DEBUG", "INFO", "SUCCESS", "WARNING", "ERROR", "CRITICAL"}


class ColumnSpec(BaseModel):
    """One entry of ``default_columns``."""

    name: str = Field(min_length=1, max_length=MAX_COLUMN_NAME)
    role: Optional[ColumnRole] = None


class EngineSettings(BaseModel):
    data_dir: Optional[Path] = None
    deadline_seconds: float = Field(default=DEFAULT_DEADLINE_SECONDS, gt=0)
    log_level: str = DEFAULT_LOG_LEVEL
    default_columns: list[ColumnSpec] = Field(
        default_factory=lambda: [ColumnSpec(**spec) for spec in DEFAULT_COLUMNS]
    )

    @field_validator("log_level")
    @classmethod
    def _check_level(cls, value: str) -> str:
        level = value.strip().upper()
        if level not in _LOG_LEVELS:
            raise ValueError(f"unknown log level {value!r}")
        return level

    @field_validator("default_columns")
    @classmethod
    def _check_roles_unique(cls, value: list[ColumnSpec]) -> list[ColumnSpec]:
        seen: set[ColumnRole] = set()
        for spec in value:
            if spec.role is None:
                continue
            if spec.role in seen:
                raise ValueError(f"role {spec.role.value!r} assigned to more than one default column")
            seen.add(spec.role)
        return value

    def state_root(self, project_dir: Path) -> Path:
        """Directory holding the YAML stores for *project_dir*."""
        if self.data_dir is None:
            return project_dir.resolve() / STATE_DIR_NAME
        if self.data_dir.is_absolute():
            return self.data_dir
        return (project_dir / self.data_dir).resolve()


def load_engine_config(project_dir: Path) -> tuple[dict[str, Any], str | None]:
    """Load the optional engine config file.

    Args:
        project_dir: Directory that contains the ``.kanban`` state directory.

    Returns:
        A tuple of `(config, error_message)`. If the file is missing, returns `({}, None)`.
    """
    path = project_dir.resolve() / STATE_DIR_NAME / CONFIG_FILE
    if not path.exists():
        return {}, None
    data, err = _load_yaml_with_error(path, {})
    if err:
        return {}, err
    return data, None


def _get_nested(config: Mapping[str, Any], *keys: str) -> Any:
    cur: Any = config
    for key in keys:
        if not isinstance(cur, Mapping):
            return None
        cur = cur.get(key)
    return cur


def resolve_settings(
    project_dir: Path,
    env: Optional[Mapping[str, str]] = None,
) -> EngineSettings:
    """Merge the config file with environment overrides and validate.

    Raises:
        ConfigurationError: If the config file is unreadable or a value is invalid.
    """
    env = os.environ if env is None else env
    config, err = load_engine_config(project_dir)
    if err:
        raise ConfigurationError(f"invalid config: {err}")

    raw: dict[str, Any] = {}
    engine_block = _get_nested(config, "engine")
    if isinstance(engine_block, Mapping):
        raw.update(engine_block)
    columns = _get_nested(config, "default_columns")
    if columns is not None:
        raw["default_columns"] = columns

    if env.get(ENV_DATA_DIR):
        raw["data_dir"] = env[ENV_DATA_DIR]
    if env.get(ENV_DEADLINE_SECONDS):
        raw["deadline_seconds"] = env[ENV_DEADLINE_SECONDS]
    if env.get(ENV_LOG_LEVEL):
        raw["log_level"] = env[ENV_LOG_LEVEL]

    try:
        return EngineSettings(**raw)
    except PydanticValidationError as exc:
        raise ConfigurationError(f"invalid config: {exc.errors()[0].get('msg', exc)}") from exc
