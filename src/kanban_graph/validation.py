from __future__ import annotations

import re
from typing import Any, Iterable

from .errors import ValidationError

_COLOR_RE = re.compile(r"^#[0-9A-Fa-f]{6}$")


def _require_id(value: Any, what: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise ValidationError(f"invalid {what} ID", **{f"{what}_id": value})
    return value


def _require_ids(values: Iterable[Any], what: str) -> list[int]:
    out: list[int] = []
    for value in values:
        ident = _require_id(value, what)
        if ident not in out:
            out.append(ident)
    return out


def _require_text(value: Any, field: str, max_length: int) -> str:
    text = str(value or "").strip()
    if not text:
        raise ValidationError(f"{field} cannot be empty", field=field)
    if len(text) > max_length:
        raise ValidationError(f"{field} too long (max {max_length} characters)", field=field, length=len(text))
    return text


def _require_color(value: Any) -> str:
    color = str(value or "").strip()
    if not _COLOR_RE.match(color):
        raise ValidationError("invalid color format (use #RRGGBB)", color=color)
    return color.upper()
