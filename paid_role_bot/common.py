from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Mapping


def normalize_email(value: object) -> str:
    return str(value or "").strip().lower()


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def dig(obj: object, *path: str | int) -> Any:
    """Walk nested mappings/lists, returning None as soon as a step is missing."""
    current: Any = obj
    for step in path:
        if isinstance(step, int):
            if not isinstance(current, (list, tuple)) or len(current) <= step:
                return None
            current = current[step]
            continue
        if not isinstance(current, Mapping):
            return None
        current = current.get(step)
        if current is None:
            return None
    return current
