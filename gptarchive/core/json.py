"""JSON helpers using orjson."""

from __future__ import annotations

from typing import Any

import orjson

from pydantic import BaseModel


def _default(obj: Any) -> Any:
    if isinstance(obj, BaseModel):
        return obj.model_dump(mode="json", exclude_unset=True)
    if isinstance(obj, (set, frozenset)):
        return sorted(obj)
    raise TypeError(f"Object of type {obj.__class__.__name__} is not JSON serializable")


def dumps_pretty(obj: Any) -> bytes:
    """Serialize with two-space indentation and a trailing newline."""
    return orjson.dumps(obj, default=_default, option=orjson.OPT_INDENT_2 | orjson.OPT_APPEND_NEWLINE)


def loads(obj: str | bytes) -> Any:
    return orjson.loads(obj)


__all__ = ["dumps_pretty", "loads"]
