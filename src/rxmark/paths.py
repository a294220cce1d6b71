"""Dotted-path helpers shared by the evaluator, handlers and engine."""

from __future__ import annotations

from collections.abc import Mapping, MutableMapping, MutableSequence, Sequence
from typing import Any


def split_path(path: Any) -> list[str]:
    """``"a.b.0"`` -> ``["a", "b", "0"]``. Lists/tuples pass through as strings."""
    if isinstance(path, (list, tuple)):
        return [str(p) for p in path]
    return str(path).split(".")


def _step(cur: Any, part: str) -> Any:
    if isinstance(cur, Mapping):
        return cur.get(part)
    if isinstance(cur, Sequence) and not isinstance(cur, (str, bytes)):
        try:
            return cur[int(part)]
        except (ValueError, IndexError):
            return None
    # Public attributes only: capabilities must not expose interpreter internals.
    if part.startswith("_"):
        return None
    return getattr(cur, part, None)


def get_path(obj: Any, path: Any) -> Any:
    """Safely read a nested path. Missing segments yield None."""
    if path is None:
        return None
    cur = obj
    for part in split_path(path):
        if cur is None:
            return None
        cur = _step(cur, part)
    return cur


def _is_list(value: Any) -> bool:
    return isinstance(value, MutableSequence) and not isinstance(value, (str, bytes))


def _assign(container: Any, part: str, value: Any) -> None:
    if _is_list(container):
        index = int(part)
        if index == len(container):
            container.append(value)
        else:
            container[index] = value
    else:
        container[part] = value


def set_path(obj: MutableMapping, path: Any, value: Any) -> None:
    """Set a nested path, creating intermediate dicts where missing.

    Existing lists along the path are kept and indexed by integer segment.
    A non-integer or out-of-range list index raises ValueError/IndexError.
    """
    parts = split_path(path)
    cur = obj
    for part in parts[:-1]:
        nxt = _step(cur, part) if isinstance(cur, Mapping) or _is_list(cur) else None
        if not isinstance(nxt, MutableMapping) and not _is_list(nxt):
            nxt = {}
            _assign(cur, part, nxt)
        cur = nxt
    if parts:
        _assign(cur, parts[-1], value)
