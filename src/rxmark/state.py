"""Reactive state — a mapping that reports its writes.

One ReactiveState per scope. Every top-level write that changes a value
calls the on_write hook, which the scheduler uses to mark the scope
pending and post one notification pass per tick.

Nested objects are not proxied: ``state["user"]["name"] = "x"`` is not
observed. Writes through set_path()/touch() report the top-level key, so
DSL ``set``/``toggle`` and handler write-backs on dotted paths are.
"""

from __future__ import annotations

from collections.abc import Iterator, Mapping, MutableMapping
from typing import Any, Callable

from rxmark.paths import get_path, set_path, split_path

WriteHook = Callable[[str], None]

_MISSING = object()


def _changed(old: Any, new: Any) -> bool:
    if old is _MISSING:
        return True
    if old is new:
        return False
    try:
        return bool(old != new)
    except Exception:
        return True


class ReactiveState(MutableMapping):
    """A dict-like State Record that calls on_write(key) on every change."""

    __slots__ = ("_data", "_on_write")

    def __init__(self, data: Mapping[str, Any] | None = None, on_write: WriteHook | None = None) -> None:
        self._data: dict[str, Any] = dict(data) if data else {}
        self._on_write = on_write

    def _notify(self, key: str) -> None:
        if self._on_write is not None:
            self._on_write(key)

    # --- Read operations ---

    def __getitem__(self, key: str) -> Any:
        return self._data[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._data)

    def __len__(self) -> int:
        return len(self._data)

    def __contains__(self, key: object) -> bool:
        return key in self._data

    def get_path(self, path: Any) -> Any:
        return get_path(self._data, path)

    def snapshot(self) -> dict[str, Any]:
        """Shallow copy of the current data."""
        return dict(self._data)

    # --- Write operations (notify) ---

    def __setitem__(self, key: str, value: Any) -> None:
        old = self._data.get(key, _MISSING)
        self._data[key] = value
        if _changed(old, value):
            self._notify(key)

    def __delitem__(self, key: str) -> None:
        del self._data[key]
        self._notify(key)

    def clear(self) -> None:
        if self._data:
            keys = list(self._data)
            self._data.clear()
            self._notify(keys[0])

    def set_path(self, path: Any, value: Any) -> None:
        """Write a dotted path. Nested writes report their top-level key."""
        parts = split_path(path)
        if len(parts) == 1:
            self[parts[0]] = value
            return
        set_path(self._data, parts, value)
        self.touch(parts[0])

    def touch(self, key: str) -> None:
        """Report a write to key without changing it (e.g. after a nested mutation)."""
        self._notify(key)

    def __repr__(self) -> str:
        return f"ReactiveState({self._data!r})"


def wrap(initial: Mapping[str, Any] | None, on_write: WriteHook | None = None) -> ReactiveState:
    """Wrap a plain state mapping so its top-level writes are observable."""
    return ReactiveState(initial, on_write)
