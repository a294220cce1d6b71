"""Named handlers — trusted callbacks invoked by identifier instead of DSL.

A handler receives the current value at its declared state path (None when
no path is declared) and a HandlerContext. Its return value is written back
to that path, which goes through the reactive state exactly like a DSL
``set``. A None return means "no value produced" and writes nothing.

If the handler returns an awaitable, the write-back happens when it settles,
followed by a forced flush of the scope. With a running asyncio loop this
is scheduled as a task right away, so callers may drop the return value;
without one, invoke() returns a coroutine the caller must await.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Coroutine

from rxmark.paths import get_path

if TYPE_CHECKING:
    from rxmark.engine import ReactiveEngine

logger = logging.getLogger("rxmark.handlers")


@dataclass(frozen=True, slots=True)
class HandlerContext:
    scope: Any
    event: Any = None
    path: str | None = None
    engine: ReactiveEngine | None = None


Handler = Callable[[Any, HandlerContext], Any]


class HandlerRegistry:
    """Name -> handler table, shared by every scope of one engine."""

    def __init__(self) -> None:
        self._handlers: dict[str, Handler] = {}
        self._tasks: set[asyncio.Future[Any]] = set()

    def register(self, name: str, fn: Handler) -> Callable[[], None]:
        """Register fn under name, replacing any previous handler.

        Returns an idempotent unregister. It only removes the entry while
        name still maps to fn, so a stale unregister cannot drop a
        replacement.
        """
        if not name or not isinstance(name, str):
            raise ValueError("register_handler requires a non-empty name")
        if not callable(fn):
            raise TypeError(f"handler {name!r} must be callable")
        self._handlers[name] = fn

        def _unregister() -> None:
            if self._handlers.get(name) is fn:
                del self._handlers[name]

        return _unregister

    def get(self, name: str) -> Handler | None:
        return self._handlers.get(name)

    def __contains__(self, name: object) -> bool:
        return name in self._handlers

    def __len__(self) -> int:
        return len(self._handlers)

    def invoke(
        self,
        name: str,
        state: Any,
        ctx: HandlerContext,
        *,
        on_settled: Callable[[], None] | None = None,
    ) -> Any:
        """Call a handler and write its result back to ctx.path.

        Never raises: a failing handler is logged and yields None.
        """
        fn = self._handlers.get(name)
        if fn is None:
            return None
        current = get_path(state, ctx.path) if ctx.path else None
        try:
            result = fn(current, ctx)
        except Exception:
            logger.exception("Handler %r failed", name)
            return None
        if inspect.isawaitable(result):
            return self._schedule(_settle(name, result, state, ctx, on_settled))
        _write_back(state, ctx.path, result)
        return result

    def _schedule(self, settle: Coroutine[Any, Any, Any]) -> Any:
        """Start settle on the running loop, or hand the coroutine back when there is none."""
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            return settle
        task = asyncio.ensure_future(settle)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task


def _write_back(state: Any, path: str | None, value: Any) -> None:
    if path and value is not None:
        try:
            state.set_path(path, value)
        except (ValueError, LookupError) as exc:
            logger.error("Cannot write handler result to %r: %s", path, exc)


async def _settle(
    name: str,
    pending: Awaitable[Any],
    state: Any,
    ctx: HandlerContext,
    on_settled: Callable[[], None] | None,
) -> Any:
    try:
        value = await pending
    except Exception:
        logger.exception("Handler %r rejected", name)
        return None
    _write_back(state, ctx.path, value)
    if on_settled is not None:
        on_settled()
    return value
