"""Directive binding — attach re-run-on-change updates to expression results.

The engine knows nothing about what a directive renders. A presentation
layer (widget tree, DOM shim, test harness) binds an expression to an update
action through bind(); the helpers below cover the usual directive shapes
over any target object:

    bind_show(engine, scope, target, "count > 0")       # target.display
    bind_class(engine, scope, target, "active", "sel")  # target.set_class(...)
    bind_attr(engine, scope, target, "disabled", "loading")
    button_pressed = on(engine, scope, '["toggle", "open"]')
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any, Callable

from rxmark.evaluator import Capabilities

if TYPE_CHECKING:
    from rxmark.engine import ReactiveEngine

logger = logging.getLogger("rxmark.directives")

Extras = Capabilities | Mapping[str, Any] | None


def bind(
    engine: ReactiveEngine,
    scope: Any,
    expression: Any,
    update: Callable[[Any], None],
    *,
    extras: Extras = None,
) -> Callable[[], None]:
    """Call update(value) now and after every notification pass.

    Returns the unsubscribe. Errors raised by update on the initial run are
    logged; later ones are caught by the scheduler like any watcher error.
    """

    def _run() -> None:
        update(engine.evaluate(expression, scope, extras))

    unsubscribe = engine.watch(scope, _run)
    try:
        _run()
    except Exception:
        logger.exception("Initial directive evaluation failed for %r", expression)
    return unsubscribe


def bind_show(engine: ReactiveEngine, scope: Any, target: Any, expression: Any) -> Callable[[], None]:
    """Toggle ``target.display`` with the truthiness of expression."""

    def _update(value: Any) -> None:
        target.display = bool(value)

    return bind(engine, scope, expression, _update, extras=Capabilities(el=target))


def bind_class(
    engine: ReactiveEngine, scope: Any, target: Any, class_name: str, expression: Any
) -> Callable[[], None]:
    """Add or remove class_name via ``target.set_class(add, class_name)``."""

    def _update(value: Any) -> None:
        target.set_class(bool(value), class_name)

    return bind(engine, scope, expression, _update, extras=Capabilities(el=target))


def apply_attr(target: Any, name: str, value: Any) -> None:
    """Write an attribute directive's value onto target.

    An attribute that currently holds a bool (``disabled``, ``display``)
    receives the truthiness of value. Otherwise False and None clear the
    attribute to None and anything else is assigned as-is.
    """
    if isinstance(getattr(target, name, None), bool):
        setattr(target, name, bool(value))
    elif value is False or value is None:
        setattr(target, name, None)
    else:
        setattr(target, name, value)


def bind_attr(
    engine: ReactiveEngine, scope: Any, target: Any, name: str, expression: Any
) -> Callable[[], None]:
    """Mirror expression's value onto ``target.<name>`` via apply_attr()."""

    def _update(value: Any) -> None:
        apply_attr(target, name, value)

    return bind(engine, scope, expression, _update, extras=Capabilities(el=target))


def on(
    engine: ReactiveEngine,
    scope: Any,
    expression: Any,
    *,
    el: Any = None,
    path: str | None = None,
) -> Callable[[Any], Any]:
    """Build an event callback that evaluates expression and flushes.

    The callback takes the triggering event (exposed as ``$event``) and
    returns the evaluation result; for an async named handler that is the
    coroutine to await.
    """

    def _handler(event: Any = None) -> Any:
        return engine.handle(expression, scope, Capabilities(el=el, event=event), path=path)

    return _handler
