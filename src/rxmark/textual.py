"""Textual integration for rxmark. Opt-in — requires textual.

Directives for Textual widgets: visibility, classes, attributes and event
reactions, bound to a scope's reactive state. Updates are skipped while the
app is not running or is paused for widget replacement, and NoMatches from
widget queries inside an update is swallowed. Calls arriving from a
background thread are marshaled with ``app.call_from_thread``.

Usage:
    class Counter(App):
        def on_mount(self) -> None:
            engine.init_scope(self, {"count": 0})
            stx.show(self, engine, self, self.query_one("#badge"), "count > 0")
            self._inc = stx.on(self, engine, self, "inc", path="count")

        def on_button_pressed(self, event) -> None:
            self._inc(event)
"""

import threading
from contextlib import contextmanager

from textual.css.query import NoMatches

from rxmark import directives

# Module-owned pause state, keyed by id(app) so multiple apps work in tests.
_paused_apps: set[int] = set()


@contextmanager
def pause(app):
    """Suspend guarded directives during widget replacement."""
    key = id(app)
    _paused_apps.add(key)
    try:
        yield
    finally:
        _paused_apps.discard(key)


def is_safe(app) -> bool:
    """Is the widget tree in a queryable state?"""
    return app.is_running and id(app) not in _paused_apps


def _guard(app, update):
    """Wrap update(value) with the running/pause guard, NoMatches and thread marshal."""
    _main = threading.get_ident()

    def _guarded(value):
        if not is_safe(app):
            return
        if threading.get_ident() != _main:
            app.call_from_thread(_safe, value)
        else:
            _safe(value)

    def _safe(value):
        try:
            update(value)
        except NoMatches:
            pass

    return _guarded


def bind(app, engine, scope, expression, update, *, extras=None):
    """directives.bind() that safely bridges to Textual widgets."""
    return directives.bind(engine, scope, expression, _guard(app, update), extras=extras)


def show(app, engine, scope, widget, expression):
    """Drive ``widget.display`` from expression."""

    def _update(value):
        widget.display = bool(value)

    return bind(app, engine, scope, expression, _update, extras={"$el": widget})


def css_class(app, engine, scope, widget, class_name, expression):
    """Add/remove a CSS class on widget from expression."""

    def _update(value):
        widget.set_class(bool(value), class_name)

    return bind(app, engine, scope, expression, _update, extras={"$el": widget})


def attr(app, engine, scope, widget, name, expression):
    """Mirror expression onto a widget attribute (e.g. ``disabled``, ``label``)."""

    def _update(value):
        directives.apply_attr(widget, name, value)

    return bind(app, engine, scope, expression, _update, extras={"$el": widget})


def on(app, engine, scope, expression, *, widget=None, path=None):
    """Event callback for a Textual message handler.

    Evaluates expression with ``$event``/``$el`` and flushes the scope so
    dependent widgets update before the message handler returns. Ignored
    while the app is paused or not running.
    """
    handler = directives.on(engine, scope, expression, el=widget, path=path)

    def _on(event=None):
        if not is_safe(app):
            return None
        try:
            return handler(event)
        except NoMatches:
            return None

    return _on
