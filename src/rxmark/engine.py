"""ReactiveEngine — the public surface collaborators consume.

One engine owns a set of scopes, each with exactly one ReactiveState, the
watcher sets and pending markers for those scopes, the named handler
registry, and an optional injected pub function.

Scopes are arbitrary objects keyed by identity. Nesting is a lookup
convenience only: ``parent_of(scope)`` lets evaluate/watch/get_state find
the nearest enclosing scope that has state. Scopes never share storage.

Usage:
    engine = ReactiveEngine()
    panel = object()
    engine.init_scope(panel, '{"count": 0}')

    seen = []
    engine.watch(panel, lambda: seen.append(engine.get_state(panel)["count"]))
    engine.evaluate('["set", "count", ["+", ["get", "count"], 1]]', panel)
    engine.evaluate("count > 0", panel)   # True
    engine.tick()                          # seen == [1]
"""

from __future__ import annotations

import functools
import inspect
import json
import logging
import re
from collections.abc import Mapping
from typing import Any, Callable

from rxmark.config import ReactiveConfig
from rxmark.evaluator import Capabilities, EvalContext, PubFn, evaluate
from rxmark.handlers import Handler, HandlerContext, HandlerRegistry
from rxmark.nodes import Node, compile_node
from rxmark.scheduler import MicrotaskQueue, PostFn, Scheduler
from rxmark.state import ReactiveState, wrap
from rxmark.sugar import looks_like_dsl, translate

logger = logging.getLogger("rxmark.engine")

_HANDLER_NAME = re.compile(r"^[A-Za-z_$][0-9A-Za-z_$]*$")
_SINGLE_QUOTED = re.compile(r"'((?:[^'\\]|\\.)*)'")
_BARE_KEY = re.compile(r"([{,]\s*)([A-Za-z_][A-Za-z0-9_\-]*)(\s*:)")


def _noop() -> None:
    pass


def parse_state(text: str | bytes) -> dict[str, Any]:
    """Parse an initial-state declaration.

    Strict JSON first. On failure, one conservative normalization is tried
    (single-quoted strings to double quotes, bare keys quoted); nothing is
    ever executed. Raises ValueError if the result is not a JSON object.
    """
    try:
        data = json.loads(text)
    except ValueError as json_err:
        if isinstance(text, bytes):
            text = text.decode("utf-8", errors="replace")
        normalized = _SINGLE_QUOTED.sub(lambda m: '"' + m.group(1).replace('"', '\\"') + '"', text)
        normalized = _BARE_KEY.sub(lambda m: f'{m.group(1)}"{m.group(2)}"{m.group(3)}', normalized)
        try:
            data = json.loads(normalized)
        except ValueError as fallback_err:
            raise ValueError(
                f"Failed to parse state as JSON ({json_err}); normalization also failed ({fallback_err})"
            ) from fallback_err
    if not isinstance(data, dict):
        raise ValueError(f"State must be a JSON object, got {type(data).__name__}")
    return data


@functools.lru_cache(maxsize=1024)
def compile_source(text: str) -> Node | None:
    """Comparison sugar or DSL JSON -> compiled node. None if text is neither.

    Raises ValueError for text that looks like DSL but is not valid JSON.
    """
    sugar = translate(text)
    if sugar is not None:
        return compile_node(sugar)
    if looks_like_dsl(text):
        return compile_node(json.loads(text))
    return None


class _ScopeContext:
    __slots__ = ("scope", "state")

    def __init__(self, scope: Any, state: ReactiveState) -> None:
        self.scope = scope
        self.state = state


class ReactiveEngine:
    """Scopes, reactive state, watchers and named handlers for one app."""

    def __init__(
        self,
        config: ReactiveConfig | None = None,
        *,
        parent_of: Callable[[Any], Any] | None = None,
        initializer: Callable[[Any], None] | None = None,
        pub: PubFn | None = None,
        post: PostFn | None = None,
    ) -> None:
        self._config = config if config is not None else ReactiveConfig()
        self._parent_of = parent_of
        self._initializer = initializer
        self._pub = pub
        self._queue = MicrotaskQueue(post)
        self._scheduler = Scheduler(
            self._config.reentrancy,
            self._queue,
            debug=self._config.debug,
            describe=self._describe,
        )
        self._handlers = HandlerRegistry()
        self._contexts: dict[int, _ScopeContext] = {}

    # --- Config / introspection ---

    def get_config(self) -> ReactiveConfig:
        return self._config

    @property
    def scheduler(self) -> Scheduler:
        return self._scheduler

    def has_scope(self, scope: Any) -> bool:
        """True if scope itself (not an ancestor) has a State Record."""
        return self._own(scope) is not None

    def _own(self, scope: Any) -> _ScopeContext | None:
        ctx = self._contexts.get(id(scope))
        if ctx is not None and ctx.scope is scope:
            return ctx
        return None

    def _find(self, scope: Any) -> _ScopeContext | None:
        """Nearest enclosing scope with state, walking parent_of."""
        seen: set[int] = set()
        current = scope
        while current is not None and id(current) not in seen:
            ctx = self._own(current)
            if ctx is not None:
                return ctx
            if self._parent_of is None:
                return None
            seen.add(id(current))
            try:
                current = self._parent_of(current)
            except Exception:
                logger.debug("parent_of(%r) failed", current, exc_info=True)
                return None
        return None

    def _describe(self, key: int) -> Any:
        ctx = self._contexts.get(key)
        return ctx.state.snapshot() if ctx is not None else None

    # --- Scope lifecycle ---

    def init_scope(self, scope: Any, initial: Mapping[str, Any] | str | bytes | None = None) -> ReactiveState | None:
        """Create scope's State Record. Returns None (and logs) on malformed input.

        Initializing an already-initialized scope returns its existing state.
        """
        existing = self._own(scope)
        if existing is not None:
            return existing.state
        try:
            if initial is None:
                data: dict[str, Any] = {}
            elif isinstance(initial, (str, bytes)):
                data = parse_state(initial)
            elif isinstance(initial, Mapping):
                data = dict(initial)
            else:
                raise ValueError(f"State must be a mapping or JSON text, got {type(initial).__name__}")
        except ValueError as exc:
            logger.error("Failed to initialize state for scope %r: %s", scope, exc)
            return None

        key = id(scope)
        state = wrap(data, lambda _changed_key: self._scheduler.request(key))
        self._contexts[key] = _ScopeContext(scope, state)
        if self._config.debug:
            logger.debug("Initialized scope %r with %r", scope, data)
        return state

    def destroy_scope(self, scope: Any) -> None:
        """Drop scope's state, watchers and pending marker. Unknown scope is a no-op."""
        ctx = self._own(scope)
        if ctx is None:
            return
        key = id(scope)
        self._scheduler.drop(key)
        del self._contexts[key]

    def get_state(self, scope: Any) -> ReactiveState | None:
        ctx = self._find(scope)
        return ctx.state if ctx is not None else None

    def set_state(self, scope: Any, updates: Mapping[str, Any]) -> None:
        """Merge updates into the nearest state. Dotted keys write nested paths."""
        ctx = self._find(scope)
        if ctx is None:
            logger.debug("set_state on scope %r without state", scope)
            return
        if not isinstance(updates, Mapping):
            logger.error("set_state expects a mapping, got %s", type(updates).__name__)
            return
        for key, value in updates.items():
            try:
                ctx.state.set_path(key, value)
            except (ValueError, LookupError) as exc:
                logger.error("Cannot write %r on scope %r: %s", key, scope, exc)

    # --- Directive binding protocol ---

    def watch(self, scope: Any, callback: Callable[[], None]) -> Callable[[], None]:
        """Run callback after every notification pass of scope's nearest state.

        Never raises. If no state is found, the initializer (if any) is asked
        to set the scope up; failing that a no-op unsubscribe is returned.
        """
        if scope is None or not callable(callback):
            return _noop
        ctx = self._find(scope)
        if ctx is None and self._initializer is not None:
            try:
                self._initializer(scope)
            except Exception:
                logger.debug("Lazy initialization of %r failed", scope, exc_info=True)
            ctx = self._find(scope)
        if ctx is None:
            return _noop
        return self._scheduler.add_watcher(id(ctx.scope), callback)

    def flush(self, scope: Any) -> None:
        """Synchronously run scope's pending notification pass, if any."""
        ctx = self._find(scope)
        if ctx is not None:
            self._scheduler.flush(id(ctx.scope))

    def tick(self) -> int:
        """Run queued end-of-turn callbacks when no asyncio loop drives them."""
        return self._queue.run_pending()

    # --- Handlers / pub ---

    def register_handler(self, name: str, fn: Handler) -> Callable[[], None]:
        return self._handlers.register(name, fn)

    def attach_pub(self, pub: PubFn | None) -> Callable[[], None]:
        """Inject the pub function used by the ``pub`` operator. Returns a detach."""
        if callable(pub):
            self._pub = pub

        def _detach() -> None:
            if self._pub is pub:
                self._pub = None

        return _detach

    def _state_path_of(self, el: Any) -> str | None:
        attributes = getattr(el, "attributes", None)
        if isinstance(attributes, Mapping):
            return attributes.get(self._config.path_attribute) or attributes.get(self._config.var_attribute)
        return None

    def invoke_handler(self, name: str, scope: Any, *, event: Any = None, path: str | None = None) -> Any:
        """Invoke a named handler against scope's nearest state.

        Returns the handler's value, a task or coroutine when the handler is async,
        or None when the handler or scope is unknown or the handler fails.
        """
        ctx = self._find(scope)
        if ctx is None:
            return None
        handler_ctx = HandlerContext(scope=scope, event=event, path=path, engine=self)
        owner = ctx.scope
        return self._handlers.invoke(name, ctx.state, handler_ctx, on_settled=lambda: self.flush(owner))

    # --- Evaluation ---

    def evaluate(
        self,
        source: Any,
        scope: Any,
        extras: Capabilities | Mapping[str, Any] | None = None,
        *,
        path: str | None = None,
    ) -> Any:
        """Evaluate an expression against scope's nearest state.

        Resolution order for text: comparison sugar, DSL JSON, named handler
        (a bare identifier naming a registered handler), then a plain state
        path read. Non-text sources are evaluated as expression nodes.
        Never raises: malformed DSL JSON yields False, an unknown scope None.
        """
        ctx = self._find(scope)
        if ctx is None:
            logger.debug("evaluate on scope %r without state", scope)
            return None
        capabilities = Capabilities.coerce(extras)
        try:
            eval_ctx = EvalContext(state=ctx.state, capabilities=capabilities, pub=self._pub)
            if not isinstance(source, str):
                return evaluate(source, eval_ctx)

            text = source.strip()
            try:
                node = compile_source(text)
            except ValueError as exc:
                logger.error("Invalid DSL JSON expression %r: %s", source, exc)
                return False
            if node is not None:
                return evaluate(node, eval_ctx)

            if _HANDLER_NAME.match(text) and text in self._handlers:
                if path is None and capabilities.el is not None:
                    path = self._state_path_of(capabilities.el)
                return self.invoke_handler(text, scope, event=capabilities.event, path=path)

            return ctx.state.get_path(text)
        except Exception:
            logger.exception("Failed to evaluate expression %r", source)
            return False

    def handle(
        self,
        source: Any,
        scope: Any,
        extras: Capabilities | Mapping[str, Any] | None = None,
        *,
        path: str | None = None,
    ) -> Any:
        """Evaluate as an event reaction, then flush so effects are visible on return.

        An async handler is returned as a task (or, with no running loop, a
        coroutine to await); it writes back and flushes itself when it settles.
        """
        result = self.evaluate(source, scope, extras, path=path)
        if not inspect.isawaitable(result):
            self.flush(scope)
        return result

    async def dispatch(
        self,
        source: Any,
        scope: Any,
        extras: Capabilities | Mapping[str, Any] | None = None,
        *,
        path: str | None = None,
    ) -> Any:
        """Async form of handle(): awaits async handlers before flushing."""
        result = self.evaluate(source, scope, extras, path=path)
        if inspect.isawaitable(result):
            result = await result
        self.flush(scope)
        return result


def create_engine(config: ReactiveConfig | None = None, **kwargs: Any) -> ReactiveEngine:
    """Factory mirroring ReactiveEngine(config, **kwargs)."""
    return ReactiveEngine(config, **kwargs)
