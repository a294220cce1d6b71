"""Expression evaluator — reduces an expression node to a value.

evaluate(node, ctx) is total over the accepted grammar: malformed input
(wrong arity, unsupported node type) and operations Python rejects
(``None > 1``, ``1 / 0``) yield None instead of raising, so one bad
directive degrades to "no update" rather than breaking its host.

Nothing outside the EvalContext is reachable: state, the per-call
Capabilities, and an optional injected pub function.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Callable

from rxmark.nodes import Apply, ArrayLiteral, Literal, Node, ObjectLiteral, Op, compile_node
from rxmark.paths import get_path, set_path

logger = logging.getLogger("rxmark.evaluator")

PubFn = Callable[[Any, Any], Any]
FetchFn = Callable[..., Any]

_HOST_ERRORS = (TypeError, ValueError, ArithmeticError, LookupError, AttributeError)


@dataclass(slots=True)
class Capabilities:
    """Per-call escape hatches, reachable from the DSL as ``$name`` paths.

    ``el`` backs ``hasClass``, ``fetch`` backs the ``fetch`` operator, and
    ``event`` is the triggering event. ``extra`` holds any other named
    read-only context.
    """

    el: Any = None
    event: Any = None
    fetch: FetchFn | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def coerce(cls, extras: Capabilities | Mapping[str, Any] | None) -> Capabilities:
        """Accept a Capabilities or a ``{"$el": ..., "$event": ...}`` mapping."""
        if isinstance(extras, Capabilities):
            return extras
        if not extras:
            return cls()
        named = {str(k).lstrip("$"): v for k, v in extras.items()}
        el = named.pop("el", None)
        event = named.pop("event", None)
        fetch = named.pop("fetch", None)
        return cls(el=el, event=event, fetch=fetch, extra=named)

    def lookup(self, name: str) -> Any:
        if name == "el":
            return self.el
        if name == "event":
            return self.event
        if name == "fetch":
            return self.fetch
        return self.extra.get(name)


@dataclass(slots=True)
class EvalContext:
    state: Any = field(default_factory=dict)
    capabilities: Capabilities = field(default_factory=Capabilities)
    pub: PubFn | None = None


# JSON kinds for strict equality: bool is not a number, int and float are.
def _kind(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, (int, float)):
        return "number"
    if isinstance(value, str):
        return "string"
    return "object"


def strict_equals(a: Any, b: Any) -> bool:
    kind = _kind(a)
    if kind != _kind(b):
        return False
    if kind == "object":
        return a is b
    return a == b


def _write(state: Any, path: Any, value: Any) -> None:
    setter = getattr(state, "set_path", None)
    if setter is not None:
        setter(path, value)
    else:
        set_path(state, path, value)


def _resolve_path(node: Node, ctx: EvalContext) -> Any:
    if isinstance(node, Literal) and isinstance(node.value, str):
        return node.value
    return _eval(node, ctx)


def _get(path: Any, ctx: EvalContext) -> Any:
    if isinstance(path, str) and path.startswith("$"):
        # "$event.target.value" -> capability "event", then "target.value"
        top, _, rest = path.partition(".")
        base = ctx.capabilities.lookup(top[1:])
        return get_path(base, rest) if rest else base
    return get_path(ctx.state, path)


def _has_class(el: Any, class_name: Any) -> bool:
    if el is None:
        return False
    try:
        has_class = getattr(el, "has_class", None)
        if callable(has_class):
            return bool(has_class(class_name))
        for attr in ("classes", "class_list"):
            classes = getattr(el, attr, None)
            if classes is not None:
                if isinstance(classes, str):
                    classes = classes.split()
                return class_name in classes
    except Exception:
        logger.debug("hasClass failed on %r", el, exc_info=True)
    return False


def _binary(op: Op, a: Any, b: Any) -> Any:
    if op is Op.MOD:
        return a % b
    if op is Op.LOOSE_EQ:
        return a == b
    if op is Op.STRICT_EQ:
        return strict_equals(a, b)
    if op is Op.NE:
        return a != b
    if op is Op.GT:
        return a > b
    if op is Op.LT:
        return a < b
    if op is Op.GE:
        return a >= b
    return a <= b


def _apply(node: Apply, ctx: EvalContext) -> Any:
    op, args = node.op, node.args

    if op is Op.ADD or op is Op.MUL:
        if not args:
            return 0 if op is Op.ADD else 1
        acc = _eval(args[0], ctx)
        for arg in args[1:]:
            acc = acc + _eval(arg, ctx) if op is Op.ADD else acc * _eval(arg, ctx)
        return acc
    if op is Op.SUB:
        if len(args) == 1:
            return -_eval(args[0], ctx)
        acc = _eval(args[0], ctx)
        for arg in args[1:]:
            acc = acc - _eval(arg, ctx)
        return acc
    if op is Op.DIV:
        acc = _eval(args[0], ctx)
        for arg in args[1:]:
            acc = acc / _eval(arg, ctx)
        return acc

    if op is Op.AND:
        a = _eval(args[0], ctx)
        return _eval(args[1], ctx) if a else a
    if op is Op.OR:
        a = _eval(args[0], ctx)
        return a if a else _eval(args[1], ctx)
    if op is Op.NOT:
        return not _eval(args[0], ctx)
    if op is Op.COND:
        return _eval(args[1], ctx) if _eval(args[0], ctx) else _eval(args[2], ctx)
    if op is Op.SEQ:
        result = None
        for arg in args:
            result = _eval(arg, ctx)
        return result

    if op is Op.GET:
        return _get(_resolve_path(args[0], ctx), ctx)
    if op is Op.SET:
        path = _resolve_path(args[0], ctx)
        value = _eval(args[1], ctx)
        _write(ctx.state, path, value)
        return value
    if op is Op.TOGGLE:
        path = _resolve_path(args[0], ctx)
        value = not get_path(ctx.state, path)
        _write(ctx.state, path, value)
        return value

    if op is Op.PUB:
        topic = _eval(args[0], ctx)
        payload = _eval(args[1], ctx) if len(args) > 1 else None
        if ctx.pub is None:
            return None
        try:
            return ctx.pub(topic, payload)
        except Exception:
            logger.debug("pub(%r) failed", topic, exc_info=True)
            return None
    if op is Op.HAS_CLASS:
        class_name = _eval(args[0], ctx)
        el = _eval(args[1], ctx) if len(args) > 1 else ctx.capabilities.el
        return _has_class(el, class_name)
    if op is Op.FETCH:
        url = _eval(args[0], ctx)
        init = _eval(args[1], ctx) if len(args) > 1 else None
        fetch = ctx.capabilities.fetch
        if not callable(fetch):
            return None
        try:
            return fetch(url, init)
        except Exception:
            logger.debug("fetch(%r) failed", url, exc_info=True)
            return None

    return _binary(op, _eval(args[0], ctx), _eval(args[1], ctx))


def _eval(node: Node, ctx: EvalContext) -> Any:
    if isinstance(node, Literal):
        return node.value
    if isinstance(node, Apply):
        try:
            return _apply(node, ctx)
        except _HOST_ERRORS as exc:
            logger.debug("%s evaluated to None: %s", node.op.value, exc)
            return None
    if isinstance(node, ArrayLiteral):
        return [_eval(item, ctx) for item in node.items]
    if isinstance(node, ObjectLiteral):
        return {key: _eval(value, ctx) for key, value in node.fields}
    return None  # Invalid


def evaluate(node: Any, ctx: EvalContext | None = None) -> Any:
    """Evaluate a raw or compiled expression node against ctx.

    Usage:
        ctx = EvalContext(state={"count": 1})
        evaluate(["set", "count", ["+", ["get", "count"], 1]], ctx)  # 2
        evaluate(["notAnOp", 1, 2], ctx)                              # [1, 2]
    """
    if ctx is None:
        ctx = EvalContext()
    return _eval(compile_node(node), ctx)
