"""Expression AST — the whitelisted operator set and the node shapes the evaluator accepts.

Raw expressions are JSON-shaped: scalars, ``[op, *operands]`` lists, array
literals and object literals (each value an expression). A list whose head
is not an operator is an array literal; when that head is a string it is
read as an unknown operator name and only its operands are kept, so
``["notAnOp", 1, 2]`` evaluates to ``[1, 2]``.

compile_node() classifies a raw expression once into frozen, tagged nodes
so repeated evaluation does no re-classification.

The operator set is closed. New behavior is added through named handlers,
never through new operators.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Union

logger = logging.getLogger("rxmark.nodes")


class Op(str, Enum):
    ADD = "+"
    SUB = "-"
    MUL = "*"
    DIV = "/"
    MOD = "%"
    LOOSE_EQ = "=="
    STRICT_EQ = "==="
    NE = "!="
    GT = ">"
    LT = "<"
    GE = ">="
    LE = "<="
    AND = "&&"
    OR = "||"
    NOT = "!"
    COND = "?:"
    SEQ = "seq"
    GET = "get"
    SET = "set"
    TOGGLE = "toggle"
    PUB = "pub"
    HAS_CLASS = "hasClass"
    FETCH = "fetch"


OPERATORS: frozenset[str] = frozenset(op.value for op in Op)

# op -> (min operands, max operands or None for variadic)
ARITY: dict[Op, tuple[int, int | None]] = {
    Op.ADD: (0, None),
    Op.MUL: (0, None),
    Op.SEQ: (0, None),
    Op.SUB: (1, None),
    Op.DIV: (1, None),
    Op.MOD: (2, 2),
    Op.LOOSE_EQ: (2, 2),
    Op.STRICT_EQ: (2, 2),
    Op.NE: (2, 2),
    Op.GT: (2, 2),
    Op.LT: (2, 2),
    Op.GE: (2, 2),
    Op.LE: (2, 2),
    Op.AND: (2, 2),
    Op.OR: (2, 2),
    Op.NOT: (1, 1),
    Op.COND: (3, 3),
    Op.GET: (1, 1),
    Op.SET: (2, 2),
    Op.TOGGLE: (1, 1),
    Op.PUB: (1, 2),
    Op.HAS_CLASS: (1, 2),
    Op.FETCH: (1, 2),
}


@dataclass(frozen=True, slots=True)
class Literal:
    value: Any


@dataclass(frozen=True, slots=True)
class Apply:
    op: Op
    args: tuple[Node, ...]


@dataclass(frozen=True, slots=True)
class ArrayLiteral:
    items: tuple[Node, ...]


@dataclass(frozen=True, slots=True)
class ObjectLiteral:
    fields: tuple[tuple[str, Node], ...]


@dataclass(frozen=True, slots=True)
class Invalid:
    """Malformed input. Evaluates to None."""

    reason: str


Node = Union[Literal, Apply, ArrayLiteral, ObjectLiteral, Invalid]
NODE_TYPES = (Literal, Apply, ArrayLiteral, ObjectLiteral, Invalid)


def is_operator(head: Any) -> bool:
    return isinstance(head, str) and head in OPERATORS


def compile_node(raw: Any) -> Node:
    """Classify a JSON-shaped expression into tagged nodes."""
    if isinstance(raw, NODE_TYPES):
        return raw
    if raw is None or isinstance(raw, (bool, int, float, str)):
        return Literal(raw)
    if isinstance(raw, (list, tuple)):
        if not raw:
            return ArrayLiteral(())
        head = raw[0]
        if isinstance(head, str) and not is_operator(head):
            # Unknown operator name: its operands form an array literal.
            return ArrayLiteral(tuple(compile_node(item) for item in raw[1:]))
        if not is_operator(head):
            return ArrayLiteral(tuple(compile_node(item) for item in raw))
        op = Op(head)
        operands = raw[1:]
        lo, hi = ARITY[op]
        if len(operands) < lo or (hi is not None and len(operands) > hi):
            logger.warning("Invalid arity for %r: got %d operand(s)", op.value, len(operands))
            return Invalid(f"{op.value} takes {lo}..{hi if hi is not None else 'n'} operands")
        return Apply(op, tuple(compile_node(operand) for operand in operands))
    if isinstance(raw, dict):
        return ObjectLiteral(tuple((str(k), compile_node(v)) for k, v in raw.items()))
    logger.warning("Unsupported expression node type: %s", type(raw).__name__)
    return Invalid(f"unsupported node {type(raw).__name__}")
