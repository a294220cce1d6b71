"""Comparison sugar — rewrites two infix shapes into the DSL.

    count > 0        -> [">", ["get", "count"], 0]
    status == 'ok'   -> ["==", ["get", "status"], "ok"]
    a.b != c         -> ["!=", ["get", "a.b"], ["get", "c"]]
    !loading         -> ["!", ["get", "loading"]]

Anything else is left alone: this is sugar over the DSL, not a second
expression language.
"""

from __future__ import annotations

import re
from typing import Any

_IDENT = r"[A-Za-z_$][0-9A-Za-z_$.]*"

_BINARY = re.compile(rf"^\s*({_IDENT})\s*(===|==|!=|>=|<=|>|<)\s*(.+?)\s*$")
_UNARY = re.compile(rf"^!\s*({_IDENT})\s*$")
_NUMBER = re.compile(r"^-?\d+(\.\d+)?$")
_QUOTED = re.compile(r"""^(?:'.*'|".*")$""")


def _rhs(raw: str) -> Any:
    if _NUMBER.match(raw):
        return float(raw) if "." in raw else int(raw)
    if raw in ("true", "false"):
        return raw == "true"
    if _QUOTED.match(raw):
        return raw[1:-1]
    return ["get", raw]


def translate(text: str) -> list | None:
    """Return the DSL node for a sugar expression, or None if it isn't one."""
    match = _BINARY.match(text)
    if match:
        lhs, op, rhs = match.groups()
        return [op, ["get", lhs], _rhs(rhs)]
    match = _UNARY.match(text)
    if match:
        return ["!", ["get", match.group(1)]]
    return None


def looks_like_dsl(text: Any) -> bool:
    """DSL expressions are JSON arrays or objects at the top level."""
    return isinstance(text, str) and text.lstrip().startswith(("[", "{"))
