"""rxmark: reactive expression and state engine for markup-declared state."""

from importlib.metadata import version as _version

__version__ = _version("rxmark")

from rxmark.config import ReactiveConfig, Reentrancy
from rxmark.nodes import Op, compile_node
from rxmark.evaluator import Capabilities, EvalContext, evaluate
from rxmark.sugar import translate
from rxmark.state import ReactiveState, wrap
from rxmark.scheduler import MicrotaskQueue, Scheduler
from rxmark.handlers import HandlerContext, HandlerRegistry
from rxmark.engine import ReactiveEngine, create_engine, parse_state
from rxmark.directives import bind, bind_attr, bind_class, bind_show, on
# textual NOT auto-imported: opt-in only

__all__ = [
    "ReactiveConfig",
    "Reentrancy",
    "Op",
    "compile_node",
    "Capabilities",
    "EvalContext",
    "evaluate",
    "translate",
    "ReactiveState",
    "wrap",
    "MicrotaskQueue",
    "Scheduler",
    "HandlerContext",
    "HandlerRegistry",
    "ReactiveEngine",
    "create_engine",
    "parse_state",
    "bind",
    "bind_attr",
    "bind_class",
    "bind_show",
    "on",
]
