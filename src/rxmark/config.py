"""Engine configuration.

ReactiveConfig is fixed per engine instance: watcher authors can rely on one
re-entrancy regime for the whole lifetime of the engine.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class Reentrancy(str, Enum):
    """What happens when a watcher writes state during a notification pass."""

    SKIP = "skip"
    DEFER = "defer"


@dataclass(frozen=True, slots=True)
class ReactiveConfig:
    """Configuration for a ReactiveEngine.

    Attributes:
        reentrancy: ``skip`` ignores schedule requests raised while a pass is
            running; ``defer`` runs exactly one follow-up pass afterwards.
        debug: Emit per-pass traces (watcher count, state snapshot).
        attribute_prefix: Prefix presentation layers use for their directive
            attributes, e.g. ``data-hype-rx`` for a handler's state path.
    """

    reentrancy: Reentrancy = Reentrancy.SKIP
    debug: bool = False
    attribute_prefix: str = "hype"

    def __post_init__(self) -> None:
        if not isinstance(self.reentrancy, Reentrancy):
            # Reentrancy("bogus") raises ValueError
            object.__setattr__(self, "reentrancy", Reentrancy(self.reentrancy))

    @property
    def path_attribute(self) -> str:
        """Attribute naming the state path a handler writes back to."""
        return f"data-{self.attribute_prefix}-rx"

    @property
    def var_attribute(self) -> str:
        """Fallback attribute for the state path when path_attribute is absent."""
        return f"data-{self.attribute_prefix}-var"
