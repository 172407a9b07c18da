"""
Gradient rules keyed by operation kind.
"""

from __future__ import annotations

from typing import Callable, Dict, List, Optional, Sequence

from tiny_opgraph.errors import UnsupportedOperationError
from tiny_opgraph.graph.ir import Operation
from tiny_opgraph.utils.logging import logger

GradientRule = Callable[[Operation, Operation], Sequence[Optional[Operation]]]


def _no_gradient(op: Operation, grad: Operation) -> List[Optional[Operation]]:
    return [None] * len(op.inputs)


class GradientRegistry:
    """
    Maps an operation kind to ``rule(op, grad) -> [contribution per input]``.

    ``grad`` is the gradient of the objective with respect to ``op``'s output;
    each returned entry is the contribution to the matching input (same
    shape as that input) or ``None`` for no contribution.
    """

    def __init__(self) -> None:
        self._rules: Dict[str, GradientRule] = {}

    def register(self, kind: str, rule: GradientRule) -> None:
        if kind in self._rules:
            logger.debug("Replacing gradient rule for %r", kind)
        self._rules[kind] = rule

    def register_non_differentiable(self, kind: str) -> None:
        self.register(kind, _no_gradient)

    def deregister(self, kind: str) -> None:
        self._rules.pop(kind, None)

    def lookup(self, kind: str) -> GradientRule:
        try:
            return self._rules[kind]
        except KeyError:
            raise UnsupportedOperationError(f"No gradient rule registered for operation kind `{kind}`.") from None

    def is_differentiable(self, kind: str) -> bool:
        return kind in self._rules and self._rules[kind] is not _no_gradient

    def list_gradients(self) -> List[str]:
        return sorted(self._rules)

    def __contains__(self, kind: str) -> bool:
        return kind in self._rules


gradients = GradientRegistry()


__all__ = ["GradientRegistry", "GradientRule", "gradients"]
