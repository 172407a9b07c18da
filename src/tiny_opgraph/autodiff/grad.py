"""
Reverse-mode differentiation by graph transformation.
"""

from __future__ import annotations

from typing import Dict, List, Optional, Sequence, Set, Union

from tiny_opgraph.errors import ShapeError
from tiny_opgraph.graph.ir import Operation
from tiny_opgraph.graph.topo import topological_order
from tiny_opgraph.utils.logging import logger

from .registry import GradientRegistry, gradients


def _relevant_nodes(order: Sequence[Operation], targets: Set[Operation]) -> Set[Operation]:
    """Nodes of ``order`` that depend on at least one of ``targets``."""
    relevant: Set[Operation] = set()
    for op in order:
        if op in targets or any(inp in relevant for inp in op.inputs):
            relevant.add(op)
    return relevant


def grad(
    objective: Operation,
    wrt: Union[Operation, Sequence[Operation]],
    registry: Optional[GradientRegistry] = None,
) -> List[Operation]:
    """
    Build nodes computing d(objective)/d(w) for every ``w`` in ``wrt``.

    Args:
        objective: Scalar-volume, floating-point node to differentiate.
        wrt: Node(s) to differentiate with respect to.
        registry: Gradient rules to use (default: ``gradients``).

    Returns:
        One gradient node per entry of ``wrt``, each with that entry's type.
        Entries the objective does not depend on get a zero constant.

    Raises:
        ShapeError: if the objective is not a single floating-point element,
            or a rule returns a contribution of the wrong type.
        UnsupportedOperationError: if a node on a differentiated path has no rule.
    """
    if registry is None:
        registry = gradients
    if isinstance(wrt, Operation):
        wrt = [wrt]
    wrt = list(wrt)

    if objective.volume != 1:
        raise ShapeError(f"Objective must contain exactly one element, got {objective.tensor_type}.")
    if not objective.element_type.is_floating:
        raise ShapeError(f"Objective must be floating-point, got {objective.tensor_type}.")
    graph = objective.graph
    for op in wrt:
        if op.graph is not graph:
            raise ValueError(f"`{op.name}` belongs to a different graph than the objective.")

    order = topological_order([objective])
    relevant = _relevant_nodes(order, set(wrt))

    adjoints: Dict[Operation, Operation] = {}
    if objective in relevant:
        adjoints[objective] = graph.constant(objective.shape, objective.element_type, 1)

    for op in reversed(order):
        if op.is_leaf or op not in adjoints:
            continue
        rule = registry.lookup(op.kind)
        if not registry.is_differentiable(op.kind):
            continue
        contributions = list(rule(op, adjoints[op]))
        if len(contributions) != len(op.inputs):
            raise ValueError(
                f"Gradient rule for `{op.kind}` returned {len(contributions)} entries for {len(op.inputs)} inputs."
            )
        for inp, contribution in zip(op.inputs, contributions):
            if contribution is None or inp not in relevant:
                continue
            if contribution.tensor_type != inp.tensor_type:
                raise ShapeError(
                    f"Gradient of `{op.kind}` for `{inp.name}` is {contribution.tensor_type}, expected {inp.tensor_type}."
                )
            if inp in adjoints:
                adjoints[inp] = adjoints[inp] + contribution
            else:
                adjoints[inp] = contribution

    results = []
    for op in wrt:
        if op in adjoints:
            results.append(adjoints[op])
        else:
            results.append(graph.constant(op.shape, op.element_type))

    logger.debug(
        "Built gradients of %s for %d node(s): %d relevant nodes, graph now has %d nodes",
        objective.name,
        len(wrt),
        len(relevant),
        len(graph),
    )
    return results


__all__ = ["grad"]
