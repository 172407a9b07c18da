"""
Topological ordering of the subgraph reachable from a set of outputs.
"""

from __future__ import annotations

from typing import List, Sequence, Set

from .ir import Operation


def topological_order(outputs: Sequence[Operation]) -> List[Operation]:
    """
    Dependencies-first order of every node reachable from ``outputs``.

    Post-order DFS, visiting inputs left to right and outputs in the given
    order, so the result is deterministic for a fixed graph. Iterative to
    keep deep chains clear of the recursion limit.
    """
    order: List[Operation] = []
    visited: Set[Operation] = set()

    for root in outputs:
        if root in visited:
            continue
        visited.add(root)
        stack = [(root, iter(root.inputs))]
        while stack:
            node, pending = stack[-1]
            for child in pending:
                if child not in visited:
                    visited.add(child)
                    stack.append((child, iter(child.inputs)))
                    break
            else:
                stack.pop()
                order.append(node)
    return order


def consumers(order: Sequence[Operation]) -> dict:
    """Map each node in ``order`` to the nodes in ``order`` that read it (with repeats)."""
    users = {op: [] for op in order}
    for op in order:
        for inp in op.inputs:
            if inp in users:
                users[inp].append(op)
    return users
