"""
Operation graph: the node type, the arena that owns nodes, and the shape
rules of the built-in operation kinds.

- `Graph` and `Operation` (see `ir.py`)
- `topological_order` (see `topo.py`)
- Built-in kinds and their constructors (see `ops/`)
"""

from .ir import Graph, Operation, list_operations, register_operation
from .topo import topological_order
from . import ops
from . import topo

__all__ = [
    "Graph",
    "Operation",
    "list_operations",
    "ops",
    "register_operation",
    "topo",
    "topological_order",
]
