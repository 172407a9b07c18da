"""
tiny-opgraph

Symbolic tensor operation graphs with structural memoization, reverse-mode
differentiation and compiled, buffer-reusing execution plans.
"""

from .errors import (
    BufferSizeMismatchError,
    OpGraphError,
    ShapeError,
    UnboundPlaceholderError,
    UnsupportedOperationError,
)
from .types import DataType, TensorType
from .buffer import Buffer
from .graph import Graph, Operation, list_operations, register_operation
from .graph import ops
from .backends import Device, kernels
from .runtime import evaluate
from .schedule import Plan, compile_plan
from .autodiff import grad, gradients
from .utils import config, logger

compile = compile_plan

__all__ = [
    "Buffer",
    "BufferSizeMismatchError",
    "DataType",
    "Device",
    "Graph",
    "OpGraphError",
    "Operation",
    "Plan",
    "ShapeError",
    "TensorType",
    "UnboundPlaceholderError",
    "UnsupportedOperationError",
    "compile",
    "compile_plan",
    "config",
    "evaluate",
    "grad",
    "gradients",
    "kernels",
    "list_operations",
    "logger",
    "ops",
    "register_operation",
]
