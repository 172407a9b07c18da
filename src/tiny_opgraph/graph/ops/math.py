"""
Elementwise arithmetic, comparisons, matmul and reductions.

Binary elementwise kinds follow numpy broadcasting. The public functions
accept Python scalars on either side and lift them to scalar constants of
the other operand's element type. Names mirror the operation kinds, so
``sum``/``max``/``min``/``abs``/``pow`` shadow the builtins in this module.
"""

from __future__ import annotations

from functools import partial
from typing import Any, Dict, Iterable, Mapping, Optional, Sequence, Tuple

import numpy as np

from tiny_opgraph.errors import ShapeError
from tiny_opgraph.graph.ir import Operation, expect_arity, register_operation
from tiny_opgraph.types import DataType, TensorType

ARITHMETIC_KINDS = ("add", "sub", "mul", "div", "pow", "max", "min")
COMPARISON_KINDS = ("lt", "lte", "gt", "gte", "eq", "neq")
UNARY_KINDS = ("neg", "abs", "sgn", "exp", "log", "sqrt")
REDUCTION_KINDS = ("sum", "max_element")


def broadcast_shapes(lhs: Tuple[int, ...], rhs: Tuple[int, ...]) -> Tuple[int, ...]:
    try:
        return tuple(int(d) for d in np.broadcast_shapes(lhs, rhs))
    except ValueError:
        raise ShapeError(f"Shapes {list(lhs)} and {list(rhs)} cannot be broadcast together.") from None


def _binary_rule(kind: str):
    def infer(types: Sequence[TensorType], params: Mapping[str, Any]) -> TensorType:
        expect_arity(kind, types, 2)
        lhs, rhs = types
        if lhs.element_type != rhs.element_type:
            raise ShapeError(
                f"`{kind}` operands differ in element type: {lhs.element_type.value} vs {rhs.element_type.value}."
            )
        return TensorType(lhs.element_type, broadcast_shapes(lhs.shape, rhs.shape))

    return infer


def _unary_rule(kind: str):
    def infer(types: Sequence[TensorType], params: Mapping[str, Any]) -> TensorType:
        expect_arity(kind, types, 1)
        return types[0]

    return infer


def _infer_matmul(types: Sequence[TensorType], params: Mapping[str, Any]) -> TensorType:
    expect_arity("matmul", types, 2)
    lhs, rhs = types
    if lhs.rank != 2 or rhs.rank != 2:
        raise ShapeError(f"`matmul` needs two matrices, got {lhs} and {rhs}.")
    if lhs.shape[1] != rhs.shape[0]:
        raise ShapeError(f"Inner dimensions do not match: {lhs} @ {rhs}.")
    if lhs.element_type != rhs.element_type:
        raise ShapeError(f"`matmul` operands differ in element type: {lhs} @ {rhs}.")
    return TensorType(lhs.element_type, (lhs.shape[0], rhs.shape[1]))


def _normalize_axes(kind: str, types: Sequence[TensorType], params: Dict[str, Any]) -> Dict[str, Any]:
    expect_arity(kind, types, 1)
    rank = types[0].rank
    axes = params.get("axes")
    if axes is None:
        return {"axes": tuple(range(rank))}
    if isinstance(axes, (int, np.integer)):
        axes = (axes,)
    resolved = []
    for axis in axes:
        if isinstance(axis, bool) or not isinstance(axis, (int, np.integer)):
            raise ShapeError(f"`{kind}` axes must be integers, got {axis!r}.")
        axis = int(axis)
        if not -rank <= axis < rank:
            raise ShapeError(f"Axis {axis} is out of range for rank {rank}.")
        resolved.append(axis % rank if rank else axis)
    if len(set(resolved)) != len(resolved):
        raise ShapeError(f"`{kind}` axes must be unique, got {tuple(axes)}.")
    return {"axes": tuple(sorted(resolved))}


def _infer_reduction(types: Sequence[TensorType], params: Mapping[str, Any]) -> TensorType:
    (src,) = types
    axes = params["axes"]
    return TensorType(src.element_type, tuple(d for i, d in enumerate(src.shape) if i not in axes))


def _normalize_argmin(types: Sequence[TensorType], params: Dict[str, Any]) -> Dict[str, Any]:
    expect_arity("argmin", types, 1)
    rank = types[0].rank
    axis = params.get("axis")
    if isinstance(axis, bool) or not isinstance(axis, (int, np.integer)):
        raise ShapeError(f"`argmin` needs an integer axis, got {axis!r}.")
    axis = int(axis)
    if not -rank <= axis < rank:
        raise ShapeError(f"Axis {axis} is out of range for rank {rank}.")
    return {"axis": axis % rank}


def _infer_argmin(types: Sequence[TensorType], params: Mapping[str, Any]) -> TensorType:
    (src,) = types
    shape = list(src.shape)
    shape[params["axis"]] = 1
    return TensorType(DataType.INT32, shape)


for _kind in ARITHMETIC_KINDS + COMPARISON_KINDS:
    register_operation(_kind, _binary_rule(_kind))
for _kind in UNARY_KINDS:
    register_operation(_kind, _unary_rule(_kind))
for _kind in REDUCTION_KINDS:
    register_operation(_kind, _infer_reduction, partial(_normalize_axes, _kind))
register_operation("matmul", _infer_matmul)
register_operation("argmin", _infer_argmin, _normalize_argmin)
del _kind


def _binary(kind: str, lhs: Any, rhs: Any) -> Operation:
    if isinstance(lhs, Operation):
        graph, element_type = lhs.graph, lhs.element_type
    elif isinstance(rhs, Operation):
        graph, element_type = rhs.graph, rhs.element_type
    else:
        raise TypeError(f"`{kind}` needs at least one Operation operand.")
    if not isinstance(lhs, Operation):
        lhs = graph.constant((), element_type, lhs)
    if not isinstance(rhs, Operation):
        rhs = graph.constant((), element_type, rhs)
    return graph.apply(kind, [lhs, rhs])


def add(lhs: Any, rhs: Any) -> Operation:
    return _binary("add", lhs, rhs)


def sub(lhs: Any, rhs: Any) -> Operation:
    return _binary("sub", lhs, rhs)


def mul(lhs: Any, rhs: Any) -> Operation:
    return _binary("mul", lhs, rhs)


def div(lhs: Any, rhs: Any) -> Operation:
    return _binary("div", lhs, rhs)


def pow(lhs: Any, rhs: Any) -> Operation:
    return _binary("pow", lhs, rhs)


def max(lhs: Any, rhs: Any) -> Operation:
    return _binary("max", lhs, rhs)


def min(lhs: Any, rhs: Any) -> Operation:
    return _binary("min", lhs, rhs)


def lt(lhs: Any, rhs: Any) -> Operation:
    return _binary("lt", lhs, rhs)


def lte(lhs: Any, rhs: Any) -> Operation:
    return _binary("lte", lhs, rhs)


def gt(lhs: Any, rhs: Any) -> Operation:
    return _binary("gt", lhs, rhs)


def gte(lhs: Any, rhs: Any) -> Operation:
    return _binary("gte", lhs, rhs)


def eq(lhs: Any, rhs: Any) -> Operation:
    return _binary("eq", lhs, rhs)


def neq(lhs: Any, rhs: Any) -> Operation:
    return _binary("neq", lhs, rhs)


def neg(x: Operation) -> Operation:
    return x.graph.apply("neg", [x])


def abs(x: Operation) -> Operation:
    return x.graph.apply("abs", [x])


def sgn(x: Operation) -> Operation:
    return x.graph.apply("sgn", [x])


def exp(x: Operation) -> Operation:
    return x.graph.apply("exp", [x])


def log(x: Operation) -> Operation:
    return x.graph.apply("log", [x])


def sqrt(x: Operation) -> Operation:
    return x.graph.apply("sqrt", [x])


def matmul(lhs: Operation, rhs: Operation) -> Operation:
    return lhs.graph.apply("matmul", [lhs, rhs])


def sum(x: Operation, axes: Optional[Iterable[int]] = None) -> Operation:
    """Sum over ``axes`` (all axes by default); reduced axes are dropped."""
    return x.graph.apply("sum", [x], {"axes": axes})


def max_element(x: Operation, axes: Optional[Iterable[int]] = None) -> Operation:
    """Maximum over ``axes`` (all axes by default); reduced axes are dropped."""
    return x.graph.apply("max_element", [x], {"axes": axes})


def argmin(x: Operation, axis: int) -> Operation:
    """Int32 index of the minimum along ``axis``, which is kept with size 1."""
    return x.graph.apply("argmin", [x], {"axis": axis})


__all__ = [
    "ARITHMETIC_KINDS",
    "COMPARISON_KINDS",
    "REDUCTION_KINDS",
    "UNARY_KINDS",
    "abs",
    "add",
    "argmin",
    "broadcast_shapes",
    "div",
    "eq",
    "exp",
    "gt",
    "gte",
    "log",
    "lt",
    "lte",
    "matmul",
    "max",
    "max_element",
    "min",
    "mul",
    "neg",
    "neq",
    "pow",
    "sgn",
    "sqrt",
    "sub",
    "sum",
]
