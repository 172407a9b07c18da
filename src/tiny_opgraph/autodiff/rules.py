"""
Built-in gradient rules.

Every rule is expressed with ordinary graph operations, so gradients can be
compiled, executed on any backend and differentiated again.
"""

from __future__ import annotations

from typing import List, Optional, Tuple

import numpy as np

from tiny_opgraph.graph import ops
from tiny_opgraph.graph.ir import Operation

from .registry import GradientRegistry, gradients

NON_DIFFERENTIABLE = ("lt", "lte", "gt", "gte", "eq", "neq", "sgn", "argmin", "uniform")


def unbroadcast(grad: Operation, shape: Tuple[int, ...]) -> Operation:
    """Sum ``grad`` over the axes numpy broadcasting added or stretched to reach its shape."""
    if grad.shape == tuple(shape):
        return grad
    lead = grad.rank - len(shape)
    axes = list(range(lead))
    for i, dim in enumerate(shape):
        if dim == 1 and grad.shape[lead + i] != 1:
            axes.append(lead + i)
    reduced = ops.sum(grad, axes) if axes else grad
    if reduced.shape != tuple(shape):
        reduced = ops.reshape(reduced, shape)
    return reduced


def _add(op: Operation, g: Operation) -> List[Optional[Operation]]:
    a, b = op.inputs
    return [unbroadcast(g, a.shape), unbroadcast(g, b.shape)]


def _sub(op: Operation, g: Operation) -> List[Optional[Operation]]:
    a, b = op.inputs
    return [unbroadcast(g, a.shape), unbroadcast(-g, b.shape)]


def _mul(op: Operation, g: Operation) -> List[Optional[Operation]]:
    a, b = op.inputs
    return [unbroadcast(g * b, a.shape), unbroadcast(g * a, b.shape)]


def _div(op: Operation, g: Operation) -> List[Optional[Operation]]:
    a, b = op.inputs
    return [unbroadcast(g / b, a.shape), unbroadcast(-(g * a) / (b * b), b.shape)]


def _pow(op: Operation, g: Operation) -> List[Optional[Operation]]:
    a, b = op.inputs
    da = g * b * a ** (b - 1)
    db = g * op * ops.log(a)
    return [unbroadcast(da, a.shape), unbroadcast(db, b.shape)]


def _select(op: Operation, g: Operation) -> List[Optional[Operation]]:
    # max/min: each operand receives the gradient where it equals the result.
    a, b = op.inputs
    return [unbroadcast(ops.eq(a, op) * g, a.shape), unbroadcast(ops.eq(b, op) * g, b.shape)]


def _neg(op: Operation, g: Operation) -> List[Optional[Operation]]:
    return [-g]


def _abs(op: Operation, g: Operation) -> List[Optional[Operation]]:
    return [g * ops.sgn(op.inputs[0])]


def _exp(op: Operation, g: Operation) -> List[Optional[Operation]]:
    return [g * op]


def _log(op: Operation, g: Operation) -> List[Optional[Operation]]:
    return [g / op.inputs[0]]


def _sqrt(op: Operation, g: Operation) -> List[Optional[Operation]]:
    return [g / (op * 2)]


def _matmul(op: Operation, g: Operation) -> List[Optional[Operation]]:
    a, b = op.inputs
    return [ops.matmul(g, ops.transpose(b)), ops.matmul(ops.transpose(a), g)]


def _sum(op: Operation, g: Operation) -> List[Optional[Operation]]:
    (x,) = op.inputs
    axes = op.params["axes"]
    kept = tuple(1 if i in axes else dim for i, dim in enumerate(x.shape))
    return [ops.broadcast_to(ops.reshape(g, kept), x.shape)]


def _max_element(op: Operation, g: Operation) -> List[Optional[Operation]]:
    # Every element equal to its reduced maximum receives the gradient.
    (x,) = op.inputs
    axes = op.params["axes"]
    kept = tuple(1 if i in axes else dim for i, dim in enumerate(x.shape))
    peak = ops.broadcast_to(ops.reshape(op, kept), x.shape)
    return [ops.eq(x, peak) * ops.broadcast_to(ops.reshape(g, kept), x.shape)]


def _reshape(op: Operation, g: Operation) -> List[Optional[Operation]]:
    return [ops.reshape(g, op.inputs[0].shape)]


def _transpose(op: Operation, g: Operation) -> List[Optional[Operation]]:
    order = op.params["order"]
    inverse = [0] * len(order)
    for i, axis in enumerate(order):
        inverse[axis] = i
    return [ops.transpose(g, inverse)]


def _slice(op: Operation, g: Operation) -> List[Optional[Operation]]:
    (x,) = op.inputs
    after = [dim - stop for dim, stop in zip(x.shape, op.params["stop"])]
    return [ops.pad(g, op.params["start"], after)]


def _pad(op: Operation, g: Operation) -> List[Optional[Operation]]:
    (x,) = op.inputs
    before = op.params["before"]
    stop = [lo + dim for lo, dim in zip(before, x.shape)]
    return [ops.slice(g, before, stop)]


def _repeat(op: Operation, g: Operation) -> List[Optional[Operation]]:
    return [ops.sum(g, [0])]


def _broadcast(op: Operation, g: Operation) -> List[Optional[Operation]]:
    return [unbroadcast(g, op.inputs[0].shape)]


def _convolution(op: Operation, g: Operation) -> List[Optional[Operation]]:
    features, filters = op.inputs
    padding, stride = op.params["padding"], op.params["stride"]
    return [
        ops.convolution_features_grad(g, filters, features.shape, padding, stride),
        ops.convolution_filters_grad(g, features, filters.shape, padding, stride),
    ]


def _convolution_features_grad(op: Operation, g: Operation) -> List[Optional[Operation]]:
    parent_grad, filters = op.inputs
    padding, stride = op.params["padding"], op.params["stride"]
    return [
        ops.convolution(g, filters, padding, stride),
        ops.convolution_filters_grad(parent_grad, g, filters.shape, padding, stride),
    ]


def _convolution_filters_grad(op: Operation, g: Operation) -> List[Optional[Operation]]:
    parent_grad, features = op.inputs
    padding, stride = op.params["padding"], op.params["stride"]
    return [
        ops.convolution(features, g, padding, stride),
        ops.convolution_features_grad(parent_grad, g, features.shape, padding, stride),
    ]


def _maxpool(op: Operation, g: Operation) -> List[Optional[Operation]]:
    return [ops.maxpool_grad(g, op, op.inputs[0], op.params["dims"])]


def _maxpool_grad(op: Operation, g: Operation) -> List[Optional[Operation]]:
    # Linear in the routed gradient: gather ``g`` back from each window's
    # selected position. The selection itself is piecewise constant.
    parent_grad, pooled, features = op.inputs
    ph, pw = op.params["dims"]
    ones = op.graph.constant(pooled.shape, pooled.element_type, np.ones(pooled.shape))
    selected = ops.maxpool_grad(ones, pooled, features, (ph, pw)) * g
    batch, channels, out_h, out_w = pooled.shape
    if (out_h * ph, out_w * pw) != features.shape[2:]:
        selected = ops.slice(selected, (0, 0, 0, 0), (batch, channels, out_h * ph, out_w * pw))
    blocks = ops.reshape(selected, (batch, channels, out_h, ph, out_w, pw))
    return [ops.sum(blocks, [3, 5]), None, None]


def _softmax(op: Operation, g: Operation) -> List[Optional[Operation]]:
    return [ops.softmax_grad(g, op)]


def _last_axis_total(x: Operation) -> Operation:
    kept = x.shape[:-1] + (1,)
    return ops.broadcast_to(ops.reshape(ops.sum(x, [x.rank - 1]), kept), x.shape)


def _softmax_grad(op: Operation, g: Operation) -> List[Optional[Operation]]:
    # out = y * (u - sum(u * y)) for parent gradient u and softmax output y.
    parent_grad, y = op.inputs
    d_parent = ops.softmax_grad(g, y)
    d_y = g * (parent_grad - _last_axis_total(parent_grad * y)) - parent_grad * _last_axis_total(g * y)
    return [d_parent, d_y]


def register_builtin_gradients(registry: GradientRegistry = gradients) -> None:
    table = {
        "add": _add,
        "sub": _sub,
        "mul": _mul,
        "div": _div,
        "pow": _pow,
        "max": _select,
        "min": _select,
        "neg": _neg,
        "abs": _abs,
        "exp": _exp,
        "log": _log,
        "sqrt": _sqrt,
        "matmul": _matmul,
        "sum": _sum,
        "max_element": _max_element,
        "reshape": _reshape,
        "transpose": _transpose,
        "slice": _slice,
        "pad": _pad,
        "repeat": _repeat,
        "broadcast": _broadcast,
        "convolution": _convolution,
        "convolution_features_grad": _convolution_features_grad,
        "convolution_filters_grad": _convolution_filters_grad,
        "maxpool": _maxpool,
        "maxpool_grad": _maxpool_grad,
        "softmax": _softmax,
        "softmax_grad": _softmax_grad,
    }
    for kind, rule in table.items():
        registry.register(kind, rule)
    for kind in NON_DIFFERENTIABLE:
        registry.register_non_differentiable(kind)


__all__ = ["NON_DIFFERENTIABLE", "register_builtin_gradients", "unbroadcast"]
