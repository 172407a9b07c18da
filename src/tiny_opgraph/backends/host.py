"""
Reference host kernels implemented with numpy.

Every kernel views its input Buffers through the input operations' types,
computes the result and copies it into the output Buffer (casting to the
output element type).
"""

from __future__ import annotations

import weakref
from typing import Callable, Dict, List

import numpy as np
from numpy.lib.stride_tricks import sliding_window_view

from tiny_opgraph.buffer import Buffer

from .registry import Device, KernelRegistry, kernels

_generators = weakref.WeakKeyDictionary()


def _arg(op, inputs: List[Buffer], i: int) -> np.ndarray:
    return inputs[i].view(op.inputs[i].tensor_type)


def _store(op, output: Buffer, result) -> None:
    np.copyto(output.view(op.tensor_type), result, casting="unsafe")


def _divide(a: np.ndarray, b: np.ndarray) -> np.ndarray:
    if np.issubdtype(a.dtype, np.integer):
        # Integer division truncates toward zero.
        with np.errstate(divide="ignore", invalid="ignore"):
            return np.fix(np.true_divide(a, b))
    return np.true_divide(a, b)


def _power(a: np.ndarray, b: np.ndarray) -> np.ndarray:
    if np.issubdtype(a.dtype, np.integer):
        return np.power(a.astype(np.float64), b)
    return np.power(a, b)


_BINARY: Dict[str, Callable[[np.ndarray, np.ndarray], np.ndarray]] = {
    "add": np.add,
    "sub": np.subtract,
    "mul": np.multiply,
    "div": _divide,
    "pow": _power,
    "max": np.maximum,
    "min": np.minimum,
    "lt": np.less,
    "lte": np.less_equal,
    "gt": np.greater,
    "gte": np.greater_equal,
    "eq": np.equal,
    "neq": np.not_equal,
}

_UNARY: Dict[str, Callable[[np.ndarray], np.ndarray]] = {
    "neg": np.negative,
    "abs": np.abs,
    "sgn": np.sign,
    "exp": np.exp,
    "log": np.log,
    "sqrt": np.sqrt,
}


def _binary_kernel(fn):
    def kernel(op, inputs: List[Buffer], output: Buffer) -> None:
        _store(op, output, fn(_arg(op, inputs, 0), _arg(op, inputs, 1)))

    return kernel


def _unary_kernel(fn):
    def kernel(op, inputs: List[Buffer], output: Buffer) -> None:
        with np.errstate(divide="ignore", invalid="ignore"):
            _store(op, output, fn(_arg(op, inputs, 0)))

    return kernel


def matmul(op, inputs: List[Buffer], output: Buffer) -> None:
    _store(op, output, np.matmul(_arg(op, inputs, 0), _arg(op, inputs, 1)))


def reduce_sum(op, inputs: List[Buffer], output: Buffer) -> None:
    x = _arg(op, inputs, 0)
    _store(op, output, np.sum(x, axis=tuple(op.params["axes"]), dtype=x.dtype))


def reduce_max(op, inputs: List[Buffer], output: Buffer) -> None:
    _store(op, output, np.max(_arg(op, inputs, 0), axis=tuple(op.params["axes"])))


def argmin(op, inputs: List[Buffer], output: Buffer) -> None:
    axis = op.params["axis"]
    _store(op, output, np.expand_dims(np.argmin(_arg(op, inputs, 0), axis=axis), axis))


def reshape(op, inputs: List[Buffer], output: Buffer) -> None:
    _store(op, output, _arg(op, inputs, 0).reshape(op.shape))


def transpose(op, inputs: List[Buffer], output: Buffer) -> None:
    _store(op, output, np.transpose(_arg(op, inputs, 0), op.params["order"]))


def slice_(op, inputs: List[Buffer], output: Buffer) -> None:
    index = tuple(slice(lo, hi) for lo, hi in zip(op.params["start"], op.params["stop"]))
    _store(op, output, _arg(op, inputs, 0)[index])


def pad(op, inputs: List[Buffer], output: Buffer) -> None:
    widths = list(zip(op.params["before"], op.params["after"]))
    _store(op, output, np.pad(_arg(op, inputs, 0), widths))


def repeat(op, inputs: List[Buffer], output: Buffer) -> None:
    _store(op, output, np.broadcast_to(_arg(op, inputs, 0), op.shape))


def broadcast(op, inputs: List[Buffer], output: Buffer) -> None:
    _store(op, output, np.broadcast_to(_arg(op, inputs, 0), op.shape))


def _windows(x: np.ndarray, kernel_hw, padding, stride) -> np.ndarray:
    """Strided [B, C, out_h, out_w, kh, kw] view over the zero-padded features."""
    ph, pw = padding
    sh, sw = stride
    padded = np.pad(x, ((0, 0), (0, 0), (ph, ph), (pw, pw)))
    return sliding_window_view(padded, tuple(kernel_hw), axis=(2, 3))[:, :, ::sh, ::sw]


def convolution(op, inputs: List[Buffer], output: Buffer) -> None:
    x, w = _arg(op, inputs, 0), _arg(op, inputs, 1)
    windows = _windows(x, w.shape[2:], op.params["padding"], op.params["stride"])
    _store(op, output, np.einsum("bchwij,ocij->bohw", windows, w))


def convolution_features_grad(op, inputs: List[Buffer], output: Buffer) -> None:
    g, w = _arg(op, inputs, 0), _arg(op, inputs, 1)
    batch, channels, height, width = op.params["features_shape"]
    ph, pw = op.params["padding"]
    sh, sw = op.params["stride"]
    _, _, out_h, out_w = g.shape
    kh, kw = w.shape[2:]
    grad = np.zeros((batch, channels, height + 2 * ph, width + 2 * pw), dtype=np.result_type(g, w))
    for i in range(kh):
        for j in range(kw):
            contrib = np.einsum("bohw,oc->bchw", g, w[:, :, i, j])
            grad[:, :, i : i + sh * out_h : sh, j : j + sw * out_w : sw] += contrib
    _store(op, output, grad[:, :, ph : ph + height, pw : pw + width])


def convolution_filters_grad(op, inputs: List[Buffer], output: Buffer) -> None:
    g, x = _arg(op, inputs, 0), _arg(op, inputs, 1)
    kernel_hw = op.params["filters_shape"][2:]
    windows = _windows(x, kernel_hw, op.params["padding"], op.params["stride"])
    _store(op, output, np.einsum("bchwij,bohw->ocij", windows, g))


def _pool_windows(x: np.ndarray, dims) -> np.ndarray:
    """[B, C, out_h, out_w, ph*pw] copy of the pooling windows (trailing rows/cols dropped)."""
    batch, channels, height, width = x.shape
    ph, pw = dims
    out_h, out_w = height // ph, width // pw
    trimmed = x[:, :, : out_h * ph, : out_w * pw]
    blocks = trimmed.reshape(batch, channels, out_h, ph, out_w, pw).transpose(0, 1, 2, 4, 3, 5)
    return blocks.reshape(batch, channels, out_h, out_w, ph * pw)


def maxpool(op, inputs: List[Buffer], output: Buffer) -> None:
    _store(op, output, _pool_windows(_arg(op, inputs, 0), op.params["dims"]).max(axis=-1))


def maxpool_grad(op, inputs: List[Buffer], output: Buffer) -> None:
    """Route each pooled gradient to the first maximal element of its window."""
    g, x = _arg(op, inputs, 0), _arg(op, inputs, 2)
    ph, pw = op.params["dims"]
    batch, channels, _, _ = x.shape
    windows = _pool_windows(x, (ph, pw))
    out_h, out_w = windows.shape[2:4]
    hits = np.arange(ph * pw) == windows.argmax(axis=-1)[..., None]
    routed = (hits * g[..., None]).reshape(batch, channels, out_h, out_w, ph, pw)
    grad = np.zeros(x.shape, dtype=g.dtype)
    grad[:, :, : out_h * ph, : out_w * pw] = routed.transpose(0, 1, 2, 4, 3, 5).reshape(
        batch, channels, out_h * ph, out_w * pw
    )
    _store(op, output, grad)


def softmax(op, inputs: List[Buffer], output: Buffer) -> None:
    x = _arg(op, inputs, 0)
    shifted = np.exp(x - x.max(axis=-1, keepdims=True))
    _store(op, output, shifted / shifted.sum(axis=-1, keepdims=True))


def softmax_grad(op, inputs: List[Buffer], output: Buffer) -> None:
    g, y = _arg(op, inputs, 0), _arg(op, inputs, 1)
    _store(op, output, y * (g - np.sum(g * y, axis=-1, keepdims=True)))


def uniform(op, inputs: List[Buffer], output: Buffer) -> None:
    """Fresh samples from (0, 1] on every call, from a stream seeded per node."""
    generator = _generators.get(op)
    if generator is None:
        generator = _generators[op] = np.random.default_rng(op.params["seed"])
    _store(op, output, 1.0 - generator.random(op.shape))


def register_host_kernels(registry: KernelRegistry = kernels) -> None:
    for kind, fn in _BINARY.items():
        registry.register(kind, Device.HOST, _binary_kernel(fn))
    for kind, fn in _UNARY.items():
        registry.register(kind, Device.HOST, _unary_kernel(fn))
    table = {
        "matmul": matmul,
        "sum": reduce_sum,
        "max_element": reduce_max,
        "argmin": argmin,
        "reshape": reshape,
        "transpose": transpose,
        "slice": slice_,
        "pad": pad,
        "repeat": repeat,
        "broadcast": broadcast,
        "convolution": convolution,
        "convolution_features_grad": convolution_features_grad,
        "convolution_filters_grad": convolution_filters_grad,
        "maxpool": maxpool,
        "maxpool_grad": maxpool_grad,
        "softmax": softmax,
        "softmax_grad": softmax_grad,
        "uniform": uniform,
    }
    for kind, kernel in table.items():
        registry.register(kind, Device.HOST, kernel)


__all__ = ["register_host_kernels"]
