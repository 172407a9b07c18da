"""
Layout operations: reshape, transpose, slice, pad, repeat and broadcast.

``slice`` here is the graph operation; this module never needs the builtin.
"""

from __future__ import annotations

from typing import Any, Dict, Iterable, Mapping, Optional, Sequence

import numpy as np

from tiny_opgraph.errors import ShapeError
from tiny_opgraph.graph.ir import Operation, expect_arity, register_operation
from tiny_opgraph.types import TensorType, normalize_shape


def _int_tuple(kind: str, name: str, value: Any) -> tuple:
    if isinstance(value, (int, np.integer)):
        value = (value,)
    try:
        items = tuple(value)
    except TypeError:
        raise ShapeError(f"`{kind}` expects `{name}` to be a sequence of ints, got {value!r}.") from None
    for item in items:
        if isinstance(item, bool) or not isinstance(item, (int, np.integer)):
            raise ShapeError(f"`{kind}` expects `{name}` to be a sequence of ints, got {value!r}.")
    return tuple(int(v) for v in items)


# -- reshape ---------------------------------------------------------------------


def _normalize_reshape(types: Sequence[TensorType], params: Dict[str, Any]) -> Dict[str, Any]:
    expect_arity("reshape", types, 1)
    if "shape" not in params:
        raise ShapeError("`reshape` requires a `shape` parameter.")
    dims = list(_int_tuple("reshape", "shape", params["shape"]))
    unknown = [i for i, d in enumerate(dims) if d == -1]
    if len(unknown) > 1:
        raise ShapeError("`reshape` accepts at most one -1 dimension.")
    if unknown:
        known = int(np.prod([d for d in dims if d != -1], dtype=np.int64))
        volume = types[0].volume
        if known == 0 or volume % known:
            raise ShapeError(f"Cannot reshape {types[0]} to {tuple(dims)}.")
        dims[unknown[0]] = volume // known
    return {"shape": normalize_shape(dims)}


def _infer_reshape(types: Sequence[TensorType], params: Mapping[str, Any]) -> TensorType:
    (src,) = types
    out = TensorType(src.element_type, params["shape"])
    if out.volume != src.volume:
        raise ShapeError(f"Cannot reshape {src} to {list(out.shape)}: volumes differ.")
    return out


# -- transpose -------------------------------------------------------------------


def _normalize_transpose(types: Sequence[TensorType], params: Dict[str, Any]) -> Dict[str, Any]:
    expect_arity("transpose", types, 1)
    order = params.get("order")
    if order is None:
        order = tuple(reversed(range(types[0].rank)))
    return {"order": _int_tuple("transpose", "order", order)}


def _infer_transpose(types: Sequence[TensorType], params: Mapping[str, Any]) -> TensorType:
    (src,) = types
    order = params["order"]
    if sorted(order) != list(range(src.rank)):
        raise ShapeError(f"{order} is not a permutation of the axes of {src}.")
    return TensorType(src.element_type, tuple(src.shape[axis] for axis in order))


# -- slice -----------------------------------------------------------------------


def _normalize_slice(types: Sequence[TensorType], params: Dict[str, Any]) -> Dict[str, Any]:
    expect_arity("slice", types, 1)
    return {
        "start": _int_tuple("slice", "start", params.get("start", ())),
        "stop": _int_tuple("slice", "stop", params.get("stop", ())),
    }


def _infer_slice(types: Sequence[TensorType], params: Mapping[str, Any]) -> TensorType:
    (src,) = types
    start, stop = params["start"], params["stop"]
    if len(start) != src.rank or len(stop) != src.rank:
        raise ShapeError(f"`slice` needs one start/stop per axis of {src}.")
    for lo, hi, dim in zip(start, stop, src.shape):
        if not 0 <= lo < hi <= dim:
            raise ShapeError(f"Invalid slice [{lo}:{hi}] for an axis of size {dim}.")
    return TensorType(src.element_type, tuple(hi - lo for lo, hi in zip(start, stop)))


# -- pad -------------------------------------------------------------------------


def _normalize_pad(types: Sequence[TensorType], params: Dict[str, Any]) -> Dict[str, Any]:
    expect_arity("pad", types, 1)
    rank = types[0].rank
    before = _int_tuple("pad", "before", params.get("before", (0,) * rank))
    after = _int_tuple("pad", "after", params.get("after", (0,) * rank))
    return {"before": before, "after": after}


def _infer_pad(types: Sequence[TensorType], params: Mapping[str, Any]) -> TensorType:
    (src,) = types
    before, after = params["before"], params["after"]
    if len(before) != src.rank or len(after) != src.rank:
        raise ShapeError(f"`pad` needs one before/after entry per axis of {src}.")
    if any(p < 0 for p in before + after):
        raise ShapeError("Padding amounts must be non-negative.")
    return TensorType(src.element_type, tuple(b + d + a for b, d, a in zip(before, src.shape, after)))


# -- repeat ----------------------------------------------------------------------


def _normalize_repeat(types: Sequence[TensorType], params: Dict[str, Any]) -> Dict[str, Any]:
    expect_arity("repeat", types, 1)
    repetitions = params.get("repetitions")
    if isinstance(repetitions, bool) or not isinstance(repetitions, (int, np.integer)):
        raise ShapeError(f"`repeat` expects an integer `repetitions`, got {repetitions!r}.")
    return {"repetitions": int(repetitions)}


def _infer_repeat(types: Sequence[TensorType], params: Mapping[str, Any]) -> TensorType:
    (src,) = types
    repetitions = params["repetitions"]
    if repetitions < 1:
        raise ShapeError("`repeat` needs at least one repetition.")
    return TensorType(src.element_type, (repetitions,) + src.shape)


# -- broadcast -------------------------------------------------------------------


def _normalize_broadcast(types: Sequence[TensorType], params: Dict[str, Any]) -> Dict[str, Any]:
    expect_arity("broadcast", types, 1)
    if "shape" not in params:
        raise ShapeError("`broadcast` requires a `shape` parameter.")
    return {"shape": normalize_shape(params["shape"])}


def _infer_broadcast(types: Sequence[TensorType], params: Mapping[str, Any]) -> TensorType:
    (src,) = types
    target = params["shape"]
    try:
        result = np.broadcast_shapes(src.shape, target)
    except ValueError:
        raise ShapeError(f"Cannot broadcast {src} to {list(target)}.") from None
    if tuple(result) != tuple(target):
        raise ShapeError(f"Cannot broadcast {src} to {list(target)}.")
    return TensorType(src.element_type, target)


register_operation("reshape", _infer_reshape, _normalize_reshape)
register_operation("transpose", _infer_transpose, _normalize_transpose)
register_operation("slice", _infer_slice, _normalize_slice)
register_operation("pad", _infer_pad, _normalize_pad)
register_operation("repeat", _infer_repeat, _normalize_repeat)
register_operation("broadcast", _infer_broadcast, _normalize_broadcast)


def reshape(x: Operation, shape: Iterable[int]) -> Operation:
    return x.graph.apply("reshape", [x], {"shape": shape})


def transpose(x: Operation, order: Optional[Iterable[int]] = None) -> Operation:
    return x.graph.apply("transpose", [x], {"order": order})


def slice(x: Operation, start: Iterable[int], stop: Iterable[int]) -> Operation:
    return x.graph.apply("slice", [x], {"start": start, "stop": stop})


def pad(x: Operation, before: Iterable[int], after: Iterable[int]) -> Operation:
    return x.graph.apply("pad", [x], {"before": before, "after": after})


def repeat(x: Operation, repetitions: int) -> Operation:
    return x.graph.apply("repeat", [x], {"repetitions": repetitions})


def broadcast_to(x: Operation, shape: Iterable[int]) -> Operation:
    return x.graph.apply("broadcast", [x], {"shape": shape})


__all__ = ["broadcast_to", "pad", "repeat", "reshape", "slice", "transpose"]
