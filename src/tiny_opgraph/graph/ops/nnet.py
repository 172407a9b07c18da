"""
Neural-network primitives: 2-D convolution, max pooling and softmax, plus
the gradient kinds their derivatives are expressed with.

Layouts are NCHW for features and OIHW for filters. Convolution is
cross-correlation (filters are not flipped).
"""

from __future__ import annotations

from typing import Any, Dict, Iterable, Mapping, Sequence, Tuple, Union

import numpy as np

from tiny_opgraph.errors import ShapeError
from tiny_opgraph.graph.ir import Operation, expect_arity, register_operation
from tiny_opgraph.types import TensorType, normalize_shape

Pair = Tuple[int, int]
PairLike = Union[int, Iterable[int]]


def _pair(kind: str, name: str, value: PairLike, minimum: int) -> Pair:
    if isinstance(value, (int, np.integer)) and not isinstance(value, bool):
        value = (value, value)
    try:
        first, second = (int(v) for v in value)
    except (TypeError, ValueError):
        raise ShapeError(f"`{kind}` expects `{name}` to be an int or a pair of ints, got {value!r}.") from None
    if first < minimum or second < minimum:
        raise ShapeError(f"`{kind}` requires `{name}` >= {minimum}, got {(first, second)}.")
    return first, second


def conv_output_shape(features: Sequence[int], filters: Sequence[int], padding: Pair, stride: Pair) -> Tuple[int, ...]:
    """
    Output shape of a cross-correlation of ``features`` [B,C,H,W] with
    ``filters`` [O,C,kh,kw].

    Raises:
        ShapeError: on rank/channel mismatch or an empty spatial output.
    """
    if len(features) != 4 or len(filters) != 4:
        raise ShapeError(f"Convolution needs rank-4 features and filters, got {list(features)} and {list(filters)}.")
    batch, channels, height, width = features
    out_channels, in_channels, kh, kw = filters
    if channels != in_channels:
        raise ShapeError(f"Features have {channels} channels but filters expect {in_channels}.")
    out_h = (height + 2 * padding[0] - kh) // stride[0] + 1
    out_w = (width + 2 * padding[1] - kw) // stride[1] + 1
    if height + 2 * padding[0] < kh or width + 2 * padding[1] < kw or out_h < 1 or out_w < 1:
        raise ShapeError(
            f"Filters {list(filters)} do not fit features {list(features)} with padding {padding}."
        )
    return batch, out_channels, out_h, out_w


def _normalize_conv(kind: str):
    def normalize(types: Sequence[TensorType], params: Dict[str, Any]) -> Dict[str, Any]:
        expect_arity(kind, types, 2)
        resolved = {
            "padding": _pair(kind, "padding", params.get("padding", 0), 0),
            "stride": _pair(kind, "stride", params.get("stride", 1), 1),
        }
        for extra in ("features_shape", "filters_shape"):
            if extra in params:
                resolved[extra] = normalize_shape(params[extra])
        return resolved

    return normalize


def _same_element_type(kind: str, types: Sequence[TensorType]) -> None:
    first = types[0].element_type
    for t in types[1:]:
        if t.element_type != first:
            raise ShapeError(f"`{kind}` inputs differ in element type: {[str(x) for x in types]}.")


def _infer_convolution(types: Sequence[TensorType], params: Mapping[str, Any]) -> TensorType:
    features, filters = types
    _same_element_type("convolution", types)
    shape = conv_output_shape(features.shape, filters.shape, params["padding"], params["stride"])
    return TensorType(features.element_type, shape)


def _infer_features_grad(types: Sequence[TensorType], params: Mapping[str, Any]) -> TensorType:
    parent_grad, filters = types
    _same_element_type("convolution_features_grad", types)
    if "features_shape" not in params:
        raise ShapeError("`convolution_features_grad` requires `features_shape`.")
    features_shape = params["features_shape"]
    expected = conv_output_shape(features_shape, filters.shape, params["padding"], params["stride"])
    if tuple(parent_grad.shape) != expected:
        raise ShapeError(
            f"Gradient {parent_grad} does not match a convolution of {list(features_shape)} with {filters}."
        )
    return TensorType(parent_grad.element_type, features_shape)


def _infer_filters_grad(types: Sequence[TensorType], params: Mapping[str, Any]) -> TensorType:
    parent_grad, features = types
    _same_element_type("convolution_filters_grad", types)
    if "filters_shape" not in params:
        raise ShapeError("`convolution_filters_grad` requires `filters_shape`.")
    filters_shape = params["filters_shape"]
    expected = conv_output_shape(features.shape, filters_shape, params["padding"], params["stride"])
    if tuple(parent_grad.shape) != expected:
        raise ShapeError(
            f"Gradient {parent_grad} does not match a convolution of {features} with {list(filters_shape)}."
        )
    return TensorType(parent_grad.element_type, filters_shape)


def _normalize_pool(kind: str, arity: int):
    def normalize(types: Sequence[TensorType], params: Dict[str, Any]) -> Dict[str, Any]:
        expect_arity(kind, types, arity)
        if "dims" not in params:
            raise ShapeError(f"`{kind}` requires a `dims` parameter.")
        return {"dims": _pair(kind, "dims", params["dims"], 1)}

    return normalize


def pool_output_shape(features: Sequence[int], dims: Pair) -> Tuple[int, ...]:
    if len(features) != 4:
        raise ShapeError(f"Max pooling needs rank-4 features, got {list(features)}.")
    batch, channels, height, width = features
    out_h, out_w = height // dims[0], width // dims[1]
    if out_h < 1 or out_w < 1:
        raise ShapeError(f"Pool window {dims} is larger than features {list(features)}.")
    return batch, channels, out_h, out_w


def _infer_maxpool(types: Sequence[TensorType], params: Mapping[str, Any]) -> TensorType:
    (features,) = types
    return TensorType(features.element_type, pool_output_shape(features.shape, params["dims"]))


def _infer_maxpool_grad(types: Sequence[TensorType], params: Mapping[str, Any]) -> TensorType:
    parent_grad, pooled, features = types
    _same_element_type("maxpool_grad", types)
    expected = pool_output_shape(features.shape, params["dims"])
    if tuple(pooled.shape) != expected or parent_grad.shape != pooled.shape:
        raise ShapeError(
            f"`maxpool_grad` inputs are inconsistent: grad {parent_grad}, pooled {pooled}, features {features}."
        )
    return features


def _infer_softmax(types: Sequence[TensorType], params: Mapping[str, Any]) -> TensorType:
    expect_arity("softmax", types, 1)
    (src,) = types
    if src.rank < 1:
        raise ShapeError("`softmax` needs at least one axis.")
    if not src.element_type.is_floating:
        raise ShapeError(f"`softmax` needs a floating-point input, got {src}.")
    return src


def _infer_softmax_grad(types: Sequence[TensorType], params: Mapping[str, Any]) -> TensorType:
    expect_arity("softmax_grad", types, 2)
    parent_grad, output = types
    if parent_grad != output:
        raise ShapeError(f"`softmax_grad` inputs differ: {parent_grad} vs {output}.")
    return output


register_operation("convolution", _infer_convolution, _normalize_conv("convolution"))
register_operation(
    "convolution_features_grad", _infer_features_grad, _normalize_conv("convolution_features_grad")
)
register_operation(
    "convolution_filters_grad", _infer_filters_grad, _normalize_conv("convolution_filters_grad")
)
register_operation("maxpool", _infer_maxpool, _normalize_pool("maxpool", 1))
register_operation("maxpool_grad", _infer_maxpool_grad, _normalize_pool("maxpool_grad", 3))
register_operation("softmax", _infer_softmax)
register_operation("softmax_grad", _infer_softmax_grad)


def convolution(
    features: Operation, filters: Operation, padding: PairLike = 0, stride: PairLike = 1
) -> Operation:
    return features.graph.apply(
        "convolution", [features, filters], {"padding": padding, "stride": stride}
    )


def convolution_features_grad(
    parent_grad: Operation,
    filters: Operation,
    features_shape: Iterable[int],
    padding: PairLike = 0,
    stride: PairLike = 1,
) -> Operation:
    return parent_grad.graph.apply(
        "convolution_features_grad",
        [parent_grad, filters],
        {"features_shape": features_shape, "padding": padding, "stride": stride},
    )


def convolution_filters_grad(
    parent_grad: Operation,
    features: Operation,
    filters_shape: Iterable[int],
    padding: PairLike = 0,
    stride: PairLike = 1,
) -> Operation:
    return parent_grad.graph.apply(
        "convolution_filters_grad",
        [parent_grad, features],
        {"filters_shape": filters_shape, "padding": padding, "stride": stride},
    )


def convolution_transpose(
    features: Operation, filters: Operation, padding: PairLike = 0, stride: PairLike = 1
) -> Operation:
    """
    Transposed convolution of ``features`` [B,O,H,W] with ``filters`` [O,C,kh,kw].

    Expressed as the features-gradient of a forward convolution, so the
    result has shape [B,C,(H-1)*s-2p+kh, (W-1)*s-2p+kw].
    """
    pad = _pair("convolution_transpose", "padding", padding, 0)
    step = _pair("convolution_transpose", "stride", stride, 1)
    if features.rank != 4 or filters.rank != 4:
        raise ShapeError(f"`convolution_transpose` needs rank-4 operands, got {features} and {filters}.")
    batch, _, height, width = features.shape
    _, in_channels, kh, kw = filters.shape
    out_shape = (
        batch,
        in_channels,
        (height - 1) * step[0] - 2 * pad[0] + kh,
        (width - 1) * step[1] - 2 * pad[1] + kw,
    )
    return convolution_features_grad(features, filters, out_shape, pad, step)


def maxpool(features: Operation, dims: PairLike) -> Operation:
    return features.graph.apply("maxpool", [features], {"dims": dims})


def maxpool_grad(parent_grad: Operation, pooled: Operation, features: Operation, dims: PairLike) -> Operation:
    return parent_grad.graph.apply("maxpool_grad", [parent_grad, pooled, features], {"dims": dims})


def softmax(x: Operation) -> Operation:
    """Softmax over the last axis."""
    return x.graph.apply("softmax", [x])


def softmax_grad(parent_grad: Operation, output: Operation) -> Operation:
    return parent_grad.graph.apply("softmax_grad", [parent_grad, output])


__all__ = [
    "conv_output_shape",
    "convolution",
    "convolution_features_grad",
    "convolution_filters_grad",
    "convolution_transpose",
    "maxpool",
    "maxpool_grad",
    "pool_output_shape",
    "softmax",
    "softmax_grad",
]
