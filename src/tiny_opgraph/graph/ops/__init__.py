"""
Built-in operation kinds.

Importing this package registers the shape rule of every built-in kind. The
constructor functions are thin wrappers over :meth:`Graph.apply`.
"""

from . import basic, math, nnet, random
from .basic import broadcast_to, pad, repeat, reshape, slice, transpose
from .math import (
    abs,
    add,
    argmin,
    div,
    eq,
    exp,
    gt,
    gte,
    log,
    lt,
    lte,
    matmul,
    max,
    max_element,
    min,
    mul,
    neg,
    neq,
    pow,
    sgn,
    sqrt,
    sub,
    sum,
)
from .nnet import (
    convolution,
    convolution_features_grad,
    convolution_filters_grad,
    convolution_transpose,
    maxpool,
    maxpool_grad,
    softmax,
    softmax_grad,
)
from .random import uniform

__all__ = [
    "abs",
    "add",
    "argmin",
    "basic",
    "broadcast_to",
    "convolution",
    "convolution_features_grad",
    "convolution_filters_grad",
    "convolution_transpose",
    "div",
    "eq",
    "exp",
    "gt",
    "gte",
    "log",
    "lt",
    "lte",
    "math",
    "matmul",
    "max",
    "max_element",
    "maxpool",
    "maxpool_grad",
    "min",
    "mul",
    "neg",
    "neq",
    "nnet",
    "pad",
    "pow",
    "random",
    "repeat",
    "reshape",
    "sgn",
    "slice",
    "softmax",
    "softmax_grad",
    "sqrt",
    "sub",
    "sum",
    "transpose",
    "uniform",
]
