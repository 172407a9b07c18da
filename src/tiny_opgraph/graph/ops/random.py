"""
Random sampling.

Sampling nodes have no inputs, so structural memoization would merge every
sample of the same shape. The ``seed`` parameter is part of the node's
identity: nodes with different seeds are distinct, and each node draws its
own reproducible stream of fresh samples on every execution.
"""

from __future__ import annotations

from typing import Any, Dict, Iterable, Mapping, Sequence

import numpy as np

from tiny_opgraph.errors import ShapeError
from tiny_opgraph.graph.ir import Graph, Operation, expect_arity, register_operation
from tiny_opgraph.types import DataType, TensorType, normalize_shape


def _normalize_uniform(types: Sequence[TensorType], params: Dict[str, Any]) -> Dict[str, Any]:
    expect_arity("uniform", types, 0)
    seed = params.get("seed")
    if isinstance(seed, bool) or not isinstance(seed, (int, np.integer)) or seed < 0:
        raise ShapeError(f"`uniform` needs a non-negative integer seed, got {seed!r}.")
    return {"shape": normalize_shape(params.get("shape", ())), "seed": int(seed)}


def _infer_uniform(types: Sequence[TensorType], params: Mapping[str, Any]) -> TensorType:
    return TensorType(DataType.FLOAT32, params["shape"])


register_operation("uniform", _infer_uniform, _normalize_uniform)


def uniform(graph: Graph, shape: Iterable[int], seed: int) -> Operation:
    """Float32 samples drawn uniformly from (0, 1]."""
    return graph.apply("uniform", [], {"shape": tuple(shape), "seed": seed})


__all__ = ["uniform"]
