from __future__ import annotations

import math
from dataclasses import dataclass
from enum import Enum
from typing import Any, Iterable, Tuple

import numpy as np

from tiny_opgraph.errors import ShapeError

Shape = Tuple[int, ...]


class DataType(Enum):
    """Element types a tensor may hold."""

    FLOAT32 = "float32"
    INT32 = "int32"

    @property
    def numpy(self) -> np.dtype:
        return np.dtype(self.value)

    @property
    def itemsize(self) -> int:
        return self.numpy.itemsize

    @property
    def is_floating(self) -> bool:
        return self.numpy.kind == "f"

    @classmethod
    def coerce(cls, value: Any) -> "DataType":
        if isinstance(value, DataType):
            return value
        try:
            return cls(np.dtype(value).name)
        except TypeError as exc:
            raise ValueError(f"Unknown element type: {value!r}") from exc
        except ValueError as exc:
            raise ValueError(f"Unsupported element type: {value!r}") from exc


def normalize_shape(shape: Iterable[Any]) -> Shape:
    """
    Convert ``shape`` into a tuple of non-negative Python ints.

    Raises:
        ShapeError: if a dimension is negative or not an integer.
    """
    if isinstance(shape, (int, np.integer)):
        shape = (shape,)
    dims = []
    for dim in shape:
        if isinstance(dim, bool) or not isinstance(dim, (int, np.integer)):
            raise ShapeError(f"Shape dimensions must be integers, got {dim!r} in {shape!r}.")
        if dim < 0:
            raise ShapeError(f"Shape dimensions must be non-negative, got {tuple(shape)!r}.")
        dims.append(int(dim))
    return tuple(dims)


@dataclass(frozen=True)
class TensorType:
    element_type: DataType
    shape: Shape

    def __post_init__(self) -> None:
        object.__setattr__(self, "element_type", DataType.coerce(self.element_type))
        object.__setattr__(self, "shape", normalize_shape(self.shape))

    @property
    def rank(self) -> int:
        return len(self.shape)

    @property
    def volume(self) -> int:
        return math.prod(self.shape)

    @property
    def nbytes(self) -> int:
        return self.volume * self.element_type.itemsize

    def __str__(self) -> str:
        return f"{self.element_type.value}{list(self.shape)}"
