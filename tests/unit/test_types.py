from __future__ import annotations

import numpy as np
import pytest

from tiny_opgraph.errors import ShapeError
from tiny_opgraph.types import DataType, TensorType, normalize_shape


def test_tensor_type_volume_and_bytes() -> None:
    t = TensorType(DataType.FLOAT32, (2, 3))
    assert t.rank == 2
    assert t.volume == 6
    assert t.nbytes == 24
    assert str(t) == "float32[2, 3]"


def test_scalar_type_has_unit_volume() -> None:
    t = TensorType("int32", ())
    assert t.element_type is DataType.INT32
    assert t.volume == 1
    assert t.nbytes == 4


def test_zero_sized_dimension_is_allowed() -> None:
    assert TensorType(DataType.FLOAT32, (0, 5)).volume == 0


def test_element_type_coercion() -> None:
    assert DataType.coerce("float32") is DataType.FLOAT32
    assert DataType.coerce(np.int32) is DataType.INT32
    assert DataType.coerce(np.dtype("float32")) is DataType.FLOAT32
    assert DataType.FLOAT32.is_floating
    assert not DataType.INT32.is_floating
    with pytest.raises(ValueError):
        DataType.coerce("float64")


@pytest.mark.parametrize("shape", [(-1, 2), (2.5,), (True, 3), ("3",)])
def test_malformed_shapes_are_rejected(shape) -> None:
    with pytest.raises(ShapeError):
        normalize_shape(shape)


def test_types_compare_by_value() -> None:
    assert TensorType("float32", [2, 2]) == TensorType(DataType.FLOAT32, (2, 2))
    assert normalize_shape(4) == (4,)
    assert normalize_shape(np.array([2, 3])) == (2, 3)
