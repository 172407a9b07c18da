from __future__ import annotations

import numpy as np
import pytest

from tiny_opgraph import Graph, ops
from tiny_opgraph.errors import BufferSizeMismatchError, ShapeError, UnsupportedOperationError
from tiny_opgraph.graph.ir import freeze, list_operations, register_operation
from tiny_opgraph.types import DataType, TensorType


def test_structurally_identical_nodes_are_shared() -> None:
    graph = Graph()
    a = graph.placeholder((3,))
    b = graph.placeholder((3,))

    first = a + b
    second = ops.add(a, b)
    assert first is second
    assert len(graph) == 3

    assert (a * b) is not first
    assert (b + a) is not first  # operand order is part of the key


def test_params_are_part_of_the_memo_key() -> None:
    graph = Graph()
    x = graph.placeholder((2, 3))

    assert x.sum() is x.sum(axes=[0, 1])
    assert x.sum([0]) is x.sum(axes=(0,))
    assert x.sum([0]) is not x.sum([1])
    assert x.transpose() is x.transpose((1, 0))
    assert x.reshape([3, -1]) is x.reshape((3, 2))


def test_equal_constants_are_merged_variables_are_not() -> None:
    graph = Graph()
    c1 = graph.constant((2,), DataType.FLOAT32, [1.0, 2.0])
    c2 = graph.constant((2,), "float32", np.array([1.0, 2.0]))
    c3 = graph.constant((2,), DataType.FLOAT32, [1.0, 3.0])
    assert c1 is c2
    assert c1 is not c3

    v1 = graph.variable((2,))
    v2 = graph.variable((2,))
    assert v1 is not v2
    assert graph.placeholder((2,)) is not graph.placeholder((2,))


def test_constant_validates_data() -> None:
    graph = Graph()
    with pytest.raises(ShapeError):
        graph.constant((2, 2), DataType.FLOAT32, [1.0, 2.0, 3.0])
    with pytest.raises(BufferSizeMismatchError):
        graph.constant((2,), DataType.FLOAT32, b"\x00" * 4)
    assert len(graph) == 0

    with pytest.raises(ShapeError):
        graph.constant((3, 3), DataType.FLOAT32, 2.0)
    assert len(graph) == 0

    single = graph.constant((1, 1), DataType.FLOAT32, 5.0)
    np.testing.assert_array_equal(single.numpy(), [[5.0]])
    assert single.value.readonly

    zeros = graph.constant((2, 2))
    np.testing.assert_array_equal(zeros.numpy(), np.zeros((2, 2)))
    assert graph.constant((2, 2), DataType.FLOAT32, np.zeros((2, 2))) is zeros


def test_placeholder_rejects_malformed_shape() -> None:
    graph = Graph()
    with pytest.raises(ShapeError):
        graph.placeholder((2, -1))


def test_failing_shape_rule_leaves_graph_untouched() -> None:
    graph = Graph()
    a = graph.placeholder((4, 5))
    b = graph.placeholder((6, 2))
    before = len(graph)

    with pytest.raises(ShapeError):
        a @ b
    assert len(graph) == before


def test_unknown_kind_is_unsupported() -> None:
    graph = Graph()
    x = graph.placeholder((1,))
    with pytest.raises(UnsupportedOperationError):
        graph.apply("fft", [x])


def test_nodes_from_different_graphs_do_not_mix() -> None:
    a = Graph().placeholder((2,))
    b = Graph().placeholder((2,))
    with pytest.raises(ValueError):
        a + b


def test_scalars_are_lifted_to_constants() -> None:
    graph = Graph()
    x = graph.placeholder((3,), DataType.INT32)

    y = 2 * x
    assert y.kind == "mul"
    lhs, rhs = y.inputs
    assert lhs.kind == "constant" and lhs.shape == () and lhs.element_type is DataType.INT32
    assert rhs is x
    assert (1 - x).inputs[0].kind == "constant"


def test_operation_metadata() -> None:
    graph = Graph()
    x = graph.placeholder((2, 3))
    y = -x
    assert y.name == f"neg_{y.index}"
    assert y.tensor_type == TensorType(DataType.FLOAT32, (2, 3))
    assert y.rank == 2 and y.volume == 6 and y.nbytes == 24
    assert not y.is_leaf and x.is_leaf
    assert y.inputs == (x,)
    assert graph.get_node(y.index) is y
    assert "neg" in repr(y)


def test_register_operation_extends_the_graph() -> None:
    def infer(types, params):
        return TensorType(types[0].element_type, (params["n"],) + types[0].shape)

    register_operation("tile_for_test", infer)
    try:
        graph = Graph()
        x = graph.placeholder((2,))
        y = graph.apply("tile_for_test", [x], {"n": 3})
        assert y.shape == (3, 2)
        assert graph.apply("tile_for_test", [x], {"n": 3}) is y
        assert "tile_for_test" in list_operations()
    finally:
        from tiny_opgraph.graph.ir import operations

        operations._defs.pop("tile_for_test", None)


def test_params_differing_only_in_type_are_distinct_nodes() -> None:
    def infer(types, params):
        return types[0]

    register_operation("scale_for_test", infer)
    try:
        graph = Graph()
        x = graph.placeholder((2,))
        flagged = graph.apply("scale_for_test", [x], {"flag": True})
        counted = graph.apply("scale_for_test", [x], {"flag": 1})
        weighted = graph.apply("scale_for_test", [x], {"flag": 1.0})
        assert len({flagged, counted, weighted}) == 3
        assert graph.apply("scale_for_test", [x], {"flag": (1, True)}) is not graph.apply(
            "scale_for_test", [x], {"flag": (1, 1)}
        )
        assert graph.apply("scale_for_test", [x], {"flag": 1}) is counted
    finally:
        from tiny_opgraph.graph.ir import operations

        operations._defs.pop("scale_for_test", None)


def test_freeze_makes_params_hashable() -> None:
    frozen = freeze({"b": [1, 2], "a": {"x": np.int64(3)}})
    assert frozen == (("a", (("x", 3),)), ("b", (1, 2)))
    hash(frozen)
    with pytest.raises(TypeError):
        freeze({"bad": {1, 2}})
