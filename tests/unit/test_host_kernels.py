from __future__ import annotations

import numpy as np
import pytest

from tiny_opgraph import DataType, Graph, evaluate, ops


def _eval(op) -> np.ndarray:
    return evaluate(op).to_array(op.tensor_type)


def test_elementwise_and_comparisons() -> None:
    graph = Graph()
    a = graph.constant((3,), DataType.FLOAT32, [1.0, -2.0, 3.0])
    b = graph.constant((3,), DataType.FLOAT32, [2.0, -2.0, 1.0])

    np.testing.assert_allclose(_eval(a - b), [-1.0, 0.0, 2.0])
    np.testing.assert_allclose(_eval(a / b), [0.5, 1.0, 3.0])
    np.testing.assert_allclose(_eval(ops.max(a, b)), [2.0, -2.0, 3.0])
    np.testing.assert_allclose(_eval(ops.min(a, b)), [1.0, -2.0, 1.0])
    np.testing.assert_array_equal(_eval(ops.lt(a, b)), [1.0, 0.0, 0.0])
    np.testing.assert_array_equal(_eval(ops.lte(a, b)), [1.0, 1.0, 0.0])
    np.testing.assert_array_equal(_eval(ops.gt(a, b)), [0.0, 0.0, 1.0])
    np.testing.assert_array_equal(_eval(ops.gte(a, b)), [0.0, 1.0, 1.0])
    np.testing.assert_array_equal(_eval(ops.eq(a, b)), [0.0, 1.0, 0.0])
    np.testing.assert_array_equal(_eval(ops.neq(a, b)), [1.0, 0.0, 1.0])
    np.testing.assert_array_equal(_eval(ops.sgn(a)), [1.0, -1.0, 1.0])
    np.testing.assert_allclose(_eval(ops.abs(a)), [1.0, 2.0, 3.0])
    np.testing.assert_allclose(_eval(ops.sqrt(ops.abs(a))), np.sqrt([1.0, 2.0, 3.0]), rtol=1e-6)
    np.testing.assert_allclose(_eval(ops.log(ops.exp(a))), [1.0, -2.0, 3.0], rtol=1e-5)


def test_reductions_and_layout() -> None:
    graph = Graph()
    x = graph.constant((2, 3), DataType.FLOAT32, np.arange(6).reshape(2, 3))

    np.testing.assert_array_equal(_eval(x.sum([0])), [3.0, 5.0, 7.0])
    np.testing.assert_array_equal(_eval(x.sum([1])), [3.0, 12.0])
    np.testing.assert_array_equal(_eval(x.transpose()), [[0, 3], [1, 4], [2, 5]])
    np.testing.assert_array_equal(_eval(x.reshape((3, 2))), [[0, 1], [2, 3], [4, 5]])
    np.testing.assert_array_equal(_eval(ops.slice(x, (0, 1), (2, 3))), [[1, 2], [4, 5]])
    np.testing.assert_array_equal(
        _eval(ops.pad(x, (1, 0), (0, 1))),
        [[0, 0, 0, 0], [0, 1, 2, 0], [3, 4, 5, 0]],
    )
    np.testing.assert_array_equal(_eval(ops.repeat(x, 2)), [np.arange(6).reshape(2, 3)] * 2)
    row = graph.constant((1, 3), DataType.FLOAT32, [[1.0, 2.0, 3.0]])
    np.testing.assert_array_equal(_eval(ops.broadcast_to(row, (2, 3))), [[1, 2, 3], [1, 2, 3]])


def test_convolution_matches_direct_loop(rng) -> None:
    x = rng.normal(size=(2, 3, 6, 5)).astype(np.float32)
    w = rng.normal(size=(4, 3, 3, 2)).astype(np.float32)
    graph = Graph()
    out = ops.convolution(
        graph.constant(x.shape, DataType.FLOAT32, x),
        graph.constant(w.shape, DataType.FLOAT32, w),
        padding=(1, 0),
        stride=(2, 1),
    )
    assert out.shape == (2, 4, 3, 4)

    padded = np.pad(x, ((0, 0), (0, 0), (1, 1), (0, 0)))
    expected = np.zeros(out.shape)
    for i in range(out.shape[2]):
        for j in range(out.shape[3]):
            window = padded[:, :, 2 * i : 2 * i + 3, j : j + 2]
            expected[:, :, i, j] = np.einsum("bckl,ockl->bo", window, w)
    np.testing.assert_allclose(_eval(out), expected, rtol=1e-4, atol=1e-4)


def test_convolution_transpose_is_adjoint_of_convolution(rng) -> None:
    x = rng.normal(size=(1, 2, 5, 5)).astype(np.float32)
    w = rng.normal(size=(3, 2, 3, 3)).astype(np.float32)
    g = rng.normal(size=(1, 3, 2, 2)).astype(np.float32)
    graph = Graph()
    xc = graph.constant(x.shape, DataType.FLOAT32, x)
    wc = graph.constant(w.shape, DataType.FLOAT32, w)
    gc = graph.constant(g.shape, DataType.FLOAT32, g)

    forward = _eval(ops.convolution(xc, wc, padding=0, stride=2))
    backward = _eval(ops.convolution_features_grad(gc, wc, x.shape, padding=0, stride=2))
    # <conv(x), g> == <x, conv^T(g)>
    assert float((forward * g).sum()) == pytest.approx(float((x * backward).sum()), rel=1e-4, abs=1e-4)


def test_maxpool_and_softmax() -> None:
    graph = Graph()
    x = graph.constant(
        (1, 1, 3, 4),
        DataType.FLOAT32,
        [[[[1, 2, 5, 0], [3, 4, 1, 1], [9, 9, 9, 9]]]],
    )
    pooled = ops.maxpool(x, 2)
    np.testing.assert_array_equal(_eval(pooled), [[[[4, 5]]]])

    logits = graph.constant((2, 3), DataType.FLOAT32, [[0.0, 0.0, 0.0], [1.0, 2.0, 3.0]])
    probs = _eval(ops.softmax(logits))
    np.testing.assert_allclose(probs.sum(axis=-1), [1.0, 1.0], rtol=1e-6)
    np.testing.assert_allclose(probs[0], [1 / 3] * 3, rtol=1e-6)
    np.testing.assert_allclose(probs[1], np.exp([1, 2, 3]) / np.exp([1, 2, 3]).sum(), rtol=1e-5)


def test_max_element_and_argmin() -> None:
    graph = Graph()
    x = graph.constant((2, 3), DataType.FLOAT32, [[5.0, 1.0, 3.0], [6.0, 7.0, 2.0]])

    assert float(_eval(ops.max_element(x))) == 7.0
    np.testing.assert_array_equal(_eval(ops.max_element(x, [0])), [6.0, 7.0, 3.0])
    np.testing.assert_array_equal(_eval(ops.max_element(x, [1])), [5.0, 7.0])

    row = graph.constant((5,), DataType.FLOAT32, [4.0, 2.0, 6.0, 1.0, 2.0])
    lowest = ops.argmin(row, 0)
    assert lowest.element_type is DataType.INT32
    np.testing.assert_array_equal(_eval(lowest), [3])
    np.testing.assert_array_equal(_eval(ops.argmin(x, 1)), [[1], [2]])
    np.testing.assert_array_equal(_eval(ops.argmin(x, 0)), [[0, 0, 1]])


def test_uniform_draws_fresh_reproducible_samples() -> None:
    graph = Graph()
    noise = ops.uniform(graph, (2, 50), seed=7)

    first, second = _eval(noise), _eval(noise)
    assert first.dtype == np.float32
    assert np.all((first > 0.0) & (first <= 1.0))
    assert not np.array_equal(first, second)

    replay = ops.uniform(Graph(), (2, 50), seed=7)
    np.testing.assert_array_equal(_eval(replay), first)
    assert not np.array_equal(_eval(ops.uniform(Graph(), (2, 50), seed=8)), first)
