from __future__ import annotations

import numpy as np
import pytest

from tiny_opgraph import Buffer, DataType, Graph, compile, compile_plan, evaluate, kernels, ops
from tiny_opgraph.backends import Device, KernelRegistry
from tiny_opgraph.errors import BufferSizeMismatchError, UnboundPlaceholderError, UnsupportedOperationError
from tiny_opgraph.schedule import plan_summary
from tiny_opgraph.types import TensorType


def _read(buf: Buffer, shape, element_type=DataType.FLOAT32) -> np.ndarray:
    return buf.to_array(TensorType(element_type, shape))


def test_end_to_end_arithmetic_example(debug_plans) -> None:
    graph = Graph()
    a = graph.placeholder((3, 3))
    b = graph.placeholder((3, 3))
    c = graph.constant((3, 3), DataType.FLOAT32, np.full((3, 3), 2.0))
    plan = compile_plan((a + b) * c)

    (result,) = plan.execute(
        {
            a: Buffer.from_array(np.ones((3, 3)), DataType.FLOAT32),
            b: Buffer.from_array(np.tile([1.0, 2.0, 3.0], (3, 1)), DataType.FLOAT32),
        }
    )
    np.testing.assert_array_equal(_read(result, (3, 3)), [[4, 6, 8], [4, 6, 8], [4, 6, 8]])


def test_plan_reuse_with_new_bindings(debug_plans) -> None:
    graph = Graph()
    a = graph.placeholder((3,))
    b = graph.placeholder((3,))
    c = graph.constant((3,), DataType.FLOAT32, [2.0, 2.0, 2.0])
    plan = compile_plan((a + b) * c)

    (first,) = plan.execute({a: np.array([1.0, 1.0, 1.0]), b: np.array([1.0, 1.0, 1.0])})
    np.testing.assert_array_equal(_read(first, (3,)), [4.0, 4.0, 4.0])

    (second,) = plan.execute({a: np.array([1.0, 2.0, 3.0]), b: np.array([1.0, 1.0, 1.0])})
    np.testing.assert_array_equal(_read(second, (3,)), [4.0, 6.0, 8.0])
    # fresh output buffers per call
    np.testing.assert_array_equal(_read(first, (3,)), [4.0, 4.0, 4.0])


def test_reused_plan_matches_single_shot_evaluation(rng, debug_plans) -> None:
    graph = Graph()
    x = graph.placeholder((4, 3))
    w = graph.variable((3, 3), data=rng.normal(size=(3, 3)))
    h = x
    for _ in range(3):
        h = ops.exp((h @ w) * 0.25) - h
    outputs = [h, ops.softmax(h).sum([1]), ops.max_element(h, [0])]

    plan = compile_plan(outputs)
    assert plan.meta["reused_slots"] > 0

    for _ in range(4):
        value = rng.normal(size=(4, 3)).astype(np.float32)
        w.value.set(rng.normal(size=(3, 3)).astype(np.float32))
        got = plan.execute({x: value})
        expected = evaluate(outputs, {x: value})
        for op, buf, ref in zip(outputs, got, expected):
            np.testing.assert_allclose(
                buf.to_array(op.tensor_type), ref.to_array(op.tensor_type), rtol=1e-6, atol=1e-6
            )

    plan.release()
    assert len(plan.storage) == 0
    again = plan.execute({x: value})[0]
    np.testing.assert_allclose(again.to_array(h.tensor_type), expected[0].to_array(h.tensor_type), rtol=1e-6, atol=1e-6)


def test_variables_are_read_fresh_on_every_call() -> None:
    graph = Graph()
    w = graph.variable((2,), data=[1.0, 2.0])
    plan = compile_plan(w * w)

    np.testing.assert_array_equal(_read(plan.execute()[0], (2,)), [1.0, 4.0])
    w.value.set(np.array([3.0, 4.0], dtype=np.float32))
    np.testing.assert_array_equal(_read(plan.execute()[0], (2,)), [9.0, 16.0])
    # bindings override the variable's own buffer
    (bound,) = plan.execute({w: np.array([5.0, 5.0])})
    np.testing.assert_array_equal(_read(bound, (2,)), [25.0, 25.0])


def test_unbound_placeholder_raises_before_running() -> None:
    graph = Graph()
    x = graph.placeholder((2,))
    plan = compile_plan(-x)
    with pytest.raises(UnboundPlaceholderError):
        plan.execute()
    assert plan.profiler.snapshot().kernel_calls == {}


def test_binding_size_mismatch() -> None:
    graph = Graph()
    x = graph.placeholder((2,))
    plan = compile_plan(-x)
    with pytest.raises(BufferSizeMismatchError):
        plan.execute({x: Buffer(4)})


def test_bindings_must_target_leaves() -> None:
    graph = Graph()
    x = graph.placeholder((2,))
    y = -x
    plan = compile_plan(y)
    with pytest.raises(ValueError):
        plan.execute({x: np.zeros(2), y: np.zeros(2)})


def test_extra_bindings_are_ignored() -> None:
    graph = Graph()
    x = graph.placeholder((2,))
    other = graph.placeholder((5,))
    (result,) = compile_plan(-x).execute({x: np.array([1.0, -2.0]), other: np.zeros(5)})
    np.testing.assert_array_equal(_read(result, (2,)), [-1.0, 2.0])


def test_multiple_and_duplicate_outputs() -> None:
    graph = Graph()
    x = graph.variable((2,), data=[1.0, 2.0])
    y = x + x
    z = y * x
    results = compile_plan([z, y, y, x]).execute()

    assert len(results) == 4
    np.testing.assert_array_equal(_read(results[0], (2,)), [2.0, 8.0])
    np.testing.assert_array_equal(_read(results[1], (2,)), [2.0, 4.0])
    np.testing.assert_array_equal(_read(results[2], (2,)), [2.0, 4.0])
    assert results[1] is not results[2]
    # leaf outputs are copies, not the variable's own buffer
    assert results[3] is not x.value
    assert not results[3].readonly
    np.testing.assert_array_equal(_read(results[3], (2,)), [1.0, 2.0])


def test_caller_supplied_output_buffers() -> None:
    graph = Graph()
    x = graph.variable((2,), data=[1.0, 2.0])
    y = x * 3
    target = Buffer(8)
    (result,) = compile_plan(y).execute(outputs=[target])
    assert result is target
    np.testing.assert_array_equal(_read(target, (2,)), [3.0, 6.0])

    with pytest.raises(BufferSizeMismatchError):
        compile_plan(y).execute(outputs=[Buffer(4)])
    with pytest.raises(ValueError):
        compile_plan(y).execute(outputs=[])


def test_evaluate_single_and_many() -> None:
    graph = Graph()
    x = graph.constant((2, 2), DataType.FLOAT32, [[1.0, 2.0], [3.0, 4.0]])
    single = evaluate(x @ x)
    assert isinstance(single, Buffer)
    np.testing.assert_allclose(_read(single, (2, 2)), [[7.0, 10.0], [15.0, 22.0]])

    total, trace = evaluate([x.sum(), x.transpose()])
    assert float(_read(total, ())) == pytest.approx(10.0)
    np.testing.assert_array_equal(_read(trace, (2, 2)), [[1.0, 3.0], [2.0, 4.0]])


def test_compile_alias_and_validation() -> None:
    graph = Graph()
    x = graph.placeholder((2,))
    assert compile is compile_plan
    with pytest.raises(ValueError):
        compile_plan([])
    with pytest.raises(ValueError):
        compile_plan([x, Graph().placeholder((2,))])


def test_missing_kernel_fails_at_compile_time() -> None:
    graph = Graph()
    x = graph.placeholder((2,))
    registry = KernelRegistry()
    with pytest.raises(UnsupportedOperationError):
        compile_plan(-x, registry=registry)


def test_device_overrides_and_custom_registry() -> None:
    graph = Graph()
    x = graph.variable((2,), data=[1.0, 2.0])
    y = -x
    z = y + x

    calls = []
    registry = KernelRegistry()
    host_neg = kernels.lookup("neg", Device.HOST)

    def recording_neg(op, inputs, output) -> None:
        calls.append(op.kind)
        host_neg(op, inputs, output)

    registry.register("neg", Device.ACCELERATOR, recording_neg)
    registry.register("add", Device.HOST, kernels.lookup("add", Device.HOST))

    plan = compile_plan(z, device="host", overrides={y: "accelerator"}, registry=registry)
    assert [step.device for step in plan] == [Device.ACCELERATOR, Device.HOST]

    (result,) = plan.execute()
    assert calls == ["neg"]
    np.testing.assert_array_equal(_read(result, (2,)), [0.0, 0.0])


def test_integer_arithmetic() -> None:
    graph = Graph()
    a = graph.constant((4,), DataType.INT32, [7, -7, 9, 2])
    b = graph.constant((4,), DataType.INT32, [2, 2, 3, 5])
    quotient, power = evaluate([a / b, b ** 2])
    assert _read(quotient, (4,), DataType.INT32).tolist() == [3, -3, 3, 0]
    assert _read(power, (4,), DataType.INT32).tolist() == [4, 4, 9, 25]


def test_plan_summary_counts_steps() -> None:
    graph = Graph()
    a = graph.placeholder((3,))
    b = graph.placeholder((3,))
    plan = compile_plan((a + b) * (a + b), device="host")

    summary = plan_summary(plan)
    assert summary["steps_per_kind"] == {"add": 1, "mul": 1}
    assert summary["steps_per_device"] == {"host": 2}
    assert summary["num_steps"] == 2
    assert "order" not in summary
