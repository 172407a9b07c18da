from __future__ import annotations

import numpy as np

from tiny_opgraph import Graph, compile_plan
from tiny_opgraph.runtime.profiling import Profiler
from tiny_opgraph.utils.config import config


def test_profiler_records_stats() -> None:
    profiler = Profiler()

    profiler.record_memory(100)
    profiler.record_memory(50)  # should not reduce peak
    profiler.record_kernel("add", 1.5)
    profiler.record_kernel("add", 0.5)
    profiler.record_event("compile", 2.0)
    profiler.record_execution()

    stats = profiler.snapshot()
    assert stats.peak_memory_bytes == 100
    assert stats.kernel_calls == {"add": 2}
    assert stats.events["add"] == 2.0
    assert stats.total_ms == 4.0
    assert stats.executions == 1


def test_plan_profiler_counts_kernel_calls() -> None:
    graph = Graph()
    x = graph.variable((2, 2), data=np.ones((2, 2)))
    out = (x * x + x).sum()

    plan = compile_plan(out)
    plan.execute()
    plan.execute()

    stats = plan.profiler.snapshot()
    assert stats.executions == 2
    assert stats.kernel_calls == {"mul": 2, "add": 2, "sum": 2}
    assert stats.peak_memory_bytes > 0


def test_profiling_can_be_disabled() -> None:
    graph = Graph()
    x = graph.variable((3,), data=[1.0, 2.0, 3.0])
    plan = compile_plan(x + x)

    previous = config.profile
    config.profile = False
    try:
        plan.execute()
    finally:
        config.profile = previous

    stats = plan.profiler.snapshot()
    assert stats.kernel_calls == {}
    assert stats.executions == 1
