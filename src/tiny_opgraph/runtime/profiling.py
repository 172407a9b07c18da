"""
Lightweight per-plan profiling: kernel timings, call counts and memory.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict


@dataclass
class ProfileStats:
    peak_memory_bytes: int = 0
    executions: int = 0
    kernel_calls: Dict[str, int] = field(default_factory=dict)
    events: Dict[str, float] = field(default_factory=dict)

    @property
    def total_ms(self) -> float:
        return sum(self.events.values())


class Profiler:
    def __init__(self) -> None:
        self.stats = ProfileStats()

    def record_memory(self, bytes_used: int) -> None:
        if bytes_used > self.stats.peak_memory_bytes:
            self.stats.peak_memory_bytes = bytes_used

    def record_execution(self) -> None:
        self.stats.executions += 1

    def record_kernel(self, kind: str, duration_ms: float) -> None:
        self.stats.kernel_calls[kind] = self.stats.kernel_calls.get(kind, 0) + 1
        self.record_event(kind, duration_ms)

    def record_event(self, name: str, duration_ms: float) -> None:
        self.stats.events[name] = self.stats.events.get(name, 0.0) + duration_ms

    def snapshot(self) -> ProfileStats:
        return self.stats
