from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple

from tiny_opgraph.backends.registry import Device, Kernel
from tiny_opgraph.buffer import Buffer
from tiny_opgraph.graph.ir import Operation
from tiny_opgraph.runtime.executor import Bindings, execute_plan
from tiny_opgraph.runtime.profiling import Profiler
from tiny_opgraph.runtime.storage import SlotStorage

SLOT_ROLES = ("leaf", "scratch", "output")


@dataclass(frozen=True)
class SlotSpec:
    """
    One storage slot of a plan.

    Attributes:
        index: position in ``Plan.slots``.
        nbytes: size every value stored in the slot must have.
        role: ``"leaf"`` (bound per call), ``"scratch"`` (plan-owned, reused)
            or ``"output"`` (fresh or caller-supplied per call).
    """

    index: int
    nbytes: int
    role: str


@dataclass(frozen=True)
class LeafSlot:
    op: Operation
    slot: int


@dataclass(frozen=True)
class PlanStep:
    """
    A single kernel invocation.
    """

    op: Operation
    device: Device
    kernel: Kernel
    input_slots: Tuple[int, ...]
    output_slot: int


@dataclass
class Plan:
    """
    Compiled, reusable schedule for a fixed set of outputs.

    Steps run in order; each reads its input slots and writes its output
    slot. Scratch buffers persist between calls, so a Plan must not be
    executed concurrently.
    """

    outputs: Tuple[Operation, ...]
    steps: List[PlanStep] = field(default_factory=list)
    leaves: List[LeafSlot] = field(default_factory=list)
    slots: List[SlotSpec] = field(default_factory=list)
    output_slots: Tuple[int, ...] = ()
    meta: Dict[str, Any] = field(default_factory=dict)
    profiler: Profiler = field(default_factory=Profiler, repr=False)
    storage: SlotStorage = field(default_factory=SlotStorage, repr=False)

    def __iter__(self) -> Iterator[PlanStep]:
        return iter(self.steps)

    def __len__(self) -> int:
        return len(self.steps)

    @property
    def placeholders(self) -> List[Operation]:
        return [leaf.op for leaf in self.leaves if leaf.op.kind == "placeholder"]

    def execute(self, bindings: Optional[Bindings] = None, outputs: Optional[Sequence[Buffer]] = None) -> List[Buffer]:
        return execute_plan(self, bindings, outputs)

    def release(self) -> None:
        """Drop the plan-owned scratch buffers; the next call allocates them again."""
        self.storage.clear()


__all__ = ["LeafSlot", "Plan", "PlanStep", "SLOT_ROLES", "SlotSpec"]
