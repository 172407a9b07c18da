"""
Storage slot assignment with reuse of dead scratch buffers.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Sequence

from tiny_opgraph.graph.ir import Operation

from .plan import SlotSpec


@dataclass
class SlotAssignment:
    slot_of: Dict[Operation, int]
    slots: List[SlotSpec]
    meta: Dict[str, Any] = field(default_factory=dict)


def assign_slots(order: Sequence[Operation], outputs: Sequence[Operation]) -> SlotAssignment:
    """
    Give every node in ``order`` a storage slot.

    Leaves get a dedicated slot each, requested outputs get a dedicated
    output slot, and every other node takes a free scratch slot of exactly
    its byte size or a new one. A node's slot is released once the step of
    its last consumer has been assigned, so a step never writes into a slot
    it reads.

    Args:
        order: Dependencies-first order of the nodes to schedule.
        outputs: Requested outputs (may repeat).
    """
    requested = set(outputs)

    needed_by: Dict[Operation, int] = {op: 0 for op in order}
    for op in order:
        for inp in op.inputs:
            needed_by[inp] += 1

    slots: List[SlotSpec] = []
    slot_of: Dict[Operation, int] = {}
    free: Dict[int, List[int]] = {}
    reused = 0
    live_bytes = 0
    peak_live = 0

    def new_slot(nbytes: int, role: str) -> int:
        slots.append(SlotSpec(index=len(slots), nbytes=nbytes, role=role))
        return len(slots) - 1

    for op in order:
        if op.is_leaf:
            slot_of[op] = new_slot(op.nbytes, "leaf")
        elif op in requested:
            slot_of[op] = new_slot(op.nbytes, "output")
        else:
            pool = free.get(op.nbytes)
            if pool:
                slot_of[op] = pool.pop()
                reused += 1
            else:
                slot_of[op] = new_slot(op.nbytes, "scratch")
        live_bytes += op.nbytes
        peak_live = max(peak_live, live_bytes)

        for inp in op.inputs:
            needed_by[inp] -= 1
            if needed_by[inp] == 0 and slots[slot_of[inp]].role == "scratch":
                free.setdefault(inp.nbytes, []).append(slot_of[inp])
                live_bytes -= inp.nbytes

    scratch = [spec for spec in slots if spec.role == "scratch"]
    meta = {
        "order": [op.name for op in order],
        "num_steps": sum(1 for op in order if not op.is_leaf),
        "num_slots": len(slots),
        "num_scratch_slots": len(scratch),
        "reused_slots": reused,
        "scratch_bytes": sum(spec.nbytes for spec in scratch),
        "peak_live_bytes": peak_live,
    }
    return SlotAssignment(slot_of=slot_of, slots=slots, meta=meta)


__all__ = ["SlotAssignment", "assign_slots"]
