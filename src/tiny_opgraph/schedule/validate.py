"""
Structural validation of compiled plans.
"""

from __future__ import annotations

from typing import Dict

from tiny_opgraph.graph.ir import Operation

from .plan import SLOT_ROLES, Plan


def validate_plan(plan: Plan) -> None:
    """
    Check that ``plan`` computes what it claims:
    - slot sizes match the byte size of every value stored in them
    - every slot a step reads holds the expected input (written before the
      read and not overwritten before its last reader)
    - leaf and output slots are never reused

    Raises:
        ValueError: describing the first violated invariant.
    """
    _ensure_slot_sizes(plan)
    _ensure_dedicated_slots(plan)
    _ensure_dataflow(plan)


def _ensure_slot_sizes(plan: Plan) -> None:
    for index, spec in enumerate(plan.slots):
        if spec.index != index:
            raise ValueError(f"Slot table entry {index} claims index {spec.index}.")
        if spec.role not in SLOT_ROLES:
            raise ValueError(f"Slot {index} has unknown role `{spec.role}`.")
    for leaf in plan.leaves:
        if plan.slots[leaf.slot].nbytes != leaf.op.nbytes:
            raise ValueError(f"Slot {leaf.slot} does not match the size of `{leaf.op.name}`.")
    for step in plan.steps:
        if plan.slots[step.output_slot].nbytes != step.op.nbytes:
            raise ValueError(f"Slot {step.output_slot} does not match the size of `{step.op.name}`.")
        for slot, inp in zip(step.input_slots, step.op.inputs):
            if plan.slots[slot].nbytes != inp.nbytes:
                raise ValueError(f"Slot {slot} does not match the size of `{inp.name}`.")


def _ensure_dedicated_slots(plan: Plan) -> None:
    leaf_slots = [leaf.slot for leaf in plan.leaves]
    if len(set(leaf_slots)) != len(leaf_slots):
        raise ValueError("Two leaves share a slot.")
    for slot in leaf_slots:
        if plan.slots[slot].role != "leaf":
            raise ValueError(f"Leaf slot {slot} has role `{plan.slots[slot].role}`.")

    writers: Dict[int, int] = {}
    for step in plan.steps:
        if plan.slots[step.output_slot].role == "leaf":
            raise ValueError(f"`{step.op.name}` writes into leaf slot {step.output_slot}.")
        if plan.slots[step.output_slot].role == "output":
            writers[step.output_slot] = writers.get(step.output_slot, 0) + 1
    for slot, count in writers.items():
        if count > 1:
            raise ValueError(f"Output slot {slot} is written {count} times.")


def _ensure_dataflow(plan: Plan) -> None:
    holder: Dict[int, Operation] = {leaf.slot: leaf.op for leaf in plan.leaves}
    for step in plan.steps:
        if len(step.input_slots) != len(step.op.inputs):
            raise ValueError(f"`{step.op.name}` has {len(step.input_slots)} input slots for {len(step.op.inputs)} inputs.")
        for slot, inp in zip(step.input_slots, step.op.inputs):
            if slot not in holder:
                raise ValueError(f"`{step.op.name}` reads slot {slot} before it is written.")
            if holder[slot] is not inp:
                raise ValueError(
                    f"Slot {slot} was overwritten by `{holder[slot].name}` before `{step.op.name}` read `{inp.name}`."
                )
        if step.output_slot in step.input_slots:
            raise ValueError(f"`{step.op.name}` writes into a slot it reads.")
        holder[step.output_slot] = step.op

    for op, slot in zip(plan.outputs, plan.output_slots):
        if holder.get(slot) is not op:
            raise ValueError(f"Output slot {slot} does not hold `{op.name}` at the end of the plan.")
