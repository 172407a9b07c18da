from __future__ import annotations

import time
from typing import TYPE_CHECKING, Any, Dict, List, Mapping, Optional, Sequence, Union

import numpy as np

from tiny_opgraph.buffer import Buffer
from tiny_opgraph.errors import BufferSizeMismatchError, UnboundPlaceholderError
from tiny_opgraph.graph.ir import Operation
from tiny_opgraph.utils.config import config
from tiny_opgraph.utils.logging import logger

if TYPE_CHECKING:
    from tiny_opgraph.schedule.plan import Plan

Bindings = Mapping[Operation, Union[Buffer, np.ndarray]]


def _resolve_bindings(plan: "Plan", bindings: Optional[Bindings]) -> Dict[Operation, Buffer]:
    """
    Validate ``bindings`` against the plan's leaves.

    Raises:
        ValueError: if a key is not a leaf Operation.
        BufferSizeMismatchError: if a bound Buffer has the wrong byte size.
        UnboundPlaceholderError: if a placeholder of the plan is left unbound.
    """
    resolved: Dict[Operation, Buffer] = {}
    plan_leaves = {leaf.op for leaf in plan.leaves}
    for op, value in (bindings or {}).items():
        if not isinstance(op, Operation) or not op.is_leaf:
            raise ValueError(f"Only leaf operations can be bound, got {op!r}.")
        buffer = value if isinstance(value, Buffer) else Buffer.from_array(value, op.element_type)
        if buffer.nbytes != op.nbytes:
            raise BufferSizeMismatchError(
                f"`{op.name}` is {op.tensor_type} ({op.nbytes} bytes), bound buffer holds {buffer.nbytes}."
            )
        if op not in plan_leaves:
            logger.debug("Ignoring binding for %s: not used by this plan", op.name)
            continue
        resolved[op] = buffer

    for leaf in plan.leaves:
        if leaf.op.kind == "placeholder" and leaf.op not in resolved:
            raise UnboundPlaceholderError(f"Placeholder `{leaf.op.name}` ({leaf.op.tensor_type}) is not bound.")
    return resolved


def _resolve_outputs(plan: "Plan", outputs: Optional[Sequence[Buffer]]) -> Optional[List[Buffer]]:
    if outputs is None:
        return None
    outputs = list(outputs)
    if len(outputs) != len(plan.outputs):
        raise ValueError(f"Expected {len(plan.outputs)} output buffers, got {len(outputs)}.")
    for op, buffer in zip(plan.outputs, outputs):
        if buffer.nbytes != op.nbytes:
            raise BufferSizeMismatchError(
                f"Output `{op.name}` needs {op.nbytes} bytes, supplied buffer holds {buffer.nbytes}."
            )
    return outputs


def execute_plan(
    plan: "Plan",
    bindings: Optional[Bindings] = None,
    outputs: Optional[Sequence[Buffer]] = None,
) -> List[Buffer]:
    """
    Run every step of ``plan`` and return one Buffer per requested output.

    Args:
        plan: Compiled plan.
        bindings: Leaf -> Buffer overrides. Every placeholder must be bound;
            variables and constants fall back to their own (current) buffers.
        outputs: Optional caller-owned output Buffers, one per requested output.

    Returns:
        Buffers in the order of ``plan.outputs``. Outputs that are leaves, and
        repeated outputs, are returned as copies.
    """
    bound = _resolve_bindings(plan, bindings)
    supplied = _resolve_outputs(plan, outputs)
    storage = plan.storage
    profiler = plan.profiler

    for leaf in plan.leaves:
        storage.put(leaf.slot, bound.get(leaf.op, leaf.op.buffer))
    for spec in plan.slots:
        if spec.role == "output":
            storage.put(spec.index, Buffer(spec.nbytes))
        elif spec.role == "scratch" and not storage.has(spec.index):
            storage.put(spec.index, Buffer(spec.nbytes))
    if supplied is not None:
        claimed = set()
        for op, slot, buffer in zip(plan.outputs, plan.output_slots, supplied):
            if not op.is_leaf and slot not in claimed:
                storage.put(slot, buffer)
                claimed.add(slot)

    try:
        for step in plan.steps:
            args = [storage.get(slot) for slot in step.input_slots]
            start = time.perf_counter()
            step.kernel(step.op, args, storage.get(step.output_slot))
            if config.profile:
                profiler.record_kernel(step.op.kind, (time.perf_counter() - start) * 1000.0)

        results: List[Buffer] = []
        seen = set()
        for i, (op, slot) in enumerate(zip(plan.outputs, plan.output_slots)):
            buffer = storage.get(slot)
            if op.is_leaf or slot in seen:
                if supplied is not None:
                    supplied[i].set(buffer)
                    buffer = supplied[i]
                else:
                    buffer = buffer.copy()
            seen.add(slot)
            results.append(buffer)
        profiler.record_memory(storage.nbytes())
        profiler.record_execution()
    finally:
        # Leaf and output buffers belong to the caller once the call returns.
        for leaf in plan.leaves:
            storage.delete(leaf.slot)
        for spec in plan.slots:
            if spec.role == "output":
                storage.delete(spec.index)
    return results


def evaluate(
    outputs: Union[Operation, Sequence[Operation]],
    bindings: Optional[Bindings] = None,
    device: Any = None,
) -> Union[Buffer, List[Buffer]]:
    """Compile a throwaway plan for ``outputs`` and execute it once."""
    from tiny_opgraph.schedule.compiler import compile_plan

    single = isinstance(outputs, Operation)
    plan = compile_plan([outputs] if single else list(outputs), device=device)
    results = plan.execute(bindings)
    return results[0] if single else results


__all__ = ["Bindings", "evaluate", "execute_plan"]
