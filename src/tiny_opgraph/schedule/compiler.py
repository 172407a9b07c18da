from __future__ import annotations

from typing import Any, Dict, Mapping, Optional, Sequence, Union

from tiny_opgraph.backends import Device, KernelRegistry, kernels
from tiny_opgraph.graph.ir import Operation
from tiny_opgraph.graph.topo import topological_order
from tiny_opgraph.utils.config import config
from tiny_opgraph.utils.logging import logger

from .buffer_plan import assign_slots
from .plan import LeafSlot, Plan, PlanStep
from .validate import validate_plan


def compile_plan(
    outputs: Union[Operation, Sequence[Operation]],
    device: Optional[Union[Device, str]] = None,
    overrides: Optional[Mapping[Operation, Union[Device, str]]] = None,
    registry: Optional[KernelRegistry] = None,
) -> Plan:
    """
    Compile the computation of ``outputs`` into a reusable Plan.

    Args:
        outputs: Operation(s) to compute. Repeats are allowed.
        device: Device for every interior node. Defaults to ``config.default_device``.
        overrides: Per-node device choice, taking precedence over ``device``.
        registry: Kernel registry to resolve kernels from (default: ``kernels``).

    Raises:
        ValueError: if ``outputs`` is empty or spans several graphs.
        UnsupportedOperationError: if a node has no kernel on its device.
    """
    if isinstance(outputs, Operation):
        outputs = [outputs]
    outputs = tuple(outputs)
    if not outputs:
        raise ValueError("At least one output is required.")
    for op in outputs:
        if not isinstance(op, Operation):
            raise TypeError(f"Outputs must be Operations, got {type(op).__name__}.")
    graph = outputs[0].graph
    if any(op.graph is not graph for op in outputs):
        raise ValueError("All outputs must belong to the same graph.")

    if registry is None:
        registry = kernels
    default_device = Device.coerce(device if device is not None else config.default_device)
    per_node: Dict[Operation, Device] = {
        op: Device.coerce(dev) for op, dev in (overrides or {}).items()
    }

    order = topological_order(outputs)
    assignment = assign_slots(order, outputs)
    slot_of = assignment.slot_of

    steps = []
    leaves = []
    for op in order:
        if op.is_leaf:
            leaves.append(LeafSlot(op=op, slot=slot_of[op]))
            continue
        target = per_node.get(op, default_device)
        steps.append(
            PlanStep(
                op=op,
                device=target,
                kernel=registry.lookup(op.kind, target),
                input_slots=tuple(slot_of[inp] for inp in op.inputs),
                output_slot=slot_of[op],
            )
        )

    plan = Plan(
        outputs=outputs,
        steps=steps,
        leaves=leaves,
        slots=assignment.slots,
        output_slots=tuple(slot_of[op] for op in outputs),
        meta=assignment.meta,
    )
    if config.debug:
        validate_plan(plan)

    logger.debug(
        "Compiled plan: %d steps, %d leaves, %d scratch slots (%d reused), peak %d bytes",
        len(steps),
        len(leaves),
        plan.meta["num_scratch_slots"],
        plan.meta["reused_slots"],
        plan.meta["peak_live_bytes"],
    )
    return plan


def plan_summary(plan: Plan) -> Dict[str, Any]:
    """Counts of steps per device and per kind, alongside the scheduling meta."""
    per_device: Dict[str, int] = {}
    per_kind: Dict[str, int] = {}
    for step in plan.steps:
        per_device[step.device.value] = per_device.get(step.device.value, 0) + 1
        per_kind[step.op.kind] = per_kind.get(step.op.kind, 0) + 1
    summary = {key: value for key, value in plan.meta.items() if key != "order"}
    summary["steps_per_device"] = per_device
    summary["steps_per_kind"] = per_kind
    return summary


__all__ = ["compile_plan", "plan_summary"]
