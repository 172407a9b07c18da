"""
Planning: turn requested outputs into an executable, reusable Plan.
"""

from .plan import LeafSlot, Plan, PlanStep, SlotSpec
from .buffer_plan import SlotAssignment, assign_slots
from .validate import validate_plan
from .compiler import compile_plan, plan_summary

__all__ = [
    "LeafSlot",
    "Plan",
    "PlanStep",
    "SlotAssignment",
    "SlotSpec",
    "assign_slots",
    "compile_plan",
    "plan_summary",
    "validate_plan",
]
