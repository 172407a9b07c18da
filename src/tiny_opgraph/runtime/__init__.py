"""
Runtime: slot storage, plan execution and profiling.
"""

from .storage import SlotStorage
from .profiling import Profiler, ProfileStats
from .executor import evaluate, execute_plan

__all__ = [
    "ProfileStats",
    "Profiler",
    "SlotStorage",
    "evaluate",
    "execute_plan",
]
