"""
Reverse-mode automatic differentiation.

Importing this package registers the built-in gradient rules.
"""

from .registry import GradientRegistry, GradientRule, gradients
from .rules import register_builtin_gradients, unbroadcast
from .grad import grad

register_builtin_gradients(gradients)

__all__ = [
    "GradientRegistry",
    "GradientRule",
    "grad",
    "gradients",
    "register_builtin_gradients",
    "unbroadcast",
]
