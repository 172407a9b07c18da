"""
Typed failures raised by graph construction, compilation and execution.
"""

from __future__ import annotations


class OpGraphError(Exception):
    """Base class for all tiny-opgraph errors."""


class ShapeError(OpGraphError, ValueError):
    """Incompatible shapes, ranks or element types at construction/differentiation time."""


class UnsupportedOperationError(OpGraphError, LookupError):
    """No shape rule, kernel or gradient rule is registered for an operation kind."""


class UnboundPlaceholderError(OpGraphError, KeyError):
    """A placeholder reachable from the requested outputs was not bound."""

    def __str__(self) -> str:
        # KeyError quotes its argument; keep the message readable.
        return str(self.args[0]) if self.args else ""


class BufferSizeMismatchError(OpGraphError, ValueError):
    """A caller-supplied Buffer does not hold exactly volume * itemsize bytes."""
