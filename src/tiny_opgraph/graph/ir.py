from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

import numpy as np

from tiny_opgraph.buffer import Buffer
from tiny_opgraph.errors import BufferSizeMismatchError, ShapeError, UnsupportedOperationError
from tiny_opgraph.types import DataType, TensorType
from tiny_opgraph.utils.logging import logger

LEAF_KINDS = frozenset({"constant", "variable", "placeholder"})

InferFn = Callable[[Sequence[TensorType], Mapping[str, Any]], TensorType]
NormalizeFn = Callable[[Sequence[TensorType], Dict[str, Any]], Dict[str, Any]]


@dataclass(frozen=True)
class OpDef:
    """
    Shape/type rule for one operation kind.

    Attributes:
        infer: Pure function from input types and (frozen) params to the
            output type. Raises ``ShapeError`` on incompatible inputs.
        normalize: Optional canonicalisation of user-facing params (defaults,
            scalar-to-pair expansion, ...) applied before memoization so that
            equivalent spellings resolve to the same node.
    """

    infer: InferFn
    normalize: Optional[NormalizeFn] = None


class OperationRegistry:
    def __init__(self) -> None:
        self._defs: Dict[str, OpDef] = {}

    def register(self, kind: str, infer: InferFn, normalize: Optional[NormalizeFn] = None) -> None:
        if kind in LEAF_KINDS:
            raise ValueError(f"`{kind}` is reserved for leaf operations.")
        if kind in self._defs:
            logger.debug("Replacing shape rule for operation kind %r", kind)
        self._defs[kind] = OpDef(infer=infer, normalize=normalize)

    def lookup(self, kind: str) -> OpDef:
        try:
            return self._defs[kind]
        except KeyError:
            raise UnsupportedOperationError(
                f"No operation definition registered for kind `{kind}`."
            ) from None

    def __contains__(self, kind: str) -> bool:
        return kind in self._defs

    def kinds(self) -> List[str]:
        return sorted(self._defs)


operations = OperationRegistry()


def register_operation(kind: str, infer: InferFn, normalize: Optional[NormalizeFn] = None) -> None:
    """Register (or replace) the shape-inference rule for ``kind``."""
    operations.register(kind, infer, normalize)


def list_operations() -> List[str]:
    return operations.kinds()


def expect_arity(kind: str, types: Sequence[TensorType], count: int) -> None:
    if len(types) != count:
        raise ShapeError(f"`{kind}` expects {count} input(s), got {len(types)}.")


def freeze(value: Any) -> Any:
    """Recursively convert ``value`` into a hashable, order-stable form."""
    if isinstance(value, Mapping):
        return tuple(sorted((str(k), freeze(v)) for k, v in value.items()))
    if isinstance(value, np.ndarray):
        return freeze(value.tolist())
    if isinstance(value, (list, tuple)):
        return tuple(freeze(v) for v in value)
    if isinstance(value, np.generic):
        return value.item()
    if isinstance(value, (str, int, float, bool, type(None), Enum)):
        return value
    try:
        hash(value)
    except TypeError as exc:
        raise TypeError(f"Operation parameter {value!r} is not hashable.") from exc
    return value


def _typed(value: Any) -> Any:
    """Tag frozen scalars with their type so ``True``, ``1`` and ``1.0`` stay distinct keys."""
    if isinstance(value, tuple):
        return tuple(_typed(v) for v in value)
    if isinstance(value, (bool, int, float)):
        return (type(value).__name__, value)
    return value


@dataclass(eq=False, repr=False)
class Operation:
    """
    Node in the operation graph.

    Nodes are created through a :class:`Graph` and compared by identity; the
    graph's memoization table guarantees that structurally identical
    interior nodes are the same object.
    """

    index: int
    kind: str
    inputs: Tuple["Operation", ...]
    params: Mapping[str, Any]
    tensor_type: TensorType
    buffer: Optional[Buffer] = None
    graph: Optional["Graph"] = field(default=None, repr=False)

    @property
    def name(self) -> str:
        return f"{self.kind}_{self.index}"

    @property
    def shape(self) -> Tuple[int, ...]:
        return self.tensor_type.shape

    @property
    def element_type(self) -> DataType:
        return self.tensor_type.element_type

    @property
    def rank(self) -> int:
        return self.tensor_type.rank

    @property
    def volume(self) -> int:
        return self.tensor_type.volume

    @property
    def nbytes(self) -> int:
        return self.tensor_type.nbytes

    @property
    def is_leaf(self) -> bool:
        return self.kind in LEAF_KINDS

    @property
    def value(self) -> Optional[Buffer]:
        return self.buffer

    def numpy(self) -> np.ndarray:
        """Copy of the leaf's current value. Interior nodes must be evaluated instead."""
        if self.buffer is None:
            raise ValueError(f"`{self.name}` has no attached buffer.")
        return self.buffer.to_array(self.tensor_type)

    def __repr__(self) -> str:
        deps = ", ".join(i.name for i in self.inputs)
        return f"Operation({self.name}, {self.tensor_type}, inputs=[{deps}])"

    # -- graph construction sugar ------------------------------------------------

    def _lift(self, other: Any) -> Any:
        if isinstance(other, Operation):
            return other
        if isinstance(other, (bool, int, float, np.number)):
            return self.graph.constant((), self.element_type, other)
        return NotImplemented

    def _binary(self, kind: str, other: Any, *, reflected: bool = False) -> Any:
        other = self._lift(other)
        if other is NotImplemented:
            return NotImplemented
        lhs, rhs = (other, self) if reflected else (self, other)
        return self.graph.apply(kind, [lhs, rhs])

    def __add__(self, other: Any) -> Any:
        return self._binary("add", other)

    def __radd__(self, other: Any) -> Any:
        return self._binary("add", other, reflected=True)

    def __sub__(self, other: Any) -> Any:
        return self._binary("sub", other)

    def __rsub__(self, other: Any) -> Any:
        return self._binary("sub", other, reflected=True)

    def __mul__(self, other: Any) -> Any:
        return self._binary("mul", other)

    def __rmul__(self, other: Any) -> Any:
        return self._binary("mul", other, reflected=True)

    def __truediv__(self, other: Any) -> Any:
        return self._binary("div", other)

    def __rtruediv__(self, other: Any) -> Any:
        return self._binary("div", other, reflected=True)

    def __pow__(self, other: Any) -> Any:
        return self._binary("pow", other)

    def __rpow__(self, other: Any) -> Any:
        return self._binary("pow", other, reflected=True)

    def __matmul__(self, other: Any) -> Any:
        if not isinstance(other, Operation):
            return NotImplemented
        return self.graph.apply("matmul", [self, other])

    def __neg__(self) -> "Operation":
        return self.graph.apply("neg", [self])

    def matmul(self, other: "Operation") -> "Operation":
        return self.graph.apply("matmul", [self, other])

    def reshape(self, shape: Iterable[int]) -> "Operation":
        return self.graph.apply("reshape", [self], {"shape": shape})

    def transpose(self, order: Optional[Iterable[int]] = None) -> "Operation":
        return self.graph.apply("transpose", [self], {"order": order})

    def sum(self, axes: Optional[Iterable[int]] = None) -> "Operation":
        return self.graph.apply("sum", [self], {"axes": axes})

    def broadcast_to(self, shape: Iterable[int]) -> "Operation":
        return self.graph.apply("broadcast", [self], {"shape": shape})


class Graph:
    """
    Arena owning every Operation built against it.

    Interior nodes are deduplicated through an explicit side table keyed on
    ``(kind, input indices, frozen params)``; constants are deduplicated on
    ``(type, bytes)``. Variables and placeholders are always fresh.
    """

    def __init__(self, name: str = "graph") -> None:
        self.name = name
        self.nodes: List[Operation] = []
        self._memo: Dict[Tuple[Any, ...], Operation] = {}

    def __len__(self) -> int:
        return len(self.nodes)

    def __iter__(self):
        return iter(self.nodes)

    def get_node(self, index: int) -> Operation:
        return self.nodes[index]

    def _append(
        self,
        kind: str,
        inputs: Tuple[Operation, ...],
        params: Mapping[str, Any],
        tensor_type: TensorType,
        buffer: Optional[Buffer] = None,
    ) -> Operation:
        op = Operation(
            index=len(self.nodes),
            kind=kind,
            inputs=inputs,
            params=MappingProxyType(dict(params)),
            tensor_type=tensor_type,
            buffer=buffer,
            graph=self,
        )
        self.nodes.append(op)
        return op

    # -- leaves ------------------------------------------------------------------

    def constant(self, shape: Iterable[int], element_type: Any = DataType.FLOAT32, data: Any = None) -> Operation:
        """
        Leaf holding an immutable copy of ``data`` (zero-filled when ``data`` is None).

        Raises:
            ShapeError: if ``data`` does not contain exactly volume(shape) elements.
            BufferSizeMismatchError: if ``data`` is raw bytes/Buffer of the wrong length.
        """
        tensor_type = TensorType(element_type, shape)
        buffer = Buffer.zeros(tensor_type) if data is None else _leaf_buffer(tensor_type, data)
        buffer.mark_readonly()
        key = ("constant", tensor_type, buffer.get())
        cached = self._memo.get(key)
        if cached is not None:
            return cached
        op = self._append("constant", (), {}, tensor_type, buffer)
        self._memo[key] = op
        return op

    def variable(self, shape: Iterable[int], element_type: Any = DataType.FLOAT32, data: Any = None) -> Operation:
        """Leaf with a mutable buffer (zero-filled unless ``data`` is given)."""
        tensor_type = TensorType(element_type, shape)
        buffer = Buffer.zeros(tensor_type) if data is None else _leaf_buffer(tensor_type, data)
        return self._append("variable", (), {}, tensor_type, buffer)

    def placeholder(self, shape: Iterable[int], element_type: Any = DataType.FLOAT32) -> Operation:
        """Leaf without storage; must be bound when a plan is executed."""
        return self._append("placeholder", (), {}, TensorType(element_type, shape))

    # -- interior nodes ----------------------------------------------------------

    def apply(self, kind: str, inputs: Sequence[Operation], params: Optional[Mapping[str, Any]] = None) -> Operation:
        """
        Build (or fetch the memoized) node ``kind(*inputs, **params)``.

        Raises:
            UnsupportedOperationError: if ``kind`` has no registered shape rule.
            ShapeError: if the shape rule rejects the inputs.
        """
        opdef = operations.lookup(kind)
        inputs = tuple(inputs)
        for inp in inputs:
            if not isinstance(inp, Operation):
                raise TypeError(f"`{kind}` inputs must be Operations, got {type(inp).__name__}.")
            if inp.graph is not self:
                raise ValueError(f"`{inp.name}` belongs to a different graph.")

        input_types = [inp.tensor_type for inp in inputs]
        resolved = dict(params or {})
        if opdef.normalize is not None:
            resolved = opdef.normalize(input_types, resolved)
        frozen = {str(k): freeze(v) for k, v in resolved.items()}

        typed = tuple((k, _typed(v)) for k, v in sorted(frozen.items()))
        key = (kind, tuple(inp.index for inp in inputs), typed)
        cached = self._memo.get(key)
        if cached is not None:
            return cached

        tensor_type = opdef.infer(input_types, MappingProxyType(frozen))
        op = self._append(kind, inputs, frozen, tensor_type)
        self._memo[key] = op
        return op

    def topological_sort(self, outputs: Optional[Sequence[Operation]] = None) -> List[Operation]:
        from tiny_opgraph.graph.topo import topological_order

        if outputs is None:
            # Arena order is already a valid topological order.
            return list(self.nodes)
        return topological_order(outputs)

    def __repr__(self) -> str:
        return f"Graph(name={self.name!r}, nodes={len(self.nodes)})"


def _leaf_buffer(tensor_type: TensorType, data: Any) -> Buffer:
    if isinstance(data, Buffer):
        if data.nbytes != tensor_type.nbytes:
            raise BufferSizeMismatchError(
                f"{tensor_type} needs {tensor_type.nbytes} bytes, buffer holds {data.nbytes}."
            )
        return data.copy()
    if isinstance(data, (bytes, bytearray, memoryview)):
        if len(data) != tensor_type.nbytes:
            raise BufferSizeMismatchError(
                f"{tensor_type} needs {tensor_type.nbytes} bytes, got {len(data)}."
            )
        return Buffer(data=data)

    array = np.asarray(data, dtype=tensor_type.element_type.numpy)
    if array.size != tensor_type.volume:
        raise ShapeError(
            f"{tensor_type} needs {tensor_type.volume} elements, data has {array.size}."
        )
    return Buffer.from_array(array)


__all__ = [
    "LEAF_KINDS",
    "Graph",
    "OpDef",
    "Operation",
    "OperationRegistry",
    "expect_arity",
    "freeze",
    "list_operations",
    "operations",
    "register_operation",
]
