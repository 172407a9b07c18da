"""
Raw owned storage for tensor data.
"""

from __future__ import annotations

from typing import Any, Optional, Union

import numpy as np

from tiny_opgraph.errors import BufferSizeMismatchError
from tiny_opgraph.types import DataType, TensorType

BytesLike = Union[bytes, bytearray, memoryview]


class Buffer:
    """
    Contiguous, byte-addressable region backed by a ``uint8`` numpy array.

    A Buffer knows nothing about the shape of the data it holds; typed access
    goes through :meth:`view` (zero-copy) or :meth:`to_array` (copy) with a
    :class:`TensorType` whose ``nbytes`` must equal the buffer length.
    """

    __slots__ = ("_data",)

    def __init__(self, nbytes: int = 0, *, data: Optional[BytesLike] = None) -> None:
        if data is not None:
            self._data = np.frombuffer(bytes(data), dtype=np.uint8).copy()
        else:
            if nbytes < 0:
                raise ValueError("Buffer size must be non-negative.")
            self._data = np.zeros(int(nbytes), dtype=np.uint8)

    @classmethod
    def zeros(cls, tensor_type: TensorType) -> "Buffer":
        return cls(tensor_type.nbytes)

    @classmethod
    def from_array(cls, array: Any, element_type: Optional[Any] = None) -> "Buffer":
        """Copy ``array`` (anything numpy accepts) into a new buffer."""
        dtype = DataType.coerce(element_type).numpy if element_type is not None else None
        arr = np.ascontiguousarray(np.asarray(array, dtype=dtype))
        buf = cls(arr.nbytes)
        buf._data[...] = arr.reshape(-1).view(np.uint8)
        return buf

    @property
    def nbytes(self) -> int:
        return int(self._data.size)

    @property
    def readonly(self) -> bool:
        return not self._data.flags.writeable

    def mark_readonly(self) -> None:
        self._data.flags.writeable = False

    def _check_size(self, nbytes: int) -> None:
        if nbytes != self.nbytes:
            raise BufferSizeMismatchError(
                f"Expected {self.nbytes} bytes, got {nbytes}."
            )

    def view(self, tensor_type: TensorType) -> np.ndarray:
        """Typed, shaped view sharing memory with this buffer."""
        self._check_size(tensor_type.nbytes)
        return self._data.view(tensor_type.element_type.numpy).reshape(tensor_type.shape)

    def to_array(self, tensor_type: TensorType) -> np.ndarray:
        return self.view(tensor_type).copy()

    def get(self) -> bytes:
        return self._data.tobytes()

    def set(self, data: Union["Buffer", BytesLike, np.ndarray]) -> None:
        """
        Overwrite the contents in place.

        Raises:
            BufferSizeMismatchError: if ``data`` is not exactly ``nbytes`` long.
            ValueError: if the buffer is read-only.
        """
        if self.readonly:
            raise ValueError("Cannot write to a read-only buffer.")
        if isinstance(data, Buffer):
            src = data._data
        elif isinstance(data, np.ndarray):
            src = np.ascontiguousarray(data).reshape(-1).view(np.uint8)
        else:
            src = np.frombuffer(bytes(data), dtype=np.uint8)
        self._check_size(int(src.size))
        self._data[...] = src

    def copy(self) -> "Buffer":
        buf = Buffer(self.nbytes)
        buf._data[...] = self._data
        return buf

    def __len__(self) -> int:
        return self.nbytes

    def __repr__(self) -> str:
        flag = ", readonly" if self.readonly else ""
        return f"Buffer(nbytes={self.nbytes}{flag})"
