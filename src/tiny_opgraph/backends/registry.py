"""
Kernel dispatch keyed by (operation kind, device).
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

from tiny_opgraph.buffer import Buffer
from tiny_opgraph.errors import UnsupportedOperationError
from tiny_opgraph.utils.logging import logger

Kernel = Callable[[Any, List[Buffer], Buffer], None]


class Device(str, Enum):
    HOST = "host"
    ACCELERATOR = "accelerator"

    @classmethod
    def coerce(cls, value: Union["Device", str]) -> "Device":
        if isinstance(value, Device):
            return value
        try:
            return cls(str(value).lower())
        except ValueError:
            raise ValueError(f"Unknown device: {value!r}") from None


class KernelRegistry:
    """
    Maps ``(kind, device)`` to a kernel ``kernel(op, inputs, output) -> None``.

    A kernel reads the input Buffers, writes the result into ``output`` and
    returns once the data is visible on the host.
    """

    def __init__(self) -> None:
        self._kernels: Dict[Tuple[str, Device], Kernel] = {}

    def register(self, kind: str, device: Union[Device, str], kernel: Kernel) -> None:
        device = Device.coerce(device)
        if (kind, device) in self._kernels:
            logger.debug("Replacing %s kernel for %r", device.value, kind)
        self._kernels[(kind, device)] = kernel

    def deregister(self, kind: str, device: Union[Device, str]) -> None:
        self._kernels.pop((kind, Device.coerce(device)), None)

    def lookup(self, kind: str, device: Union[Device, str]) -> Kernel:
        device = Device.coerce(device)
        try:
            return self._kernels[(kind, device)]
        except KeyError:
            raise UnsupportedOperationError(
                f"No {device.value} kernel registered for operation kind `{kind}`."
            ) from None

    def supports(self, kind: str, device: Union[Device, str]) -> bool:
        return (kind, Device.coerce(device)) in self._kernels

    def list_kernels(self, device: Optional[Union[Device, str]] = None) -> List[str]:
        if device is None:
            return sorted({kind for kind, _ in self._kernels})
        device = Device.coerce(device)
        return sorted(kind for kind, dev in self._kernels if dev is device)

    def __len__(self) -> int:
        return len(self._kernels)


kernels = KernelRegistry()


__all__ = ["Device", "Kernel", "KernelRegistry", "kernels"]
