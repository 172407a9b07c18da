"""
Kernel backends.

Host (numpy) kernels are always registered. Accelerator (torch) kernels are
registered when torch is importable.
"""

from .registry import Device, Kernel, KernelRegistry, kernels
from .host import register_host_kernels
from ..utils.logging import logger

register_host_kernels(kernels)

try:
    from .accelerator import register_accelerator_kernels
except ModuleNotFoundError as exc:
    logger.debug("Accelerator backend unavailable: %s", exc)
    ACCELERATOR_AVAILABLE = False
else:
    register_accelerator_kernels(kernels)
    ACCELERATOR_AVAILABLE = True

__all__ = [
    "ACCELERATOR_AVAILABLE",
    "Device",
    "Kernel",
    "KernelRegistry",
    "kernels",
    "register_host_kernels",
]
