"""
Global / experimental configuration flags.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Optional


def _env_flag(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


@dataclass
class OpGraphConfig:
    """
    Process-wide knobs.

    Attributes:
        debug: Validate every compiled plan before handing it out.
        default_device: Device name used for nodes without an explicit
            placement ("host" or "accelerator").
        torch_device: Torch device string for accelerator kernels. ``None``
            picks ``cuda`` when available and ``cpu`` otherwise.
        profile: Record per-kind kernel timings while executing plans.
    """

    debug: bool = field(default_factory=lambda: _env_flag("TINY_OPGRAPH_DEBUG", False))
    default_device: str = field(
        default_factory=lambda: os.getenv("TINY_OPGRAPH_DEVICE", "host")
    )
    torch_device: Optional[str] = field(
        default_factory=lambda: os.getenv("TINY_OPGRAPH_TORCH_DEVICE") or None
    )
    profile: bool = True


config = OpGraphConfig()
