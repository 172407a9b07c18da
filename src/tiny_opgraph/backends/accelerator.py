"""
Accelerator kernels implemented with torch.

Inputs are uploaded to the configured torch device, the result is computed
there and copied back into the host output Buffer before the kernel
returns. The device is ``config.torch_device`` when set, otherwise CUDA
when available, otherwise the torch CPU backend.
"""

from __future__ import annotations

import weakref
from typing import Callable, Dict, List

import numpy as np
import torch
import torch.nn.functional as F
from torch.nn.grad import conv2d_input, conv2d_weight

from tiny_opgraph.buffer import Buffer
from tiny_opgraph.utils.config import config

from .registry import Device, KernelRegistry, kernels

_generators = weakref.WeakKeyDictionary()


def resolve_device() -> torch.device:
    if config.torch_device:
        return torch.device(config.torch_device)
    return torch.device("cuda" if torch.cuda.is_available() else "cpu")


def _upload(op, inputs: List[Buffer], device: torch.device) -> List[torch.Tensor]:
    return [
        torch.from_numpy(buf.to_array(src.tensor_type)).to(device)
        for buf, src in zip(inputs, op.inputs)
    ]


def _download(op, output: Buffer, result: torch.Tensor) -> None:
    # .cpu() blocks until the device has finished producing ``result``.
    host = result.detach().cpu().numpy()
    np.copyto(output.view(op.tensor_type), host, casting="unsafe")


def _kernel(fn: Callable[..., torch.Tensor]):
    def kernel(op, inputs: List[Buffer], output: Buffer) -> None:
        args = _upload(op, inputs, resolve_device())
        with torch.no_grad():
            result = fn(op, *args)
        _download(op, output, result)

    kernel.__name__ = getattr(fn, "__name__", "kernel")
    return kernel


def _div(op, a: torch.Tensor, b: torch.Tensor) -> torch.Tensor:
    if a.is_floating_point():
        return torch.div(a, b)
    return torch.div(a, b, rounding_mode="trunc")


def _pow(op, a: torch.Tensor, b: torch.Tensor) -> torch.Tensor:
    if a.is_floating_point():
        return torch.pow(a, b)
    return torch.pow(a.double(), b)


def _sum(op, x: torch.Tensor) -> torch.Tensor:
    axes = tuple(op.params["axes"])
    if not axes:
        # torch treats an empty dim list as "reduce everything".
        return x
    return torch.sum(x, dim=axes)


def _max_element(op, x: torch.Tensor) -> torch.Tensor:
    axes = tuple(op.params["axes"])
    if not axes:
        return x
    return torch.amax(x, dim=axes)


def _argmin(op, x: torch.Tensor) -> torch.Tensor:
    return torch.argmin(x, dim=op.params["axis"], keepdim=True)


def _slice(op, x: torch.Tensor) -> torch.Tensor:
    return x[tuple(slice(lo, hi) for lo, hi in zip(op.params["start"], op.params["stop"]))]


def _pad(op, x: torch.Tensor) -> torch.Tensor:
    out = torch.zeros(op.shape, dtype=x.dtype, device=x.device)
    index = tuple(slice(lo, lo + dim) for lo, dim in zip(op.params["before"], x.shape))
    out[index] = x
    return out


def _convolution(op, x: torch.Tensor, w: torch.Tensor) -> torch.Tensor:
    return F.conv2d(x, w, stride=op.params["stride"], padding=op.params["padding"])


def _convolution_features_grad(op, g: torch.Tensor, w: torch.Tensor) -> torch.Tensor:
    return conv2d_input(
        op.params["features_shape"], w, g, stride=op.params["stride"], padding=op.params["padding"]
    )


def _convolution_filters_grad(op, g: torch.Tensor, x: torch.Tensor) -> torch.Tensor:
    return conv2d_weight(
        x, op.params["filters_shape"], g, stride=op.params["stride"], padding=op.params["padding"]
    )


def _maxpool(op, x: torch.Tensor) -> torch.Tensor:
    dims = op.params["dims"]
    return F.max_pool2d(x, kernel_size=dims, stride=dims)


def _maxpool_grad(op, g: torch.Tensor, pooled: torch.Tensor, x: torch.Tensor) -> torch.Tensor:
    dims = op.params["dims"]
    with torch.enable_grad():
        x = x.detach().requires_grad_(True)
        y = F.max_pool2d(x, kernel_size=dims, stride=dims)
        (grad,) = torch.autograd.grad(y, x, grad_outputs=g)
    return grad


def _softmax_grad(op, g: torch.Tensor, y: torch.Tensor) -> torch.Tensor:
    return y * (g - (g * y).sum(dim=-1, keepdim=True))


def _uniform(op) -> torch.Tensor:
    device = resolve_device()
    generator = _generators.get(op)
    if generator is None or generator.device.type != device.type:
        generator = torch.Generator(device=device)
        generator.manual_seed(op.params["seed"])
        _generators[op] = generator
    # torch.rand samples [0, 1); flip it onto (0, 1].
    return 1.0 - torch.rand(op.shape, generator=generator, device=device)


_TABLE: Dict[str, Callable[..., torch.Tensor]] = {
    "add": lambda op, a, b: torch.add(a, b),
    "sub": lambda op, a, b: torch.sub(a, b),
    "mul": lambda op, a, b: torch.mul(a, b),
    "div": _div,
    "pow": _pow,
    "max": lambda op, a, b: torch.maximum(a, b),
    "min": lambda op, a, b: torch.minimum(a, b),
    "lt": lambda op, a, b: torch.lt(a, b),
    "lte": lambda op, a, b: torch.le(a, b),
    "gt": lambda op, a, b: torch.gt(a, b),
    "gte": lambda op, a, b: torch.ge(a, b),
    "eq": lambda op, a, b: torch.eq(a, b),
    "neq": lambda op, a, b: torch.ne(a, b),
    "neg": lambda op, x: torch.neg(x),
    "abs": lambda op, x: torch.abs(x),
    "sgn": lambda op, x: torch.sign(x),
    "exp": lambda op, x: torch.exp(x),
    "log": lambda op, x: torch.log(x),
    "sqrt": lambda op, x: torch.sqrt(x),
    "matmul": lambda op, a, b: torch.matmul(a, b),
    "sum": _sum,
    "max_element": _max_element,
    "argmin": _argmin,
    "reshape": lambda op, x: x.reshape(op.shape),
    "transpose": lambda op, x: x.permute(op.params["order"]),
    "slice": _slice,
    "pad": _pad,
    "repeat": lambda op, x: x.expand(op.shape),
    "broadcast": lambda op, x: x.expand(op.shape),
    "convolution": _convolution,
    "convolution_features_grad": _convolution_features_grad,
    "convolution_filters_grad": _convolution_filters_grad,
    "maxpool": _maxpool,
    "maxpool_grad": _maxpool_grad,
    "softmax": lambda op, x: torch.softmax(x, dim=-1),
    "softmax_grad": _softmax_grad,
    "uniform": _uniform,
}


def register_accelerator_kernels(registry: KernelRegistry = kernels) -> None:
    for kind, fn in _TABLE.items():
        registry.register(kind, Device.ACCELERATOR, _kernel(fn))


__all__ = ["register_accelerator_kernels", "resolve_device"]
