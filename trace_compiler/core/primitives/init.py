"""
Weight initializers taking an explicit generator.

Copyright 2025 AbstractPhil
Apache 2.0 License
"""

from __future__ import annotations

import math
from typing import Callable, Optional, Sequence

import torch
from torch import Tensor

from ..errors import ShapeError


# (shape, generator, dtype) -> tensor
Initializer = Callable[[Sequence[int], Optional[torch.Generator], torch.dtype], Tensor]


def uniform(
    shape: Sequence[int],
    bound: float,
    generator: Optional[torch.Generator] = None,
    dtype: torch.dtype = torch.float32,
) -> Tensor:
    """U(-bound, bound)."""
    u = torch.rand(tuple(shape), generator=generator, dtype=dtype)
    return (u * 2 - 1) * bound


def glorot_uniform(
    shape: Sequence[int],
    fan_in: int,
    fan_out: int,
    generator: Optional[torch.Generator] = None,
    dtype: torch.dtype = torch.float32,
) -> Tensor:
    """Glorot / Xavier uniform: U(-sqrt(6 / (fan_in + fan_out)), ...)."""
    bound = math.sqrt(6.0 / (fan_in + fan_out))
    return uniform(shape, bound, generator, dtype)


def zeros(shape: Sequence[int], dtype: torch.dtype = torch.float32) -> Tensor:
    return torch.zeros(tuple(shape), dtype=dtype)


def ones(shape: Sequence[int], dtype: torch.dtype = torch.float32) -> Tensor:
    return torch.ones(tuple(shape), dtype=dtype)


def glorot_uniform_init(fan_in: int, fan_out: int) -> Initializer:
    def init(shape, generator=None, dtype=torch.float32):
        return glorot_uniform(shape, fan_in, fan_out, generator, dtype)
    return init


def zeros_init(shape, generator=None, dtype=torch.float32) -> Tensor:
    return zeros(shape, dtype)


def checked_init(
    init: Initializer,
    shape: Sequence[int],
    generator: Optional[torch.Generator],
    dtype: torch.dtype,
    name: str,
) -> Tensor:
    """Run `init` and check it produced `shape` in `dtype`."""
    tensor = init(tuple(shape), generator, dtype)
    if tuple(tensor.shape) != tuple(shape):
        raise ShapeError(
            f"Initializer for '{name}' returned shape {tuple(tensor.shape)}, expected {tuple(shape)}"
        )
    return tensor.to(dtype)
