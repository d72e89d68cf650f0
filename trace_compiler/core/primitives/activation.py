"""
Activations: weightless elementwise transforms.

Named activations resolve through ACTIVATIONS; any callable Tensor -> Tensor
is also accepted and used as-is.

Copyright 2025 AbstractPhil
Apache 2.0 License
"""

from __future__ import annotations

from typing import Callable, Dict, Optional, Union

import torch
import torch.nn.functional as F
from torch import Tensor

from ..layer import TracingLayer, TransformLayer
from ..weights import EMPTY_KIND


ActivationFn = Callable[[Tensor], Tensor]
ActivationLike = Optional[Union[str, ActivationFn]]


def _identity(x: Tensor) -> Tensor:
    return x


def _softmax(x: Tensor) -> Tensor:
    return F.softmax(x, dim=-1)


ACTIVATIONS: Dict[str, ActivationFn] = {
    'identity': _identity,
    'relu': F.relu,
    'gelu': F.gelu,
    'tanh': torch.tanh,
    'sigmoid': torch.sigmoid,
    'softmax': _softmax,
}


def resolve_activation(fn: ActivationLike) -> ActivationFn:
    """None -> identity, str -> ACTIVATIONS lookup, callable -> itself."""
    if fn is None:
        return _identity
    if isinstance(fn, str):
        try:
            return ACTIVATIONS[fn]
        except KeyError:
            raise ValueError(
                f"Unknown activation '{fn}'. Available: {', '.join(ACTIVATIONS)}"
            ) from None
    if not callable(fn):
        raise TypeError(f"activation must be a name or callable, got {type(fn).__name__}")
    return fn


def activation_name(fn: ActivationLike) -> str:
    if fn is None:
        return 'identity'
    if isinstance(fn, str):
        return fn
    return getattr(fn, '__name__', 'activation')


def activation(prev: TracingLayer, fn: ActivationLike) -> TransformLayer:
    """Apply an elementwise activation; shape is unchanged."""
    act = resolve_activation(fn)
    return TransformLayer(
        prev,
        kind=EMPTY_KIND,
        output_shape=prev.output_shape,
        fn=lambda weights, x: act(x),
        name=activation_name(fn),
    )


def relu(prev: TracingLayer) -> TransformLayer:
    return activation(prev, 'relu')


__all__ = [
    'ACTIVATIONS',
    'resolve_activation',
    'activation',
    'relu',
]
