"""
Dense (fully connected) and flatten layers.

Dense weights:
    kernel: [in, out]  glorot uniform
    bias:   [out]      zeros

Dense only accepts rank-1 inputs; flatten first for images.

Copyright 2025 AbstractPhil
Apache 2.0 License
"""

from __future__ import annotations

import math
from collections import OrderedDict

from torch import Tensor

from ..errors import ShapeError
from ..layer import TracingLayer, TransformLayer
from ..weights import AnyWeights, EMPTY_KIND
from .activation import ActivationLike, resolve_activation
from .init import glorot_uniform, zeros


def dense(
    prev: TracingLayer,
    output_size: int,
    activation: ActivationLike = None,
    use_bias: bool = True,
) -> TransformLayer:
    """y = act(x @ kernel + bias)"""
    shape = prev.output_shape
    if len(shape) != 1:
        raise ShapeError(
            f"dense expects a rank-1 input, got shape {shape}. Use .flatten() first."
        )
    if output_size < 1:
        raise ValueError(f"output_size must be positive, got {output_size}")

    in_features = shape[0]
    act = resolve_activation(activation)

    def init_weights(generator, dtype):
        weights = OrderedDict()
        weights['kernel'] = glorot_uniform(
            (in_features, output_size), in_features, output_size, generator, dtype
        )
        if use_bias:
            weights['bias'] = zeros((output_size,), dtype)
        return weights

    def fn(weights: AnyWeights, x: Tensor) -> Tensor:
        out = x @ weights['kernel']
        if use_bias:
            out = out + weights['bias']
        return act(out)

    return TransformLayer(
        prev,
        kind='dense',
        output_shape=(output_size,),
        fn=fn,
        init_weights=init_weights,
        name='dense',
    )


def flatten(prev: TracingLayer) -> TransformLayer:
    """[B, *shape] -> [B, prod(shape)]"""
    size = math.prod(prev.output_shape)
    return TransformLayer(
        prev,
        kind=EMPTY_KIND,
        output_shape=(size,),
        fn=lambda weights, x: x.reshape(x.shape[0], size),
        name='flatten',
    )


__all__ = ['dense', 'flatten']
