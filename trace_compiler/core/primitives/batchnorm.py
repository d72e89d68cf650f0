"""
Batch normalization over an arbitrary feature axis.

Statistics are computed from the current batch over every axis except the
feature axis. There are no running statistics: the compiled graph never
mutates its weights, so inference on a batch normalizes with that batch.

Weights:
    scale:  [features]  ones
    offset: [features]  zeros

Copyright 2025 AbstractPhil
Apache 2.0 License
"""

from __future__ import annotations

from collections import OrderedDict

from torch import Tensor

from ..errors import ShapeError
from ..layer import TracingLayer, TransformLayer
from ..weights import AnyWeights
from .init import ones, zeros


def batch_norm(prev: TracingLayer, axis: int = -1, epsilon: float = 1e-3) -> TransformLayer:
    shape = prev.output_shape
    rank = len(shape)
    if not -rank <= axis < rank:
        raise ShapeError(f"batch_norm axis {axis} out of range for shape {shape}")
    if epsilon <= 0:
        raise ValueError(f"epsilon must be positive, got {epsilon}")

    feature_axis = axis % rank
    features = shape[feature_axis]
    batched_axis = feature_axis + 1
    reduce_dims = tuple(d for d in range(rank + 1) if d != batched_axis)
    param_shape = [1] * (rank + 1)
    param_shape[batched_axis] = features

    def init_weights(generator, dtype):
        weights = OrderedDict()
        weights['scale'] = ones((features,), dtype)
        weights['offset'] = zeros((features,), dtype)
        return weights

    def fn(weights: AnyWeights, x: Tensor) -> Tensor:
        mean = x.mean(dim=reduce_dims, keepdim=True)
        var = ((x - mean) ** 2).mean(dim=reduce_dims, keepdim=True)
        normalized = (x - mean) / (var + epsilon).sqrt()
        scale = weights['scale'].view(param_shape)
        offset = weights['offset'].view(param_shape)
        return normalized * scale + offset

    return TransformLayer(
        prev,
        kind='batch_norm',
        output_shape=shape,
        fn=fn,
        init_weights=init_weights,
        name='batch_norm',
    )


__all__ = ['batch_norm']
