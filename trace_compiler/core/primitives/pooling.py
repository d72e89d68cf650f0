"""
2D pooling over channels-last tensors.

"same" average pooling divides by the number of real (unpadded) cells in
each window, so border windows are not biased toward zero.

Copyright 2025 AbstractPhil
Apache 2.0 License
"""

from __future__ import annotations

import torch
import torch.nn.functional as F
from torch import Tensor

from ..layer import TracingLayer, TransformLayer
from ..weights import EMPTY_KIND
from .shapes import Pair, as_pair, check_padding, check_rank, pool2d_output_shape, spatial_padding


def avg_pool2d(
    prev: TracingLayer,
    pool_size: Pair,
    strides: Pair = (1, 1),
    padding: str = 'valid',
) -> TransformLayer:
    """
    Average pooling.

    Example:
        input((24, 24, 6)).avg_pool2d((2, 2), strides=(2, 2))   # -> (12, 12, 6)
    """
    window = as_pair(pool_size, 'pool_size')
    strides = as_pair(strides, 'strides')
    check_padding(padding)

    shape = prev.output_shape
    output_shape = pool2d_output_shape(shape, window, strides, padding)
    pad = spatial_padding(shape, window, strides, padding)
    needs_pad = any(pad)

    def fn(weights, x: Tensor) -> Tensor:
        x = x.permute(0, 3, 1, 2)
        if needs_pad:
            ones = torch.ones(1, 1, x.shape[2], x.shape[3], dtype=x.dtype, device=x.device)
            summed = F.avg_pool2d(F.pad(x, pad), window, strides)
            coverage = F.avg_pool2d(F.pad(ones, pad), window, strides)
            out = summed / coverage
        else:
            out = F.avg_pool2d(x, window, strides)
        return out.permute(0, 2, 3, 1)

    return TransformLayer(
        prev,
        kind=EMPTY_KIND,
        output_shape=output_shape,
        fn=fn,
        name='avg_pool2d',
    )


def max_pool2d(
    prev: TracingLayer,
    pool_size: Pair,
    strides: Pair = (1, 1),
    padding: str = 'valid',
) -> TransformLayer:
    """Max pooling; "same" pads with -inf."""
    window = as_pair(pool_size, 'pool_size')
    strides = as_pair(strides, 'strides')
    check_padding(padding)

    shape = prev.output_shape
    output_shape = pool2d_output_shape(shape, window, strides, padding)
    pad = spatial_padding(shape, window, strides, padding)
    needs_pad = any(pad)

    def fn(weights, x: Tensor) -> Tensor:
        x = x.permute(0, 3, 1, 2)
        if needs_pad:
            x = F.pad(x, pad, value=float('-inf'))
        return F.max_pool2d(x, window, strides).permute(0, 2, 3, 1)

    return TransformLayer(
        prev,
        kind=EMPTY_KIND,
        output_shape=output_shape,
        fn=fn,
        name='max_pool2d',
    )


def global_avg_pool2d(prev: TracingLayer) -> TransformLayer:
    """(H, W, C) -> (C,)"""
    shape = prev.output_shape
    check_rank(shape, 3, 'global_avg_pool2d')
    return TransformLayer(
        prev,
        kind=EMPTY_KIND,
        output_shape=(shape[2],),
        fn=lambda weights, x: x.mean(dim=(1, 2)),
        name='global_avg_pool2d',
    )


__all__ = ['avg_pool2d', 'max_pool2d', 'global_avg_pool2d']
