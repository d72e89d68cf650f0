"""
2D convolution over channels-last tensors.

Per-sample shapes are (H, W, C); the step runs on [B, H, W, C] and converts
to torch's [B, C, H, W] around F.conv2d.

Weights:
    kernel: [kh, kw, C_in, C_out]  glorot uniform
    bias:   [C_out]                zeros

Copyright 2025 AbstractPhil
Apache 2.0 License
"""

from __future__ import annotations

from collections import OrderedDict
from typing import Optional

import torch.nn.functional as F
from torch import Tensor

from ..layer import TracingLayer, TransformLayer
from ..weights import AnyWeights
from .activation import ActivationLike, resolve_activation
from .init import Initializer, checked_init, glorot_uniform_init, zeros_init
from .shapes import Pair, as_pair, check_padding, conv2d_output_shape, spatial_padding


def conv2d(
    prev: TracingLayer,
    filter_shape: Pair,
    output_channels: int,
    strides: Pair = (1, 1),
    padding: str = 'valid',
    dilations: Pair = (1, 1),
    activation: ActivationLike = None,
    use_bias: bool = True,
    kernel_init: Optional[Initializer] = None,
    bias_init: Optional[Initializer] = None,
) -> TransformLayer:
    """
    Convolution layer.

    kernel_init and bias_init map (shape, generator, dtype) to a tensor and
    default to glorot uniform and zeros.

    Example:
        input((28, 28, 1)).conv2d((5, 5), 6, padding='same')   # -> (28, 28, 6)
        input((28, 28, 1)).conv2d((5, 5), 6)                   # -> (24, 24, 6)
    """
    kernel = as_pair(filter_shape, 'filter_shape')
    strides = as_pair(strides, 'strides')
    dilations = as_pair(dilations, 'dilations')
    check_padding(padding)

    shape = prev.output_shape
    output_shape = conv2d_output_shape(shape, kernel, output_channels, strides, padding, dilations)
    in_channels = shape[2]
    pad = spatial_padding(shape, kernel, strides, padding, dilations)
    needs_pad = any(pad)
    act = resolve_activation(activation)

    kh, kw = kernel
    fan_in = kh * kw * in_channels
    fan_out = kh * kw * output_channels

    kernel_shape = (kh, kw, in_channels, output_channels)
    kernel_init = kernel_init or glorot_uniform_init(fan_in, fan_out)
    bias_init = bias_init or zeros_init

    def init_weights(generator, dtype):
        weights = OrderedDict()
        weights['kernel'] = checked_init(kernel_init, kernel_shape, generator, dtype, 'kernel')
        if use_bias:
            weights['bias'] = checked_init(bias_init, (output_channels,), generator, dtype, 'bias')
        return weights

    def fn(weights: AnyWeights, x: Tensor) -> Tensor:
        x = x.permute(0, 3, 1, 2)                       # [B, C, H, W]
        if needs_pad:
            x = F.pad(x, pad)
        k = weights['kernel'].permute(3, 2, 0, 1)       # [C_out, C_in, kh, kw]
        bias = weights['bias'] if use_bias else None
        out = F.conv2d(x, k, bias, stride=strides, dilation=dilations)
        return act(out.permute(0, 2, 3, 1))             # [B, H, W, C]

    return TransformLayer(
        prev,
        kind='conv2d',
        output_shape=output_shape,
        fn=fn,
        init_weights=init_weights,
        name='conv2d',
    )


__all__ = ['conv2d']
