"""
Built-in layer primitives.

Every primitive is a plain function taking the predecessor layer(s) and
returning a new TracingLayer with its output shape already computed.

Copyright 2025 AbstractPhil
Apache 2.0 License
"""

from .activation import ACTIVATIONS, activation, relu, resolve_activation
from .batchnorm import batch_norm
from .conv2d import conv2d
from .dense import dense, flatten
from .merge import (
    BINARY_OPS,
    add,
    concatenate,
    elementwise,
    merge,
    multiply,
    same_shape,
    subtract,
)
from .pooling import avg_pool2d, global_avg_pool2d, max_pool2d
from .shapes import (
    PADDINGS,
    conv2d_output_shape,
    pool2d_output_shape,
    same_padding,
    window_output_size,
)

__all__ = [
    # Transforms
    'dense',
    'flatten',
    'conv2d',
    'avg_pool2d',
    'max_pool2d',
    'global_avg_pool2d',
    'batch_norm',
    'activation',
    'relu',
    'ACTIVATIONS',
    'resolve_activation',

    # Merges
    'merge',
    'elementwise',
    'add',
    'subtract',
    'multiply',
    'concatenate',
    'same_shape',
    'BINARY_OPS',

    # Shape rules
    'PADDINGS',
    'window_output_size',
    'same_padding',
    'conv2d_output_shape',
    'pool2d_output_shape',
]
