"""
Shape rules for windowed layers (convolution, pooling).

All shapes are per-sample and channels-last: (H, W, C).

    valid: out = ceil((size - effective_kernel + 1) / stride)
    same:  out = ceil(size / stride)

where effective_kernel = dilation * (kernel - 1) + 1.

"same" is realized TF-style: the total padding needed to produce `out`
windows is split with the smaller half before and the larger half after.

Copyright 2025 AbstractPhil
Apache 2.0 License
"""

from __future__ import annotations

from typing import Sequence, Tuple, Union

from ..errors import ShapeError


PADDINGS = ('valid', 'same')

Pair = Union[int, Tuple[int, int]]


def as_pair(value: Pair, name: str = 'value') -> Tuple[int, int]:
    """Normalize an int or 2-sequence to a pair of positive ints."""
    if isinstance(value, int):
        pair = (value, value)
    else:
        pair = tuple(value)
        if len(pair) != 2:
            raise ValueError(f"{name} must be an int or a pair, got {value!r}")
    if any(v < 1 for v in pair):
        raise ValueError(f"{name} must be positive, got {value!r}")
    return pair


def check_padding(padding: str) -> str:
    if padding not in PADDINGS:
        raise ValueError(f"padding must be one of {PADDINGS}, got {padding!r}")
    return padding


def _ceil_div(a: int, b: int) -> int:
    return -(-a // b)


def effective_kernel(kernel: int, dilation: int = 1) -> int:
    return dilation * (kernel - 1) + 1


def window_output_size(
    size: int,
    kernel: int,
    stride: int,
    padding: str,
    dilation: int = 1,
) -> int:
    """Output length of one spatial axis."""
    check_padding(padding)
    if padding == 'valid':
        out = _ceil_div(size - effective_kernel(kernel, dilation) + 1, stride)
    else:
        out = _ceil_div(size, stride)
    if out < 1:
        raise ShapeError(
            f"Window of size {kernel} (dilation {dilation}) does not fit "
            f"an axis of length {size} with '{padding}' padding"
        )
    return out


def same_padding(size: int, kernel: int, stride: int, dilation: int = 1) -> Tuple[int, int]:
    """(before, after) padding that yields ceil(size / stride) windows."""
    out = _ceil_div(size, stride)
    total = max((out - 1) * stride + effective_kernel(kernel, dilation) - size, 0)
    before = total // 2
    return before, total - before


def spatial_padding(
    shape: Sequence[int],
    kernel: Tuple[int, int],
    strides: Tuple[int, int],
    padding: str,
    dilations: Tuple[int, int] = (1, 1),
) -> Tuple[int, int, int, int]:
    """F.pad-ordered padding (left, right, top, bottom) for an (H, W, C) input."""
    if padding == 'valid':
        return (0, 0, 0, 0)
    top, bottom = same_padding(shape[0], kernel[0], strides[0], dilations[0])
    left, right = same_padding(shape[1], kernel[1], strides[1], dilations[1])
    return (left, right, top, bottom)


def check_rank(shape: Sequence[int], rank: int, layer: str) -> None:
    if len(shape) != rank:
        raise ShapeError(
            f"{layer} expects a rank-{rank} input, got shape {tuple(shape)}"
        )


def conv2d_output_shape(
    shape: Sequence[int],
    filter_shape: Tuple[int, int],
    output_channels: int,
    strides: Tuple[int, int] = (1, 1),
    padding: str = 'valid',
    dilations: Tuple[int, int] = (1, 1),
) -> Tuple[int, int, int]:
    """
    Output shape of a 2D convolution over an (H, W, C) input.

    Example:
        conv2d_output_shape((28, 28, 1), (5, 5), 6, padding='same')   # (28, 28, 6)
        conv2d_output_shape((28, 28, 1), (5, 5), 6, padding='valid')  # (24, 24, 6)
    """
    check_rank(shape, 3, 'conv2d')
    if output_channels < 1:
        raise ValueError(f"output_channels must be positive, got {output_channels}")
    return (
        window_output_size(shape[0], filter_shape[0], strides[0], padding, dilations[0]),
        window_output_size(shape[1], filter_shape[1], strides[1], padding, dilations[1]),
        output_channels,
    )


def pool2d_output_shape(
    shape: Sequence[int],
    pool_size: Tuple[int, int],
    strides: Tuple[int, int] = (1, 1),
    padding: str = 'valid',
) -> Tuple[int, int, int]:
    """Output shape of 2D pooling; channels pass through."""
    check_rank(shape, 3, 'pool2d')
    return (
        window_output_size(shape[0], pool_size[0], strides[0], padding),
        window_output_size(shape[1], pool_size[1], strides[1], padding),
        shape[2],
    )


__all__ = [
    'PADDINGS',
    'as_pair',
    'check_padding',
    'check_rank',
    'effective_kernel',
    'window_output_size',
    'same_padding',
    'spatial_padding',
    'conv2d_output_shape',
    'pool2d_output_shape',
]
