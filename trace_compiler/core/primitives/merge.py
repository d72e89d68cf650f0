"""
Binary merge layers (skip / residual connections).

The shape rule runs once, at construction; incompatible shapes raise
ShapeError before any graph is compiled.

Copyright 2025 AbstractPhil
Apache 2.0 License
"""

from __future__ import annotations

from typing import Callable, Dict, Sequence, Tuple

import torch
from torch import Tensor

from ..errors import ShapeError
from ..layer import MergeLayer, TracingLayer


ShapeRule = Callable[[Tuple[int, ...], Tuple[int, ...]], Sequence[int]]
ValueRule = Callable[[Tensor, Tensor], Tensor]


BINARY_OPS: Dict[str, ValueRule] = {
    'add': torch.add,
    'subtract': torch.sub,
    'multiply': torch.mul,
}


def merge(
    prev1: TracingLayer,
    prev2: TracingLayer,
    merge_shapes: ShapeRule,
    merge_values: ValueRule,
    name: str = 'merge',
) -> MergeLayer:
    """Combine two layers with custom shape and value rules."""
    return MergeLayer(
        prev1,
        prev2,
        merge_fn=merge_values,
        output_shape=merge_shapes(prev1.output_shape, prev2.output_shape),
        name=name,
    )


def same_shape(op: str) -> ShapeRule:
    def rule(shape1, shape2):
        if tuple(shape1) != tuple(shape2):
            raise ShapeError(
                f"Cannot {op} layers with different shapes {tuple(shape1)} and {tuple(shape2)}"
            )
        return shape1
    return rule


def elementwise(prev1: TracingLayer, prev2: TracingLayer, op: str = 'add') -> MergeLayer:
    if op not in BINARY_OPS:
        raise ValueError(f"Unknown op: {op}")
    return merge(prev1, prev2, same_shape(op), BINARY_OPS[op], name=op)


def add(prev1: TracingLayer, prev2: TracingLayer) -> MergeLayer:
    return elementwise(prev1, prev2, 'add')


def subtract(prev1: TracingLayer, prev2: TracingLayer) -> MergeLayer:
    return elementwise(prev1, prev2, 'subtract')


def multiply(prev1: TracingLayer, prev2: TracingLayer) -> MergeLayer:
    return elementwise(prev1, prev2, 'multiply')


def concatenate(prev1: TracingLayer, prev2: TracingLayer, axis: int = -1) -> MergeLayer:
    """Join along `axis`; every other dimension must match."""
    rank = len(prev1.output_shape)
    if not -rank <= axis < rank:
        raise ShapeError(f"concatenate axis {axis} out of range for rank {rank}")
    axis = axis % rank

    def rule(shape1, shape2):
        if len(shape1) != len(shape2) or any(
            a != b for i, (a, b) in enumerate(zip(shape1, shape2)) if i != axis
        ):
            raise ShapeError(
                f"Cannot concatenate shapes {tuple(shape1)} and {tuple(shape2)} on axis {axis}"
            )
        out = list(shape1)
        out[axis] = shape1[axis] + shape2[axis]
        return out

    return merge(
        prev1,
        prev2,
        rule,
        lambda a, b: torch.cat([a, b], dim=axis + 1),
        name='concatenate',
    )


__all__ = [
    'BINARY_OPS',
    'merge',
    'same_shape',
    'elementwise',
    'add',
    'subtract',
    'multiply',
    'concatenate',
]
