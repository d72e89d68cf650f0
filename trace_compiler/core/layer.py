"""
TraceCompiler.core.layer

Layer graph nodes.

A TracingLayer is a declaration, not a computation: it knows its output
shape, its dependencies, how to make its initial weights, and how to build a
pure evaluation step once it is told which buffer slots its inputs live in.

    x = input((28, 28, 1))
    y = x.conv2d((5, 5), 6, padding='same', activation='relu').avg_pool2d((2, 2), strides=(2, 2))
    model = y.flatten().dense(10).build()

Layers compare and hash by identity. Two structurally identical layers are
still two different nodes of the graph.

Copyright 2025 AbstractPhil
Apache 2.0 License
"""

from __future__ import annotations

import itertools
from typing import Callable, Mapping, Optional, Sequence, Tuple

import torch
from torch import Tensor

from .errors import MalformedGraphError
from .weights import AnyWeights, EMPTY_KIND


Shape = Tuple[int, ...]
Slots = Sequence[Tensor]
Step = Callable[[Slots, AnyWeights], Tensor]
WeightInit = Callable[[Optional[torch.Generator], torch.dtype], Mapping[str, Tensor]]

_layer_ids = itertools.count()


def _as_shape(shape: Sequence[int]) -> Shape:
    shape = tuple(int(d) for d in shape)
    if any(d < 1 for d in shape):
        raise ValueError(f"Shape dimensions must be positive, got {shape}")
    return shape


# =============================================================================
# BASE
# =============================================================================

class TracingLayer:
    """
    A layer and, transitively, all of its dependencies.

    Subclasses implement output_shape, dependencies, make_weights and
    build_step. Everything else (fluent construction, build) is shared.
    """

    kind: str = EMPTY_KIND

    def __init__(self, name: Optional[str] = None):
        self.layer_id = next(_layer_ids)
        self.name = name or type(self).__name__

    @property
    def output_shape(self) -> Shape:
        raise NotImplementedError

    @property
    def dependencies(self) -> Tuple['TracingLayer', ...]:
        raise NotImplementedError

    def make_weights(
        self,
        generator: Optional[torch.Generator] = None,
        dtype: torch.dtype = torch.float32,
    ) -> AnyWeights:
        """Fresh initial weights for this layer."""
        raise NotImplementedError

    def build_step(self, dependency_slots: Sequence[int]) -> Step:
        """
        Pure closure computing this layer's output.

        Args:
            dependency_slots: Buffer index of each dependency, aligned with
                `dependencies`. The input layer receives (0,).
        """
        raise NotImplementedError

    def _check_arity(self, dependency_slots: Sequence[int], n: int) -> None:
        if len(dependency_slots) != n:
            raise MalformedGraphError(
                f"{self!r} expects {n} dependency slot(s), got {len(dependency_slots)}"
            )

    # -------------------------------------------------------------------------
    # Compilation
    # -------------------------------------------------------------------------

    def build(self, config=None, **overrides):
        """Compile the graph ending at this layer. See trace_compiler.api.build."""
        # Import here to avoid circular imports
        from ..api import build
        return build(self, config, **overrides)

    # -------------------------------------------------------------------------
    # Fluent construction
    # -------------------------------------------------------------------------

    def apply(self, layer_type: str, *others: 'TracingLayer', **kwargs) -> 'TracingLayer':
        """Attach a registered layer type by name."""
        from .registry import get_registry
        return get_registry().build(layer_type, self, *others, **kwargs)

    def dense(self, output_size: int, activation=None, use_bias: bool = True) -> 'TracingLayer':
        from .primitives import dense
        return dense(self, output_size, activation=activation, use_bias=use_bias)

    def flatten(self) -> 'TracingLayer':
        from .primitives import flatten
        return flatten(self)

    def conv2d(
        self,
        filter_shape,
        output_channels: int,
        strides=(1, 1),
        padding: str = 'valid',
        dilations=(1, 1),
        activation=None,
        use_bias: bool = True,
        kernel_init=None,
        bias_init=None,
    ) -> 'TracingLayer':
        from .primitives import conv2d
        return conv2d(
            self,
            filter_shape,
            output_channels,
            strides=strides,
            padding=padding,
            dilations=dilations,
            activation=activation,
            use_bias=use_bias,
            kernel_init=kernel_init,
            bias_init=bias_init,
        )

    def avg_pool2d(self, pool_size, strides=(1, 1), padding: str = 'valid') -> 'TracingLayer':
        from .primitives import avg_pool2d
        return avg_pool2d(self, pool_size, strides=strides, padding=padding)

    def max_pool2d(self, pool_size, strides=(1, 1), padding: str = 'valid') -> 'TracingLayer':
        from .primitives import max_pool2d
        return max_pool2d(self, pool_size, strides=strides, padding=padding)

    def global_avg_pool2d(self) -> 'TracingLayer':
        from .primitives import global_avg_pool2d
        return global_avg_pool2d(self)

    def batch_norm(self, axis: int = -1, epsilon: float = 1e-3) -> 'TracingLayer':
        from .primitives import batch_norm
        return batch_norm(self, axis=axis, epsilon=epsilon)

    def activation(self, fn) -> 'TracingLayer':
        from .primitives import activation
        return activation(self, fn)

    def relu(self) -> 'TracingLayer':
        return self.activation('relu')

    def merge(self, other: 'TracingLayer', merge_shapes, merge_values, name: str = 'merge') -> 'TracingLayer':
        from .primitives import merge
        return merge(self, other, merge_shapes, merge_values, name=name)

    def add(self, other: 'TracingLayer') -> 'TracingLayer':
        from .primitives import add
        return add(self, other)

    def __add__(self, other: 'TracingLayer') -> 'TracingLayer':
        if not isinstance(other, TracingLayer):
            return NotImplemented
        return self.add(other)

    def __sub__(self, other: 'TracingLayer') -> 'TracingLayer':
        if not isinstance(other, TracingLayer):
            return NotImplemented
        from .primitives import subtract
        return subtract(self, other)

    def __mul__(self, other: 'TracingLayer') -> 'TracingLayer':
        if not isinstance(other, TracingLayer):
            return NotImplemented
        from .primitives import multiply
        return multiply(self, other)

    def __repr__(self) -> str:
        return f"{self.name}#{self.layer_id}{list(self.output_shape)}"


# =============================================================================
# VARIANTS
# =============================================================================

class InputLayer(TracingLayer):
    """The graph input. Its step passes the external value through."""

    def __init__(self, shape: Sequence[int], name: str = 'input'):
        super().__init__(name)
        self._output_shape = _as_shape(shape)

    @property
    def output_shape(self) -> Shape:
        return self._output_shape

    @property
    def dependencies(self) -> Tuple[TracingLayer, ...]:
        return ()

    def make_weights(self, generator=None, dtype=torch.float32) -> AnyWeights:
        return AnyWeights.empty()

    def build_step(self, dependency_slots: Sequence[int]) -> Step:
        self._check_arity(dependency_slots, 1)
        input_slot = dependency_slots[0]

        def step(slots: Slots, weights: AnyWeights) -> Tensor:
            weights.expect(EMPTY_KIND)
            return slots[input_slot]

        return step


class TransformLayer(TracingLayer):
    """
    One dependency passed through a weight-parameterized pure function.

    Args:
        dependency: Predecessor layer.
        kind: Weight kind tag; checked on every evaluation.
        output_shape: Precomputed output shape.
        fn: (weights, x) -> y, applied to batched tensors.
        init_weights: (generator, dtype) -> {name: tensor}. None for
            weightless transforms (kind must then be 'empty').
    """

    def __init__(
        self,
        dependency: TracingLayer,
        *,
        kind: str,
        output_shape: Sequence[int],
        fn: Callable[[AnyWeights, Tensor], Tensor],
        init_weights: Optional[WeightInit] = None,
        name: Optional[str] = None,
    ):
        super().__init__(name or kind)
        if init_weights is None and kind != EMPTY_KIND:
            raise ValueError(f"Layer kind '{kind}' needs an init_weights function")
        self.dependency = dependency
        self.kind = kind
        self.fn = fn
        self.init_weights = init_weights
        self._output_shape = _as_shape(output_shape)

    @property
    def output_shape(self) -> Shape:
        return self._output_shape

    @property
    def dependencies(self) -> Tuple[TracingLayer, ...]:
        return (self.dependency,)

    def make_weights(self, generator=None, dtype=torch.float32) -> AnyWeights:
        if self.init_weights is None:
            return AnyWeights.empty()
        return AnyWeights(self.kind, self.init_weights(generator, dtype))

    def build_step(self, dependency_slots: Sequence[int]) -> Step:
        self._check_arity(dependency_slots, 1)
        prev_slot = dependency_slots[0]
        fn = self.fn
        kind = self.kind

        def step(slots: Slots, weights: AnyWeights) -> Tensor:
            return fn(weights.expect(kind), slots[prev_slot])

        return step


class MergeLayer(TracingLayer):
    """
    Two dependencies combined by a pure function. Owns no weights.

    The output shape is computed once, here, by the caller's shape rule.
    """

    def __init__(
        self,
        dependency1: TracingLayer,
        dependency2: TracingLayer,
        *,
        merge_fn: Callable[[Tensor, Tensor], Tensor],
        output_shape: Sequence[int],
        name: str = 'merge',
    ):
        super().__init__(name)
        self.dependency1 = dependency1
        self.dependency2 = dependency2
        self.merge_fn = merge_fn
        self._output_shape = _as_shape(output_shape)

    @property
    def output_shape(self) -> Shape:
        return self._output_shape

    @property
    def dependencies(self) -> Tuple[TracingLayer, ...]:
        return (self.dependency1, self.dependency2)

    def make_weights(self, generator=None, dtype=torch.float32) -> AnyWeights:
        return AnyWeights.empty()

    def build_step(self, dependency_slots: Sequence[int]) -> Step:
        self._check_arity(dependency_slots, 2)
        slot1, slot2 = dependency_slots
        merge_fn = self.merge_fn

        def step(slots: Slots, weights: AnyWeights) -> Tensor:
            weights.expect(EMPTY_KIND)
            return merge_fn(slots[slot1], slots[slot2])

        return step


def input(shape: Sequence[int], name: str = 'input') -> InputLayer:
    """Declare the graph input with a per-sample shape."""
    return InputLayer(shape, name=name)


__all__ = [
    'Shape',
    'Step',
    'TracingLayer',
    'InputLayer',
    'TransformLayer',
    'MergeLayer',
    'input',
]
