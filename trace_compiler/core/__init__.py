"""
TraceCompiler core - layer graphs compiled into one differentiable function.

Usage:
    from trace_compiler.core import input, compile_graph

    x = input((28, 28, 1))
    y = (x.conv2d((5, 5), 6, padding='same', activation='relu')
          .avg_pool2d((2, 2), strides=(2, 2))
          .flatten()
          .dense(10))

    model = compile_graph(y)        # ComposedLayer
    out = model(torch.randn(32, 28, 28, 1))
    value, grads = model.value_with_gradient(batch, loss_fn)

Copyright 2025 AbstractPhil
Apache License 2.0
"""

from .errors import (
    TraceCompilerError,
    MalformedGraphError,
    ShapeError,
    WeightTypeError,
)

from .weights import (
    AnyWeights,
    WeightVector,
)

from .layer import (
    TracingLayer,
    InputLayer,
    TransformLayer,
    MergeLayer,
    input,
)

from .schedule import (
    Discovery,
    Schedule,
    discover,
    schedule,
    check_topological,
)

from .slots import (
    SlotPlan,
    allocate_slots,
    check_slot_safety,
)

from .composed import (
    ComposedLayer,
    compile_graph,
)

__all__ = [
    # Errors
    'TraceCompilerError',
    'MalformedGraphError',
    'ShapeError',
    'WeightTypeError',

    # Weights
    'AnyWeights',
    'WeightVector',

    # Layers
    'TracingLayer',
    'InputLayer',
    'TransformLayer',
    'MergeLayer',
    'input',

    # Compiler passes
    'Discovery',
    'Schedule',
    'discover',
    'schedule',
    'check_topological',
    'SlotPlan',
    'allocate_slots',
    'check_slot_safety',
    'ComposedLayer',
    'compile_graph',
]
