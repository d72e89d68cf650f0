"""
TraceCompiler - Layer graphs compiled into a single differentiable function.

Declare a DAG of layers, then compile it: the compiler discovers the graph,
orders it topologically, packs intermediate outputs into reusable slots, and
returns one nn.Module whose weights are a flat list of per-layer boxes.

Main API:
    import trace_compiler as tc

    # Fluent declaration
    x = tc.input((28, 28, 1))
    y = (x.conv2d((5, 5), 6, padding='same', activation='relu')
          .avg_pool2d((2, 2), strides=(2, 2))
          .conv2d((5, 5), 16, activation='relu')
          .avg_pool2d((2, 2), strides=(2, 2))
          .flatten()
          .dense(120, activation='relu')
          .dense(10))

    # Compile
    model = tc.build(y, seed=0)
    model = y.build()

    # Skip connections
    h = x.conv2d((3, 3), 1, padding='same')
    model = (h + x).build()

    # Gradients with respect to the weight list
    value, grads = model.value_with_gradient(batch, loss_fn)

Copyright 2025 AbstractPhil
Apache 2.0 License
"""

# Main API
from .api import (
    build,
    sequential,
    TraceBuilder,
    input,
)

# Config
from .core.config import (
    TraceConfig,
    get_default_config,
    set_default_config,
)

# Registry
from .core.registry import (
    register,
    unregister,
    get_registry,
    list_registered,
)

# Core classes (for advanced usage)
from .core import (
    TraceCompilerError,
    MalformedGraphError,
    ShapeError,
    WeightTypeError,
    AnyWeights,
    WeightVector,
    TracingLayer,
    InputLayer,
    TransformLayer,
    MergeLayer,
    Schedule,
    SlotPlan,
    ComposedLayer,
    schedule,
    allocate_slots,
    compile_graph,
)

# Primitives (functional form)
from .core.primitives import (
    dense,
    flatten,
    conv2d,
    avg_pool2d,
    max_pool2d,
    global_avg_pool2d,
    batch_norm,
    activation,
    relu,
    merge,
    add,
    subtract,
    multiply,
    concatenate,
)

__version__ = '0.1.0'

__all__ = [
    # Main API
    'build',
    'sequential',
    'TraceBuilder',
    'input',

    # Config
    'TraceConfig',
    'get_default_config',
    'set_default_config',

    # Registry
    'register',
    'unregister',
    'get_registry',
    'list_registered',

    # Errors
    'TraceCompilerError',
    'MalformedGraphError',
    'ShapeError',
    'WeightTypeError',

    # Core
    'AnyWeights',
    'WeightVector',
    'TracingLayer',
    'InputLayer',
    'TransformLayer',
    'MergeLayer',
    'Schedule',
    'SlotPlan',
    'ComposedLayer',
    'schedule',
    'allocate_slots',
    'compile_graph',

    # Primitives
    'dense',
    'flatten',
    'conv2d',
    'avg_pool2d',
    'max_pool2d',
    'global_avg_pool2d',
    'batch_norm',
    'activation',
    'relu',
    'merge',
    'add',
    'subtract',
    'multiply',
    'concatenate',
]
