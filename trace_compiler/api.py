"""
TraceCompiler.api

Main API entry point.

    import trace_compiler as tc

    x = tc.input((28, 28, 1))
    y = x.conv2d((5, 5), 6, padding='same').avg_pool2d((2, 2), strides=(2, 2))
    model = tc.build(y.flatten().dense(10), seed=0)

Copyright 2025 AbstractPhil
Apache 2.0 License
"""

from __future__ import annotations

import dataclasses
import warnings
from typing import Any, Dict, Iterable, Optional, Sequence, Tuple, Union

import torch
import torch.nn as nn

from .core.composed import ComposedLayer, compile_graph
from .core.config import TraceConfig, get_default_config
from .core.layer import TracingLayer, input
from .core.registry import get_registry


LayerSpec = Union[str, Tuple[str, Dict[str, Any]], Dict[str, Any]]


# =============================================================================
# MAIN API
# =============================================================================

def build(
    output: TracingLayer,
    config: Optional[TraceConfig] = None,
    *,
    seed: Optional[int] = None,
    precision: Optional[str] = None,
    validate: Optional[bool] = None,
    debug: Optional[bool] = None,
    compile_model: Optional[bool] = None,
) -> nn.Module:
    """
    Compile the layer graph ending at `output`.

    Args:
        output: The designated output layer.
        config: TraceConfig instance. Uses default if None.
        seed: Override config.seed
        precision: Override config.precision
        validate: Override config.validate
        debug: Override config.debug
        compile_model: Override config.compile

    Returns:
        ComposedLayer, wrapped by torch.compile if config.compile is set.

    Raises:
        MalformedGraphError: the graph has no/multiple inputs or a cycle.

    Example:
        model = build(y)
        model = build(y, TraceConfig.safe())
        model = build(y, seed=0, validate=True)
    """
    cfg = config or get_default_config()

    overrides = {
        'seed': seed,
        'precision': precision,
        'validate': validate,
        'debug': debug,
        'compile': compile_model,
    }
    for field, value in overrides.items():
        if value is not None:
            cfg = _with_override(cfg, field, value)

    if cfg.debug:
        print(f"[TraceCompiler] Building graph ending at {output!r}")
        print(f"[TraceCompiler] Registry: {get_registry()}")

    model = compile_graph(output, cfg)

    if cfg.debug:
        print(f"[TraceCompiler] Built model:\n{model.summary()}")

    if cfg.compile:
        model = _torch_compile(model, cfg)

    return model


def sequential(input_shape: Sequence[int], specs: Iterable[LayerSpec]) -> TracingLayer:
    """
    Build a chain of registered layers from declarative specs.

    Each spec is a layer type name, a (name, kwargs) pair, or a dict with a
    'type' key and keyword options.

    Example:
        y = sequential((28, 28, 1), [
            ('conv2d', {'filter_shape': (5, 5), 'output_channels': 6, 'padding': 'same'}),
            ('avg_pool2d', {'pool_size': (2, 2), 'strides': (2, 2)}),
            'flatten',
            {'type': 'dense', 'output_size': 10},
        ])
    """
    layer: TracingLayer = input(input_shape)
    for spec in specs:
        name, kwargs = _parse_spec(spec)
        layer = layer.apply(name, **kwargs)
    return layer


# =============================================================================
# BUILDER API (alternative fluent interface)
# =============================================================================

class TraceBuilder:
    """
    Fluent builder for compiled graphs.

    Example:
        model = (TraceBuilder(y)
            .with_config(TraceConfig.safe())
            .seed(0)
            .validate()
            .build())
    """

    def __init__(self, output: TracingLayer):
        self._output = output
        self._config = TraceConfig.default()

    def with_config(self, config: TraceConfig) -> 'TraceBuilder':
        """Set configuration."""
        self._config = config
        return self

    def seed(self, seed: int) -> 'TraceBuilder':
        """Seed weight initialization."""
        self._config = _with_override(self._config, 'seed', seed)
        return self

    def precision(self, precision: str) -> 'TraceBuilder':
        self._config = _with_override(self._config, 'precision', precision)
        return self

    def validate(self, enable: bool = True) -> 'TraceBuilder':
        """Enable/disable validation."""
        self._config = _with_override(self._config, 'validate', enable)
        return self

    def compile(self, mode: str = 'default') -> 'TraceBuilder':
        """Enable torch.compile."""
        self._config = _with_override(self._config, 'compile', True)
        self._config = _with_override(self._config, 'compile_mode', mode)
        return self

    def debug(self, enable: bool = True) -> 'TraceBuilder':
        """Enable debug output."""
        self._config = _with_override(self._config, 'debug', enable)
        return self

    @property
    def config(self) -> TraceConfig:
        return self._config

    def build(self) -> nn.Module:
        """Build the compiled graph."""
        return build(self._output, self._config)


# =============================================================================
# UTILITIES
# =============================================================================

def _with_override(config: TraceConfig, field: str, value) -> TraceConfig:
    """Create new config with field overridden."""
    return dataclasses.replace(config, **{field: value})


def _parse_spec(spec: LayerSpec) -> Tuple[str, Dict[str, Any]]:
    if isinstance(spec, str):
        return spec, {}
    if isinstance(spec, dict):
        options = dict(spec)
        try:
            name = options.pop('type')
        except KeyError:
            raise ValueError(f"Layer spec dict needs a 'type' key: {spec!r}") from None
        return name, options
    if isinstance(spec, (tuple, list)) and len(spec) == 2:
        name, options = spec
        return name, dict(options)
    raise ValueError(f"Invalid layer spec: {spec!r}")


def _torch_compile(model: ComposedLayer, cfg: TraceConfig) -> nn.Module:
    if not hasattr(torch, 'compile'):
        warnings.warn(
            "torch.compile is not available in this PyTorch version; "
            "returning the uncompiled graph.",
            UserWarning,
        )
        return model

    if cfg.debug:
        print(f"[TraceCompiler] Compiling with mode={cfg.compile_mode}")

    return torch.compile(
        model,
        mode=cfg.compile_mode,
        backend=cfg.compile_backend,
        **cfg.compile_options,
    )


__all__ = [
    'build',
    'sequential',
    'TraceBuilder',
    'input',
]
