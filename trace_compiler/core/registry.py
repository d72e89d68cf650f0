"""
TraceCompiler.core.registry

Registry of layer builders with decorator-based registration.

Copyright 2025 AbstractPhil
Apache 2.0 License
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

from .layer import TracingLayer


Builder = Callable[..., TracingLayer]


@dataclass(frozen=True)
class LayerEntry:
    name: str
    builder: Builder
    arity: int = 1      # number of predecessor layers


# =============================================================================
# REGISTRY
# =============================================================================

class LayerRegistry:
    """
    Registry mapping layer type names to builder functions.

    A builder takes `arity` predecessor layers followed by keyword options
    and returns a new layer.

    Usage:
        @registry.register('swish')
        def swish(prev):
            return prev.activation(lambda x: x * torch.sigmoid(x))

        registry.register('concat', concatenate, arity=2)
    """

    def __init__(self):
        self._entries: Dict[str, LayerEntry] = {}

    def register(self, layer_type: str, builder: Optional[Builder] = None, arity: int = 1):
        """
        Register a layer builder.

        Can be used as decorator:
            @registry.register('dense')
            def dense(prev, output_size): ...

        Or directly:
            registry.register('dense', dense)
        """
        if arity not in (1, 2):
            raise ValueError(f"arity must be 1 or 2, got {arity}")

        def decorator(fn: Builder) -> Builder:
            if not callable(fn):
                raise TypeError(f"Builder for '{layer_type}' must be callable")
            self._entries[layer_type] = LayerEntry(layer_type, fn, arity)
            return fn

        if builder is not None:
            return decorator(builder)
        return decorator

    def unregister(self, layer_type: str) -> None:
        """Remove a registration."""
        self._entries.pop(layer_type, None)

    def get(self, layer_type: str) -> Optional[LayerEntry]:
        return self._entries.get(layer_type)

    def has(self, layer_type: str) -> bool:
        return layer_type in self._entries

    def build(self, layer_type: str, *prev: TracingLayer, **kwargs) -> TracingLayer:
        """
        Attach a `layer_type` layer to `prev`.

        Raises:
            KeyError: unknown layer type.
            TypeError: wrong number of predecessor layers.
        """
        entry = self._entries.get(layer_type)
        if entry is None:
            raise KeyError(
                f"Unknown layer type '{layer_type}'. "
                f"Registered: {', '.join(sorted(self._entries))}"
            )
        if len(prev) != entry.arity:
            raise TypeError(
                f"'{layer_type}' takes {entry.arity} input layer(s), got {len(prev)}"
            )
        return entry.builder(*prev, **kwargs)

    def list_registered(self) -> List[str]:
        """List all registered layer types."""
        return list(self._entries.keys())

    def __contains__(self, layer_type: str) -> bool:
        return self.has(layer_type)

    def __repr__(self) -> str:
        types = ', '.join(sorted(self._entries.keys()))
        return f"LayerRegistry([{types}])"


# =============================================================================
# GLOBAL REGISTRY
# =============================================================================

_global_registry = LayerRegistry()


def get_registry() -> LayerRegistry:
    """Get the global registry."""
    return _global_registry


def register(layer_type: str, builder: Optional[Builder] = None, arity: int = 1):
    """Register a layer builder to the global registry."""
    return _global_registry.register(layer_type, builder, arity)


def unregister(layer_type: str) -> None:
    """Remove from global registry."""
    _global_registry.unregister(layer_type)


def list_registered() -> List[str]:
    """List registered types in global registry."""
    return _global_registry.list_registered()


# =============================================================================
# AUTO-REGISTRATION
# =============================================================================

def auto_register_primitives() -> None:
    """Register all built-in primitives. Called on import."""
    from .primitives import (
        dense,
        flatten,
        conv2d,
        avg_pool2d,
        max_pool2d,
        global_avg_pool2d,
        batch_norm,
        activation,
        relu,
        add,
        subtract,
        multiply,
        concatenate,
    )

    # Transforms
    _global_registry.register('dense', dense)
    _global_registry.register('flatten', flatten)
    _global_registry.register('conv2d', conv2d)
    _global_registry.register('avg_pool2d', avg_pool2d)
    _global_registry.register('max_pool2d', max_pool2d)
    _global_registry.register('global_avg_pool2d', global_avg_pool2d)
    _global_registry.register('batch_norm', batch_norm)
    _global_registry.register('activation', activation)
    _global_registry.register('relu', relu)
    # Merges
    _global_registry.register('add', add, arity=2)
    _global_registry.register('subtract', subtract, arity=2)
    _global_registry.register('multiply', multiply, arity=2)
    _global_registry.register('concatenate', concatenate, arity=2)


# Auto-register on module load
auto_register_primitives()


__all__ = [
    'LayerEntry',
    'LayerRegistry',
    'get_registry',
    'register',
    'unregister',
    'list_registered',
    'auto_register_primitives',
]
