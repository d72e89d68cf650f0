"""
TraceCompiler.core.errors

Exception taxonomy for graph construction and compilation.

All of these are raised eagerly, before a ComposedLayer exists.

Copyright 2025 AbstractPhil
Apache 2.0 License
"""


class TraceCompilerError(Exception):
    """Base class for all TraceCompiler errors."""


class MalformedGraphError(TraceCompilerError, ValueError):
    """No/multiple input layers, cycles, or dependencies outside the graph."""


class ShapeError(TraceCompilerError, ValueError):
    """Incompatible shapes, at construction time or at call time."""


class WeightTypeError(TraceCompilerError, TypeError):
    """A weight box of the wrong kind reached a layer step."""


__all__ = [
    'TraceCompilerError',
    'MalformedGraphError',
    'ShapeError',
    'WeightTypeError',
]
