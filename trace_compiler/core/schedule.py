"""
TraceCompiler.core.schedule

Graph discovery and topological scheduling.

    discovery = discover(output)     # BFS over dependency edges
    sched = schedule(output)         # Kahn's algorithm, FIFO tie-break

Discovery walks from the designated output toward the input, collecting
every reachable layer once (by identity), each layer's dependency count, and
the reverse edges (dependents). Exactly one reachable layer may have no
dependencies; it is the input.

Scheduling starts a FIFO queue with the input only. Popping a layer appends
it to the compute order and decrements the pending count of each dependent;
a dependent is enqueued the moment its count reaches zero. When several
layers become ready at once, the one made ready first runs first, so a
graph built in the same order always schedules the same way.

Copyright 2025 AbstractPhil
Apache 2.0 License
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from typing import Dict, List, Sequence

from .errors import MalformedGraphError
from .layer import TracingLayer


# =============================================================================
# DISCOVERY
# =============================================================================

@dataclass
class Discovery:
    """Everything reachable from an output layer."""
    output_layer: TracingLayer
    input_layer: TracingLayer
    layers: List[TracingLayer]                               # discovery order
    pending: Dict[TracingLayer, int]                         # dependency count
    dependents: Dict[TracingLayer, List[TracingLayer]]       # reverse edges, with multiplicity

    def __len__(self) -> int:
        return len(self.layers)


def _dependencies_of(layer: TracingLayer) -> Sequence[TracingLayer]:
    deps = tuple(layer.dependencies)
    for dep in deps:
        if not isinstance(dep, TracingLayer):
            raise MalformedGraphError(
                f"{layer!r} has a dependency that is not a layer: {dep!r}"
            )
    return deps


def discover(output: TracingLayer) -> Discovery:
    """
    Breadth-first search from `output` along dependency edges.

    Raises:
        MalformedGraphError: no input layer, or more than one.
    """
    if not isinstance(output, TracingLayer):
        raise MalformedGraphError(f"Expected a layer, got {type(output).__name__}")

    layers: List[TracingLayer] = []
    seen = set()
    pending: Dict[TracingLayer, int] = {}
    dependents: Dict[TracingLayer, List[TracingLayer]] = {}
    inputs: List[TracingLayer] = []

    to_visit = deque([output])
    while to_visit:
        layer = to_visit.popleft()
        if layer in seen:
            continue
        seen.add(layer)
        layers.append(layer)

        deps = _dependencies_of(layer)
        pending[layer] = len(deps)
        if not deps:
            inputs.append(layer)
            continue

        for dep in deps:
            dependents.setdefault(dep, []).append(layer)
            to_visit.append(dep)

    if not inputs:
        raise MalformedGraphError(
            f"Graph ending at {output!r} has no input layer (every layer has dependencies)"
        )
    if len(inputs) > 1:
        names = ', '.join(repr(l) for l in inputs)
        raise MalformedGraphError(
            f"Graph ending at {output!r} has {len(inputs)} input layers ({names}); expected exactly one"
        )

    return Discovery(
        output_layer=output,
        input_layer=inputs[0],
        layers=layers,
        pending=pending,
        dependents=dependents,
    )


# =============================================================================
# TOPOLOGICAL ORDER
# =============================================================================

@dataclass
class Schedule:
    """A fixed compute order plus lookup tables."""
    order: List[TracingLayer]
    input_layer: TracingLayer
    output_layer: TracingLayer
    dependents: Dict[TracingLayer, List[TracingLayer]] = field(repr=False)
    index: Dict[TracingLayer, int] = field(default_factory=dict, repr=False)

    def __post_init__(self):
        if not self.index:
            self.index = {layer: i for i, layer in enumerate(self.order)}

    def __len__(self) -> int:
        return len(self.order)

    def __iter__(self):
        return iter(self.order)

    def position(self, layer: TracingLayer) -> int:
        try:
            return self.index[layer]
        except KeyError:
            raise MalformedGraphError(f"{layer!r} is not part of this graph") from None


def schedule(output: TracingLayer) -> Schedule:
    """
    Compute order for the graph ending at `output`.

    Raises:
        MalformedGraphError: no/multiple inputs, a cycle, or a dependency
            that never becomes ready.
    """
    discovery = discover(output)
    pending = dict(discovery.pending)

    order: List[TracingLayer] = []
    ready = deque([discovery.input_layer])
    while ready:
        layer = ready.popleft()
        order.append(layer)
        for dependent in discovery.dependents.get(layer, ()):
            pending[dependent] -= 1
            if pending[dependent] == 0:
                ready.append(dependent)

    if len(order) != len(discovery.layers):
        stuck = [l for l in discovery.layers if pending[l] > 0]
        names = ', '.join(repr(l) for l in stuck[:5])
        raise MalformedGraphError(
            f"Could not schedule {len(stuck)} of {len(discovery.layers)} layers "
            f"(cycle or unreachable dependency): {names}"
        )

    return Schedule(
        order=order,
        input_layer=discovery.input_layer,
        output_layer=output,
        dependents=discovery.dependents,
    )


def check_topological(order: Sequence[TracingLayer]) -> None:
    """Raise unless every layer appears after all of its dependencies."""
    position = {layer: i for i, layer in enumerate(order)}
    for i, layer in enumerate(order):
        for dep in layer.dependencies:
            j = position.get(dep)
            if j is None:
                raise MalformedGraphError(f"{layer!r} depends on {dep!r}, which is not scheduled")
            if j >= i:
                raise MalformedGraphError(
                    f"{layer!r} (position {i}) scheduled before its dependency {dep!r} (position {j})"
                )


__all__ = [
    'Discovery',
    'Schedule',
    'discover',
    'schedule',
    'check_topological',
]
