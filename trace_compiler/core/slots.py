"""
TraceCompiler.core.slots

Slot allocation for intermediate outputs.

Each layer's output is written to an integer slot of a per-call buffer. A
slot is released once every dependent of its current occupant has read it,
and released slots are reused first-freed-first. Layers read their inputs
before writing their output, so a layer may be assigned the slot of the very
dependency it is consuming.

    plan = allocate_slots(sched)
    plan.slots[i]             # slot written by sched.order[i]
    plan.dependency_slots[i]  # slots read by sched.order[i]
    plan.appends[i]           # True if that slot is new (buffer grows)

The input layer is pinned to slot 0, where the caller's value already sits,
and releases it right away: the raw input has exactly one reader.

Copyright 2025 AbstractPhil
Apache 2.0 License
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass
from typing import Dict, List, Sequence, Tuple

from .errors import MalformedGraphError
from .layer import TracingLayer
from .schedule import Schedule


INPUT_SLOT = 0


@dataclass
class SlotPlan:
    """Slot assignment aligned with compute order."""
    slots: List[int]
    dependency_slots: List[Tuple[int, ...]]
    appends: List[bool]
    num_slots: int
    output_slot: int

    def __len__(self) -> int:
        return len(self.slots)


def allocate_slots(sched: Schedule) -> SlotPlan:
    """
    Assign a buffer slot to every layer in `sched.order`.

    Raises:
        MalformedGraphError: a layer reads a dependency that has no slot yet.
    """
    remaining: Dict[TracingLayer, int] = {
        layer: len(deps) for layer, deps in sched.dependents.items()
    }
    allocated: Dict[TracingLayer, int] = {}
    open_slots: deque = deque()
    max_slot = INPUT_SLOT

    slots: List[int] = []
    dependency_slots: List[Tuple[int, ...]] = []
    appends: List[bool] = []

    for layer in sched.order:
        reads: List[int] = []
        for dep in layer.dependencies:
            if dep not in allocated:
                raise MalformedGraphError(
                    f"{layer!r} reads {dep!r} before it has been computed"
                )
            slot = allocated[dep]
            reads.append(slot)

            remaining[dep] -= 1
            if remaining[dep] == 0:
                open_slots.append(slot)

        if not reads:
            reads.append(INPUT_SLOT)
            open_slots.append(INPUT_SLOT)

        slot = open_slots.popleft() if open_slots else max_slot + 1
        append = slot > max_slot
        max_slot = max(max_slot, slot)

        allocated[layer] = slot
        slots.append(slot)
        dependency_slots.append(tuple(reads))
        appends.append(append)

    return SlotPlan(
        slots=slots,
        dependency_slots=dependency_slots,
        appends=appends,
        num_slots=max_slot + 1,
        output_slot=allocated[sched.output_layer],
    )


def check_slot_safety(order: Sequence[TracingLayer], plan: SlotPlan) -> None:
    """
    Raise if any value is overwritten before its last reader runs.

    For every edge dep -> layer, no layer scheduled strictly between them may
    write dep's slot.
    """
    position = {layer: i for i, layer in enumerate(order)}
    for j, layer in enumerate(order):
        for dep in layer.dependencies:
            i = position.get(dep)
            if i is None:
                raise MalformedGraphError(f"{layer!r} depends on {dep!r}, which is not scheduled")
            slot = plan.slots[i]
            for k in range(i + 1, j):
                if plan.slots[k] == slot:
                    raise MalformedGraphError(
                        f"Slot {slot} of {dep!r} is overwritten by {order[k]!r} "
                        f"before {layer!r} reads it"
                    )


__all__ = [
    'INPUT_SLOT',
    'SlotPlan',
    'allocate_slots',
    'check_slot_safety',
]
