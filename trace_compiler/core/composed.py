"""
TraceCompiler.core.composed

Compiling a layer graph into one differentiable callable.

    sched = schedule(output)             # compute order
    plan = allocate_slots(sched)         # buffer slots
    model = compile_graph(output)        # ComposedLayer

ComposedLayer owns one AnyWeights box per layer (aligned with compute order)
and a fixed plan of steps. A call builds a fresh slot buffer holding the
input in slot 0, runs every step in order, and returns the output slot:

    buffer = [x]
    for step in plan:
        value = step.fn(buffer, weights[step.index])
        buffer = buffer + [value]               # new slot
        buffer = updated(buffer, slot, value)   # reused slot

Buffer updates never write into a tensor. A reused slot gets a new list with
the new tensor at that index, so autograd sees only the pure layer functions
and the overwritten value keeps the gradient contributions of the readers
that consumed it earlier.

Every weight tensor is registered as an nn.Parameter shared with its box,
so a torch.optim optimizer stepping `model.parameters()` updates the boxes in
place.

Copyright 2025 AbstractPhil
Apache 2.0 License
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence, Tuple

import torch
import torch.nn as nn
from torch import Tensor

from .config import TraceConfig, get_default_config
from .errors import ShapeError, WeightTypeError
from .layer import Shape, Step, TracingLayer
from .schedule import Schedule, check_topological, schedule
from .slots import SlotPlan, allocate_slots, check_slot_safety
from .weights import AnyWeights, WeightVector


# =============================================================================
# PLAN
# =============================================================================

@dataclass(frozen=True)
class PlanStep:
    """One layer's evaluation inside the compiled plan."""
    index: int          # position in compute order == weight index
    slot: int           # slot written
    append: bool        # slot is new (one past the previous maximum)
    fn: Step


def updated(buffer: List[Tensor], index: int, value: Tensor) -> List[Tensor]:
    """Copy of `buffer` with `value` at `index`."""
    out = list(buffer)
    out[index] = value
    return out


def _run_plan(plan: Sequence[PlanStep], x: Tensor, weights: Sequence[AnyWeights]) -> List[Tensor]:
    buffer: List[Tensor] = [x]
    for step in plan:
        value = step.fn(buffer, weights[step.index])
        if step.append:
            buffer = buffer + [value]
        else:
            buffer = updated(buffer, step.slot, value)
    return buffer


# =============================================================================
# COMPOSED LAYER
# =============================================================================

class ComposedLayer(nn.Module):
    """
    A compiled layer graph.

    Call with an input of the declared per-sample shape, optionally with a
    leading batch dimension:

        model = output.build()
        y = model(x)                               # uses model.weights
        y = model.call_function(x, other_weights)  # explicit weights
        value, grads = model.value_with_gradient(x, loss_fn)
    """

    def __init__(
        self,
        sched: Schedule,
        slot_plan: SlotPlan,
        weights: Sequence[AnyWeights],
        config: Optional[TraceConfig] = None,
    ):
        super().__init__()
        if len(weights) != len(sched.order):
            raise WeightTypeError(
                f"Got {len(weights)} weight boxes for {len(sched.order)} layers"
            )

        self.config = config or get_default_config()
        self.schedule = sched
        self.slot_plan = slot_plan
        self.input_shape: Shape = sched.input_layer.output_shape
        self.output_shape: Shape = sched.output_layer.output_shape

        # Parameters shared with the boxes
        self.params = nn.ParameterDict()
        boxes = []
        for i, box in enumerate(weights):
            shared = AnyWeights(box.kind)
            for name, tensor in box.tensors.items():
                param = nn.Parameter(tensor.detach().clone())
                self.params[f"w{i}_{name}"] = param
                shared.tensors[name] = param
            boxes.append(shared)
        self._weights = WeightVector(boxes)

        self._plan: Tuple[PlanStep, ...] = tuple(
            PlanStep(
                index=i,
                slot=slot_plan.slots[i],
                append=slot_plan.appends[i],
                fn=layer.build_step(slot_plan.dependency_slots[i]),
            )
            for i, layer in enumerate(sched.order)
        )
        self._reference_plan: Optional[Tuple[Step, ...]] = None

    # -------------------------------------------------------------------------
    # Introspection
    # -------------------------------------------------------------------------

    @property
    def weights(self) -> WeightVector:
        return self._weights

    @property
    def compute_order(self) -> List[TracingLayer]:
        return list(self.schedule.order)

    @property
    def num_slots(self) -> int:
        return self.slot_plan.num_slots

    def slot_of(self, layer: TracingLayer) -> int:
        return self.slot_plan.slots[self.schedule.position(layer)]

    def weights_of(self, layer: TracingLayer) -> AnyWeights:
        return self._weights[self.schedule.position(layer)]

    # -------------------------------------------------------------------------
    # Evaluation
    # -------------------------------------------------------------------------

    def _batched(self, x: Tensor) -> Tuple[Tensor, bool]:
        shape = tuple(x.shape)
        if shape == self.input_shape:
            return x.unsqueeze(0), True
        if len(shape) == len(self.input_shape) + 1 and shape[1:] == self.input_shape:
            return x, False
        raise ShapeError(
            f"Expected input of shape {self.input_shape} or (B, *{self.input_shape}), "
            f"got {shape}"
        )

    def call_function(self, x: Tensor, weights: Sequence[AnyWeights]) -> Tensor:
        """Evaluate the graph at `x` with an explicit weight sequence."""
        if len(weights) != len(self._plan):
            raise WeightTypeError(
                f"Expected {len(self._plan)} weight boxes, got {len(weights)}"
            )
        x, unbatched = self._batched(x)
        buffer = _run_plan(self._plan, x, weights)
        out = buffer[self.slot_plan.output_slot]
        return out.squeeze(0) if unbatched else out

    def forward(self, x: Tensor) -> Tensor:
        return self.call_function(x, self._weights)

    def reference_call(self, x: Tensor, weights: Optional[Sequence[AnyWeights]] = None) -> Tensor:
        """
        Evaluate with one buffer entry per layer and no slot reuse.

        Same compute order and weights as call_function; used to check that
        slot reuse never changes results, and as the benchmark baseline for
        graphs without a hand-written one.
        """
        weights = self._weights if weights is None else weights
        if len(weights) != len(self._plan):
            raise WeightTypeError(
                f"Expected {len(self._plan)} weight boxes, got {len(weights)}"
            )
        if self._reference_plan is None:
            self._reference_plan = tuple(
                layer.build_step(
                    [self.schedule.index[dep] + 1 for dep in layer.dependencies] or [0]
                )
                for layer in self.schedule.order
            )
        x, unbatched = self._batched(x)
        values: List[Tensor] = [x]
        for step, box in zip(self._reference_plan, weights):
            values.append(step(values, box))
        out = values[self.schedule.index[self.schedule.output_layer] + 1]
        return out.squeeze(0) if unbatched else out

    def value_with_gradient(
        self,
        x: Tensor,
        loss_fn: Optional[Callable[[Tensor], Tensor]] = None,
        weights: Optional[Sequence[AnyWeights]] = None,
    ) -> Tuple[Tensor, WeightVector]:
        """
        Reverse-mode gradient with respect to every weight box.

        Args:
            x: Input.
            loss_fn: Maps the graph output to a scalar. Defaults to sum().
            weights: Weights to differentiate at. Defaults to self.weights.

        Returns:
            (scalar value, gradients shaped like the weights)
        """
        weights = WeightVector(weights) if weights is not None else self._weights
        inputs = [t if t.requires_grad else t.detach().requires_grad_(True) for t in weights.tensors()]

        # Rebuild boxes around the leaves we differentiate against
        it = iter(inputs)
        boxes = [
            AnyWeights(box.kind, {name: next(it) for name in box.tensors})
            for box in weights
        ]

        with torch.enable_grad():
            out = self.call_function(x, boxes)
            value = loss_fn(out) if loss_fn is not None else out.sum()
            if value.dim() != 0:
                raise ShapeError(f"loss must be a scalar, got shape {tuple(value.shape)}")
            grads = torch.autograd.grad(value, inputs, allow_unused=True) if inputs else ()

        it = iter(grads)
        grad_boxes = []
        for box in boxes:
            tensors = {}
            for name, t in box.tensors.items():
                g = next(it)
                tensors[name] = torch.zeros_like(t) if g is None else g
            grad_boxes.append(AnyWeights(box.kind, tensors))

        return value.detach(), WeightVector(grad_boxes)

    def gradient(
        self,
        x: Tensor,
        loss_fn: Optional[Callable[[Tensor], Tensor]] = None,
        weights: Optional[Sequence[AnyWeights]] = None,
    ) -> WeightVector:
        return self.value_with_gradient(x, loss_fn, weights)[1]

    # -------------------------------------------------------------------------
    # Summary
    # -------------------------------------------------------------------------

    def summary(self) -> str:
        lines = [
            f"ComposedLayer: {len(self._plan)} layers, {self.num_slots} slots",
            "=" * 60,
            f"Input:  {list(self.input_shape)}",
            f"Output: {list(self.output_shape)} (slot {self.slot_plan.output_slot})",
            "",
        ]

        for i, layer in enumerate(self.schedule.order):
            reads = ", ".join(str(s) for s in self.slot_plan.dependency_slots[i])
            mode = "append" if self.slot_plan.appends[i] else "reuse"
            params = self._weights[i].numel()
            lines.append(
                f"  [{i}] {layer!r}: slots({reads}) -> {self.slot_plan.slots[i]} "
                f"({mode}, {params:,} params)"
            )

        lines.append("")
        lines.append(f"Total: {self._weights.numel():,} params")
        return "\n".join(lines)

    def extra_repr(self) -> str:
        return (
            f"layers={len(self._plan)}, slots={self.num_slots}, "
            f"input={list(self.input_shape)}, output={list(self.output_shape)}"
        )


# =============================================================================
# COMPILE
# =============================================================================

def compile_graph(output: TracingLayer, config: Optional[TraceConfig] = None) -> ComposedLayer:
    """
    Schedule, allocate and compile the graph ending at `output`.

    Weights are made once per layer, in compute order, from the config's
    seed (if any).

    Raises:
        MalformedGraphError: no/multiple inputs, cycles, dangling dependencies.
    """
    cfg = config or get_default_config()

    sched = schedule(output)
    plan = allocate_slots(sched)

    if cfg.validate:
        check_topological(sched.order)
        check_slot_safety(sched.order, plan)

    generator = cfg.make_generator()
    weights = [layer.make_weights(generator, cfg.dtype) for layer in sched.order]

    if cfg.debug:
        print(f"[TraceCompiler] Scheduled {len(sched.order)} layers into {plan.num_slots} slots")

    return ComposedLayer(sched, plan, weights, cfg)


__all__ = [
    'PlanStep',
    'ComposedLayer',
    'compile_graph',
    'updated',
]
