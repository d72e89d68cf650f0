"""
TraceCompiler.core.benchmark

Inference and training timings for a compiled graph.

Four measurements per graph:
    inference - baseline    hand-written function (or reference_call)
    inference - compiled    ComposedLayer.__call__
    training - baseline     baseline + autograd + SGD step
    training - compiled     value_with_gradient + SGD step

Copyright 2025 AbstractPhil
Apache 2.0 License
"""

from __future__ import annotations

import json
import time
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Callable, Dict, List, Optional, Sequence

import torch
from torch import Tensor

from .composed import ComposedLayer
from .weights import AnyWeights


Baseline = Callable[[Tensor, Sequence[AnyWeights]], Tensor]


@dataclass
class Timing:
    name: str
    mean_ms: float
    min_ms: float
    iterations: int


@dataclass
class BenchmarkResult:
    """Timings for one graph."""
    model: str
    device: str
    batch: int
    layers: int
    slots: int
    params: int
    baseline: str = 'reference'
    timings: List[Timing] = field(default_factory=list)
    timestamp: str = field(default_factory=lambda: datetime.now().isoformat())

    def get(self, name: str) -> Optional[Timing]:
        for t in self.timings:
            if t.name == name:
                return t
        return None

    def speedup(self, phase: str) -> Optional[float]:
        base = self.get(f"{phase} - baseline")
        comp = self.get(f"{phase} - compiled")
        if base is None or comp is None or comp.mean_ms == 0:
            return None
        return base.mean_ms / comp.mean_ms

    def summary(self) -> str:
        lines = [
            f"Benchmark: {self.model}",
            "=" * 60,
            f"Device: {self.device}",
            f"Batch: {self.batch}",
            f"Baseline: {self.baseline}",
            f"Layers: {self.layers} ({self.slots} slots, {self.params:,} params)",
            "",
        ]
        for t in self.timings:
            lines.append(f"  {t.name:<24} {t.mean_ms:8.3f}ms (min {t.min_ms:.3f}ms, n={t.iterations})")
        for phase in ('inference', 'training'):
            s = self.speedup(phase)
            if s is not None:
                lines.append(f"  {phase} speedup: {s:.2f}x")
        return "\n".join(lines)

    def to_dict(self) -> Dict:
        return asdict(self)

    def save(self, path: str) -> None:
        with open(path, 'w') as f:
            json.dump(self.to_dict(), f, indent=2)


def _sync(device: str) -> None:
    if device == 'cuda':
        torch.cuda.synchronize()


def time_fn(fn: Callable[[], object], iterations: int, warmup: int, device: str = 'cpu') -> Timing:
    """Mean and min wall time of `fn` in milliseconds."""
    for _ in range(warmup):
        fn()
    _sync(device)

    samples = []
    for _ in range(iterations):
        start = time.perf_counter()
        fn()
        _sync(device)
        samples.append((time.perf_counter() - start) * 1000)

    return Timing(
        name='',
        mean_ms=sum(samples) / len(samples),
        min_ms=min(samples),
        iterations=iterations,
    )


def sgd_step(params: Sequence[Tensor], grads: Sequence[Optional[Tensor]], lr: float) -> None:
    """In-place p -= lr * g; None gradients are skipped."""
    with torch.no_grad():
        for p, g in zip(params, grads):
            if g is not None:
                p.sub_(g, alpha=lr)


def benchmark_model(
    model: ComposedLayer,
    sample: Tensor,
    name: str = 'graph',
    iterations: int = 20,
    warmup: int = 3,
    device: str = 'cpu',
    verbose: bool = False,
    baseline: Optional[Baseline] = None,
    lr: float = 1e-4,
) -> BenchmarkResult:
    """
    Time inference and training of `model` against a baseline function.

    Both training cases take a gradient of out.sum() and apply an SGD step,
    so the model's weights change while it is timed. The baseline trains
    its own copy of the initial weights.

    Args:
        model: Compiled graph.
        sample: Batched input [B, *input_shape].
        baseline: (x, weights) -> output computing the same graph by hand.
            Defaults to model.reference_call.
        lr: SGD step size for the training cases.
    """
    if iterations < 1:
        raise ValueError(f"iterations must be positive, got {iterations}")

    model = model.to(device)
    sample = sample.to(device)

    result = BenchmarkResult(
        model=name,
        device=device,
        batch=sample.shape[0],
        layers=len(model.compute_order),
        slots=model.num_slots,
        params=model.weights.numel(),
        baseline='reference' if baseline is None else 'hand-written',
    )

    if baseline is None:
        baseline = model.reference_call

    baseline_weights = model.weights.clone()
    leaves = baseline_weights.tensors()
    for t in leaves:
        t.requires_grad_(True)

    def baseline_inference():
        with torch.no_grad():
            return baseline(sample, baseline_weights)

    def compiled_inference():
        with torch.no_grad():
            return model(sample)

    def baseline_training():
        out = baseline(sample, baseline_weights).sum()
        if leaves:
            sgd_step(leaves, torch.autograd.grad(out, leaves, allow_unused=True), lr)

    def compiled_training():
        _, grads = model.value_with_gradient(sample)
        sgd_step(model.weights.tensors(), grads.tensors(), lr)

    cases = [
        ('inference - baseline', baseline_inference),
        ('inference - compiled', compiled_inference),
        ('training - baseline', baseline_training),
        ('training - compiled', compiled_training),
    ]

    for label, fn in cases:
        if verbose:
            print(f"  timing {label}...")
        timing = time_fn(fn, iterations, warmup, device)
        timing.name = label
        result.timings.append(timing)

    return result


__all__ = [
    'Baseline',
    'Timing',
    'BenchmarkResult',
    'time_fn',
    'sgd_step',
    'benchmark_model',
]
