"""
TraceCompiler CLI

Inspection, self-test and benchmark utilities for compiled layer graphs.

Usage:
    python -m trace_compiler info
    python -m trace_compiler trace --model lenet
    python -m trace_compiler test
    python -m trace_compiler benchmark --model lenet --batch 32 --iters 50

Copyright 2025 AbstractPhil
Apache 2.0 License
"""

import argparse
import sys

import torch
import torch.nn.functional as F

from .api import build
from .core.benchmark import benchmark_model
from .core.config import TraceConfig
from .core.layer import input
from .core.registry import list_registered
from .core.slots import check_slot_safety
from .core.schedule import check_topological


# =============================================================================
# SAMPLE GRAPHS
# =============================================================================

def mlp():
    """Small MLP: 8 -> dense(4) -> dense(1)."""
    return input((8,)).dense(4, activation='tanh').dense(1)


def lenet():
    """LeNet-5 on (28, 28, 1)."""
    return (input((28, 28, 1))
            .conv2d((5, 5), 6, padding='same', activation='relu')
            .avg_pool2d((2, 2), strides=(2, 2))
            .conv2d((5, 5), 16, activation='relu')
            .avg_pool2d((2, 2), strides=(2, 2))
            .flatten()
            .dense(120, activation='relu')
            .dense(84, activation='relu')
            .dense(10))


def residual(channels=8):
    """Two conv-bn blocks with an identity skip connection."""
    x = input((16, 16, channels))
    h = (x.conv2d((3, 3), channels, padding='same', use_bias=False)
          .batch_norm()
          .relu()
          .conv2d((3, 3), channels, padding='same', use_bias=False)
          .batch_norm())
    return (h + x).relu().global_avg_pool2d().dense(10)


MODELS = {
    'mlp': mlp,
    'lenet': lenet,
    'residual': residual,
}


# =============================================================================
# HAND-WRITTEN BASELINES
# =============================================================================
# Each baseline computes its sample graph directly with torch ops on the
# compiled model's weight boxes. Weightless layers own empty boxes, which are
# skipped; the rest arrive in compute order.

def _weighted(weights):
    return [box for box in weights if len(box)]


def _conv(h, box, pad):
    """NCHW conv with an (kh, kw, C_in, C_out) kernel and symmetric padding."""
    bias = box['bias'] if 'bias' in box else None
    return F.conv2d(F.pad(h, (pad, pad, pad, pad)), box['kernel'].permute(3, 2, 0, 1), bias)


def _batch_norm(h, box, epsilon=1e-3):
    mean = h.mean(dim=(0, 2, 3), keepdim=True)
    var = ((h - mean) ** 2).mean(dim=(0, 2, 3), keepdim=True)
    scale = box['scale'].view(1, -1, 1, 1)
    offset = box['offset'].view(1, -1, 1, 1)
    return (h - mean) / (var + epsilon).sqrt() * scale + offset


def mlp_baseline(x, weights):
    d1, d2 = _weighted(weights)
    h = torch.tanh(x @ d1['kernel'] + d1['bias'])
    return h @ d2['kernel'] + d2['bias']


def lenet_baseline(x, weights):
    c1, c2, d1, d2, d3 = _weighted(weights)
    h = x.permute(0, 3, 1, 2)
    h = F.avg_pool2d(F.relu(_conv(h, c1, 2)), 2, 2)
    h = F.avg_pool2d(F.relu(_conv(h, c2, 0)), 2, 2)
    h = h.permute(0, 2, 3, 1).reshape(h.shape[0], -1)
    h = F.relu(h @ d1['kernel'] + d1['bias'])
    h = F.relu(h @ d2['kernel'] + d2['bias'])
    return h @ d3['kernel'] + d3['bias']


def residual_baseline(x, weights):
    c1, bn1, c2, bn2, d = _weighted(weights)
    skip = x.permute(0, 3, 1, 2)
    h = F.relu(_batch_norm(_conv(skip, c1, 1), bn1))
    h = _batch_norm(_conv(h, c2, 1), bn2)
    h = F.relu(h + skip).mean(dim=(2, 3))
    return h @ d['kernel'] + d['bias']


BASELINES = {
    'mlp': mlp_baseline,
    'lenet': lenet_baseline,
    'residual': residual_baseline,
}


# =============================================================================
# COMMANDS
# =============================================================================

def cmd_test(args):
    """Run correctness checks on every sample graph."""
    print("=" * 60)

    passed = 0
    failed = 0

    for name, make in MODELS.items():
        print(f"\nTesting {name}...")

        try:
            cfg = TraceConfig(seed=0, precision='fp64', validate=True)
            output = make()
            a = build(output, cfg)
            b = build(output, cfg)

            check_topological(a.compute_order)
            check_slot_safety(a.compute_order, a.slot_plan)

            x = torch.randn(4, *a.input_shape, dtype=torch.float64)
            with torch.no_grad():
                same = torch.equal(a(x), b(x))
                reuse_diff = (a(x) - a.reference_call(x)).abs().max().item()
                base_diff = (a(x) - BASELINES[name](x, a.weights)).abs().max().item()

            grad_err = _finite_difference_error(a, x)

            ok = same and reuse_diff < 1e-10 and base_diff < 1e-10 and grad_err < 1e-5
            mark = "✓" if ok else "✗"
            print(
                f"  {mark} {name}: deterministic={same} reuse_diff={reuse_diff:.2e} "
                f"baseline_diff={base_diff:.2e} "
                f"grad_err={grad_err:.2e} slots={a.num_slots}/{len(a.compute_order)}"
            )
            if ok:
                passed += 1
            else:
                failed += 1

        except Exception as e:
            print(f"  ✗ {name}: {e}")
            failed += 1

    print("\n" + "=" * 60)
    print(f"Results: {passed} passed, {failed} failed")
    return 0 if failed == 0 else 1


def _finite_difference_error(model, x, eps=1e-6, samples=3):
    """Max abs error between autograd and central differences on a few weights."""
    _, grads = model.value_with_gradient(x)
    worst = 0.0
    with torch.no_grad():
        for box, gbox in zip(model.weights, grads):
            for name, t in box.tensors.items():
                flat = t.view(-1)
                gflat = gbox[name].reshape(-1)
                for j in range(min(samples, flat.numel())):
                    orig = flat[j].item()
                    flat[j] = orig + eps
                    plus = model(x).sum().item()
                    flat[j] = orig - eps
                    minus = model(x).sum().item()
                    flat[j] = orig
                    numeric = (plus - minus) / (2 * eps)
                    worst = max(worst, abs(numeric - gflat[j].item()))
    return worst


def cmd_trace(args):
    """Show compute order and slot assignment for a sample graph."""
    if args.model not in MODELS:
        print(f"Unknown model: {args.model}")
        print(f"Available: {', '.join(MODELS.keys())}")
        return 1

    model = build(MODELS[args.model](), seed=0)
    print(f"Model: {args.model}")
    print(model.summary())
    return 0


def cmd_benchmark(args):
    """Benchmark a sample graph against its hand-written baseline."""
    device = 'cuda' if torch.cuda.is_available() and not args.cpu else 'cpu'

    if args.model not in MODELS:
        print(f"Unknown model: {args.model}")
        print(f"Available: {', '.join(MODELS.keys())}")
        return 1

    model = build(MODELS[args.model](), seed=0)
    sample = torch.randn(args.batch, *model.input_shape)

    result = benchmark_model(
        model,
        sample,
        name=args.model,
        iterations=args.iters,
        warmup=args.warmup,
        device=device,
        verbose=not args.quiet,
        baseline=BASELINES.get(args.model),
    )
    print(result.summary())

    if args.output:
        result.save(args.output)
        print(f"\nSaved to {args.output}")

    return 0


def cmd_info(args):
    """Show library info."""
    print("TraceCompiler")
    print("=" * 60)
    print()
    print("Compile a DAG of layers into one differentiable function.")
    print()
    print("Registered layers:")
    for name in sorted(list_registered()):
        print(f"  - {name}")
    print()
    print("Sample graphs:")
    for name, make in MODELS.items():
        print(f"  - {name}: {make.__doc__}")
    print()

    # System info
    print("System:")
    print(f"  PyTorch: {torch.__version__}")
    print(f"  CUDA: {torch.cuda.is_available()}")
    print(f"  torch.compile: {'available' if hasattr(torch, 'compile') else 'not available'}")
    print()
    print("Usage:")
    print("  python -m trace_compiler trace --model lenet")
    print("  python -m trace_compiler test")
    print("  python -m trace_compiler benchmark --model residual --batch 16")
    return 0


# =============================================================================
# MAIN
# =============================================================================

def build_parser():
    parser = argparse.ArgumentParser(
        prog='trace_compiler',
        description='TraceCompiler - compile layer graphs into one differentiable function'
    )
    subparsers = parser.add_subparsers(dest='command', help='Commands')

    # test
    subparsers.add_parser('test', help='Run correctness checks on sample graphs')

    # trace
    trace_parser = subparsers.add_parser('trace', help='Show compute order and slots')
    trace_parser.add_argument('--model', '-m', default='lenet', help='Sample graph name')

    # benchmark
    bench_parser = subparsers.add_parser('benchmark', help='Benchmark a sample graph')
    bench_parser.add_argument('--model', '-m', default='lenet', help='Sample graph name')
    bench_parser.add_argument('--batch', '-b', type=int, default=32, help='Batch size')
    bench_parser.add_argument('--iters', '-i', type=int, default=20, help='Iterations')
    bench_parser.add_argument('--warmup', '-w', type=int, default=3, help='Warmup iterations')
    bench_parser.add_argument('-q', '--quiet', action='store_true', help='Quiet mode')
    bench_parser.add_argument('-o', '--output', help='Save results to JSON file')
    bench_parser.add_argument('--cpu', action='store_true', help='Force CPU')

    # info
    subparsers.add_parser('info', help='Show library info')

    return parser


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    if args.command == 'test':
        return cmd_test(args)
    elif args.command == 'trace':
        return cmd_trace(args)
    elif args.command == 'benchmark':
        return cmd_benchmark(args)
    elif args.command == 'info':
        return cmd_info(args)

    return 0


if __name__ == '__main__':
    sys.exit(main())
