import json

import pytest
import torch

from trace_compiler import TransformLayer, build
from trace_compiler.cli import BASELINES, MODELS, main, mlp, mlp_baseline
from trace_compiler.core.benchmark import benchmark_model


def test_info(capsys) -> None:
    assert main(['info']) == 0
    out = capsys.readouterr().out
    assert 'dense' in out
    assert 'lenet' in out


@pytest.mark.parametrize('model', sorted(MODELS))
def test_trace(model: str, capsys) -> None:
    assert main(['trace', '--model', model]) == 0
    assert 'slots' in capsys.readouterr().out


def test_trace_unknown_model(capsys) -> None:
    assert main(['trace', '--model', 'nope']) == 1
    assert 'Available' in capsys.readouterr().out


def test_self_test(capsys) -> None:
    assert main(['test']) == 0
    assert '0 failed' in capsys.readouterr().out


def test_benchmark_saves_results(tmp_path, capsys) -> None:
    path = tmp_path / 'bench.json'
    code = main([
        'benchmark', '--model', 'mlp', '--batch', '4', '--iters', '2',
        '--warmup', '0', '--cpu', '-q', '-o', str(path),
    ])
    assert code == 0
    data = json.loads(path.read_text())
    assert data['model'] == 'mlp'
    assert len(data['timings']) == 4
    assert 'inference speedup' in capsys.readouterr().out


def test_no_command(capsys) -> None:
    assert main([]) == 0


@pytest.mark.parametrize('name', sorted(MODELS))
def test_baseline_matches_compiled(name: str) -> None:
    model = build(MODELS[name](), seed=0, precision='fp64')
    x = torch.randn(3, *model.input_shape, dtype=torch.float64)
    with torch.no_grad():
        assert torch.allclose(BASELINES[name](x, model.weights), model(x), atol=1e-10)


def test_reference_steps_built_once(monkeypatch) -> None:
    model = build(mlp(), seed=0)
    calls = []
    original = TransformLayer.build_step

    def counting(self, dependency_slots):
        calls.append(self)
        return original(self, dependency_slots)

    monkeypatch.setattr(TransformLayer, 'build_step', counting)
    x = torch.randn(2, 8)
    model(x)
    assert calls == []
    model.reference_call(x)
    first = len(calls)
    model.reference_call(x)
    model.reference_call(x)
    assert len(calls) == first == 2


def test_benchmark_training_steps_weights() -> None:
    model = build(mlp(), seed=0)
    before = model.weights.clone()
    result = benchmark_model(
        model, torch.randn(4, 8), iterations=2, warmup=0, baseline=mlp_baseline, lr=0.1,
    )
    assert result.baseline == 'hand-written'
    assert [t.name for t in result.timings] == [
        'inference - baseline', 'inference - compiled',
        'training - baseline', 'training - compiled',
    ]
    assert not model.weights[1].allclose(before[1])


def test_benchmark_defaults_to_reference() -> None:
    model = build(mlp(), seed=0)
    result = benchmark_model(model, torch.randn(4, 8), iterations=1, warmup=0)
    assert result.baseline == 'reference'
    assert 'Baseline: reference' in result.summary()
