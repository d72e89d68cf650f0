import pytest
import torch

from trace_compiler import (
    AnyWeights,
    ComposedLayer,
    ShapeError,
    TraceConfig,
    WeightTypeError,
    build,
    input,
)
from trace_compiler.cli import lenet, mlp, residual

from test_schedule import random_graph


@pytest.fixture
def lenet_model() -> ComposedLayer:
    return build(lenet(), seed=0)


def test_lenet_output_shape(lenet_model: ComposedLayer) -> None:
    assert lenet_model.input_shape == (28, 28, 1)
    assert lenet_model.output_shape == (10,)
    assert lenet_model(torch.randn(28, 28, 1)).shape == (10,)
    assert lenet_model(torch.randn(3, 28, 28, 1)).shape == (3, 10)


def test_lenet_weights_aligned(lenet_model: ComposedLayer) -> None:
    kinds = [box.kind for box in lenet_model.weights]
    assert kinds == [
        'empty', 'conv2d', 'empty', 'conv2d', 'empty', 'empty',
        'dense', 'dense', 'dense',
    ]
    assert lenet_model.num_slots == 1


def test_wrong_input_shape(lenet_model: ComposedLayer) -> None:
    with pytest.raises(ShapeError):
        lenet_model(torch.randn(28, 28, 3))
    with pytest.raises(ShapeError):
        lenet_model(torch.randn(2, 2, 28, 28, 1))


def test_weight_box_order_checked() -> None:
    model = build(mlp(), seed=0)
    reversed_weights = list(model.weights)[::-1]
    with pytest.raises(WeightTypeError):
        model.call_function(torch.randn(8), reversed_weights)


def test_weight_box_count_checked() -> None:
    model = build(mlp(), seed=0)
    with pytest.raises(WeightTypeError):
        model.call_function(torch.randn(8), list(model.weights)[:2])


def test_deterministic_build() -> None:
    y = residual(4)
    a = build(y, seed=3)
    b = build(y, seed=3)
    assert a.compute_order == b.compute_order
    assert a.slot_plan.slots == b.slot_plan.slots
    for wa, wb in zip(a.weights, b.weights):
        assert wa.allclose(wb, rtol=0, atol=0)
    x = torch.randn(2, 16, 16, 4)
    with torch.no_grad():
        assert torch.equal(a(x), b(x))


def test_different_seeds_differ() -> None:
    y = mlp()
    a = build(y, seed=0)
    b = build(y, seed=1)
    assert not torch.equal(a.weights[1]['kernel'], b.weights[1]['kernel'])


@pytest.mark.parametrize('seed', range(5))
def test_slot_reuse_matches_reference(seed: int) -> None:
    out, _ = random_graph(seed)
    model = build(out, seed=seed, precision='fp64')
    x = torch.randn(3, 4, dtype=torch.float64)
    with torch.no_grad():
        assert torch.allclose(model(x), model.reference_call(x), rtol=0, atol=1e-12)


def test_residual_matches_reference() -> None:
    model = build(residual(4), seed=0, precision='fp64')
    assert model.num_slots < len(model.compute_order)
    x = torch.randn(2, 16, 16, 4, dtype=torch.float64)
    with torch.no_grad():
        assert torch.allclose(model(x), model.reference_call(x), atol=1e-12)


def test_skip_connection_values() -> None:
    x = input((3,))
    y = x.relu() + x
    model = build(y)
    v = torch.tensor([-1.0, 0.0, 2.0])
    assert torch.equal(model(v), torch.tensor([-1.0, 0.0, 4.0]))


def test_input_only_graph() -> None:
    x = input((3,))
    model = build(x)
    assert len(model.weights) == 1
    assert model.weights[0].kind == 'empty'
    v = torch.randn(2, 3)
    assert torch.equal(model(v), v)
    value, grads = model.value_with_gradient(v)
    assert value.item() == pytest.approx(v.sum().item())
    assert len(grads) == 1


def test_slot_and_weight_lookup() -> None:
    x = input((4,))
    a = x.dense(4)
    out = x + a
    model = build(out, seed=0)
    assert model.slot_of(x) == 0
    assert model.slot_of(a) == 1
    assert model.slot_of(out) == 0
    assert model.weights_of(a).kind == 'dense'
    assert model.weights_of(a) is model.weights[1]


def test_parameters_shared_with_boxes() -> None:
    model = build(mlp(), seed=0)
    params = dict(model.named_parameters())
    assert set(params) == {'params.w1_kernel', 'params.w1_bias', 'params.w2_kernel', 'params.w2_bias'}
    assert model.weights[1]['kernel'] is model.params['w1_kernel']


def test_optimizer_updates_boxes() -> None:
    model = build(mlp(), seed=0)
    before = model.weights.clone()
    opt = torch.optim.SGD(model.parameters(), lr=0.1)
    x = torch.randn(16, 8)
    loss = (model(x) ** 2).mean()
    loss.backward()
    opt.step()
    assert not model.weights[1].allclose(before[1])
    assert not model.weights[2].allclose(before[2])


def test_training_reduces_loss() -> None:
    torch.manual_seed(0)
    model = build(mlp(), seed=0, precision='fp64')
    x = torch.randn(64, 8, dtype=torch.float64)
    target = x @ torch.randn(8, 1, dtype=torch.float64) * 0.3

    def loss_fn(out):
        return ((out - target) ** 2).mean()

    first, _ = model.value_with_gradient(x, loss_fn)
    for _ in range(100):
        _, grads = model.value_with_gradient(x, loss_fn)
        with torch.no_grad():
            for p, g in zip(model.weights.tensors(), grads.tensors()):
                p -= 0.05 * g
    last, _ = model.value_with_gradient(x, loss_fn)
    assert last.item() < first.item()


def test_summary(lenet_model: ComposedLayer) -> None:
    text = lenet_model.summary()
    assert '9 layers, 1 slots' in text
    assert 'conv2d' in text
    assert 'slots=1' in repr(lenet_model)


def test_debug_output(capsys) -> None:
    build(mlp(), debug=True)
    out = capsys.readouterr().out
    assert '[TraceCompiler]' in out
    assert 'slots' in out


def test_validate_config() -> None:
    model = build(residual(4), TraceConfig.safe())
    assert model.weights[1]['kernel'].dtype == torch.float64


def test_batch_norm_uses_batch_statistics() -> None:
    model = build(input((2,)).batch_norm(), seed=0, precision='fp64')
    x = torch.tensor([[1.0, 10.0], [3.0, 30.0]], dtype=torch.float64)
    out = model(x)
    assert torch.allclose(out.mean(dim=0), torch.zeros(2, dtype=torch.float64), atol=1e-12)
    expected = torch.tensor([[-1.0, -1.0], [1.0, 1.0]], dtype=torch.float64)
    assert torch.allclose(out, expected, atol=1e-3)


def test_box_of_wrong_kind_at_same_position() -> None:
    model = build(mlp(), seed=0)
    weights = list(model.weights)
    weights[1] = AnyWeights('conv2d', dict(weights[1].tensors))
    with pytest.raises(WeightTypeError):
        model.call_function(torch.randn(8), weights)
