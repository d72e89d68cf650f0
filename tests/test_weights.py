import pytest
import torch

from trace_compiler import AnyWeights, ShapeError, WeightTypeError, WeightVector, input


@pytest.fixture
def dense_box() -> AnyWeights:
    return AnyWeights('dense', {'kernel': torch.ones(2, 3), 'bias': torch.arange(3.0)})


def test_zero_is_identity(dense_box: AnyWeights) -> None:
    z = AnyWeights.zero()
    assert (z + dense_box).allclose(dense_box)
    assert (dense_box + z).allclose(dense_box)
    assert (dense_box - z).allclose(dense_box)
    assert (z - dense_box).allclose(-dense_box)
    assert z.is_zero
    assert not dense_box.is_zero


def test_arithmetic(dense_box: AnyWeights) -> None:
    doubled = dense_box + dense_box
    assert doubled.allclose(dense_box * 2)
    assert doubled.allclose(2.0 * dense_box)
    assert (doubled - dense_box).allclose(dense_box)
    assert dense_box.dot(dense_box).item() == pytest.approx(6.0 + 5.0)


def test_kind_mismatch(dense_box: AnyWeights) -> None:
    other = AnyWeights('conv2d', {'kernel': torch.ones(2, 3), 'bias': torch.zeros(3)})
    with pytest.raises(WeightTypeError):
        dense_box + other
    with pytest.raises(WeightTypeError):
        dense_box.dot(other)
    with pytest.raises(WeightTypeError):
        dense_box.expect('conv2d')
    assert dense_box.expect('dense') is dense_box


def test_missing_tensor(dense_box: AnyWeights) -> None:
    assert 'kernel' in dense_box
    with pytest.raises(WeightTypeError):
        dense_box['scale']


def test_empty_box() -> None:
    e = AnyWeights.empty()
    assert len(e) == 0
    assert e.numel() == 0
    assert (e + e).kind == 'empty'


def test_make_weights_seeded() -> None:
    layer = input((5,)).dense(3)
    g1 = torch.Generator().manual_seed(7)
    g2 = torch.Generator().manual_seed(7)
    w1 = layer.make_weights(g1, torch.float64)
    w2 = layer.make_weights(g2, torch.float64)
    assert w1.kind == 'dense'
    assert list(w1.tensors) == ['kernel', 'bias']
    assert w1['kernel'].shape == (5, 3)
    assert w1['kernel'].dtype == torch.float64
    assert torch.equal(w1['kernel'], w2['kernel'])
    assert torch.equal(w1['bias'], torch.zeros(3, dtype=torch.float64))


def test_conv_and_batch_norm_weights() -> None:
    x = input((8, 8, 3))
    conv = x.conv2d((3, 3), 4).make_weights()
    assert conv['kernel'].shape == (3, 3, 3, 4)
    assert conv['bias'].shape == (4,)
    bn = x.batch_norm().make_weights()
    assert bn.kind == 'batch_norm'
    assert torch.equal(bn['scale'], torch.ones(3))
    assert torch.equal(bn['offset'], torch.zeros(3))
    assert x.relu().make_weights().kind == 'empty'


@pytest.fixture
def vector(dense_box: AnyWeights) -> WeightVector:
    return WeightVector([AnyWeights.empty(), dense_box, AnyWeights.empty()])


def test_vector_ops(vector: WeightVector) -> None:
    assert len(vector) == 3
    assert vector.numel() == 9
    summed = vector + vector
    assert summed[1].allclose(vector[1] * 2)
    assert (summed - vector)[1].allclose(vector[1])
    assert (0.5 * summed)[1].allclose(vector[1])
    assert vector.dot(vector).item() == pytest.approx(11.0)
    assert vector.norm().item() == pytest.approx(11.0 ** 0.5)
    assert vector.zeros_like().norm().item() == 0.0


def test_vector_length_mismatch(vector: WeightVector) -> None:
    with pytest.raises(WeightTypeError):
        vector + vector[:2]


def test_flat_view(vector: WeightVector) -> None:
    flat = vector.flat()
    assert flat.shape == (9,)
    assert vector.offsets() == [(0, 0), (0, 9), (9, 0)]
    back = WeightVector.unflatten(flat * 3, vector)
    assert back[1].allclose(vector[1] * 3)
    assert back[0].kind == 'empty'
    with pytest.raises(WeightTypeError):
        WeightVector.unflatten(torch.zeros(4), vector)


def test_adding_zero_returns_new_box(dense_box: AnyWeights) -> None:
    z = AnyWeights.zero()
    for result in (dense_box + z, z + dense_box, dense_box - z):
        assert result is not dense_box
        result['kernel'].add_(1.0)
        assert torch.equal(dense_box['kernel'], torch.ones(2, 3))


def test_scale_by_tensor_scalar(dense_box: AnyWeights, vector: WeightVector) -> None:
    lr = torch.tensor(0.5)
    assert (dense_box * lr).allclose(dense_box * 0.5)
    assert dense_box.scale(torch.tensor([2.0]))['bias'].shape == (3,)
    assert (vector * lr)[1].allclose(vector[1] * 0.5)
    with pytest.raises(TypeError):
        dense_box.scale(torch.ones(2))
    with pytest.raises(TypeError):
        dense_box.scale('fast')


def test_conv_custom_initializers() -> None:
    def constant(shape, generator, dtype):
        return torch.full(shape, 0.25, dtype=dtype)

    layer = input((8, 8, 3)).conv2d((3, 3), 4, kernel_init=constant, bias_init=constant)
    w = layer.make_weights(dtype=torch.float64)
    assert torch.equal(w['kernel'], torch.full((3, 3, 3, 4), 0.25, dtype=torch.float64))
    assert torch.equal(w['bias'], torch.full((4,), 0.25, dtype=torch.float64))

    via_registry = input((8, 8, 3)).apply(
        'conv2d', filter_shape=(3, 3), output_channels=4, bias_init=constant,
    ).make_weights()
    assert torch.equal(via_registry['bias'], torch.full((4,), 0.25))


def test_conv_initializer_shape_checked() -> None:
    def wrong(shape, generator, dtype):
        return torch.zeros(5, dtype=dtype)

    layer = input((8, 8, 3)).conv2d((3, 3), 4, kernel_init=wrong)
    with pytest.raises(ShapeError):
        layer.make_weights()
