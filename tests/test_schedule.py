import random
from typing import List, Tuple

import pytest

from trace_compiler import AnyWeights, MalformedGraphError, TracingLayer, build, input
from trace_compiler.core.schedule import check_topological, discover, schedule


class Node(TracingLayer):
    """Layer with mutable dependencies, for building malformed graphs."""

    def __init__(self, *deps) -> None:
        super().__init__('node')
        self.deps = list(deps)

    @property
    def output_shape(self) -> Tuple[int, ...]:
        return (1,)

    @property
    def dependencies(self):
        return tuple(self.deps)

    def make_weights(self, generator=None, dtype=None) -> AnyWeights:
        return AnyWeights.empty()

    def build_step(self, dependency_slots):
        slot = dependency_slots[0]
        return lambda slots, weights: slots[slot]


def random_graph(seed: int, n: int = 30) -> Tuple[TracingLayer, List[TracingLayer]]:
    rng = random.Random(seed)
    layers: List[TracingLayer] = [input((4,))]
    for _ in range(n):
        if rng.random() < 0.4 and len(layers) > 1:
            a, b = rng.sample(layers, 2)
            layers.append(a + b)
        else:
            layers.append(rng.choice(layers).dense(4, activation='tanh'))
    # Tie every layer into the output so all of them are reachable
    out = layers[-1]
    for layer in layers[1:-1]:
        out = out + layer
    return out, layers


def test_linear_chain_order() -> None:
    x = input((3,))
    a = x.dense(4)
    b = a.relu()
    c = b.dense(1)
    assert schedule(c).order == [x, a, b, c]


def test_diamond_order() -> None:
    x = input((4,))
    a = x.dense(4)
    b = x.relu()
    m = a + b
    sched = schedule(m)
    assert sched.order == [x, a, b, m]
    assert sched.input_layer is x
    assert sched.output_layer is m
    assert sched.position(m) == 3


def test_fifo_tie_break_follows_discovery() -> None:
    x = input((4,))
    a = x.dense(4)
    b = x.relu()
    m = b + a
    assert schedule(m).order == [x, b, a, m]


def test_repeated_edge() -> None:
    x = input((4,))
    m = x + x
    d = discover(m)
    assert d.dependents[x] == [m, m]
    assert d.pending[m] == 2
    assert schedule(m).order == [x, m]


def test_identity_not_structure() -> None:
    x = input((4,))
    a = x.relu()
    b = x.relu()
    assert a != b
    assert len(schedule(a + b)) == 4


@pytest.mark.parametrize('seed', range(10))
def test_random_graphs_topological(seed: int) -> None:
    out, layers = random_graph(seed)
    sched = schedule(out)
    check_topological(sched.order)
    position = {layer: i for i, layer in enumerate(sched.order)}
    for layer in sched.order:
        for dep in layer.dependencies:
            assert position[dep] < position[layer]
    assert set(layers) <= set(sched.order)


@pytest.mark.parametrize('seed', range(3))
def test_schedule_is_deterministic(seed: int) -> None:
    out, _ = random_graph(seed)
    assert schedule(out).order == schedule(out).order


def test_single_input_succeeds() -> None:
    x = input((2,))
    assert schedule(x.dense(1)).input_layer is x


def test_no_input_rejected() -> None:
    a = Node()
    b = Node(a)
    a.deps = [b]
    with pytest.raises(MalformedGraphError):
        discover(b)


def test_multiple_inputs_rejected() -> None:
    m = input((3,)) + input((3,))
    with pytest.raises(MalformedGraphError):
        schedule(m)
    with pytest.raises(MalformedGraphError):
        build(m)


def test_cycle_rejected() -> None:
    x = input((1,))
    a = Node(x)
    b = Node(a)
    a.deps = [x, b]
    with pytest.raises(MalformedGraphError):
        schedule(b)


def test_non_layer_dependency_rejected() -> None:
    with pytest.raises(MalformedGraphError):
        schedule(Node('not a layer'))


def test_output_must_be_layer() -> None:
    with pytest.raises(MalformedGraphError):
        schedule('x')


def test_check_topological_detects_bad_order() -> None:
    x = input((2,))
    a = x.dense(2)
    with pytest.raises(MalformedGraphError):
        check_topological([a, x])
    with pytest.raises(MalformedGraphError):
        check_topological([a])
