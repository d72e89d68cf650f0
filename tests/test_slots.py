import pytest

from trace_compiler import MalformedGraphError, Schedule, allocate_slots, input, schedule
from trace_compiler.core.slots import INPUT_SLOT, check_slot_safety

from test_schedule import random_graph


def test_input_gets_slot_zero() -> None:
    x = input((3,))
    plan = allocate_slots(schedule(x.dense(2)))
    assert plan.slots[0] == INPUT_SLOT
    assert plan.dependency_slots[0] == (INPUT_SLOT,)
    assert plan.appends[0] is False


@pytest.mark.parametrize('n', [1, 5, 50])
def test_chain_uses_constant_buffer(n: int) -> None:
    layer = input((4,))
    for _ in range(n):
        layer = layer.dense(4, activation='tanh')
    plan = allocate_slots(schedule(layer))
    assert plan.num_slots == 1
    assert set(plan.slots) == {0}


def test_residual_slots() -> None:
    x = input((4,))
    a = x.dense(4)
    out = x + a
    plan = allocate_slots(schedule(out))
    assert plan.slots == [0, 1, 0]
    assert plan.appends == [False, True, False]
    assert plan.dependency_slots == [(0,), (0,), (0, 1)]
    assert plan.num_slots == 2
    assert plan.output_slot == 0


def test_freed_slots_reused_first_in_first_out() -> None:
    x = input((4,))
    a = x.dense(4)
    b = x.relu()
    m = a + b
    plan = allocate_slots(schedule(m))
    # a frees slot 1 before b frees slot 0
    assert plan.slots == [0, 1, 0, 1]
    assert plan.num_slots == 2
    assert plan.output_slot == 1


def test_repeated_edge_frees_once() -> None:
    x = input((4,))
    plan = allocate_slots(schedule(x + x))
    assert plan.slots == [0, 0]
    assert plan.dependency_slots[1] == (0, 0)
    assert plan.num_slots == 1


@pytest.mark.parametrize('seed', range(10))
def test_random_graphs_slot_safe(seed: int) -> None:
    out, _ = random_graph(seed)
    sched = schedule(out)
    plan = allocate_slots(sched)
    check_slot_safety(sched.order, plan)
    assert plan.num_slots <= len(sched.order)
    assert max(plan.slots) == plan.num_slots - 1
    for layer, slot in zip(sched.order, plan.slots):
        assert 0 <= slot < plan.num_slots


def test_slot_safety_detects_early_overwrite() -> None:
    x = input((4,))
    a = x.dense(4)
    b = x.relu()
    m = a + b
    sched = schedule(m)
    plan = allocate_slots(sched)
    plan.slots[2] = plan.slots[1]
    with pytest.raises(MalformedGraphError):
        check_slot_safety(sched.order, plan)


def test_dependency_without_slot() -> None:
    x = input((4,))
    m = x.relu()
    sched = Schedule(order=[m], input_layer=x, output_layer=m, dependents={})
    with pytest.raises(MalformedGraphError):
        allocate_slots(sched)


def test_slot_safety_rejects_unscheduled_dependency() -> None:
    x = input((4,))
    a = x.dense(4)
    m = a.relu()
    sched = schedule(m)
    plan = allocate_slots(sched)
    with pytest.raises(MalformedGraphError):
        check_slot_safety([x, m], plan)
