from __future__ import annotations

import pytest

from hypervctl.errors import StabilizationTimeoutError
from hypervctl.invoker import CmdletArgs
from hypervctl.stabilize import invoke_and_stabilize, wait_for

from conftest import FakeClock


def test_wait_for_checks_immediately() -> None:
    clock = FakeClock()
    n = wait_for(lambda: True, timeout=10, poll_interval=1, operation='op', clock=clock)
    assert n == 1
    assert clock.sleeps == []


def test_wait_for_polls_until_true() -> None:
    clock = FakeClock()
    answers = iter([False, False, True])
    n = wait_for(lambda: next(answers), timeout=10, poll_interval=2, operation='op', clock=clock)
    assert n == 3
    assert clock.sleeps == [2, 2]


@pytest.mark.parametrize('timeout,poll', [(10, 1), (10, 3), (5, 10), (0.5, 0.2)])
def test_wait_for_timeout_bounds(timeout, poll) -> None:
    clock = FakeClock()
    start = clock.monotonic()
    with pytest.raises(StabilizationTimeoutError) as ex:
        wait_for(
            lambda: False,
            timeout=timeout,
            poll_interval=poll,
            operation='Hyper-V\\Start-VM',
            resource='vm-a',
            clock=clock,
        )
    elapsed = clock.monotonic() - start
    assert timeout <= elapsed <= timeout + poll
    assert ex.value.operation == 'Hyper-V\\Start-VM'
    assert ex.value.resource == 'vm-a'
    assert isinstance(ex.value, TimeoutError)


def test_wait_for_without_timeout_keeps_polling() -> None:
    clock = FakeClock()
    calls = []

    def predicate():
        calls.append(1)
        return len(calls) > 5000

    wait_for(predicate, timeout=None, poll_interval=1, operation='op', clock=clock)
    assert len(clock.sleeps) == 5000


def test_wait_for_rejects_bad_interval() -> None:
    with pytest.raises(ValueError):
        wait_for(lambda: True, timeout=1, poll_interval=0, operation='op')


class _Invoker:
    def __init__(self):
        self.calls = []

    def invoke(self, operation, args=None, *, select=None, resource=None):
        self.calls.append((operation, args, resource))
        return [{'ok': 1}]


def test_invoke_and_stabilize() -> None:
    clock = FakeClock()
    invoker = _Invoker()
    state = {'polls': 0}

    def predicate():
        state['polls'] += 1
        return state['polls'] >= 3

    out = invoke_and_stabilize(
        invoker,
        'Hyper-V\\Start-VM',
        CmdletArgs(Name='vm-a'),
        predicate,
        timeout=10,
        poll_interval=1,
        resource='vm-a',
        clock=clock,
    )
    assert out == [{'ok': 1}]
    assert invoker.calls[0][0] == 'Hyper-V\\Start-VM'
    assert state['polls'] == 3
    assert invoke_and_stabilize(invoker, 'x', clock=clock) == [{'ok': 1}]
