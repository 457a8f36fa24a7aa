import threading

import pytest

from polling import BoundedWait, WaitCancelled, WaitTimeout


class FakeClock:
    def __init__(self):
        self.now = 0.0
        self.sleeps = []

    def __call__(self):
        return self.now

    def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds


def test_returns_first_non_none_result():
    clock = FakeClock()
    results = iter([None, None, "done"])
    wait = BoundedWait(interval=5, timeout=300, clock=clock, sleep=clock.sleep)

    assert wait.run(lambda: next(results)) == "done"
    assert clock.sleeps == [5, 5]


def test_checks_immediately_unless_delay_first():
    clock = FakeClock()
    wait = BoundedWait(interval=10, max_attempts=3, delay_first=True, clock=clock, sleep=clock.sleep)

    assert wait.run(lambda: True) is True
    assert clock.sleeps == [10]


def test_attempt_ceiling():
    clock = FakeClock()
    calls = []
    wait = BoundedWait(interval=10, max_attempts=60, delay_first=True, clock=clock, sleep=clock.sleep)

    with pytest.raises(WaitTimeout) as exc:
        wait.run(lambda: calls.append(1), "operation")

    assert len(calls) == 60
    assert exc.value.attempts == 60


def test_deadline():
    clock = FakeClock()
    wait = BoundedWait(interval=5, timeout=300, clock=clock, sleep=clock.sleep)

    with pytest.raises(WaitTimeout) as exc:
        wait.run(lambda: None, "segment 1")

    assert exc.value.elapsed >= 300
    assert exc.value.attempts == 61


def test_probe_exceptions_propagate():
    clock = FakeClock()
    wait = BoundedWait(interval=1, max_attempts=5, clock=clock, sleep=clock.sleep)

    def probe():
        raise RuntimeError("segment failed")

    with pytest.raises(RuntimeError):
        wait.run(probe)


def test_requires_a_bound():
    with pytest.raises(ValueError):
        BoundedWait(interval=1)


def test_cancel_event_interrupts_wait():
    cancel = threading.Event()
    cancel.set()
    wait = BoundedWait(interval=0.01, max_attempts=5, cancel_event=cancel)

    with pytest.raises(WaitCancelled):
        wait.run(lambda: None)
