"""Bounded, fixed-interval waiting shared by every blocking poll in the pipeline.

A ``BoundedWait`` repeatedly calls a probe until it returns something other
than ``None``. It never waits forever: an attempt ceiling, a wall-clock
deadline, or both must be given, and exceeding either raises ``WaitTimeout``.
An optional ``threading.Event`` lets a worker shutdown interrupt the wait.
"""

import threading
import time
from dataclasses import dataclass
from typing import Callable, Optional, TypeVar

T = TypeVar("T")


class WaitTimeout(Exception):
    def __init__(self, description: str, attempts: int, elapsed: float):
        self.description = description
        self.attempts = attempts
        self.elapsed = elapsed
        super().__init__(f"Timed out waiting for {description} after {attempts} attempts ({elapsed:.0f}s)")


class WaitCancelled(Exception):
    pass


@dataclass
class BoundedWait:
    interval: float
    max_attempts: Optional[int] = None
    timeout: Optional[float] = None
    delay_first: bool = False
    cancel_event: Optional[threading.Event] = None
    clock: Callable[[], float] = time.monotonic
    sleep: Optional[Callable[[float], None]] = None

    def __post_init__(self):
        if self.max_attempts is None and self.timeout is None:
            raise ValueError("BoundedWait needs max_attempts, timeout, or both")
        if self.interval < 0:
            raise ValueError("interval must be >= 0")

    def run(self, probe: Callable[[], Optional[T]], description: str = "operation") -> T:
        started = self.clock()
        deadline = None if self.timeout is None else started + self.timeout
        attempts = 0

        while True:
            if self.delay_first or attempts > 0:
                self._pause(description)
            self._check_cancelled(description)

            attempts += 1
            result = probe()
            if result is not None:
                return result

            now = self.clock()
            if self.max_attempts is not None and attempts >= self.max_attempts:
                raise WaitTimeout(description, attempts, now - started)
            if deadline is not None and now >= deadline:
                raise WaitTimeout(description, attempts, now - started)

    def _pause(self, description: str):
        if self.sleep is not None:
            self.sleep(self.interval)
        elif self.cancel_event is not None:
            if self.cancel_event.wait(self.interval):
                raise WaitCancelled(f"Wait for {description} was cancelled")
        else:
            time.sleep(self.interval)

    def _check_cancelled(self, description: str):
        if self.cancel_event is not None and self.cancel_event.is_set():
            raise WaitCancelled(f"Wait for {description} was cancelled")
