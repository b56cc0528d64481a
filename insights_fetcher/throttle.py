"""Admission control for throttled HTTP fan-out.

An AdmissionController runs a list of task callables on a thread pool while
enforcing three limits: how many tasks are in flight at once, how many tasks
may start within a sliding time window, and how long a single task may run.

Task bodies are expected to return a Result (Ok or Err) rather than raise.
Anything a task does raise is still turned into an Err, so the controller only
ever hands values back to its caller.
"""

import logging
import threading
import time
from collections import deque
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass
from typing import Any, Callable, Optional, Sequence, Union

from .errors import TaskTimeout

logger = logging.getLogger(__name__)

POLL_INTERVAL = 0.05


@dataclass(frozen=True)
class Ok:
    value: Any

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True)
class Err:
    error: BaseException

    @property
    def ok(self) -> bool:
        return False


Result = Union[Ok, Err]
Task = Callable[[], Result]


class SlidingWindow:
    """Allows at most `cap` acquisitions within any `interval` seconds."""

    def __init__(self, interval: float, cap: Optional[int], clock=time.monotonic, sleep=time.sleep):
        if cap is not None and cap < 1:
            raise ValueError("interval cap must be at least 1")
        if interval <= 0:
            raise ValueError("interval must be positive")
        self.interval = interval
        self.cap = cap
        self._clock = clock
        self._sleep = sleep
        self._starts: deque[float] = deque()
        self._lock = threading.Lock()

    def acquire(self):
        """Block until a start is allowed, then record it."""
        if self.cap is None:
            return
        while True:
            with self._lock:
                now = self._clock()
                while self._starts and self._starts[0] <= now - self.interval:
                    self._starts.popleft()
                if len(self._starts) < self.cap:
                    self._starts.append(now)
                    return
                delay = self._starts[0] + self.interval - now
            self._sleep(delay)


class AdmissionController:
    """Bounded-concurrency, rate-limited task runner.

    Each component that talks to a rate-limited service owns its own
    instance, so quotas are never shared by accident. The sliding window
    outlives a single run_all() call, which keeps the quota honest across
    consecutive batches.
    """

    def __init__(
        self,
        max_concurrent: int = 5,
        interval: float = 1.0,
        interval_cap: Optional[int] = 45,
        timeout: Optional[float] = 30.0,
        name: str = "throttle",
    ):
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be at least 1")
        self.max_concurrent = max_concurrent
        self.timeout = timeout
        self.name = name
        self.window = SlidingWindow(interval, interval_cap)
        # Held from admission until the task body returns, including bodies
        # that already timed out and are still running in the background.
        self._slots = threading.Semaphore(max_concurrent)

    def run_all(self, tasks: Sequence[Task]) -> list[Result]:
        """Run every task and wait for all of them to resolve.

        A task's timeout is measured from the moment its body starts
        running, never from submission.

        Args:
            tasks: Zero-argument callables returning a Result

        Returns:
            One Result per task, in the same order as `tasks`
        """
        results: list[Optional[Result]] = [None] * len(tasks)
        if not tasks:
            return []

        executor = ThreadPoolExecutor(
            max_workers=self.max_concurrent,
            thread_name_prefix=self.name,
        )
        pending: dict[Future, int] = {}
        starts: dict[int, float] = {}
        try:
            for index, task in enumerate(tasks):
                while not self._slots.acquire(timeout=self._wait_time(pending, starts)):
                    self._reap(pending, starts, results, block=False)
                future = executor.submit(self._call, task, index, starts)
                pending[future] = index

            while pending:
                self._reap(pending, starts, results)
        finally:
            for future in pending:
                if future.cancel():
                    self._slots.release()
            # Timed-out tasks may still be running; do not block on them.
            executor.shutdown(wait=False)

        return results

    def _call(self, task: Task, index: int, starts: dict[int, float]) -> Result:
        try:
            self.window.acquire()
            starts[index] = time.monotonic()
            result = task()
        except Exception as e:
            logger.error(f"[{self.name}] task raised instead of returning a result: {e}", exc_info=True)
            return Err(e)
        finally:
            self._slots.release()
        if not isinstance(result, (Ok, Err)):
            return Ok(result)
        return result

    def _wait_time(self, pending: dict[Future, int], starts: dict[int, float]) -> float:
        """Seconds until the next started task could time out, capped at POLL_INTERVAL."""
        wait_for = POLL_INTERVAL
        if self.timeout is None:
            return wait_for
        now = time.monotonic()
        for index in pending.values():
            started = starts.get(index)
            if started is not None:
                wait_for = min(wait_for, max(0.0, started + self.timeout - now))
        return wait_for

    def _reap(
        self,
        pending: dict[Future, int],
        starts: dict[int, float],
        results: list[Optional[Result]],
        block: bool = True,
    ):
        """Collect finished tasks and expire started ones that ran too long."""
        if not pending:
            return
        wait_for = self._wait_time(pending, starts) if block else 0
        done, _ = wait(list(pending), timeout=wait_for, return_when=FIRST_COMPLETED)

        for future in done:
            index = pending.pop(future)
            results[index] = future.result()

        if self.timeout is None:
            return

        now = time.monotonic()
        for future, index in list(pending.items()):
            started = starts.get(index)
            # Not started yet: still waiting for a worker or the window.
            if started is None:
                continue
            if now - started >= self.timeout:
                pending.pop(future)
                logger.warning(f"[{self.name}] task {index} timed out after {self.timeout}s")
                results[index] = Err(TaskTimeout(f"Task timed out after {self.timeout}s"))
