"""
clipvault.lifecycle.timers - Clock and one-shot timer primitive.

The registry only needs two things from time: the current wall-clock time
and a way to run a callback later that can still be called off. The default
scheduler uses daemon ``threading.Timer`` threads so pending deletions never
keep the interpreter alive on their own.
"""

from __future__ import annotations

import threading
from datetime import datetime, timezone
from typing import Callable, Protocol


class CancelHandle(Protocol):
    def cancel(self) -> None: ...


class Scheduler(Protocol):
    def now(self) -> datetime: ...

    def after(self, delay: float, callback: Callable[[], None]) -> CancelHandle: ...


class ThreadingScheduler:
    """Scheduler backed by one daemon ``threading.Timer`` per callback."""

    def __init__(self, thread_name_prefix: str = "clipvault-expiry") -> None:
        self.thread_name_prefix = thread_name_prefix
        self._counter = 0
        self._counter_lock = threading.Lock()

    def now(self) -> datetime:
        return datetime.now(timezone.utc)

    def after(self, delay: float, callback: Callable[[], None]) -> threading.Timer:
        with self._counter_lock:
            self._counter += 1
            name = f"{self.thread_name_prefix}-{self._counter}"
        timer = threading.Timer(delay, callback)
        timer.name = name
        timer.daemon = True
        timer.start()
        return timer
