from __future__ import annotations
import threading
from typing import Callable, List, Protocol


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


class Scheduler(Protocol):
    def call_later(self, delay: float, fn: Callable[[], None], name: str = "") -> TimerHandle: ...


class ThreadingScheduler:
    """
    Runs each delayed callback on its own daemon timer thread.
    Callbacks are responsible for their own locking.
    """

    def call_later(self, delay: float, fn: Callable[[], None], name: str = "") -> threading.Timer:
        t = threading.Timer(max(0.0, delay), fn)
        t.daemon = True
        if name:
            t.name = name
        t.start()
        return t


class CancellationToken:
    """
    Per-job stop flag. Cancelling also cancels every timer still registered,
    so a stopped job has nothing left queued. Callbacks that were already
    running still have to check `cancelled` when they resume.
    """

    def __init__(self):
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._timers: List[TimerHandle] = []

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self):
        with self._lock:
            self._event.set()
            timers, self._timers = self._timers, []
        for t in timers:
            t.cancel()

    def track(self, handle: TimerHandle) -> TimerHandle:
        with self._lock:
            if self._event.is_set():
                handle.cancel()
                return handle
            # drop timers that already fired or were cancelled
            self._timers = [t for t in self._timers if _pending(t)]
            self._timers.append(handle)
        return handle


def _pending(handle: TimerHandle) -> bool:
    is_alive = getattr(handle, "is_alive", None)
    if is_alive is None:
        return True
    return is_alive()
