"""
Single-slot pending operation (debounce).

תזמון חדש תמיד מבטל ומחליף את ה-timer הקודם; רק התזמון האחרון בחלון השקט
יורה בפועל.
"""
from __future__ import annotations

import threading
from typing import Callable, Optional, Protocol


class TimerHandle(Protocol):
    def start(self) -> None: ...
    def cancel(self) -> None: ...


TimerFactory = Callable[[float, Callable[[], None]], TimerHandle]


def thread_timer(delay_s: float, fn: Callable[[], None]) -> TimerHandle:
    t = threading.Timer(delay_s, fn)
    t.daemon = True
    return t


class PendingOperation:
    """Holds at most one scheduled call of `action`.

    Each schedule bumps a generation counter; a timer whose generation is no
    longer current does nothing when it fires, which covers the window where
    `Timer.cancel()` arrives after the timer thread already woke up.
    """

    def __init__(
        self,
        action: Callable[[], None],
        delay_s: float,
        timer_factory: TimerFactory = thread_timer,
    ) -> None:
        self._action = action
        self.delay_s = max(0.0, float(delay_s))
        self._timer_factory = timer_factory
        self._lock = threading.Lock()
        self._handle: Optional[TimerHandle] = None
        self._generation = 0

    @property
    def pending(self) -> bool:
        with self._lock:
            return self._handle is not None

    def schedule(self) -> None:
        with self._lock:
            if self._handle is not None:
                self._handle.cancel()
            self._generation += 1
            generation = self._generation
            self._handle = self._timer_factory(self.delay_s, lambda: self._fire(generation))
            self._handle.start()

    def cancel(self) -> bool:
        with self._lock:
            if self._handle is None:
                return False
            self._handle.cancel()
            self._handle = None
            self._generation += 1
            return True

    def flush(self) -> bool:
        """Run the pending action now instead of waiting; False when nothing was pending."""
        if not self.cancel():
            return False
        self._action()
        return True

    def _fire(self, generation: int) -> None:
        with self._lock:
            if generation != self._generation or self._handle is None:
                return
            self._handle = None
        self._action()
