"""
Typing guard for the polling reconciler.

A field is active while it has focus, or for `idle_ms` after its own last
keystroke. Merging server state is suppressed while any field is active.
Each field owns its idle timer, so one field's timer never clears another.
"""
from __future__ import annotations

import threading
from typing import Dict, Hashable, Set

from .pending import PendingOperation, TimerFactory, thread_timer


class TypingGuard:
    def __init__(self, idle_ms: int = 1000, timer_factory: TimerFactory = thread_timer) -> None:
        self.idle_s = max(0, int(idle_ms)) / 1000.0
        self._timer_factory = timer_factory
        self._lock = threading.Lock()
        self._focused: Set[Hashable] = set()
        self._recent: Dict[Hashable, PendingOperation] = {}

    def focus(self, field: Hashable) -> None:
        with self._lock:
            self._focused.add(field)

    def blur(self, field: Hashable) -> None:
        with self._lock:
            self._focused.discard(field)
            idle = self._recent.pop(field, None)
        if idle is not None:
            idle.cancel()

    def keystroke(self, field: Hashable) -> None:
        with self._lock:
            idle = self._recent.get(field)
            if idle is None:
                idle = PendingOperation(lambda: self._expire(field, idle), self.idle_s, self._timer_factory)
                self._recent[field] = idle
        idle.schedule()

    def _expire(self, field: Hashable, idle: PendingOperation) -> None:
        with self._lock:
            # a blur + new keystroke may have installed a fresh timer for this field
            if self._recent.get(field) is idle:
                del self._recent[field]

    def is_typing(self) -> bool:
        with self._lock:
            return bool(self._focused) or bool(self._recent)

    def active_fields(self) -> Set[Hashable]:
        with self._lock:
            return set(self._focused) | set(self._recent)

    def clear(self) -> None:
        with self._lock:
            timers = list(self._recent.values())
            self._recent.clear()
            self._focused.clear()
        for idle in timers:
            idle.cancel()
