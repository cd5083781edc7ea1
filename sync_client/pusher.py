"""
Debounced persistence client.

schedule_push() מבטל push ממתין ומתזמן חדש אחרי חלון שקט (500ms). ה-push
שולח את ה-Collection כפי שהוא ברגע הירי, לא snapshot מרגע התזמון. כשל רשת
נרשם ללוג ונבלע, בלי retry: השינוי המקומי הבא ישלח שוב את המצב הנוכחי.
"""
from __future__ import annotations

import threading
from typing import Any, Protocol

from observability import emit_event

from .api_client import WallTransportError
from .pending import PendingOperation, TimerFactory, thread_timer
from .state import ClientStateStore


class PushTarget(Protocol):
    def push_collection(self, items: Any) -> Any: ...


class DebouncedPusher:
    def __init__(
        self,
        state: ClientStateStore,
        api: PushTarget,
        delay_ms: int = 500,
        timer_factory: TimerFactory = thread_timer,
    ) -> None:
        self.state = state
        self.api = api
        self._pending = PendingOperation(self.push, delay_ms / 1000.0, timer_factory)
        self._push_lock = threading.Lock()
        self._in_flight = False
        self.pushes_sent = 0
        self.pushes_failed = 0

    @property
    def is_pending(self) -> bool:
        return self._pending.pending

    @property
    def in_flight(self) -> bool:
        return self._in_flight

    @property
    def is_busy(self) -> bool:
        """Local state is ahead of the server (push scheduled or on the wire)."""
        return self.is_pending or self._in_flight

    def schedule_push(self) -> None:
        self._pending.schedule()

    def cancel(self) -> bool:
        return self._pending.cancel()

    def flush(self) -> bool:
        return self._pending.flush()

    def push(self) -> bool:
        with self._push_lock:
            self._in_flight = True
            try:
                items = self.state.to_wire()
                self.api.push_collection(items)
            except WallTransportError as e:
                self.pushes_failed += 1
                emit_event("wall_push_failed", severity="warning", error=str(e), status=e.status, count=len(items))
                return False
            finally:
                self._in_flight = False
            self.pushes_sent += 1
            emit_event("wall_push_sent", severity="debug", count=len(items))
            return True
