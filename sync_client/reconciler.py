"""
Polling reconciler: pulls server Collection and Background on a fixed cadence.

Background and notes are merged together or skipped together. The gate is
checked before the fetch and again before applying. Polls run one after
another (the next one is scheduled once the previous returns), so a slow
response can never be overtaken by a newer one.
"""
from __future__ import annotations

import threading
from typing import Any, Callable, Dict, List, Optional, Protocol

from database.entities import Background
from database.errors import EntityValidationError
from observability import emit_event

from .api_client import WallTransportError
from .pending import TimerFactory, TimerHandle, thread_timer
from .pusher import DebouncedPusher
from .state import ClientStateStore
from .typing_guard import TypingGuard

SKIPPED_TYPING = "skipped_typing"
SKIPPED_PENDING_PUSH = "skipped_pending_push"
SKIPPED_LOCAL_CHANGE = "skipped_local_change"
UNCHANGED = "unchanged"
MERGED = "merged"
FAILED = "failed"


class PollSource(Protocol):
    def fetch_collection(self) -> List[Dict[str, Any]]: ...
    def fetch_background(self) -> Dict[str, Any]: ...


class PollingReconciler:
    def __init__(
        self,
        state: ClientStateStore,
        api: PollSource,
        guard: TypingGuard,
        pusher: Optional[DebouncedPusher] = None,
        interval_ms: int = 3000,
        on_background: Optional[Callable[[Background], None]] = None,
        timer_factory: TimerFactory = thread_timer,
    ) -> None:
        self.state = state
        self.api = api
        self.guard = guard
        self.pusher = pusher
        self.interval_s = max(0.05, interval_ms / 1000.0)
        self.on_background = on_background
        self.background = Background()
        self._timer_factory = timer_factory
        self._lock = threading.Lock()
        self._timer: Optional[TimerHandle] = None
        self._running = False

    def _blocked(self) -> Optional[str]:
        if self.guard.is_typing():
            return SKIPPED_TYPING
        if self.pusher is not None and self.pusher.is_busy:
            return SKIPPED_PENDING_PUSH
        return None

    def apply_background(self, background: Background) -> bool:
        if background == self.background:
            return False
        self.background = background
        if self.on_background is not None:
            self.on_background(background)
        return True

    def poll_once(self) -> str:
        blocked = self._blocked()
        if blocked:
            return blocked
        generation = self.state.generation
        try:
            raw_background = self.api.fetch_background()
            items = self.api.fetch_collection()
        except WallTransportError as e:
            emit_event("wall_poll_failed", severity="warning", error=str(e), status=e.status)
            return FAILED

        # the user may have started typing while the request was on the wire
        blocked = self._blocked()
        if blocked:
            return blocked
        # an edit made and pushed during the fetch is newer than this response
        if self.state.generation != generation:
            return SKIPPED_LOCAL_CHANGE

        try:
            background = Background.from_dict(raw_background)
        except EntityValidationError as e:
            emit_event("wall_poll_bad_background", severity="anomaly", error=str(e))
            background = self.background

        changed = self.apply_background(background)
        if items != self.state.to_wire():
            try:
                applied = self.state.replace_all(items, expected_generation=generation)
            except EntityValidationError as e:
                emit_event("wall_poll_bad_collection", severity="anomaly", error=str(e))
                return FAILED
            if not applied:
                return SKIPPED_LOCAL_CHANGE
            changed = True
        return MERGED if changed else UNCHANGED

    # --- loop ---

    @property
    def running(self) -> bool:
        return self._running

    def start(self) -> None:
        with self._lock:
            if self._running:
                return
            self._running = True
            self._schedule_next()

    def stop(self) -> None:
        with self._lock:
            self._running = False
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None

    def _schedule_next(self) -> None:
        self._timer = self._timer_factory(self.interval_s, self._tick)
        self._timer.start()

    def _tick(self) -> None:
        if not self._running:
            return
        try:
            self.poll_once()
        except Exception as e:
            emit_event("wall_poll_crashed", severity="error", error=str(e), error_type=type(e).__name__)
        with self._lock:
            if self._running:
                self._schedule_next()
