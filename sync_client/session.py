"""WallSession: one editing session wired together (state, push, poll, typing guard)."""
from __future__ import annotations

from typing import Any, Callable, Dict, Hashable, List, Optional

from config import SyncClientConfig, load_client_config
from database.entities import Background
from observability import emit_event

from .api_client import WallApiClient, WallTransportError
from .pending import TimerFactory, thread_timer
from .pusher import DebouncedPusher
from .reconciler import PollingReconciler
from .state import ClientStateStore, Renderer, StatusCallback
from .typing_guard import TypingGuard


class WallSession:
    def __init__(
        self,
        api: Any,
        renderer: Optional[Renderer] = None,
        config: Optional[SyncClientConfig] = None,
        timer_factory: TimerFactory = thread_timer,
        on_background: Optional[Callable[[Background], None]] = None,
        on_status: Optional[StatusCallback] = None,
    ) -> None:
        cfg = config or load_client_config()
        self.api = api
        self._on_status = on_status
        self.state = ClientStateStore(renderer, on_status=on_status)
        self.pusher = DebouncedPusher(self.state, api, cfg.PUSH_DEBOUNCE_MS, timer_factory)
        self.state.on_mutation = self.pusher.schedule_push
        self.guard = TypingGuard(cfg.TYPING_IDLE_MS, timer_factory)
        self.reconciler = PollingReconciler(
            self.state,
            api,
            self.guard,
            pusher=self.pusher,
            interval_ms=cfg.POLL_INTERVAL_MS,
            on_background=on_background,
            timer_factory=timer_factory,
        )

    @classmethod
    def connect(cls, config: Optional[SyncClientConfig] = None, **kwargs) -> "WallSession":
        cfg = config or load_client_config()
        return cls(WallApiClient(cfg.WALL_URL, timeout=cfg.HTTP_TIMEOUT), config=cfg, **kwargs)

    def _status(self, message: str, kind: str = "") -> None:
        if self._on_status is not None:
            self._on_status(message, kind)

    # --- lifecycle ---

    def load(self) -> bool:
        """Initial load of background and notes; failures leave an empty wall."""
        try:
            background = Background.from_dict(self.api.fetch_background())
            items = self.api.fetch_collection()
        except WallTransportError as e:
            emit_event("wall_initial_load_failed", severity="warning", error=str(e))
            self._status("Ready! Create your first note.")
            return False
        self.reconciler.apply_background(background)
        self.state.replace_all(items)
        self._status(f"Loaded {len(items)} notes")
        return True

    def start(self) -> None:
        self.load()
        self.reconciler.start()

    def close(self) -> None:
        self.reconciler.stop()
        self.guard.clear()
        self.pusher.flush()

    # --- editing helpers that feed the typing guard ---

    def focus_field(self, entity_id: str, field: str) -> None:
        self.guard.focus(self._field_key(entity_id, field))

    def blur_field(self, entity_id: str, field: str) -> None:
        self.guard.blur(self._field_key(entity_id, field))

    def type_text(self, entity_id: str, field: str, value: str) -> None:
        if field not in ("title", "content"):
            raise ValueError(f"not a text field: {field}")
        self.guard.keystroke(self._field_key(entity_id, field))
        self.state.update(entity_id, {field: value})

    @staticmethod
    def _field_key(entity_id: str, field: str) -> Hashable:
        return (entity_id, field)

    # --- server-side features ---

    def search(self, query: str) -> List[Dict[str, Any]]:
        """Server-side search. Results are returned, never merged into local state."""
        if not str(query or "").strip():
            return []
        try:
            results = self.api.search(query)
        except WallTransportError as e:
            emit_event("wall_search_failed", severity="warning", error=str(e))
            self._status("Search failed", "updating")
            return []
        self._status(f'Found {len(results)} notes matching "{query}"')
        return results

    def set_background(self, type_: str, value: str) -> Optional[Background]:
        background = Background(type_, value)
        try:
            self.api.save_background(background.type, background.value)
        except WallTransportError as e:
            emit_event("wall_background_push_failed", severity="warning", error=str(e))
            self._status("Failed to update background", "updating")
            return None
        self.reconciler.apply_background(background)
        self._status("Background updated for all users!")
        return background

    def set_background_preset(self, name: str) -> Optional[Background]:
        """Named color presets (default, black, white, blue, green)."""
        preset = Background.preset(name)
        return self.set_background(preset.type, preset.value)

    def export(self) -> Optional[Dict[str, Any]]:
        try:
            snapshot = self.api.export()
        except WallTransportError as e:
            emit_event("wall_export_failed", severity="warning", error=str(e))
            self._status("Export failed", "updating")
            return None
        self._status("Notes exported successfully!")
        return snapshot
