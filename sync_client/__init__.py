"""Synchronization client for the sticky wall: debounced push, polling pull."""

from .api_client import WallApiClient, WallTransportError
from .pending import PendingOperation, thread_timer
from .pusher import DebouncedPusher
from .reconciler import PollingReconciler
from .session import WallSession
from .state import ClientStateStore, FocusSnapshot, NullRenderer, Renderer
from .typing_guard import TypingGuard

__all__ = [
    "ClientStateStore",
    "DebouncedPusher",
    "FocusSnapshot",
    "NullRenderer",
    "PendingOperation",
    "PollingReconciler",
    "Renderer",
    "TypingGuard",
    "WallApiClient",
    "WallSession",
    "WallTransportError",
    "thread_timer",
]
