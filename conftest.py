import os
import sys

import pytest

# Ensure project root is on sys.path so `import config` / `import tests._fakes` work in tests
PROJECT_ROOT = os.path.dirname(__file__)
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)


@pytest.fixture
def manual_timers():
    from tests._fakes import ManualTimers

    return ManualTimers()


@pytest.fixture
def memory_store():
    from database import MemoryBackend, WallStore

    return WallStore(MemoryBackend())


@pytest.fixture
def make_app(memory_store):
    """Factory: build a Flask app around the shared memory store."""
    from config import load_config
    from webapp.app import create_app

    def _make(auth_enabled: bool = False, store=None):
        cfg = load_config(
            STORAGE_BACKEND="memory",
            AUTH_ENABLED=auth_enabled,
            SESSION_SECRET="test-secret",
        )
        app = create_app(cfg, store=store or memory_store)
        app.config["TESTING"] = True
        return app

    return _make
