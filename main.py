#!/usr/bin/env python3
"""
Sticky Wall - נקודת הכניסה לשרת.

קורא קונפיגורציה מהסביבה (PORT, MONGODB_URI, SESSION_SECRET ...), מגדיר
structlog ומריץ את אפליקציית Flask.
"""
from __future__ import annotations

import logging
import sys

from config import ConfigError, load_config
from database import BackendUnavailable
from observability import emit_event, setup_structlog_logging
from webapp.app import create_app

logger = logging.getLogger(__name__)


def main() -> int:
    try:
        cfg = load_config()
    except ConfigError as e:
        print(f"Invalid configuration: {e}", file=sys.stderr)
        return 2

    setup_structlog_logging(cfg.LOG_LEVEL, cfg.LOG_FORMAT)

    try:
        app = create_app(cfg)
    except BackendUnavailable as e:
        emit_event("wall_startup_failed", severity="critical", error=str(e), backend=cfg.resolved_backend)
        return 1

    if cfg.SESSION_SECRET.startswith("dev-") and cfg.AUTH_ENABLED:
        emit_event("wall_insecure_session_secret", severity="warning")

    emit_event(
        "wall_server_starting",
        host=cfg.HOST,
        port=cfg.PORT,
        backend=cfg.resolved_backend,
        auth_enabled=cfg.AUTH_ENABLED,
    )
    try:
        app.run(host=cfg.HOST, port=cfg.PORT, threaded=True)
    finally:
        app.extensions["wall_store"].close()
        emit_event("wall_server_stopped", backend=cfg.resolved_backend)
    return 0


if __name__ == "__main__":
    sys.exit(main())
