"""
Sticky Wall Web App - Flask application factory.

ה-WallStore וה-AuthService מוזרקים לאפליקציה (app.extensions) ולא נשמרים
כמשתנים גלובליים של המודול, כך שכל טסט יכול לבנות אפליקציה עם store משלו.
"""
from __future__ import annotations

import logging
from datetime import timedelta
from typing import Optional

from flask import Flask, jsonify, request
from werkzeug.exceptions import HTTPException

from config import WallConfig, load_config
from database import WallStore, init_store
from observability import bind_request_id, clear_request_context, emit_event, generate_request_id
from services.auth_service import AuthService
from webapp.routes import auth_bp
from webapp.sticky_notes_api import sticky_notes_bp

logger = logging.getLogger(__name__)


def create_app(
    config: Optional[WallConfig] = None,
    store: Optional[WallStore] = None,
    auth: Optional[AuthService] = None,
) -> Flask:
    cfg = config or load_config()
    wall_store = store or init_store(cfg)

    app = Flask(__name__)
    app.secret_key = cfg.SESSION_SECRET
    app.config.update(
        AUTH_ENABLED=cfg.AUTH_ENABLED,
        MAX_CONTENT_LENGTH=cfg.MAX_CONTENT_LENGTH_MB * 1024 * 1024,
        SESSION_COOKIE_HTTPONLY=True,
        SESSION_COOKIE_SAMESITE="Lax",
        PERMANENT_SESSION_LIFETIME=timedelta(days=7),
    )
    app.extensions["wall_store"] = wall_store
    app.extensions["wall_auth"] = auth or AuthService(wall_store.backend)
    app.extensions["wall_config"] = cfg

    app.register_blueprint(sticky_notes_bp)
    if cfg.AUTH_ENABLED:
        app.register_blueprint(auth_bp)

    @app.before_request
    def _correlation_bind():
        """Bind a short request_id to structlog context and store for response header."""
        incoming = str(request.headers.get("X-Request-ID", "")).strip()
        rid = incoming[:64] or generate_request_id()
        bind_request_id(rid)
        setattr(request, "_req_id", rid)

    @app.after_request
    def _add_request_id_header(resp):
        rid = getattr(request, "_req_id", "")
        if rid:
            resp.headers["X-Request-ID"] = rid
        return resp

    @app.teardown_request
    def _clear_context(_exc):
        clear_request_context()

    @app.route("/health")
    def health():
        return jsonify({"status": "ok", "backend": wall_store.backend_name})

    @app.errorhandler(HTTPException)
    def handle_http_exception(e: HTTPException):
        return jsonify({"ok": False, "error": e.description or e.name}), e.code or 500

    @app.errorhandler(Exception)
    def handle_exception(e):
        """טיפול בכל שגיאה אחרת"""
        logger.exception("Unhandled exception")
        emit_event(
            "webapp_unhandled_exception",
            severity="error",
            path=request.path,
            method=request.method,
            error=str(e),
            error_type=type(e).__name__,
        )
        return jsonify({"ok": False, "error": "Internal server error"}), 500

    return app
