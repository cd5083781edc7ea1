"""
Auth Routes - username/password authentication for the wall.

Endpoints:
- POST /api/register - create a user (does not log in)
- POST /api/login - start a session
- POST /api/logout - end the session
- GET /api/session-user - who is logged in
"""

from __future__ import annotations

import logging

from flask import Blueprint, current_app, jsonify, request, session

from database.errors import AuthError, BackendUnavailable
from services.auth_service import AuthService

logger = logging.getLogger(__name__)

auth_bp = Blueprint("auth", __name__, url_prefix="/api")


def _get_auth_service() -> AuthService:
    return current_app.extensions["wall_auth"]


def _credentials():
    payload = request.get_json(silent=True) or {}
    if not isinstance(payload, dict):
        payload = {}
    return payload.get("username"), payload.get("password")


def _auth_error(e: AuthError):
    return jsonify({"ok": False, "error": str(e)}), e.status


@auth_bp.route("/register", methods=["POST"])
def register():
    username, password = _credentials()
    try:
        user = _get_auth_service().register(username, password)
    except AuthError as e:
        return _auth_error(e)
    except BackendUnavailable:
        logger.exception("register failed: backend unavailable")
        return jsonify({"ok": False, "error": "Registration is unavailable"}), 503
    return jsonify({"ok": True, "user": user}), 201


@auth_bp.route("/login", methods=["POST"])
def login():
    username, password = _credentials()
    try:
        user = _get_auth_service().authenticate(username, password)
    except AuthError as e:
        return _auth_error(e)
    except BackendUnavailable:
        logger.exception("login failed: backend unavailable")
        return jsonify({"ok": False, "error": "Login is unavailable"}), 503
    session.clear()
    session["user_id"] = user["userId"]
    session["username"] = user["username"]
    session.permanent = True
    return jsonify({"ok": True, "user": user})


@auth_bp.route("/logout", methods=["POST"])
def logout():
    session.clear()
    return jsonify({"ok": True})


@auth_bp.route("/session-user", methods=["GET"])
def session_user():
    if "user_id" not in session:
        return jsonify({"ok": False, "user": None}), 401
    return jsonify({
        "ok": True,
        "user": {"userId": session["user_id"], "username": session.get("username")},
    })
