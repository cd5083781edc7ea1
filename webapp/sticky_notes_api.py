"""
Sticky Wall API
- Collection of notes/images for the shared wall (whole-collection replace)
- Endpoints: collection get/replace, search, export, background
"""
from __future__ import annotations

from datetime import datetime, timezone
from functools import wraps
from typing import Any, Optional

from flask import Blueprint, Response, current_app, json, jsonify, request, session

from database.errors import AssetTooLargeError, BackendUnavailable, EntityValidationError
from database.manager import WallStore
from observability import emit_event

sticky_notes_bp = Blueprint("sticky_notes", __name__, url_prefix="/api")


def get_store() -> WallStore:
    return current_app.extensions["wall_store"]


def auth_enabled() -> bool:
    return bool(current_app.config.get("AUTH_ENABLED"))


def current_user_id() -> Optional[str]:
    """Owner scope for the request: None when the wall runs without auth."""
    if not auth_enabled():
        return None
    uid = session.get("user_id")
    return str(uid) if uid else None


def require_auth(f):
    @wraps(f)
    def _inner(*args, **kwargs):
        if auth_enabled() and "user_id" not in session:
            return jsonify({"ok": False, "error": "Unauthorized"}), 401
        return f(*args, **kwargs)
    return _inner


def _no_store(resp: Response) -> Response:
    # מניעת קאשינג בדפדפן/פרוקסי כדי שה-polling לא יקבל גרסה ישנה
    resp.headers["Cache-Control"] = "no-store, no-cache, must-revalidate"
    resp.headers["Pragma"] = "no-cache"
    resp.headers["Expires"] = "0"
    return resp


def _json_body() -> Any:
    return request.get_json(silent=True)


# --- Collection ---

@sticky_notes_bp.route("/collection", methods=["GET"])
@sticky_notes_bp.route("/notes", methods=["GET"])
@require_auth
def list_collection():
    """Whole Collection visible to the caller. Backend failures yield []."""
    items = get_store().get_collection(current_user_id())
    return _no_store(jsonify(items))


@sticky_notes_bp.route("/collection", methods=["POST"])
@sticky_notes_bp.route("/notes", methods=["POST"])
@require_auth
def replace_collection():
    """Replace the caller's Collection with the request body (not a merge)."""
    payload = _json_body()
    if not isinstance(payload, list):
        return jsonify({"ok": False, "error": "Body must be a JSON array of notes"}), 400
    try:
        count = get_store().replace_collection(payload, current_user_id())
    except AssetTooLargeError as e:
        return jsonify({"ok": False, "error": str(e)}), 413
    except EntityValidationError as e:
        return jsonify({"ok": False, "error": str(e)}), 400
    except BackendUnavailable as e:
        emit_event("wall_collection_save_failed", severity="error", error=str(e), count=len(payload))
        return jsonify({"ok": False, "error": "Failed to save notes"}), 500
    return jsonify({"ok": True, "count": count})


@sticky_notes_bp.route("/collection/search", methods=["GET"])
@sticky_notes_bp.route("/notes/search", methods=["GET"])
@require_auth
def search_collection():
    query = str(request.args.get("query") or "").strip()
    if not query:
        return jsonify({"ok": False, "error": "query parameter is required"}), 400
    results = get_store().search(query, current_user_id())
    return _no_store(jsonify(results))


@sticky_notes_bp.route("/export", methods=["GET"])
@require_auth
def export_collection():
    snapshot = get_store().export(current_user_id())
    day = datetime.now(timezone.utc).strftime("%Y-%m-%d")
    resp = Response(
        json.dumps(snapshot, ensure_ascii=False, indent=2),
        mimetype="application/json",
    )
    resp.headers["Content-Disposition"] = f'attachment; filename="notes-export-{day}.json"'
    emit_event("wall_exported", count=snapshot["noteCount"])
    return _no_store(resp)


# --- Background (shared by every user) ---

@sticky_notes_bp.route("/background", methods=["GET"])
@require_auth
def get_background():
    return _no_store(jsonify(get_store().get_background().to_dict()))


@sticky_notes_bp.route("/background", methods=["POST"])
@require_auth
def set_background():
    payload = _json_body()
    try:
        background = get_store().set_background(payload)
    except AssetTooLargeError as e:
        return jsonify({"ok": False, "error": str(e)}), 413
    except EntityValidationError as e:
        return jsonify({"ok": False, "error": str(e)}), 400
    except BackendUnavailable as e:
        emit_event("wall_background_save_failed", severity="error", error=str(e))
        return jsonify({"ok": False, "error": "Failed to save background"}), 500
    return jsonify({"ok": True, "background": background.to_dict()})
