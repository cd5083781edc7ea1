"""HTTP client for the wall API (requests, via http_sync)."""
from __future__ import annotations

import re
from typing import Any, Dict, List, Optional

import requests

import http_sync
from database.errors import WallError

_FILENAME_RE = re.compile(r'filename="?([^";]+)"?')


class WallTransportError(WallError):
    """Network failure or non-2xx answer from the wall server."""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


class WallApiClient:
    def __init__(self, base_url: str, timeout: float = 10.0, session: Optional[requests.Session] = None) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = float(timeout)
        # one session per client so the login cookie is shared by pusher and poller threads
        self.session = session or http_sync.create_session()

    def _call(self, method: str, path: str, **kwargs) -> requests.Response:
        url = f"{self.base_url}{path}"
        try:
            resp = http_sync.request(method, url, session=self.session, timeout=self.timeout, **kwargs)
        except requests.RequestException as e:
            raise WallTransportError(f"{method} {path} failed: {e}") from e
        if resp.status_code >= 400:
            message = f"{method} {path} returned {resp.status_code}"
            try:
                body = resp.json()
                if isinstance(body, dict) and body.get("error"):
                    message = str(body["error"])
            except ValueError:
                pass
            raise WallTransportError(message, status=resp.status_code)
        return resp

    def _json(self, method: str, path: str, **kwargs) -> Any:
        resp = self._call(method, path, **kwargs)
        try:
            return resp.json()
        except ValueError as e:
            raise WallTransportError(f"{method} {path} returned invalid JSON", status=resp.status_code) from e

    # --- collection ---

    def fetch_collection(self) -> List[Dict[str, Any]]:
        data = self._json("GET", "/api/collection")
        if not isinstance(data, list):
            raise WallTransportError("collection response is not a list")
        return data

    def push_collection(self, items: List[Dict[str, Any]]) -> Dict[str, Any]:
        return self._json("POST", "/api/collection", json=items)

    def search(self, query: str) -> List[Dict[str, Any]]:
        data = self._json("GET", "/api/collection/search", params={"query": query})
        return data if isinstance(data, list) else []

    def export(self) -> Dict[str, Any]:
        """Export snapshot plus the attachment filename the server suggested."""
        resp = self._call("GET", "/api/export")
        snapshot = resp.json()
        match = _FILENAME_RE.search(resp.headers.get("Content-Disposition", ""))
        snapshot["_filename"] = match.group(1) if match else None
        return snapshot

    # --- background ---

    def fetch_background(self) -> Dict[str, Any]:
        return self._json("GET", "/api/background")

    def save_background(self, type_: str, value: str) -> Dict[str, Any]:
        return self._json("POST", "/api/background", json={"type": type_, "value": value})

    # --- auth ---

    def register(self, username: str, password: str) -> Dict[str, Any]:
        return self._json("POST", "/api/register", json={"username": username, "password": password})

    def login(self, username: str, password: str) -> Dict[str, Any]:
        return self._json("POST", "/api/login", json={"username": username, "password": password})

    def logout(self) -> None:
        self._call("POST", "/api/logout")

    def session_user(self) -> Optional[Dict[str, Any]]:
        try:
            data = self._json("GET", "/api/session-user")
        except WallTransportError as e:
            if e.status == 401:
                return None
            raise
        return data.get("user") if isinstance(data, dict) else None
