"""
Auth service - רישום והתחברות משתמשים לקיר.

- שמות משתמש ייחודיים (מנורמלים לאותיות קטנות)
- סיסמאות נשמרות כ-hash עם salt (passlib, pbkdf2_sha256)
"""
from __future__ import annotations

import re
import uuid
from typing import Any, Dict, Optional

from passlib.context import CryptContext

from database.backends import WallBackend
from database.entities import now_iso
from database.errors import AuthError
from observability import emit_event

pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")

MIN_USERNAME_LENGTH = 3
MAX_USERNAME_LENGTH = 32
MIN_PASSWORD_LENGTH = 6

_USERNAME_RE = re.compile(r"^[a-z0-9_.-]+$")


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    try:
        return pwd_context.verify(plain_password, hashed_password)
    except (ValueError, TypeError):
        return False


def normalize_username(raw: Any) -> str:
    return str(raw or "").strip().lower()


class AuthService:
    def __init__(self, backend: WallBackend) -> None:
        self.backend = backend

    def _validate(self, username: str, password: str) -> None:
        if len(username) < MIN_USERNAME_LENGTH:
            raise AuthError(f"Username must be at least {MIN_USERNAME_LENGTH} characters", 400)
        if len(username) > MAX_USERNAME_LENGTH:
            raise AuthError(f"Username must be at most {MAX_USERNAME_LENGTH} characters", 400)
        if not _USERNAME_RE.match(username):
            raise AuthError("Username may contain only letters, digits, '.', '_' and '-'", 400)
        if len(password) < MIN_PASSWORD_LENGTH:
            raise AuthError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters", 400)

    def register(self, username: Any, password: Any) -> Dict[str, str]:
        name = normalize_username(username)
        pw = str(password or "")
        self._validate(name, pw)
        if self.backend.get_user(name):
            raise AuthError("Username already taken", 409)
        user = {
            "userId": f"usr_{uuid.uuid4().hex}",
            "username": name,
            "passwordHash": hash_password(pw),
            "createdAt": now_iso(),
        }
        # race between two registrations is settled by the backend's uniqueness
        if not self.backend.create_user(user):
            raise AuthError("Username already taken", 409)
        emit_event("wall_user_registered", username=name)
        return {"userId": user["userId"], "username": name}

    def authenticate(self, username: Any, password: Any) -> Dict[str, str]:
        name = normalize_username(username)
        pw = str(password or "")
        if not name or not pw:
            raise AuthError("Username and password are required", 400)
        user: Optional[Dict[str, Any]] = self.backend.get_user(name)
        if not user or not verify_password(pw, str(user.get("passwordHash") or "")):
            emit_event("wall_login_failed", severity="warning", username=name)
            raise AuthError("Invalid username or password", 401)
        return {"userId": str(user["userId"]), "username": name}
