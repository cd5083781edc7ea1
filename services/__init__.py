from typing import List

from .auth_service import AuthService

__all__: List[str] = [
    "AuthService",
    "auth_service",
]
