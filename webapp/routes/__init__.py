"""Webapp routes package.

Available Blueprints:
- auth_bp: /api/register, /api/login, /api/logout, /api/session-user
"""

from webapp.routes.auth_routes import auth_bp

__all__ = [
    "auth_bp",
]
