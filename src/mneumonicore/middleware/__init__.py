"""Middleware for authenticating REST callers of the relay."""

from .auth import JWTBearer, get_current_user_id

__all__ = ["get_current_user_id", "JWTBearer"]
