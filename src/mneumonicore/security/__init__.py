"""Security utilities."""

from .jwt import (
    create_access_token,
    decode_access_token,
    get_user_id_from_token,
    revoke_access_token,
)

__all__ = [
    "create_access_token",
    "decode_access_token",
    "get_user_id_from_token",
    "revoke_access_token",
]
