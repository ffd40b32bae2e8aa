"""Authentication API endpoints."""

from fastapi import APIRouter, Depends, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from ..middleware.auth import get_current_user_id
from ..security import revoke_access_token

router = APIRouter(prefix="/auth", tags=["auth"])

bearer = HTTPBearer()


@router.post("/logout", status_code=status.HTTP_200_OK)
async def logout(
    credentials: HTTPAuthorizationCredentials = Depends(bearer),
    current_user_id: str = Depends(get_current_user_id),
):
    """Revoke the presented access token for REST and socket handshakes alike."""
    if await revoke_access_token(credentials.credentials):
        return {"message": "Logged out successfully"}
    return {"message": "Token could not be revoked"}
