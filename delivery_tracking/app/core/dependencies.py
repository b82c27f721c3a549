"""
Request dependencies for FastAPI.

Authentication of marketplace users and wiring of the tracking service.
"""

from functools import lru_cache

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from delivery_tracking.app.core.jwt import decode_access_token
from delivery_tracking.app.services.tracking import OrderTrackingService, build_tracking_service

# HTTP Bearer security scheme
security = HTTPBearer()


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
) -> dict:
    """
    FastAPI dependency for JWT authentication.

    Validates signature and expiry and requires the user_id and role claims.
    Session management lives in the identity service, so there is no
    database lookup here.

    Raises:
        HTTPException: 401 if the token is missing, invalid or incomplete
    """
    payload = decode_access_token(credentials.credentials)
    if payload is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )

    if not payload.get("user_id") or not payload.get("role"):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token payload",
            headers={"WWW-Authenticate": "Bearer"},
        )

    return payload


@lru_cache(maxsize=1)
def get_tracking_service() -> OrderTrackingService:
    """Process-wide tracking service built from settings."""
    return build_tracking_service()
