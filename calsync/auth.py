"""
Authentication module for the calendar sync service.

Provides JWT verification and owner extraction from Supabase tokens.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import jwt, JWTError

from .config import settings


# HTTP Bearer token scheme for extracting JWT from Authorization header
security = HTTPBearer()


@dataclass
class User:
    """Authenticated owner information extracted from JWT."""
    id: str  # Supabase user UUID
    email: Optional[str] = None


def verify_token(token: str) -> dict:
    """
    Verify a Supabase JWT token and return the payload.

    Args:
        token: The JWT token to verify

    Returns:
        The decoded token payload

    Raises:
        HTTPException: If token is invalid or expired
    """
    try:
        payload = jwt.decode(
            token,
            settings.supabase_jwt_secret,
            algorithms=["HS256"],
            audience="authenticated",
        )
        return payload
    except JWTError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Invalid authentication token: {str(e)}",
            headers={"WWW-Authenticate": "Bearer"},
        )


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
) -> User:
    """
    FastAPI dependency to get the current authenticated owner.

    Usage:
        @router.get("/status")
        def status(user: User = Depends(get_current_user)):
            return {"owner_id": user.id}

    Raises:
        HTTPException: If token is missing, invalid, or expired
    """
    payload = verify_token(credentials.credentials)

    user_id = payload.get("sub")
    if not user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token missing user ID",
            headers={"WWW-Authenticate": "Bearer"},
        )

    return User(id=user_id, email=payload.get("email"))
