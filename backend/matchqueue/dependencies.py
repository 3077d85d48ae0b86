"""
Dependency injection functions for the API.
"""

from fastapi import Cookie, Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from typing import Optional

from matchqueue.core.security import authenticate
from matchqueue.db.session import get_db
from matchqueue.services.queue.engine import PairingEngine, get_pairing_engine
from matchqueue.services.queue.exceptions import NotAuthorized


# Database dependency
db_dependency = get_db

# OAuth2 scheme for token extraction from Authorization header
oauth2_scheme = OAuth2PasswordBearer(
    tokenUrl="api/auth/token",
    auto_error=False,  # Don't auto-raise errors to allow cookie fallback
)


async def get_token(
    token: Optional[str] = Depends(oauth2_scheme),
    access_token: Optional[str] = Cookie(None),
) -> str:
    """
    Extract token from either Authorization header or cookie.

    Prioritizes the Authorization header token if available.
    """
    if token:
        return token
    if access_token:
        return access_token

    raise HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Not authenticated",
        headers={"WWW-Authenticate": "Bearer"},
    )


async def get_current_user_id(token: str = Depends(get_token)) -> str:
    """
    Resolve the caller's user id from their access token.
    """
    try:
        return authenticate(token)
    except NotAuthorized:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid authentication credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )


def pairing_engine_dependency() -> PairingEngine:
    """Process-wide pairing engine; overridden in tests."""
    return get_pairing_engine()
