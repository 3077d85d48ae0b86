"""
Security utilities for JWT authentication.

Identity is owned by the auth service that issues the tokens; this module
only verifies them and resolves the caller's user id.
"""

from datetime import datetime, timedelta, UTC
from typing import Any, Dict

from jose import jwt

import os

from matchqueue.services.queue.exceptions import NotAuthorized

# Security configuration
JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY")
if not JWT_SECRET_KEY:
    if os.getenv("ENVIRONMENT") == "production":
        raise RuntimeError("JWT_SECRET_KEY must be set in production")
    JWT_SECRET_KEY = "dev-secret-key-never-use-in-production"

# JWT settings
ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = 15


def create_access_token(data: Dict[str, Any]) -> str:
    """
    Create a JWT access token with a specified expiration time.

    Args:
        data: Payload data to include in the token

    Returns:
        Encoded JWT access token
    """
    to_encode = data.copy()

    expire = datetime.now(UTC) + timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES)
    to_encode.update({"exp": expire, "type": "access"})

    return jwt.encode(to_encode, JWT_SECRET_KEY, algorithm=ALGORITHM)


def verify_token(token: str, token_type: str = "access") -> Dict[str, Any]:
    """
    Decode and verify a JWT token.

    Args:
        token: JWT token to verify
        token_type: Expected value of the token's "type" claim

    Returns:
        Token payload if valid

    Raises:
        ValueError: If token is invalid or has wrong type
    """
    try:
        payload = jwt.decode(token, JWT_SECRET_KEY, algorithms=[ALGORITHM])
    except jwt.JWTError:
        raise ValueError("Invalid token")

    if payload.get("type") != token_type:
        raise ValueError(f"Token is not a {token_type} token")

    return payload


def authenticate(token: str) -> str:
    """
    Resolve the user id carried by an access token.

    Raises:
        NotAuthorized: If the token is missing, invalid, expired, or has no subject
    """
    if not token:
        raise NotAuthorized("Not authenticated")

    try:
        payload = verify_token(token)
    except ValueError as e:
        raise NotAuthorized(str(e))

    user_id = payload.get("sub")
    if not user_id:
        raise NotAuthorized("User ID not found in token")

    return str(user_id)
