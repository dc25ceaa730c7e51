"""
Security utilities for authentication.
Handles JWT bearer token creation and validation; the ``sub`` claim is the user ID.
"""
import jwt
from datetime import timedelta
from typing import Optional, Dict, Any
from fastapi import HTTPException, status
from chatcore.config import settings
from chatcore.utils.datetime_utils import utc_now


class SecurityException(HTTPException):
    """Custom exception for security-related errors."""
    def __init__(self, detail: str):
        super().__init__(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=detail,
            headers={"WWW-Authenticate": "Bearer"},
        )


def create_access_token(
    user_id: str,
    expires_delta: Optional[timedelta] = None,
    extra_claims: Optional[Dict[str, Any]] = None
) -> str:
    """
    Create JWT access token.

    Args:
        user_id: User ID stored in the ``sub`` claim
        expires_delta: Optional expiration time delta
        extra_claims: Additional claims to include

    Returns:
        Encoded JWT token

    Example:
        ```python
        token = create_access_token("user_a", expires_delta=timedelta(hours=1))
        ```
    """
    now = utc_now()
    expire = now + (expires_delta or timedelta(hours=settings.jwt_expiration_hours))

    to_encode = dict(extra_claims or {})
    to_encode.update({"sub": user_id, "exp": expire, "iat": now})

    return jwt.encode(
        to_encode,
        settings.jwt_secret,
        algorithm=settings.jwt_algorithm
    )


def decode_token(token: str) -> Dict[str, Any]:
    """
    Decode and validate JWT token.

    Args:
        token: JWT token string

    Returns:
        Decoded token payload

    Raises:
        SecurityException: If token is invalid or expired
    """
    try:
        return jwt.decode(
            token,
            settings.jwt_secret,
            algorithms=[settings.jwt_algorithm]
        )
    except jwt.ExpiredSignatureError:
        raise SecurityException("Token has expired")
    except jwt.InvalidTokenError:
        raise SecurityException("Invalid token")


def user_id_from_token(token: str) -> str:
    """
    Validate a token and return its user ID.

    Raises:
        SecurityException: If the token is invalid or has no ``sub`` claim
    """
    user_id = decode_token(token).get("sub")
    if not user_id:
        raise SecurityException("Token has no subject")
    return str(user_id)


def extract_token_from_header(authorization: str) -> str:
    """
    Extract JWT token from Authorization header.

    Args:
        authorization: Authorization header value (e.g., "Bearer <token>")

    Returns:
        Extracted token

    Raises:
        SecurityException: If header format is invalid
    """
    if not authorization:
        raise SecurityException("Missing authorization header")

    parts = authorization.split()

    if len(parts) != 2 or parts[0].lower() != "bearer":
        raise SecurityException("Invalid authorization header format")

    return parts[1]
