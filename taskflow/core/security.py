"""
Security Module
===============

Token handling for requests into this service:
- JWT access token validation (tokens are issued by the auth service)
- Shared-secret or trusted-header check for the reminder cron trigger
"""

import hmac
from datetime import datetime, timedelta, timezone
from typing import Any, Mapping, Optional

from jose import JWTError, jwt

from taskflow.config import settings


def create_access_token(
    data: dict[str, Any],
    expires_delta: Optional[timedelta] = None,
) -> str:
    """
    Create a JWT access token.

    Args:
        data: Payload data to encode
        expires_delta: Custom expiration time (optional)

    Returns:
        Encoded JWT token string
    """
    to_encode = data.copy()

    if expires_delta:
        expire = datetime.now(timezone.utc) + expires_delta
    else:
        expire = datetime.now(timezone.utc) + timedelta(
            minutes=settings.JWT_ACCESS_TOKEN_EXPIRE_MINUTES
        )

    to_encode.update({
        "exp": expire,
        "iat": datetime.now(timezone.utc),
        "type": "access",
    })

    return jwt.encode(
        to_encode,
        settings.JWT_SECRET,
        algorithm=settings.JWT_ALGORITHM,
    )


def decode_token(token: str) -> Optional[dict[str, Any]]:
    """
    Decode and validate a JWT token.

    Args:
        token: JWT token string

    Returns:
        Decoded payload if valid, None otherwise
    """
    try:
        return jwt.decode(
            token,
            settings.JWT_SECRET,
            algorithms=[settings.JWT_ALGORITHM],
        )
    except JWTError:
        return None


def verify_cron_authorization(authorization_header: Optional[str]) -> bool:
    """
    Check an ``Authorization: Bearer <CRON_SECRET>`` header.

    Always False when no secret is configured.
    """
    if not settings.CRON_SECRET or not authorization_header:
        return False
    if not authorization_header.startswith("Bearer "):
        return False
    supplied = authorization_header[len("Bearer "):]
    return hmac.compare_digest(supplied.encode(), settings.CRON_SECRET.encode())


def is_trusted_scheduler(headers: Mapping[str, str]) -> bool:
    """
    True when ``CRON_TRUSTED_HEADER`` is configured and present.

    Only safe behind a platform edge that strips the header from outside
    requests.
    """
    name = settings.CRON_TRUSTED_HEADER.strip()
    return bool(name) and bool(headers.get(name))
