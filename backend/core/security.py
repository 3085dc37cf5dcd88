"""
JWT handling for the identity boundary.

The portal does not authenticate users itself; an upstream identity
provider issues HS256 access tokens whose ``sub`` is the user id. This
module verifies them and exposes the payload as a FastAPI dependency.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials as HTTPAuthCredentials
from pydantic import BaseModel
import jwt

from app.config import get_settings
from core.exceptions import UnauthorizedError

settings = get_settings()

# JWT configuration
ALGORITHM = "HS256"

# auto_error=False so a missing header yields our own 401 message
security_scheme = HTTPBearer(auto_error=False)


class TokenPayload(BaseModel):
    """JWT token payload structure."""
    sub: str  # user_id
    email: str
    exp: datetime
    iat: datetime
    type: str


def create_access_token(user_id: str, email: str, expires_minutes: Optional[int] = None) -> str:
    """
    Create a JWT access token.

    Args:
        user_id: User ID
        email: User email
        expires_minutes: Lifetime override, defaults to ACCESS_TOKEN_EXPIRE_MINUTES

    Returns:
        Encoded JWT token
    """
    now = datetime.now(timezone.utc)
    expire = now + timedelta(minutes=expires_minutes or settings.ACCESS_TOKEN_EXPIRE_MINUTES)

    payload = {
        "sub": user_id,
        "email": email,
        "type": "access",
        "iat": now,
        "exp": expire,
    }
    return jwt.encode(payload, settings.SECRET_KEY, algorithm=ALGORITHM)


def verify_token(token: str) -> TokenPayload:
    """
    Verify and decode a JWT token.

    Args:
        token: Encoded JWT token

    Returns:
        Decoded token payload

    Raises:
        UnauthorizedError: If token is invalid or expired
    """
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise UnauthorizedError("Sitzung abgelaufen")
    except jwt.InvalidTokenError:
        raise UnauthorizedError("Ungültiges Token")

    user_id = payload.get("sub")
    email = payload.get("email")
    if user_id is None or email is None:
        raise UnauthorizedError("Ungültiges Token")

    return TokenPayload(
        sub=user_id,
        email=email,
        exp=datetime.fromtimestamp(payload.get("exp"), tz=timezone.utc),
        iat=datetime.fromtimestamp(payload.get("iat"), tz=timezone.utc),
        type=payload.get("type", "access"),
    )


async def get_current_user(
    credentials: Optional[HTTPAuthCredentials] = Depends(security_scheme),
) -> TokenPayload:
    """
    FastAPI dependency returning the verified token payload.

    Raises:
        UnauthorizedError: If the header is missing or the token is invalid
    """
    if not credentials:
        raise UnauthorizedError("Nicht angemeldet")

    token_payload = verify_token(credentials.credentials)
    if token_payload.type != "access":
        raise UnauthorizedError("Ungültiges Token")
    return token_payload
