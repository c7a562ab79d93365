"""Signed manage tokens granting a client access to a single appointment."""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone

from jose import JWTError, jwt

from booking_os.config import get_settings

MANAGE_TOKEN_TYPE = "manage"


def create_manage_token(
    appointment_id: uuid.UUID,
    business_id: uuid.UUID,
    expires_in: timedelta | None = None,
) -> str:
    settings = get_settings()
    expire = datetime.now(timezone.utc) + (expires_in or timedelta(days=settings.manage_token_expire_days))
    payload = {
        "sub": str(appointment_id),
        "bid": str(business_id),
        "type": MANAGE_TOKEN_TYPE,
        "exp": expire,
    }
    return jwt.encode(payload, settings.manage_token_secret, algorithm=settings.manage_token_algorithm)


def decode_manage_token(token: str) -> dict | None:
    """Decode and validate a manage token. Returns claims dict or None on any error."""
    settings = get_settings()
    try:
        claims = jwt.decode(token, settings.manage_token_secret, algorithms=[settings.manage_token_algorithm])
    except JWTError:
        return None
    if claims.get("type") != MANAGE_TOKEN_TYPE:
        return None
    return claims
