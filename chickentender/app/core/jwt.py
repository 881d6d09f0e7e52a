"""
Bearer token encoding.

Sign-in is handled by the identity integration, which hands the client a
JWT naming the user. The API only needs to decode it; encoding is used by
the seed script and by tests.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional, Dict, Any
from jose import JWTError, jwt
from chickentender.app.core.config import settings


def create_access_token(data: Dict[str, Any], expires_delta: Optional[timedelta] = None) -> str:
    """
    Encode a signed token with an expiry.

    Args:
        data: Claims; the API requires `user_id`, `sub` is the email
        expires_delta: Lifetime, settings.access_token_expire_minutes by default
    """
    lifetime = expires_delta or timedelta(minutes=settings.access_token_expire_minutes)
    claims = {**data, "exp": datetime.now(timezone.utc) + lifetime}
    return jwt.encode(claims, settings.secret_key, algorithm=settings.algorithm)


def create_user_token(user, expires_delta: Optional[timedelta] = None) -> str:
    return create_access_token({"sub": user.email, "user_id": user.id}, expires_delta)


def decode_access_token(token: str) -> Optional[Dict[str, Any]]:
    """Claims of a valid, unexpired token; None for anything else."""
    try:
        return jwt.decode(token, settings.secret_key, algorithms=[settings.algorithm])
    except JWTError:
        return None
