from __future__ import annotations

import hmac
import secrets
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from fastapi import HTTPException, status
from jose import JWTError, jwt

from sitefleet.core.config import Settings

SITE_API_KEY_BYTES = 32


def create_access_token(subject: str, settings: Settings, expires_minutes: Optional[int] = None) -> str:
    expire_dt = datetime.now(timezone.utc) + timedelta(
        minutes=expires_minutes or settings.ACCESS_TOKEN_EXPIRE_MINUTES
    )

    # Use numeric timestamps for maximum compatibility
    to_encode: dict[str, Any] = {
        "sub": str(subject),
        "exp": int(expire_dt.timestamp()),
        "iat": int(datetime.now(timezone.utc).timestamp()),
    }

    return jwt.encode(
        to_encode,
        settings.JWT_SECRET,
        algorithm=settings.JWT_ALGORITHM,
    )


def decode_access_token(token: str, settings: Settings) -> str:
    if not token:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")

    try:
        payload = jwt.decode(
            token,
            settings.JWT_SECRET,
            algorithms=[settings.JWT_ALGORITHM],
            options={"require_sub": True, "require_exp": True},
        )
        sub = payload.get("sub")
        if not sub:
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")
        return str(sub)
    except JWTError:
        # expired, malformed or signed with another secret
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")


def extract_bearer_token(authorization: Optional[str]) -> Optional[str]:
    """
    Returns the token of an `Authorization: Bearer <token>` header, or None.
    """
    if not authorization or not authorization.startswith("Bearer "):
        return None
    token = authorization[7:]
    return token or None


def api_keys_match(presented: Optional[str], expected: Optional[str]) -> bool:
    """
    Constant-time comparison of two API keys; False when either is missing.
    """
    if not presented or not expected:
        return False
    return hmac.compare_digest(presented.encode("utf-8"), expected.encode("utf-8"))


def generate_secret(nbytes: int = SITE_API_KEY_BYTES) -> str:
    return secrets.token_urlsafe(nbytes)
