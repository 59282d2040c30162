from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from fastapi import HTTPException, status
from fastapi.security import HTTPBearer
from jose import JWTError, jwt

from app.core.config import settings

bearer_scheme = HTTPBearer(auto_error=True)

ACCESS_TOKEN_TYPE = "access"


def _invalid_token(detail: str = "Invalid token") -> HTTPException:
    return HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=detail)


def _normalize_token(token: str | None) -> str:
    """
    Strip what Swagger users tend to paste along with the token:
    whitespace, surrounding quotes and a duplicated 'Bearer ' prefix.
    """
    t = (token or "").strip()
    if len(t) >= 2 and t[0] == t[-1] and t[0] in {'"', "'"}:
        t = t[1:-1].strip()
    if t.lower().startswith("bearer "):
        t = t[7:].strip()
    return t


def create_access_token(user_id: uuid.UUID | str, expires_minutes: Optional[int] = None) -> str:
    now = datetime.now(timezone.utc)
    expire_dt = now + timedelta(minutes=expires_minutes or settings.ACCESS_TOKEN_EXPIRE_MINUTES)

    claims: dict[str, Any] = {
        "sub": str(user_id),
        "typ": ACCESS_TOKEN_TYPE,
        "exp": int(expire_dt.timestamp()),
        "iat": int(now.timestamp()),
    }
    return jwt.encode(claims, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def decode_access_token(token: str) -> uuid.UUID:
    """
    Returns the user id carried by a valid access token.
    Raises 401 for anything else (expired, bad signature, foreign token type, non-UUID subject).
    """
    token = _normalize_token(token)
    if not token:
        raise _invalid_token()

    try:
        payload = jwt.decode(
            token,
            settings.JWT_SECRET,
            algorithms=[settings.JWT_ALGORITHM],
            options={"require_sub": True, "require_exp": True},
        )
    except JWTError:
        raise _invalid_token()

    if payload.get("typ", ACCESS_TOKEN_TYPE) != ACCESS_TOKEN_TYPE:
        raise _invalid_token()

    try:
        return uuid.UUID(str(payload.get("sub")))
    except ValueError:
        raise _invalid_token("Invalid token subject")
