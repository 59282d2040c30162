# backend/app/api/v1/auth.py
"""
Passwordless sign-in for studio owners and staff.

The email a user signs in with is the one checkout hands to Stripe and the
one restore / provisioning search Stripe customers by, so it is normalized
the same way everywhere (User.normalize_email).
"""
from __future__ import annotations

import secrets
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.security import bearer_scheme, create_access_token, decode_access_token
from app.db.session import get_db
from app.models.user import User
from app.schemas.auth import MagicCodeRequest, MagicCodeVerify, MeResponse, TokenResponse

router = APIRouter(prefix="/auth", tags=["auth"])

MAGIC_CODE_EXPIRY_MINUTES = 10


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive timestamps; they are stored as UTC
    return value if value.tzinfo is not None else value.replace(tzinfo=timezone.utc)


def _invalid_code(detail: str = "Invalid code") -> HTTPException:
    return HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=detail)


def _echo_code_in_response() -> bool:
    # staging / production never leak the code, whatever the flag says
    if settings.ENVIRONMENT.strip().lower() in {"staging", "production"}:
        return False
    return settings.RETURN_MAGIC_CODE_IN_RESPONSE


async def _get_user_by_email(db: AsyncSession, email: str) -> Optional[User]:
    res = await db.execute(select(User).where(User.email == email))
    return res.scalar_one_or_none()


async def purge_expired_magic_codes(db: AsyncSession) -> None:
    stmt = (
        update(User)
        .where(User.magic_code_expires_at.is_not(None))
        .where(User.magic_code_expires_at < _utcnow())
        .values(magic_code=None, magic_code_expires_at=None)
    )
    await db.execute(stmt)


@router.post("/request-code")
async def request_code(payload: MagicCodeRequest, db: AsyncSession = Depends(get_db)):
    """
    Issue a 6-digit sign-in code. Unknown emails get a user with
    account_status=pending; it turns active once a paid studio is attached.
    """
    email = User.normalize_email(payload.email)

    await purge_expired_magic_codes(db)

    user = await _get_user_by_email(db, email)
    if user is None:
        user = User(email=email, is_active=True)
        db.add(user)
        await db.flush()

    code = str(secrets.randbelow(900000) + 100000)
    user.magic_code = code
    user.magic_code_expires_at = _utcnow() + timedelta(minutes=MAGIC_CODE_EXPIRY_MINUTES)
    await db.commit()

    resp = {"status": "ok", "expires_in_minutes": MAGIC_CODE_EXPIRY_MINUTES}
    if _echo_code_in_response():
        resp["code"] = code
    return resp


@router.post("/verify-code", response_model=TokenResponse)
async def verify_code(payload: MagicCodeVerify, db: AsyncSession = Depends(get_db)) -> TokenResponse:
    """
    Exchange a code for a bearer token. Codes are single use.
    """
    email = User.normalize_email(payload.email)
    code = payload.code.strip()
    if not code:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="code is required")

    await purge_expired_magic_codes(db)

    user = await _get_user_by_email(db, email)
    if not user or not user.magic_code or not user.magic_code_expires_at:
        raise _invalid_code()
    if not secrets.compare_digest(user.magic_code, code):
        raise _invalid_code()
    if _as_utc(user.magic_code_expires_at) < _utcnow():
        raise _invalid_code("Code expired")

    user.magic_code = None
    user.magic_code_expires_at = None
    await db.commit()

    return TokenResponse(access_token=create_access_token(user.id))


async def get_current_user(
    credentials=Depends(bearer_scheme),
    db: AsyncSession = Depends(get_db),
) -> User:
    """
    Bearer-token user for every billing and tenant endpoint (the webhook excepted).
    """
    user = await db.get(User, decode_access_token(credentials.credentials))
    if not user:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="User not found")
    if not user.is_active:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="User inactive")
    return user


@router.get("/me", response_model=MeResponse)
async def me(user: User = Depends(get_current_user)) -> MeResponse:
    """
    account_status tells the client whether to send the user to checkout
    (pending) or into their studio (active).
    """
    return MeResponse(
        id=str(user.id),
        email=user.email,
        is_active=user.is_active,
        full_name=user.full_name,
        account_status=user.account_status,
    )
