"""
auth/tokens.py -- Signed session tokens and the cookies that carry them.

Two token shapes share one signing key (JWT_SECRET, HS256 via python-jose):

  User session ("authToken" cookie):
       userId, username, role, grade, classNumber, iat, exp, typ="session".
       Expiry comes from SESSION_DURATION (default 7 days). Only identity
       claims are embedded -- never the password hash or email.

  Admin session ("adminAuth" cookie):
       authenticated=true, timestamp (ms), exp, typ="admin".
       Fixed 4 hour lifetime. Issued by the admin-password flow, which
       predates user accounts and must keep working without a database.

The typ claim keeps the two apart: a user token is never accepted as an
admin token and vice versa. Both verify functions return None/False on any
failure (bad signature, expired, wrong shape) -- they never raise. The
dependency layer turns that into "anonymous".

Cookie policy: httponly, samesite="strict", path "/", secure when
SECURE_COOKIES (default: on unless DEBUG). max_age matches token expiry so
cookie and token die together.

Layer rule: no imports from api/, posts/, cache/, or storage/. Import from
core/ is allowed.
"""

from __future__ import annotations

import time
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

from jose import JWTError, jwt

from auth.models import UserClaims
from core.config import get_settings

if TYPE_CHECKING:
    from starlette.responses import Response

    from auth.models import User

_ALGORITHM = "HS256"

AUTH_COOKIE_NAME = "authToken"
ADMIN_COOKIE_NAME = "adminAuth"

ADMIN_SESSION_SECONDS = 4 * 60 * 60

_SESSION_TYPE = "session"
_ADMIN_TYPE = "admin"


# ---------------------------------------------------------------------------
# User session tokens
# ---------------------------------------------------------------------------


def issue_user_token(user: User, expire_seconds: int = 0) -> str:
    """Encode a signed JWT carrying the user's minimal identity claims.

    Args:
        user:           The authenticated account (or the legacy admin).
        expire_seconds: Override for the session length. 0 (default) uses
                        Settings.session_duration.
    """
    settings = get_settings()
    duration = expire_seconds if expire_seconds > 0 else settings.session_duration
    now = datetime.now(timezone.utc)
    payload = {
        "typ": _SESSION_TYPE,
        "userId": user.id,
        "username": user.username,
        "role": user.role,
        "grade": user.grade,
        "classNumber": user.class_number,
        "iat": now,
        "exp": now + timedelta(seconds=duration),
    }
    return jwt.encode(payload, settings.jwt_secret, algorithm=_ALGORITHM)


def verify_user_token(token: str) -> UserClaims | None:
    """Decode and verify a session JWT. Returns the claims or None on any failure."""
    if not token:
        return None
    try:
        payload = jwt.decode(token, get_settings().jwt_secret, algorithms=[_ALGORITHM])
    except JWTError:
        return None
    if payload.get("typ") != _SESSION_TYPE or not payload.get("userId") or not payload.get("username"):
        return None
    return UserClaims(
        user_id=payload["userId"],
        username=payload["username"],
        role=payload.get("role", "student"),
        grade=payload.get("grade"),
        class_number=payload.get("classNumber"),
    )


# ---------------------------------------------------------------------------
# Admin session tokens
# ---------------------------------------------------------------------------


def issue_admin_token() -> str:
    now = datetime.now(timezone.utc)
    payload = {
        "typ": _ADMIN_TYPE,
        "authenticated": True,
        "timestamp": int(time.time() * 1000),
        "exp": now + timedelta(seconds=ADMIN_SESSION_SECONDS),
    }
    return jwt.encode(payload, get_settings().jwt_secret, algorithm=_ALGORITHM)


def verify_admin_token(token: str) -> bool:
    """True only for an unexpired, correctly signed admin token."""
    if not token:
        return False
    try:
        payload = jwt.decode(token, get_settings().jwt_secret, algorithms=[_ALGORITHM])
    except JWTError:
        return False
    return payload.get("typ") == _ADMIN_TYPE and payload.get("authenticated") is True


# ---------------------------------------------------------------------------
# Cookie helpers
# ---------------------------------------------------------------------------


def set_auth_cookie(response: Response, token: str, expire_seconds: int = 0) -> None:
    """Write the session JWT as an httpOnly cookie on the response.

    Pass the same expire_seconds used in issue_user_token() to keep cookie
    and token expiry in sync.
    """
    settings = get_settings()
    duration = expire_seconds if expire_seconds > 0 else settings.session_duration
    response.set_cookie(
        AUTH_COOKIE_NAME,
        value=token,
        httponly=True,
        samesite="strict",
        secure=bool(settings.secure_cookies),
        max_age=duration,
        path="/",
    )


def clear_auth_cookie(response: Response) -> None:
    response.delete_cookie(
        AUTH_COOKIE_NAME,
        path="/",
        httponly=True,
        samesite="strict",
        secure=bool(get_settings().secure_cookies),
    )


def set_admin_cookie(response: Response, token: str) -> None:
    response.set_cookie(
        ADMIN_COOKIE_NAME,
        value=token,
        httponly=True,
        samesite="strict",
        secure=bool(get_settings().secure_cookies),
        max_age=ADMIN_SESSION_SECONDS,
        path="/",
    )


def clear_admin_cookie(response: Response) -> None:
    response.delete_cookie(
        ADMIN_COOKIE_NAME,
        path="/",
        httponly=True,
        samesite="strict",
        secure=bool(get_settings().secure_cookies),
    )
