"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

Every request resolves to one Identity(user, is_admin):

  1. User session -- the "authToken" cookie, or an Authorization: Bearer
     header for API clients. The token id "legacy-admin" maps to the
     synthetic admin account. Otherwise, with a database, the user is
     re-fetched so a deleted account stops working immediately; without a
     database the user is rebuilt from the token claims.
  2. Admin session -- the "adminAuth" cookie. Independent of (1): a request
     can carry both. The legacy admin account also implies is_admin.
  3. Neither -> anonymous Identity().

The result is memoised on request.state for the rest of that request only,
so several dependencies on one route do not hit the database twice.

get_identity() never raises. require_auth(), require_admin_auth() and
require_author() fail closed with HTTP 401 and a message that does not say
which check failed.

Layer rule: no imports from api/, posts/, cache/, or storage/.
  auth/dependencies.py may import from fastapi (for HTTPException/Request)
  because this module is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

import logging

from fastapi import HTTPException, Request
from sqlalchemy.exc import SQLAlchemyError

from auth.models import LEGACY_ADMIN_ID, Identity, User, UserClaims, legacy_admin_user
from auth.tokens import ADMIN_COOKIE_NAME, AUTH_COOKIE_NAME, verify_admin_token, verify_user_token

logger = logging.getLogger("schoolpaper.auth")

_UNAUTHORIZED = {"code": "unauthorized", "message": "Authentication required."}


def _session_token(request: Request) -> str | None:
    token = request.cookies.get(AUTH_COOKIE_NAME)
    if not token:
        auth_header = request.headers.get("Authorization", "")
        if auth_header.startswith("Bearer "):
            token = auth_header[7:]
    return token or None


def _user_from_claims(claims: UserClaims) -> User:
    """Rebuild a minimal User from token claims (no-database mode)."""
    return User(
        id=claims.user_id,
        username=claims.username,
        display_name=claims.username,
        is_teacher=claims.role == "teacher",
        grade=claims.grade,
        class_number=claims.class_number,
    )


def _resolve_user(request: Request) -> User | None:
    token = _session_token(request)
    if not token:
        return None
    claims = verify_user_token(token)
    if claims is None:
        return None
    if claims.user_id == LEGACY_ADMIN_ID:
        return legacy_admin_user()
    user_store = getattr(request.app.state, "user_store", None)
    if user_store is None:
        return _user_from_claims(claims)
    try:
        return user_store.get_by_id(claims.user_id)
    except SQLAlchemyError:
        # Fail closed: a broken DB means nobody is logged in, not everybody.
        logger.exception("User lookup failed during identity resolution")
        return None


def resolve_identity(request: Request) -> Identity:
    """Work out who is calling, from cookies and headers only."""
    user = _resolve_user(request)
    is_admin = verify_admin_token(request.cookies.get(ADMIN_COOKIE_NAME, ""))
    if user is not None and user.id == LEGACY_ADMIN_ID:
        is_admin = True
    return Identity(user=user, is_admin=is_admin)


def get_identity(request: Request) -> Identity:
    """Soft dependency: the caller's Identity, anonymous if nothing verifies."""
    cached = getattr(request.state, "identity", None)
    if isinstance(cached, Identity):
        return cached
    identity = resolve_identity(request)
    request.state.identity = identity
    return identity


def require_auth(request: Request) -> Identity:
    """Require a logged-in user account. Raises HTTP 401 otherwise.

    Use as a FastAPI dependency:
        @router.get("/user/profile")
        def route(identity: Identity = Depends(require_auth)): ...
    """
    identity = get_identity(request)
    if identity.user is None:
        raise HTTPException(status_code=401, detail=_UNAUTHORIZED)
    return identity


def require_admin_auth(request: Request) -> Identity:
    """Require admin capability (admin cookie or legacy admin). HTTP 401 otherwise."""
    identity = get_identity(request)
    if not identity.is_admin:
        raise HTTPException(status_code=401, detail=_UNAUTHORIZED)
    return identity


def require_author(request: Request) -> Identity:
    """Require a user account or admin capability -- anyone who may write posts."""
    identity = get_identity(request)
    if not identity.is_authenticated:
        raise HTTPException(status_code=401, detail=_UNAUTHORIZED)
    return identity
