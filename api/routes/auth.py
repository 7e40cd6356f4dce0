"""
api/routes/auth.py -- Login, registration, session and admin-password endpoints.

Routes:
  POST /api/auth/login                -- password login; sets authToken cookie
  POST /api/auth/register             -- create account; sets authToken cookie
  POST /api/auth/logout               -- clears both session cookies
  POST /api/logout                    -- alias kept for older clients
  GET  /api/auth/session              -- {authenticated, user?, isAdmin}
  GET  /api/check-auth                -- alias of /auth/session
  POST /api/admin/verify-password     -- admin password -> adminAuth cookie
  GET  /api/admin/check-session       -- {authenticated: is_admin}

Security:
  Login and register are throttled per IP by slowapi (api/limiter.py).
  verify-password is throttled by the injected admin_verify limiter so the
  429 body can carry resetAt.
  authenticate_user() equalises timing for unknown usernames -- use it, never
  inline get_by_username() + verify_password().
  Cache-Control: no-store on every response that sets a session cookie.
  Annotations here stay evaluated (no postponed annotations): FastAPI reads
  the login/register signatures through slowapi's wrappers.
"""

import logging
import re
from typing import Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError

from api.limiter import limiter, login_limit, register_limit
from api.models import LoginRequest, PasswordRequest, RegisterRequest, api_error, user_response
from auth.dependencies import get_identity
from auth.models import MAX_CLASS_NUMBER, MIN_CLASS_NUMBER, VALID_GRADES, Identity, User, legacy_admin_user
from auth.passwords import authenticate_user, hash_password, verify_admin_password
from auth.ratelimit import enforce
from auth.store import UserStore
from auth.tokens import (
    clear_admin_cookie,
    clear_auth_cookie,
    issue_admin_token,
    issue_user_token,
    set_admin_cookie,
    set_auth_cookie,
)
from core.config import get_settings

logger = logging.getLogger("schoolpaper.auth")

# Auth policy:
# - POST /api/auth/login, /auth/register:    public, slowapi-limited
# - POST /api/auth/logout, /logout:          public -- clearing a cookie needs no prior auth
# - GET  /api/auth/session, /check-auth:     public, soft identity
# - POST /api/admin/verify-password:         public, admin_verify limiter
# - GET  /api/admin/check-session:           public, soft identity
router = APIRouter()

_USERNAME_RE = re.compile(r"^[a-zA-Z0-9_]{3,50}$")
_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
MIN_PASSWORD_LENGTH = 8
MAX_DISPLAY_NAME_LENGTH = 100

_NO_DATABASE = "User accounts are unavailable until a database is configured."


def _no_store(resp: JSONResponse) -> JSONResponse:
    resp.headers["Cache-Control"] = "no-store"
    return resp


def _validation_error(message: str) -> JSONResponse:
    return _no_store(
        JSONResponse(status_code=400, content={"error": {"code": "validation_error", "message": message, "detail": None}})
    )


def _bad_credentials() -> JSONResponse:
    return _no_store(
        JSONResponse(
            status_code=401,
            content={"error": {"code": "bad_credentials", "message": "Invalid username or password", "detail": None}},
        )
    )


def _session_response(user: User, status_code: int = 200, admin: bool = False) -> JSONResponse:
    """JSON {success, user} with a fresh session cookie (and admin cookie if asked)."""
    resp = JSONResponse(status_code=status_code, content={"success": True, "user": user_response(user)})
    set_auth_cookie(resp, issue_user_token(user))
    if admin:
        set_admin_cookie(resp, issue_admin_token())
    else:
        clear_admin_cookie(resp)
    return _no_store(resp)


# ---------------------------------------------------------------------------
# Login / register
# ---------------------------------------------------------------------------


@router.post("/auth/login")
@limiter.limit(login_limit)  # below @router so the registered endpoint is the throttled wrapper
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with username and password.

    Without a database only the legacy admin can log in: username "admin"
    plus ADMIN_PASSWORD yields the synthetic legacy-admin user and both
    session cookies. With a database the account table is authoritative and
    the admin cookie from any earlier admin session is cleared.
    """
    if not body.username or not body.password:
        return _validation_error("Username and password are required")

    user_store: Optional[UserStore] = request.app.state.user_store
    if user_store is None:
        settings = get_settings()
        if not settings.admin_password:
            raise api_error(503, "database_unavailable", _NO_DATABASE)
        if body.username != "admin" or not verify_admin_password(body.password, settings.admin_password):
            logger.info("Legacy admin login failed")
            return _bad_credentials()
        logger.info("Legacy admin login")
        return _session_response(legacy_admin_user(), admin=True)

    user = authenticate_user(user_store, body.username, body.password)
    if user is None:
        logger.info("Login failed", extra={"username": body.username})
        return _bad_credentials()

    user_store.update_last_login(user.id)
    logger.info("Login succeeded", extra={"user_id": user.id})
    return _session_response(user)


def _registration_problem(body: RegisterRequest) -> Optional[str]:
    """First rule the registration body breaks, or None."""
    if not body.username or not body.password or not body.display_name.strip():
        return "Username, password and display name are required"
    if not _USERNAME_RE.match(body.username):
        return "Username must be 3-50 characters (English letters, digits and underscore only)"
    if len(body.password) < MIN_PASSWORD_LENGTH:
        return f"Password must be at least {MIN_PASSWORD_LENGTH} characters"
    if len(body.display_name.strip()) > MAX_DISPLAY_NAME_LENGTH:
        return f"Display name must be at most {MAX_DISPLAY_NAME_LENGTH} characters"
    if body.email and not _EMAIL_RE.match(body.email):
        return "Invalid email address"
    if not body.is_teacher:
        if body.grade not in VALID_GRADES:
            return f"Grade must be one of {', '.join(VALID_GRADES)}"
        if body.class_number is None or not MIN_CLASS_NUMBER <= body.class_number <= MAX_CLASS_NUMBER:
            return f"Class number must be between {MIN_CLASS_NUMBER} and {MAX_CLASS_NUMBER}"
    return None


@router.post("/auth/register", status_code=201)
@limiter.limit(register_limit)
def register(request: Request, body: RegisterRequest) -> JSONResponse:
    """Create a student or teacher account and log it in.

    Teacher accounts need isTeacher plus the admin password -- otherwise
    anyone could grant themselves the teacher badge.
    """
    user_store: Optional[UserStore] = request.app.state.user_store
    if user_store is None:
        raise api_error(503, "database_unavailable", _NO_DATABASE)

    problem = _registration_problem(body)
    if problem:
        return _validation_error(problem)

    if body.is_teacher and not verify_admin_password(body.admin_password or "", get_settings().admin_password):
        logger.warning("Teacher registration rejected: bad admin password")
        raise api_error(403, "forbidden", "Teacher registration requires the admin password")

    if user_store.username_exists(body.username):
        raise api_error(409, "conflict", "Username already exists")

    try:
        user = user_store.create_user(
            User(
                username=body.username,
                display_name=body.display_name.strip(),
                hashed_password=hash_password(body.password),
                email=body.email or None,
                is_teacher=body.is_teacher,
                grade=body.grade,
                class_number=body.class_number,
            )
        )
    except IntegrityError:
        # Lost a race with a concurrent registration for the same name.
        raise api_error(409, "conflict", "Username already exists") from None

    logger.info("User registered", extra={"user_id": user.id, "role": user.role})
    return _session_response(user, status_code=201)


# ---------------------------------------------------------------------------
# Logout / session
# ---------------------------------------------------------------------------


@router.post("/auth/logout")
@router.post("/logout")
async def logout() -> JSONResponse:
    """Clear both session cookies. Always succeeds."""
    resp = JSONResponse(content={"success": True, "message": "Logged out"})
    clear_auth_cookie(resp)
    clear_admin_cookie(resp)
    return resp


@router.get("/auth/session")
@router.get("/check-auth")
def session(identity: Identity = Depends(get_identity)) -> dict:
    """Report who the caller is. Never fails -- anonymous is a valid answer."""
    content: dict = {"authenticated": identity.is_authenticated, "isAdmin": identity.is_admin}
    if identity.user is not None:
        content["user"] = user_response(identity.user)
    return content


# ---------------------------------------------------------------------------
# Admin password
# ---------------------------------------------------------------------------


@router.post("/admin/verify-password")
def admin_verify_password(request: Request, body: PasswordRequest) -> JSONResponse:
    """Exchange the admin password for a 4 hour adminAuth cookie."""
    enforce(
        request,
        request.app.state.rate_limiters.admin_verify,
        prefix="admin-verify",
        message="Too many attempts. Try again later.",
    )
    if not body.password:
        raise api_error(400, "validation_error", "Password is required")
    if not verify_admin_password(body.password, get_settings().admin_password):
        logger.warning("Admin password rejected")
        raise api_error(401, "unauthorized", "Invalid admin password")

    logger.info("Admin session started")
    resp = JSONResponse(content={"success": True})
    set_admin_cookie(resp, issue_admin_token())
    return _no_store(resp)


@router.get("/admin/check-session")
def admin_check_session(identity: Identity = Depends(get_identity)) -> dict:
    return {"authenticated": identity.is_admin}
