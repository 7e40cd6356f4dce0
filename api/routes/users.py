"""
api/routes/users.py -- Account management endpoints.

Routes:
  GET    /api/admin/users          -- list all accounts (admin only)
  GET    /api/admin/users/{id}     -- one account (admin only)
  PATCH  /api/admin/users/{id}     -- update profile fields or teacher flag (admin only)
  DELETE /api/admin/users/{id}     -- delete account; posts stay, marked author-deleted
  GET    /api/user/profile         -- the caller's own account
  PATCH  /api/user/profile         -- update the caller's own profile

Grade/class rules are checked against the merged result, so turning a
teacher into a student without giving a grade and class is refused.
"""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Request

from api.models import UserUpdate, api_error, user_response
from auth.dependencies import require_admin_auth, require_auth
from auth.models import MAX_CLASS_NUMBER, MIN_CLASS_NUMBER, VALID_GRADES, Identity, User
from auth.passwords import hash_password
from auth.store import UserStore

logger = logging.getLogger("schoolpaper.users")

# Auth policy:
# - /api/admin/users[/{id}]:   require_admin_auth
# - /api/user/profile:         require_auth -- acts on identity.user only, never a path id
router = APIRouter()


def _user_store(request: Request) -> UserStore:
    store: Optional[UserStore] = request.app.state.user_store
    if store is None:
        raise api_error(503, "database_unavailable", "User management requires a configured database.")
    return store


def _update_fields(body: UserUpdate, current: User, allow_teacher_flag: bool) -> dict:
    """Translate a validated UserUpdate into UserStore.update_user() kwargs."""
    sent = body.model_fields_set
    fields: dict = {}
    if "display_name" in sent and body.display_name is not None:
        fields["display_name"] = body.display_name.strip()
    if "email" in sent:
        fields["email"] = body.email or None
    if "grade" in sent:
        if body.grade is not None and body.grade not in VALID_GRADES:
            raise api_error(400, "validation_error", f"Grade must be one of {', '.join(VALID_GRADES)}")
        fields["grade"] = body.grade
    if "class_number" in sent:
        if body.class_number is not None and not MIN_CLASS_NUMBER <= body.class_number <= MAX_CLASS_NUMBER:
            raise api_error(
                400,
                "validation_error",
                f"Class number must be between {MIN_CLASS_NUMBER} and {MAX_CLASS_NUMBER}",
            )
        fields["class_number"] = body.class_number
    if allow_teacher_flag and "is_teacher" in sent and body.is_teacher is not None:
        fields["is_teacher"] = body.is_teacher
    if "password" in sent and body.password:
        fields["hashed_password"] = hash_password(body.password)

    is_teacher = fields.get("is_teacher", current.is_teacher)
    if is_teacher:
        fields["grade"] = None
        fields["class_number"] = None
    elif fields.get("grade", current.grade) is None or fields.get("class_number", current.class_number) is None:
        raise api_error(400, "validation_error", "Students need a grade and a class number")
    return fields


# ---------------------------------------------------------------------------
# Admin
# ---------------------------------------------------------------------------


@router.get("/admin/users")
def list_users(request: Request, identity: Identity = Depends(require_admin_auth)) -> dict:
    store = _user_store(request)
    return {"users": [user_response(u) for u in store.list_users()]}


@router.get("/admin/users/{user_id}")
def get_user(request: Request, user_id: str, identity: Identity = Depends(require_admin_auth)) -> dict:
    store = _user_store(request)
    user = store.get_by_id(user_id)
    if user is None:
        raise api_error(404, "not_found", "User not found")
    return {"user": user_response(user)}


@router.patch("/admin/users/{user_id}")
def update_user(
    request: Request,
    user_id: str,
    body: UserUpdate,
    identity: Identity = Depends(require_admin_auth),
) -> dict:
    store = _user_store(request)
    current = store.get_by_id(user_id)
    if current is None:
        raise api_error(404, "not_found", "User not found")
    updated = store.update_user(user_id, **_update_fields(body, current, allow_teacher_flag=True))
    if updated is None:
        raise api_error(404, "not_found", "User not found")
    logger.info("User updated by admin", extra={"user_id": user_id, "fields": sorted(body.model_fields_set)})
    return {"user": user_response(updated)}


@router.delete("/admin/users/{user_id}")
def delete_user(request: Request, user_id: str, identity: Identity = Depends(require_admin_auth)) -> dict:
    store = _user_store(request)
    if not store.delete_user(user_id):
        raise api_error(404, "not_found", "User not found")
    logger.info("User deleted", extra={"user_id": user_id})
    return {"success": True}


# ---------------------------------------------------------------------------
# Own profile
# ---------------------------------------------------------------------------


@router.get("/user/profile")
def get_profile(identity: Identity = Depends(require_auth)) -> dict:
    return {"user": user_response(identity.user)}


@router.patch("/user/profile")
def update_profile(request: Request, body: UserUpdate, identity: Identity = Depends(require_auth)) -> dict:
    """Edit your own display name, email, grade, class or password.

    The teacher flag is ignored here; only an admin can change it.
    """
    store = _user_store(request)
    current = identity.user
    if identity.is_legacy_admin:
        raise api_error(400, "validation_error", "The built-in admin account has no editable profile")
    updated = store.update_user(current.id, **_update_fields(body, current, allow_teacher_flag=False))
    if updated is None:
        raise api_error(404, "not_found", "User not found")
    return {"user": user_response(updated)}
