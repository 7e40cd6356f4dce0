"""
api/routes/posts.py -- Authoring endpoints for posts.

Routes:
  GET    /api/admin/posts              -- admin: every post; user: own posts
  POST   /api/admin/posts              -- create; author fields from identity
  GET    /api/admin/posts/export       -- CSV download (admin only)
  GET    /api/admin/posts/{id}         -- one post (owner or admin)
  PATCH  /api/admin/posts/{id}          -- partial update (owner or admin)
  DELETE /api/admin/posts/{id}          -- hard delete (owner or admin)
  GET    /api/user/posts/{id}          -- one post (owner only)
  PATCH  /api/user/posts/{id}           -- partial update (owner only)
  DELETE /api/user/posts/{id}           -- hard delete (owner only)

Ownership is never checked here and then acted on later: PATCH and DELETE go
through PostStore.update_if_owned() / delete_if_owned(), which re-check the
owner inside the same transaction that mutates, and map the tagged outcome
to 200/403/404.

The /user/ routes are for the student dashboard and ignore the admin flag, so
an admin cookie does not let a dashboard request touch someone else's post.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

from fastapi import APIRouter, Body, Depends, Query, Request
from fastapi.responses import JSONResponse, Response
from pydantic import ValidationError
from sqlalchemy.exc import IntegrityError

from api.models import PostCreate, PostUpdate, api_error, post_response, stats_response
from auth.dependencies import require_admin_auth, require_auth, require_author
from auth.models import Identity
from posts.export import export_filename, posts_to_csv
from posts.models import VALID_STATUSES, MutationOutcome, PostInput, PostPatch
from posts.permissions import is_owner
from posts.store import PostStore

logger = logging.getLogger("schoolpaper.posts")

# Auth policy:
# - /api/admin/posts[/{id}]:     require_author (user session or admin cookie); ownership in store
# - /api/admin/posts/export:     require_admin_auth
# - /api/user/posts/{id}:        require_auth (user session); owner only, admin flag ignored
router = APIRouter()

_NO_CACHE = {"Cache-Control": "no-store, no-cache, must-revalidate", "Pragma": "no-cache", "Expires": "0"}


def _post_store(request: Request) -> PostStore:
    store: Optional[PostStore] = request.app.state.post_store
    if store is None:
        raise api_error(503, "database_unavailable", "Posts are unavailable until a database is configured.")
    return store


def _not_found():
    return api_error(404, "not_found", "Post not found")


def _forbidden(message: str):
    return api_error(403, "forbidden", message)


def _parse_patch(body: dict[str, Any]) -> PostPatch:
    """Validate a PATCH body; 400 with {field: message} on failure."""
    try:
        update = PostUpdate.model_validate(body)
    except ValidationError as e:
        errors = {".".join(str(p) for p in err["loc"]) or "body": err["msg"] for err in e.errors()}
        raise api_error(400, "invalid_post_data", "Invalid post data", detail=errors) from None
    return PostPatch(update.patch_values())


def _get_owned(store: PostStore, post_id: str, identity: Identity, honour_admin: bool, forbidden: str) -> dict:
    post = store.get_post(post_id)
    if post is None:
        raise _not_found()
    if not (honour_admin and identity.is_admin) and not is_owner(post.author_id, identity.user_id):
        raise _forbidden(forbidden)
    return post_response(post)


def _patch_owned(
    store: PostStore, post_id: str, body: dict[str, Any], identity: Identity, honour_admin: bool
) -> dict:
    patch = _parse_patch(body)
    is_admin = honour_admin and identity.is_admin
    try:
        result = store.update_if_owned(post_id, identity.user_id, is_admin, patch)
    except ValueError as e:
        raise api_error(400, "invalid_post_data", "Invalid post data", detail=str(e)) from None
    if result.outcome == MutationOutcome.NOT_FOUND:
        raise _not_found()
    if result.outcome == MutationOutcome.FORBIDDEN:
        raise _forbidden("Forbidden - You can only edit your own posts")
    return post_response(result.post)


def _delete_owned(store: PostStore, post_id: str, identity: Identity, honour_admin: bool) -> dict:
    result = store.delete_if_owned(post_id, identity.user_id, honour_admin and identity.is_admin)
    if result.outcome == MutationOutcome.NOT_FOUND:
        raise _not_found()
    if result.outcome == MutationOutcome.FORBIDDEN:
        raise _forbidden("Forbidden - You can only delete your own posts")
    return {"success": True}


# ---------------------------------------------------------------------------
# Admin panel
# ---------------------------------------------------------------------------


@router.get("/admin/posts")
def list_admin_posts(
    request: Request,
    status: Optional[str] = Query(default=None),
    search: Optional[str] = Query(default=None, max_length=200),
    stats: bool = Query(default=False),
    identity: Identity = Depends(require_author),
) -> JSONResponse:
    """Posts visible in the editor: all for admins, own for everyone else.

    An unknown status value is ignored rather than rejected.
    """
    store = _post_store(request)
    status_filter = status if status in VALID_STATUSES else None
    author_filter = None if identity.is_admin else identity.user_id
    page = store.list_posts(status=status_filter, search=search, author_id=author_filter)

    content: dict = {"posts": [post_response(p) for p in page.posts]}
    if stats:
        content["stats"] = stats_response(store.get_stats())
    return JSONResponse(content=content, headers=_NO_CACHE)


@router.post("/admin/posts", status_code=201)
def create_post(
    request: Request,
    body: PostCreate,
    identity: Identity = Depends(require_author),
) -> dict:
    store = _post_store(request)
    if not body.title or not body.title.strip() or not body.content or not body.content.strip():
        raise api_error(400, "validation_error", "Title and content are required")
    data = PostInput(
        title=body.title,
        content=body.content,
        cover_image=body.cover_image,
        description=body.description,
        author=body.author,
        tags=list(body.tags),
        category=body.category,
        status=body.status.value,
    )
    try:
        post = store.create_post(data, actor=identity)
    except ValueError as e:
        raise api_error(400, "validation_error", str(e)) from None
    except IntegrityError:
        logger.exception("Post insert kept colliding on slug")
        raise api_error(409, "conflict", "Could not allocate a unique slug for this title") from None
    return post_response(post)


@router.get("/admin/posts/export")
def export_posts(request: Request, identity: Identity = Depends(require_admin_auth)) -> Response:
    """Every post as a CSV attachment."""
    store = _post_store(request)
    page = store.list_posts()
    logger.info("Posts exported", extra={"count": len(page.posts)})
    return Response(
        content=posts_to_csv(page.posts),
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{export_filename()}"'},
    )


@router.get("/admin/posts/{post_id}")
def get_admin_post(request: Request, post_id: str, identity: Identity = Depends(require_author)) -> dict:
    return _get_owned(_post_store(request), post_id, identity, honour_admin=True, forbidden="Forbidden")


@router.patch("/admin/posts/{post_id}")
def update_admin_post(
    request: Request,
    post_id: str,
    body: dict[str, Any] = Body(...),
    identity: Identity = Depends(require_author),
) -> dict:
    return _patch_owned(_post_store(request), post_id, body, identity, honour_admin=True)


@router.delete("/admin/posts/{post_id}")
def delete_admin_post(request: Request, post_id: str, identity: Identity = Depends(require_author)) -> dict:
    return _delete_owned(_post_store(request), post_id, identity, honour_admin=True)


# ---------------------------------------------------------------------------
# Student dashboard
# ---------------------------------------------------------------------------


@router.get("/user/posts/{post_id}")
def get_user_post(request: Request, post_id: str, identity: Identity = Depends(require_auth)) -> dict:
    return _get_owned(
        _post_store(request),
        post_id,
        identity,
        honour_admin=False,
        forbidden="Forbidden - You can only access your own posts",
    )


@router.patch("/user/posts/{post_id}")
def update_user_post(
    request: Request,
    post_id: str,
    body: dict[str, Any] = Body(...),
    identity: Identity = Depends(require_auth),
) -> dict:
    return _patch_owned(_post_store(request), post_id, body, identity, honour_admin=False)


@router.delete("/user/posts/{post_id}")
def delete_user_post(request: Request, post_id: str, identity: Identity = Depends(require_auth)) -> dict:
    return _delete_owned(_post_store(request), post_id, identity, honour_admin=False)
