"""
api/routes/setup.py -- One-time database bootstrap.

Routes:
  POST /api/setup   -- body {"password": ADMIN_PASSWORD}; creates the schema

Hidden (404) unless ENABLE_SETUP_ROUTE=true, and throttled to 3 attempts per
hour per client. The password is compared in constant time. Safe to call
twice: an initialized database answers alreadyInitialized with the current
post count and is not touched.
"""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Request

from api.models import PasswordRequest, api_error
from auth.passwords import verify_admin_password
from auth.ratelimit import enforce
from core.config import get_settings
from db.migrations import run_migrations, tables_exist
from posts.store import PostStore

logger = logging.getLogger("schoolpaper.setup")

# Auth policy:
# - POST /api/setup: admin password in the body; no session required
router = APIRouter()


@router.post("/setup")
def setup(request: Request, body: PasswordRequest) -> dict:
    settings = get_settings()
    if not settings.enable_setup_route:
        raise api_error(404, "not_found", "Not found")

    enforce(request, request.app.state.rate_limiters.setup, prefix="setup")

    if not verify_admin_password(body.password, settings.admin_password):
        logger.warning("Setup attempted with a wrong password")
        raise api_error(401, "unauthorized", "Unauthorized")

    post_store: Optional[PostStore] = request.app.state.post_store
    if post_store is None:
        raise api_error(503, "database_unavailable", "DATABASE_URL is not configured.")

    if tables_exist(post_store.engine):
        post_count = post_store.count_posts()
        return {
            "success": True,
            "alreadyInitialized": True,
            "message": "Database already set up",
            "postCount": post_count,
            "logs": ["Database already initialized", f"Current posts in database: {post_count}"],
        }

    logs = run_migrations(post_store.engine)
    logger.info("Database initialized via setup route")
    return {"success": True, "alreadyInitialized": False, "logs": logs}
