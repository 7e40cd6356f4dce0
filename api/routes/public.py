"""
api/routes/public.py -- Read-only endpoints for anonymous readers.

Routes:
  GET /api/posts                      -- published posts, newest first, paginated
  GET /api/posts/{slug}               -- one published post
  GET /api/archives                   -- published-post counts per month
  GET /api/archives/{year}/{month}    -- published posts of one month

Drafts are never visible here, whatever the caller's session. Responses are
read through the PageCache on app.state.cache; PostStore invalidates the
matching tags on every write, so the TTL only bounds staleness from writes
made by another process.
"""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Query, Request
from fastapi.responses import JSONResponse

from api.models import api_error, archive_response, post_response
from cache.store import PageCache
from core.text import month_number
from posts.store import PostStore

logger = logging.getLogger("schoolpaper.public")

# Auth policy: every route here is public.
router = APIRouter()

DEFAULT_PAGE_SIZE = 12
MAX_PAGE_SIZE = 100

_ARCHIVE_CACHE_CONTROL = "public, s-maxage=60, stale-while-revalidate=120"


def _post_store(request: Request) -> PostStore:
    store: Optional[PostStore] = request.app.state.post_store
    if store is None:
        raise api_error(503, "database_unavailable", "Posts are unavailable until a database is configured.")
    return store


def _cache(request: Request) -> Optional[PageCache]:
    return getattr(request.app.state, "cache", None)


def _cached(request: Request, key: str, tags: list[str], build):
    """Return cached payload for key, or build(), cache and return it."""
    cache = _cache(request)
    if cache is not None:
        hit = cache.get(key)
        if hit is not None:
            return hit
    payload = build()
    if cache is not None:
        cache.set(key, payload, tags=tags)
    return payload


@router.get("/posts")
def list_published_posts(
    request: Request,
    limit: int = Query(default=DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    offset: int = Query(default=0, ge=0),
) -> dict:
    store = _post_store(request)

    def build() -> dict:
        page = store.list_posts(published_only=True, limit=limit, offset=offset)
        return {
            "posts": [post_response(p) for p in page.posts],
            "total": page.total,
            "limit": page.limit,
            "offset": page.offset,
            "hasMore": page.has_more,
        }

    return _cached(request, f"posts:{limit}:{offset}", ["posts"], build)


@router.get("/posts/{slug}")
def get_published_post(request: Request, slug: str) -> dict:
    store = _post_store(request)
    key = f"post:{slug}"
    cache = _cache(request)
    hit = cache.get(key) if cache is not None else None
    if hit is not None:
        return hit
    post = store.get_post_by_slug(slug, published_only=True)
    if post is None:
        raise api_error(404, "not_found", "Post not found")
    payload = post_response(post)
    if cache is not None:
        cache.set(key, payload, tags=[key])
    return payload


@router.get("/archives")
def list_archives(request: Request) -> JSONResponse:
    store = _post_store(request)
    payload = _cached(
        request,
        "archives",
        ["archives"],
        lambda: [archive_response(m) for m in store.get_archive_months()],
    )
    return JSONResponse(content=payload, headers={"Cache-Control": _ARCHIVE_CACHE_CONTROL})


@router.get("/archives/{year}/{month}")
def list_month(request: Request, year: int, month: str) -> dict:
    """Published posts of one month. month is "3", "03" or "march"."""
    number = month_number(month)
    if number is None or not 1 <= year <= 9999:
        raise api_error(400, "validation_error", "Invalid year or month")
    store = _post_store(request)

    def build() -> dict:
        return {
            "year": year,
            "month": number,
            "posts": [post_response(p) for p in store.list_posts_by_month(year, number)],
        }

    return _cached(request, f"archive:{year:04d}-{number:02d}", ["posts", "archives"], build)
