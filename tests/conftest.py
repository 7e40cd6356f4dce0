"""
tests/conftest.py -- Shared test fixtures for the newspaper integration tests.

This module provides:
  - db_url(): a named shared-memory SQLite URL
  - _make_test_stores(): UserStore + PostStore + PageCache on one database
  - _patch_lifespan(): wires test stores into app.state, bypassing real startup
  - api_client: TestClient backed by a migrated database
  - legacy_client: TestClient with no database (admin-password-only mode)
  - setup_client: TestClient backed by an empty, unmigrated database
  - stores: (user_store, post_store, cache) for repository-level tests
  - make_user / login_as / admin_session: factories that build identities

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs route handlers in a thread pool, and because the user
and post stores open separate engines that must see the same tables. The
named URI format (file:name?mode=memory&cache=shared&uri=true) shares one
in-memory instance across all connections in the same process.

Environment must be set before any api/auth/core import: get_settings() is
cached, DEBUG turns secure cookies off (TestClient speaks plain http), and a
fixed JWT_SECRET keeps tokens valid across get_settings.cache_clear() calls.
"""

from __future__ import annotations

import asyncio
import os
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager
from typing import Optional

# CRITICAL: set before any project import.
ADMIN_PASSWORD = "correct-horse-battery-staple"
os.environ.setdefault("DEBUG", "true")
os.environ["JWT_SECRET"] = "test-secret-0123456789abcdef0123456789abcdef"
os.environ["ADMIN_PASSWORD"] = ADMIN_PASSWORD
os.environ["DATABASE_URL"] = ""
os.environ["BLOB_READ_WRITE_TOKEN"] = ""
os.environ["ENABLE_SETUP_ROUTE"] = "false"

import pytest
from fastapi.testclient import TestClient

from api.limiter import limiter
from api.main import app
from auth.models import User
from auth.passwords import hash_password
from auth.ratelimit import RateLimiters
from auth.store import UserStore
from auth.tokens import ADMIN_COOKIE_NAME, AUTH_COOKIE_NAME, issue_admin_token, issue_user_token
from cache.store import PageCache
from core.config import get_settings
from db.migrations import run_migrations
from posts.store import PostStore

DEFAULT_PASSWORD = "password123"

# Hashing at 12 rounds is slow; every test user shares one precomputed hash.
_DEFAULT_HASH = hash_password(DEFAULT_PASSWORD)


# ---------------------------------------------------------------------------
# Store helpers
# ---------------------------------------------------------------------------


def db_url(name: str) -> str:
    return f"sqlite:///file:test_{name}?mode=memory&cache=shared&uri=true"


def _make_test_stores(db_suffix: str, migrate: bool = True) -> tuple[UserStore, PostStore, PageCache]:
    """Create user and post stores on one isolated in-memory database.

    Args:
        db_suffix: Unique string in the DB name so test modules don't share state.
        migrate:   Run the schema migrations (False leaves an empty database,
                   for exercising the setup route).
    """
    url = db_url(f"{db_suffix}_{uuid.uuid4().hex[:8]}")
    cache = PageCache()
    user_store = UserStore(url)
    post_store = PostStore(url, cache=cache)
    if migrate:
        run_migrations(post_store.engine)
    return user_store, post_store, cache


def _patch_lifespan(user_store: Optional[UserStore], post_store: Optional[PostStore], cache: PageCache):
    """Return an async context manager that replaces the real lifespan.

    The purge_task is a long-sleeping coroutine that keeps asyncio happy
    (a real asyncio.Task is required; MagicMock would fail on .cancel()).
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.user_store = user_store
        app.state.post_store = post_store
        app.state.cache = cache
        app.state.rate_limiters = RateLimiters()
        app.state.purge_task = asyncio.create_task(asyncio.sleep(99999))
        yield
        app.state.purge_task.cancel()

    return test_lifespan


def _create_user(
    user_store: UserStore,
    username: Optional[str] = None,
    *,
    display_name: str = "Test Student",
    grade: Optional[str] = "ח",
    class_number: Optional[int] = 2,
    is_teacher: bool = False,
) -> User:
    return user_store.create_user(
        User(
            username=username or f"user_{uuid.uuid4().hex[:10]}",
            display_name=display_name,
            hashed_password=_DEFAULT_HASH,
            is_teacher=is_teacher,
            grade=grade,
            class_number=class_number,
        )
    )


def _login_as(client: TestClient, user: User) -> None:
    client.cookies.set(AUTH_COOKIE_NAME, issue_user_token(user))


def _admin_session(client: TestClient) -> None:
    client.cookies.set(ADMIN_COOKIE_NAME, issue_admin_token())


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _reset_state(request) -> Generator[None, None, None]:
    """Fresh rate limits and an empty cookie jar for every test."""
    limiter.reset()
    rate_limiters = getattr(app.state, "rate_limiters", None)
    if rate_limiters is not None:
        rate_limiters.reset()
    for name in ("api_client", "legacy_client", "setup_client"):
        if name in request.fixturenames:
            request.getfixturevalue(name)[0].cookies.clear()
    yield
    get_settings.cache_clear()


@pytest.fixture(scope="module")
def api_client() -> Generator[tuple[TestClient, UserStore, PostStore], None, None]:
    """Yield (client, user_store, post_store) for API integration tests.

    The TestClient uses the real FastAPI app with a patched lifespan so
    tests hit real route handlers but use an isolated in-memory database.
    """
    user_store, post_store, cache = _make_test_stores("api")
    app.router.lifespan_context = _patch_lifespan(user_store, post_store, cache)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield client, user_store, post_store

    post_store.close()
    user_store.close()
    cache.close()


@pytest.fixture(scope="module")
def legacy_client() -> Generator[tuple[TestClient, None, None], None, None]:
    """Yield (client, None, None) for an app running without a database."""
    cache = PageCache()
    app.router.lifespan_context = _patch_lifespan(None, None, cache)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield client, None, None

    cache.close()


@pytest.fixture(scope="module")
def setup_client() -> Generator[tuple[TestClient, UserStore, PostStore], None, None]:
    """Like api_client, but the database starts empty (no migrations run)."""
    user_store, post_store, cache = _make_test_stores("setup", migrate=False)
    app.router.lifespan_context = _patch_lifespan(user_store, post_store, cache)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield client, user_store, post_store

    post_store.close()
    user_store.close()
    cache.close()


@pytest.fixture
def enable_setup(monkeypatch) -> None:
    monkeypatch.setenv("ENABLE_SETUP_ROUTE", "true")
    get_settings.cache_clear()


@pytest.fixture(scope="module")
def stores() -> Generator[tuple[UserStore, PostStore, PageCache], None, None]:
    """Yield (user_store, post_store, cache) on a migrated database, no HTTP."""
    user_store, post_store, cache = _make_test_stores("stores")
    yield user_store, post_store, cache
    post_store.close()
    user_store.close()
    cache.close()


@pytest.fixture(scope="session")
def make_user():
    """Factory: make_user(user_store, username=None, **fields) -> User.

    Every user gets the password "password123".
    """
    return _create_user


@pytest.fixture(scope="session")
def login_as():
    """Factory: login_as(client, user) puts a session cookie in the client's jar."""
    return _login_as


@pytest.fixture(scope="session")
def admin_session():
    """Factory: admin_session(client) puts an admin cookie in the client's jar."""
    return _admin_session
