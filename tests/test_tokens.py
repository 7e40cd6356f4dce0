"""
tests/test_tokens.py -- Unit tests for auth/tokens.py.

Covers:
  - User session token round trip (claims, no secrets embedded)
  - Expired, tampered and foreign-key tokens are rejected without raising
  - Admin tokens and user tokens are not interchangeable
  - Cookie helpers: names, httponly, samesite=strict, max-age
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

from fastapi.responses import JSONResponse
from jose import jwt

from auth.models import LEGACY_ADMIN_ID, User, legacy_admin_user
from auth.tokens import (
    ADMIN_COOKIE_NAME,
    ADMIN_SESSION_SECONDS,
    AUTH_COOKIE_NAME,
    clear_auth_cookie,
    issue_admin_token,
    issue_user_token,
    set_admin_cookie,
    set_auth_cookie,
    verify_admin_token,
    verify_user_token,
)
from core.config import get_settings


def _student() -> User:
    return User(
        id="u-123",
        username="dana",
        display_name="Dana",
        hashed_password="$2b$12$shouldneverappearinatoken",
        email="dana@example.com",
        grade="ט",
        class_number=3,
    )


class TestUserTokens:
    def test_round_trip_claims(self) -> None:
        claims = verify_user_token(issue_user_token(_student()))
        assert claims is not None
        assert claims.user_id == "u-123"
        assert claims.username == "dana"
        assert claims.role == "student"
        assert claims.grade == "ט"
        assert claims.class_number == 3

    def test_token_does_not_carry_secrets(self) -> None:
        payload = jwt.get_unverified_claims(issue_user_token(_student()))
        assert "hashed_password" not in payload
        assert "email" not in payload
        assert not any("$2b$" in str(v) for v in payload.values())

    def test_default_expiry_matches_session_duration(self) -> None:
        payload = jwt.get_unverified_claims(issue_user_token(_student()))
        assert payload["exp"] - payload["iat"] == get_settings().session_duration

    def test_expired_token_rejected(self) -> None:
        past = datetime.now(timezone.utc) - timedelta(hours=2)
        token = jwt.encode(
            {"typ": "session", "userId": "u-1", "username": "x", "iat": past, "exp": past + timedelta(hours=1)},
            get_settings().jwt_secret,
            algorithm="HS256",
        )
        assert verify_user_token(token) is None

    def test_wrong_key_rejected(self) -> None:
        token = jwt.encode(
            {"typ": "session", "userId": "u-1", "username": "x"},
            "some-other-secret-that-is-long-enough-000",
            algorithm="HS256",
        )
        assert verify_user_token(token) is None

    def test_garbage_rejected(self) -> None:
        assert verify_user_token("not.a.jwt") is None
        assert verify_user_token("") is None

    def test_missing_user_id_rejected(self) -> None:
        token = jwt.encode({"typ": "session", "username": "x"}, get_settings().jwt_secret, algorithm="HS256")
        assert verify_user_token(token) is None

    def test_legacy_admin_role(self) -> None:
        claims = verify_user_token(issue_user_token(legacy_admin_user()))
        assert claims is not None
        assert claims.user_id == LEGACY_ADMIN_ID
        assert claims.role == "admin"


class TestAdminTokens:
    def test_admin_token_verifies(self) -> None:
        assert verify_admin_token(issue_admin_token()) is True

    def test_admin_token_lifetime_is_four_hours(self) -> None:
        payload = jwt.get_unverified_claims(issue_admin_token())
        assert payload["authenticated"] is True
        assert abs(payload["exp"] - payload["timestamp"] / 1000 - ADMIN_SESSION_SECONDS) < 5

    def test_user_token_is_not_an_admin_token(self) -> None:
        assert verify_admin_token(issue_user_token(_student())) is False

    def test_admin_token_is_not_a_user_token(self) -> None:
        assert verify_user_token(issue_admin_token()) is None

    def test_empty_admin_token(self) -> None:
        assert verify_admin_token("") is False


class TestCookies:
    def test_auth_cookie_attributes(self) -> None:
        resp = JSONResponse({})
        set_auth_cookie(resp, "tok")
        header = resp.headers["set-cookie"]
        assert header.startswith(f"{AUTH_COOKIE_NAME}=tok")
        assert "HttpOnly" in header
        assert "SameSite=strict" in header
        assert f"Max-Age={get_settings().session_duration}" in header
        assert "Path=/" in header

    def test_admin_cookie_attributes(self) -> None:
        resp = JSONResponse({})
        set_admin_cookie(resp, "tok")
        header = resp.headers["set-cookie"]
        assert header.startswith(f"{ADMIN_COOKIE_NAME}=tok")
        assert "SameSite=strict" in header
        assert f"Max-Age={ADMIN_SESSION_SECONDS}" in header

    def test_clear_auth_cookie_expires_it(self) -> None:
        resp = JSONResponse({})
        clear_auth_cookie(resp)
        header = resp.headers["set-cookie"]
        assert header.startswith(f"{AUTH_COOKIE_NAME}=")
        assert "Max-Age=0" in header
