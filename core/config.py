"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for the newspaper backend happen here. No module
should call os.getenv() or os.environ.get() directly -- import get_settings()
instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call. This is
      the official FastAPI dependency injection pattern for config.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. jwt_secret -> JWT_SECRET). A few fields accept more than one name
      through AliasChoices because the deployment platform exports its own
      variable names (POSTGRES_URL, NEXT_PUBLIC_SITE_URL).

  @model_validator(mode="after"): Runs cross-field validation after all fields
      are resolved from environment. DEBUG mode generates a JWT secret with a
      warning; production refuses to start without one.

Security notes:
  JWT_SECRET shorter than 32 chars is rejected outright. HS256 signing relies
  on key entropy -- a short key lets an attacker forge session cookies.

  ADMIN_PASSWORD may be a bcrypt hash or (legacy) plain text. Plain text is
  accepted for backward compatibility and logged as a warning on every use.

Layer rule: core/ is the kernel. This module may not import from api/, auth/,
posts/, cache/, storage/ or db/.
"""

import logging
import secrets
from functools import lru_cache
from typing import Optional

from pydantic import AliasChoices, Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("schoolpaper.config")

# Shortest session a deployment may configure. Anything lower is raised to
# this value so a typo in SESSION_DURATION cannot log everyone out instantly.
MIN_SESSION_DURATION = 60 * 60

DEFAULT_SESSION_DURATION = 7 * 24 * 60 * 60

MIN_JWT_SECRET_LENGTH = 32


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in test
    environments without a real .env file. The model_validator enforces
    production-safety rules at startup.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    # ------------------------------------------------------------------
    # Core
    # ------------------------------------------------------------------

    debug: bool = False
    site_url: str = Field(
        default="http://localhost:3000",
        validation_alias=AliasChoices("NEXT_PUBLIC_SITE_URL", "SITE_URL", "site_url"),
    )

    # ------------------------------------------------------------------
    # Auth
    # ------------------------------------------------------------------

    # Empty string is the sentinel for "not configured". The model_validator
    # either generates a dev secret or raises, so callers never see "".
    jwt_secret: str = ""
    admin_password: str = ""
    session_duration: int = DEFAULT_SESSION_DURATION
    # None means "derive from debug": secure in production, plain in dev.
    secure_cookies: Optional[bool] = None

    # ------------------------------------------------------------------
    # Storage
    # ------------------------------------------------------------------

    # Empty means no database: the app runs in legacy admin-only mode.
    database_url: str = Field(
        default="",
        validation_alias=AliasChoices("DATABASE_URL", "POSTGRES_URL", "database_url"),
    )
    auto_migrate: bool = True
    blob_read_write_token: str = ""
    blob_api_url: str = "https://blob.vercel-storage.com"
    page_cache_ttl: int = 60

    # ------------------------------------------------------------------
    # Setup / rate limiting
    # ------------------------------------------------------------------

    enable_setup_route: bool = False
    login_rate_limit: str = "5/15minute"
    register_rate_limit: str = "3/hour"

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_settings(self) -> "Settings":
        """Enforce JWT_SECRET policy and normalise derived values.

        Dev mode (DEBUG=true): auto-generate a random secret with a warning.
            Sessions will not survive restart -- acceptable for local dev.

        Production mode: refuse to start if JWT_SECRET is missing.

        Both modes: reject secrets shorter than 32 characters.
        """
        if not self.jwt_secret:
            if self.debug:
                self.jwt_secret = secrets.token_hex(32)
                logger.warning("Using auto-generated JWT_SECRET. Sessions will not persist across restarts.")
            else:
                raise ValueError(
                    "JWT_SECRET is required in production mode. "
                    "Set JWT_SECRET in your environment or .env file. "
                    "To run in development mode, set DEBUG=true."
                )
        if len(self.jwt_secret) < MIN_JWT_SECRET_LENGTH:
            raise ValueError(f"JWT_SECRET must be at least {MIN_JWT_SECRET_LENGTH} characters.")

        if self.session_duration < MIN_SESSION_DURATION:
            logger.warning(
                "SESSION_DURATION=%d is below the minimum; using %d seconds",
                self.session_duration,
                MIN_SESSION_DURATION,
            )
            self.session_duration = MIN_SESSION_DURATION

        if self.secure_cookies is None:
            self.secure_cookies = not self.debug

        # SQLAlchemy dropped the "postgres" dialect alias; hosted Postgres
        # providers still hand out URLs in that form.
        if self.database_url.startswith("postgres://"):
            self.database_url = "postgresql://" + self.database_url[len("postgres://") :]
        return self

    @property
    def database_configured(self) -> bool:
        return bool(self.database_url)


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() after changing environment
    variables so the next call re-reads them.
    """
    return Settings()
