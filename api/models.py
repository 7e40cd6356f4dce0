"""
API request and response models for the newspaper REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py and
posts/models.py, which own the internal domain representation. Route handlers
map between the two with user_response() / post_response().

JSON field names are camelCase on the wire (displayName, classNumber,
coverImage ...) because the browser client was written against that shape.
Python attributes stay snake_case; alias_generator=to_camel bridges them.

Separation of concerns: domain dataclasses = domain truth; api/ models = API contract.
"""

from enum import Enum
from typing import Any, Optional

from fastapi import HTTPException
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from auth.models import User
from core.text import reading_time_minutes
from posts.models import (
    MAX_AUTHOR_LENGTH,
    MAX_CATEGORY_LENGTH,
    MAX_CONTENT_LENGTH,
    MAX_CUSTOM_DESCRIPTION_LENGTH,
    MAX_TAG_LENGTH,
    MAX_TAGS_PER_POST,
    MAX_TITLE_LENGTH,
    ArchiveMonth,
    Post,
    PostStats,
)

# ---------------------------------------------------------------------------
# Shared config
# ---------------------------------------------------------------------------

_CAMEL = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class _CamelModel(BaseModel):
    model_config = _CAMEL


class StatusEnum(str, Enum):
    draft = "draft"
    published = "published"


def _is_image_url(value: str) -> bool:
    return value.startswith(("http://", "https://", "data:image/", "/"))


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class ErrorDetail(BaseModel):
    """Machine-readable error payload.

    detail is free-form: a string for debug context, or a {field: message}
    mapping for validation failures.
    """

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[Any] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


def api_error(
    status_code: int,
    code: str,
    message: str,
    detail: Optional[Any] = None,
    headers: Optional[dict[str, str]] = None,
) -> HTTPException:
    """Build an HTTPException whose detail is an ErrorDetail dict.

    Usage:  raise api_error(404, "not_found", "Post not found")
    """
    return HTTPException(
        status_code=status_code,
        detail=ErrorDetail(code=code, message=message, detail=detail).model_dump(),
        headers=headers,
    )


class HealthResponse(BaseModel):
    """Response for GET /api/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "ok"
    version: str
    database: bool


# ---------------------------------------------------------------------------
# Auth -- requests
# ---------------------------------------------------------------------------


class LoginRequest(BaseModel):
    """Body for POST /api/auth/login.

    Both fields default to "" so a missing field reaches the route, which
    answers 400 with a readable message instead of a schema dump.
    """

    username: str = Field(default="", max_length=255)
    password: str = Field(default="", max_length=255)


class RegisterRequest(_CamelModel):
    """Body for POST /api/auth/register. Field rules are checked in the route."""

    username: str = Field(default="", max_length=255)
    password: str = Field(default="", max_length=255)
    display_name: str = Field(default="", max_length=255)
    email: Optional[str] = Field(default=None, max_length=255)
    grade: Optional[str] = Field(default=None, max_length=10)
    class_number: Optional[int] = None
    is_teacher: bool = False
    admin_password: Optional[str] = Field(default=None, max_length=255)


class PasswordRequest(BaseModel):
    """Body for POST /api/admin/verify-password and POST /api/setup."""

    password: str = Field(default="", max_length=255)


# ---------------------------------------------------------------------------
# Auth -- responses
# ---------------------------------------------------------------------------


class UserResponse(_CamelModel):
    id: str
    username: str
    display_name: str
    email: Optional[str] = None
    grade: Optional[str] = None
    class_number: Optional[int] = None
    is_teacher: bool = False
    role: str
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    last_login: Optional[str] = None


def user_response(user: User) -> dict:
    """Public view of a User -- never includes the password hash."""
    return UserResponse(
        id=user.id or "",
        username=user.username,
        display_name=user.display_name,
        email=user.email,
        grade=user.grade,
        class_number=user.class_number,
        is_teacher=user.is_teacher,
        role=user.role,
        created_at=user.created_at,
        updated_at=user.updated_at,
        last_login=user.last_login,
    ).model_dump(by_alias=True)


# ---------------------------------------------------------------------------
# Users -- admin and profile updates
# ---------------------------------------------------------------------------


class UserUpdate(_CamelModel):
    """PATCH body for /api/admin/users/{id} and /api/user/profile.

    Only fields present in the body are changed; grade/class pairing rules
    are checked in the route against the stored account.
    """

    display_name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    email: Optional[str] = Field(default=None, max_length=255)
    grade: Optional[str] = Field(default=None, max_length=10)
    class_number: Optional[int] = None
    is_teacher: Optional[bool] = None
    password: Optional[str] = Field(default=None, min_length=8, max_length=255)


# ---------------------------------------------------------------------------
# Posts -- requests
# ---------------------------------------------------------------------------


class _PostBody(_CamelModel):
    """Field rules shared by the create and update bodies."""

    @field_validator("cover_image", check_fields=False)
    @classmethod
    def cover_image_is_url(cls, value: Optional[str]) -> Optional[str]:
        if value and not _is_image_url(value):
            raise ValueError("Cover image must be a URL")
        return value

    @field_validator("tags", check_fields=False)
    @classmethod
    def tag_lengths(cls, values: Optional[list[str]]) -> Optional[list[str]]:
        if values is None:
            return values
        for tag in values:
            if not 1 <= len(tag) <= MAX_TAG_LENGTH:
                raise ValueError(f"Each tag must be 1-{MAX_TAG_LENGTH} characters")
        return values


class PostCreate(_PostBody):
    """Body for POST /api/admin/posts. title/content presence is checked in the route."""

    title: Optional[str] = Field(default=None, max_length=MAX_TITLE_LENGTH)
    content: Optional[str] = Field(default=None, max_length=MAX_CONTENT_LENGTH)
    cover_image: Optional[str] = None
    description: Optional[str] = Field(default=None, max_length=MAX_CUSTOM_DESCRIPTION_LENGTH)
    author: Optional[str] = Field(default=None, max_length=MAX_AUTHOR_LENGTH)
    tags: list[str] = Field(default_factory=list, max_length=MAX_TAGS_PER_POST)
    category: Optional[str] = Field(default=None, max_length=MAX_CATEGORY_LENGTH)
    status: StatusEnum = StatusEnum.draft


class PostUpdate(_PostBody):
    """PATCH body for post edits. Every field optional; at least one required.

    Validated with model_validate() inside the route so failures can be
    reported as {field: message} rather than the generic validation envelope.
    """

    title: Optional[str] = Field(default=None, min_length=1, max_length=MAX_TITLE_LENGTH)
    content: Optional[str] = Field(default=None, min_length=1, max_length=MAX_CONTENT_LENGTH)
    description: Optional[str] = Field(default=None, max_length=MAX_CUSTOM_DESCRIPTION_LENGTH)
    cover_image: Optional[str] = None
    author: Optional[str] = Field(default=None, max_length=MAX_AUTHOR_LENGTH)
    tags: Optional[list[str]] = Field(default=None, max_length=MAX_TAGS_PER_POST)
    category: Optional[str] = Field(default=None, max_length=MAX_CATEGORY_LENGTH)
    status: Optional[StatusEnum] = None

    @model_validator(mode="after")
    def at_least_one_field(self) -> "PostUpdate":
        if not self.model_fields_set:
            raise ValueError("At least one field must be provided")
        return self

    def patch_values(self) -> dict:
        """The fields the client actually sent, keyed by domain attribute name."""
        values = {}
        for name in self.model_fields_set:
            value = getattr(self, name)
            values[name] = value.value if isinstance(value, Enum) else value
        return values


# ---------------------------------------------------------------------------
# Posts -- responses
# ---------------------------------------------------------------------------


class PostResponse(_CamelModel):
    id: str
    title: str
    slug: str
    content: str
    cover_image: Optional[str] = None
    description: str
    date: str
    author: Optional[str] = None
    author_id: Optional[str] = None
    author_grade: Optional[str] = None
    author_class: Optional[int] = None
    author_deleted: bool = False
    is_teacher_post: bool = False
    tags: list[str] = Field(default_factory=list)
    category: Optional[str] = None
    status: StatusEnum
    created_at: str
    updated_at: str
    reading_time: int


def post_response(post: Post) -> dict:
    return PostResponse(
        id=post.id,
        title=post.title,
        slug=post.slug,
        content=post.content,
        cover_image=post.cover_image,
        description=post.description,
        date=post.date,
        author=post.author,
        author_id=post.author_id,
        author_grade=post.author_grade,
        author_class=post.author_class,
        author_deleted=post.author_deleted,
        is_teacher_post=post.is_teacher_post,
        tags=post.tags,
        category=post.category,
        status=StatusEnum(post.status),
        created_at=post.created_at,
        updated_at=post.updated_at,
        reading_time=reading_time_minutes(post.content),
    ).model_dump(mode="json", by_alias=True)


class StatsResponse(_CamelModel):
    total: int
    published: int
    drafts: int
    today: int
    this_week: int
    this_month: int


def stats_response(stats: PostStats) -> dict:
    return StatsResponse(
        total=stats.total,
        published=stats.published,
        drafts=stats.drafts,
        today=stats.today,
        this_week=stats.this_week,
        this_month=stats.this_month,
    ).model_dump(by_alias=True)


class ArchiveMonthResponse(_CamelModel):
    year: int
    month: int
    count: int
    month_name: str
    month_name_he: str


def archive_response(month: ArchiveMonth) -> dict:
    return ArchiveMonthResponse(
        year=month.year,
        month=month.month,
        count=month.count,
        month_name=month.month_name,
        month_name_he=month.month_name_he,
    ).model_dump(by_alias=True)
