"""
posts/models.py -- Domain dataclasses for articles.

These are pure data containers. Slug/description derivation, ownership and
cache invalidation live in posts/store.py.

Separation of concerns: these dataclasses are the domain truth; api/models.py
holds the HTTP contract. Route handlers map between the two.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

STATUS_DRAFT = "draft"
STATUS_PUBLISHED = "published"
VALID_STATUSES = (STATUS_DRAFT, STATUS_PUBLISHED)

MAX_TITLE_LENGTH = 200
MAX_CONTENT_LENGTH = 50000
MAX_CUSTOM_DESCRIPTION_LENGTH = 500
MAX_AUTHOR_LENGTH = 100
MAX_TAG_LENGTH = 50
MAX_TAGS_PER_POST = 10
MAX_CATEGORY_LENGTH = 50


@dataclass
class Post:
    """A newspaper article.

    author_id is a weak reference: the account may have been deleted, in
    which case author_deleted is True on read and the post still renders.
    author_grade / author_class are a snapshot taken at creation.
    """

    id: str
    title: str
    slug: str
    content: str
    description: str
    date: str
    status: str
    created_at: str
    updated_at: str
    cover_image: Optional[str] = None
    author: Optional[str] = None
    author_id: Optional[str] = None
    author_grade: Optional[str] = None
    author_class: Optional[int] = None
    is_teacher_post: bool = False
    tags: list[str] = field(default_factory=list)
    category: Optional[str] = None
    author_deleted: bool = False

    @property
    def is_published(self) -> bool:
        return self.status == STATUS_PUBLISHED


@dataclass
class PostInput:
    """Fields a caller supplies to create a post. title and content are required."""

    title: str
    content: str
    cover_image: Optional[str] = None
    description: Optional[str] = None
    author: Optional[str] = None
    author_id: Optional[str] = None
    author_grade: Optional[str] = None
    author_class: Optional[int] = None
    is_teacher_post: Optional[bool] = None
    tags: list[str] = field(default_factory=list)
    category: Optional[str] = None
    status: str = STATUS_DRAFT


# Fields a PostPatch may carry. Derived fields (slug, ids, timestamps) are not here.
PATCHABLE_FIELDS = (
    "title",
    "content",
    "cover_image",
    "description",
    "author",
    "tags",
    "category",
    "status",
)


@dataclass
class PostPatch:
    """A partial update. Only keys present in `values` are applied.

    Keeping the set of present keys explicit distinguishes "not sent" from
    "sent as null" (e.g. clearing the cover image).
    """

    values: dict = field(default_factory=dict)

    def __post_init__(self) -> None:
        unknown = set(self.values) - set(PATCHABLE_FIELDS)
        if unknown:
            raise ValueError(f"Unknown post fields: {sorted(unknown)!r}")

    def has(self, name: str) -> bool:
        return name in self.values

    def get(self, name: str, default=None):
        return self.values.get(name, default)

    def is_empty(self) -> bool:
        return not self.values


class MutationOutcome(str, Enum):
    UPDATED = "updated"
    DELETED = "deleted"
    NOT_FOUND = "not_found"
    FORBIDDEN = "forbidden"


@dataclass
class MutationResult:
    """Tagged result of update_if_owned() / delete_if_owned().

    post is the updated row for UPDATED, None otherwise.
    """

    outcome: MutationOutcome
    post: Optional[Post] = None

    @property
    def ok(self) -> bool:
        return self.outcome in (MutationOutcome.UPDATED, MutationOutcome.DELETED)


@dataclass
class PostPage:
    posts: list[Post]
    total: int
    limit: int
    offset: int

    @property
    def has_more(self) -> bool:
        return self.offset + len(self.posts) < self.total


@dataclass
class PostStats:
    total: int = 0
    published: int = 0
    drafts: int = 0
    today: int = 0
    this_week: int = 0
    this_month: int = 0


@dataclass
class ArchiveMonth:
    year: int
    month: int
    count: int
    month_name: str
    month_name_he: str
