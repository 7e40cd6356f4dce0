"""
posts/store.py -- SQLAlchemy Core persistence layer for articles.

Pattern: Repository + Data Mapper (same as auth/store.py).
PostStore is the repository; _row_to_post is the mapper.

Derived fields:
  slug        -- slugify(title), made unique with a -2, -3 ... suffix.
                 Regenerated whenever a patch carries a title.
  description -- generate_description(content, custom). Regenerated whenever
                 a patch carries content, unless the same patch carries a
                 non-blank description.

Ownership:
  update_if_owned() / delete_if_owned() are single repository calls that
  run in one transaction, and the ownership predicate is part of the WHERE
  clause of the UPDATE/DELETE itself. Routes never load, check, then write
  in separate steps. A zero-row result is classified with an existence
  probe: the row is there -> FORBIDDEN, not there -> NOT_FOUND.

Cache:
  Every successful mutation invalidates the page-cache tags "posts",
  "archives" and "post:<slug>" (old and new slug).

Security:
  All queries use bound parameters. Search terms go through LIKE with
  autoescape so % and _ in user input match literally.

Layer rule: may import auth.models (LEGACY_ADMIN_ID) and db/; never api/.
"""

from __future__ import annotations

import json
import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Optional

from sqlalchemy import and_, case, func, select
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import IntegrityError

from auth.models import LEGACY_ADMIN_ID
from core.text import MONTH_NAMES_EN, MONTH_NAMES_HE, generate_description, slugify
from db.schema import create_db_engine, posts, users
from posts.models import (
    STATUS_DRAFT,
    STATUS_PUBLISHED,
    VALID_STATUSES,
    ArchiveMonth,
    MutationOutcome,
    MutationResult,
    Post,
    PostInput,
    PostPage,
    PostPatch,
    PostStats,
)

if TYPE_CHECKING:
    from auth.models import Identity
    from cache.store import PageCache

logger = logging.getLogger("schoolpaper.posts")

_FALLBACK_SLUG = "post"

# Attempts at inserting a freshly suffixed slug when a concurrent writer
# grabbed the same one between our uniqueness probe and our INSERT or UPDATE.
_SLUG_RETRIES = 5

# author_deleted: the post names an author, it is not the synthetic legacy
# admin, and no users row matches any more.
_author_deleted = case(
    (
        and_(
            posts.c.author_id.isnot(None),
            posts.c.author_id != LEGACY_ADMIN_ID,
            users.c.id.is_(None),
        ),
        True,
    ),
    else_=False,
).label("author_deleted")

_posts_with_author = posts.outerjoin(users, users.c.id == posts.c.author_id)


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _post_select():
    return select(posts, _author_deleted).select_from(_posts_with_author)


def _cache_tags(*slugs: Optional[str]) -> list[str]:
    tags = ["posts", "archives"]
    tags.extend(f"post:{s}" for s in slugs if s)
    return tags


class PostStore:
    """Repository for Post entities.

    Usage:
        store = PostStore("sqlite:///paper.db", cache=PageCache())
        post = store.create_post(PostInput(title="Hello", content="# Hi"), actor=identity)
        result = store.update_if_owned(post.id, identity.user_id, identity.is_admin,
                                       PostPatch({"status": "published"}))
        store.close()
    """

    def __init__(self, db_url: str, cache: PageCache | None = None) -> None:
        self.engine: Engine = create_db_engine(db_url)
        self.cache = cache

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _invalidate(self, *slugs: Optional[str]) -> None:
        if self.cache is not None:
            dropped = self.cache.invalidate_tags(_cache_tags(*slugs))
            logger.debug("Invalidated %d cached pages", dropped)

    @staticmethod
    def _slug_taken(conn: Connection, slug: str, exclude_id: Optional[str]) -> bool:
        query = select(posts.c.id).where(posts.c.slug == slug)
        if exclude_id is not None:
            query = query.where(posts.c.id != exclude_id)
        return conn.execute(query).fetchone() is not None

    def _unique_slug(self, conn: Connection, title: str, exclude_id: Optional[str] = None, start: int = 2) -> str:
        """Return slugify(title), suffixed -2, -3 ... until no other post uses it."""
        base = slugify(title) or _FALLBACK_SLUG
        if start <= 2 and not self._slug_taken(conn, base, exclude_id):
            return base
        n = start
        while self._slug_taken(conn, f"{base}-{n}", exclude_id):
            n += 1
        return f"{base}-{n}"

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    def create_post(self, data: PostInput, actor: Identity | None = None) -> Post:
        """Insert a new post and return it.

        Author fields not set on `data` are stamped from the acting identity:
        author_id, author (display name), author_grade, author_class and
        is_teacher_post.

        Raises ValueError if title or content is blank or the status is unknown.
        """
        if not data.title or not data.title.strip() or not data.content or not data.content.strip():
            raise ValueError("Title and content are required")
        status = data.status or STATUS_DRAFT
        if status not in VALID_STATUSES:
            raise ValueError(f"Invalid status: {status!r}")

        user = actor.user if actor is not None else None
        author_id = data.author_id or (user.id if user else None)
        author = data.author or (user.display_name if user else None)
        author_grade = data.author_grade or (user.grade if user else None)
        author_class = data.author_class or (user.class_number if user else None)
        if data.is_teacher_post is not None:
            is_teacher_post = data.is_teacher_post
        else:
            is_teacher_post = bool(user and user.is_teacher)

        post_id = str(uuid.uuid4())
        now = _now_iso()
        values = {
            "id": post_id,
            "title": data.title.strip(),
            "content": data.content,
            "cover_image": data.cover_image or None,
            "description": generate_description(data.content, data.description),
            "date": now,
            "author": author,
            "author_id": author_id,
            "author_grade": author_grade,
            "author_class": author_class,
            "is_teacher_post": is_teacher_post,
            "tags": json.dumps(list(data.tags or []), ensure_ascii=False),
            "category": data.category or None,
            "status": status,
            "created_at": now,
            "updated_at": now,
        }

        for attempt in range(_SLUG_RETRIES):
            try:
                with self.engine.begin() as conn:
                    values["slug"] = self._unique_slug(conn, values["title"], start=2 + attempt)
                    conn.execute(posts.insert().values(**values))
                break
            except IntegrityError:
                if attempt == _SLUG_RETRIES - 1:
                    raise
                logger.info("Slug collision on insert, retrying", extra={"slug": values["slug"]})

        logger.info("Post created", extra={"post_id": post_id, "author_id": author_id, "status": status})
        self._invalidate(values["slug"])
        post = self.get_post(post_id)
        if post is None:
            raise RuntimeError(f"Post {post_id} vanished after insert")
        return post

    # ------------------------------------------------------------------
    # Update
    # ------------------------------------------------------------------

    def _patch_values(
        self, conn: Connection, post_id: str, current: dict, patch: PostPatch, slug_start: int = 2
    ) -> dict:
        """Turn a PostPatch into column values, including derived columns."""
        values: dict = {}
        if patch.has("title"):
            title = (patch.get("title") or "").strip()
            if not title:
                raise ValueError("Title cannot be empty")
            values["title"] = title
            values["slug"] = self._unique_slug(conn, title, exclude_id=post_id, start=slug_start)
        if patch.has("content"):
            content = patch.get("content") or ""
            if not content.strip():
                raise ValueError("Content cannot be empty")
            values["content"] = content
        if patch.has("status"):
            status = patch.get("status")
            if status not in VALID_STATUSES:
                raise ValueError(f"Invalid status: {status!r}")
            values["status"] = status

        custom = patch.get("description")
        has_custom = patch.has("description") and custom is not None and custom.strip() != ""
        if has_custom:
            values["description"] = custom.strip()
        elif patch.has("content") or patch.has("description"):
            # Fresh content, or the custom description was cleared: derive again.
            values["description"] = generate_description(values.get("content", current["content"]))

        if patch.has("cover_image"):
            values["cover_image"] = patch.get("cover_image") or None
        if patch.has("author"):
            values["author"] = patch.get("author") or None
        if patch.has("category"):
            values["category"] = patch.get("category") or None
        if patch.has("tags"):
            values["tags"] = json.dumps(list(patch.get("tags") or []), ensure_ascii=False)

        values["updated_at"] = _now_iso()
        return values

    def update_if_owned(
        self,
        post_id: str,
        actor_id: Optional[str],
        is_admin: bool,
        patch: PostPatch,
    ) -> MutationResult:
        """Apply a partial update if the actor may edit the post.

        Returns MutationResult with outcome UPDATED (and the new post),
        NOT_FOUND, or FORBIDDEN. Raises ValueError for an invalid patch on a
        post the actor owns. A title change that loses a slug race is retried
        with the next suffix, as on insert.
        """
        for attempt in range(_SLUG_RETRIES):
            values: dict = {}
            try:
                with self.engine.begin() as conn:
                    current = conn.execute(
                        select(posts.c.slug, posts.c.content, posts.c.author_id).where(posts.c.id == post_id)
                    ).fetchone()
                    if current is None:
                        return MutationResult(MutationOutcome.NOT_FOUND)
                    if not is_admin and (actor_id is None or current.author_id != actor_id):
                        return MutationResult(MutationOutcome.FORBIDDEN)

                    values = self._patch_values(
                        conn, post_id, {"content": current.content}, patch, slug_start=2 + attempt
                    )
                    stmt = posts.update().where(posts.c.id == post_id)
                    if not is_admin:
                        stmt = stmt.where(posts.c.author_id == actor_id)
                    result = conn.execute(stmt.values(**values))

                    if result.rowcount == 0:
                        # Deleted or reassigned since the read above.
                        exists = conn.execute(select(posts.c.id).where(posts.c.id == post_id)).fetchone()
                        outcome = MutationOutcome.FORBIDDEN if exists else MutationOutcome.NOT_FOUND
                        return MutationResult(outcome)
                    old_slug = current.slug
                break
            except IntegrityError:
                if "slug" not in values or attempt == _SLUG_RETRIES - 1:
                    raise
                logger.info("Slug collision on update, retrying", extra={"slug": values["slug"]})

        post = self.get_post(post_id)
        logger.info(
            "Post updated",
            extra={"post_id": post_id, "actor_id": actor_id, "fields": sorted(patch.values)},
        )
        self._invalidate(old_slug, post.slug if post else None)
        return MutationResult(MutationOutcome.UPDATED, post)

    def update_post(self, post_id: str, patch: PostPatch) -> Optional[Post]:
        """Unconditional partial update. Returns None if the post does not exist."""
        return self.update_if_owned(post_id, None, True, patch).post

    # ------------------------------------------------------------------
    # Delete
    # ------------------------------------------------------------------

    def delete_if_owned(self, post_id: str, actor_id: Optional[str], is_admin: bool) -> MutationResult:
        """Hard-delete the post if the actor may delete it.

        Returns MutationResult with outcome DELETED, NOT_FOUND, or FORBIDDEN.
        """
        with self.engine.begin() as conn:
            slug = conn.execute(select(posts.c.slug).where(posts.c.id == post_id)).scalar()
            stmt = posts.delete().where(posts.c.id == post_id)
            if not is_admin:
                if actor_id is None:
                    return MutationResult(MutationOutcome.FORBIDDEN if slug else MutationOutcome.NOT_FOUND)
                stmt = stmt.where(posts.c.author_id == actor_id)
            result = conn.execute(stmt)
            if result.rowcount == 0:
                exists = conn.execute(select(posts.c.id).where(posts.c.id == post_id)).fetchone()
                outcome = MutationOutcome.FORBIDDEN if exists else MutationOutcome.NOT_FOUND
                return MutationResult(outcome)

        logger.info("Post deleted", extra={"post_id": post_id, "actor_id": actor_id})
        self._invalidate(slug)
        return MutationResult(MutationOutcome.DELETED)

    def delete_post(self, post_id: str) -> bool:
        """Unconditional hard delete. Returns True if a row was removed."""
        return self.delete_if_owned(post_id, None, True).outcome == MutationOutcome.DELETED

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_post(self, post_id: str) -> Optional[Post]:
        with self.engine.connect() as conn:
            row = conn.execute(_post_select().where(posts.c.id == post_id)).fetchone()
        return _row_to_post(row) if row is not None else None

    def get_post_by_slug(self, slug: str, published_only: bool = True) -> Optional[Post]:
        """Look up a post by slug. Drafts are invisible unless published_only=False."""
        query = _post_select().where(posts.c.slug == slug)
        if published_only:
            query = query.where(posts.c.status == STATUS_PUBLISHED)
        with self.engine.connect() as conn:
            row = conn.execute(query).fetchone()
        return _row_to_post(row) if row is not None else None

    def list_posts(
        self,
        published_only: bool = False,
        status: Optional[str] = None,
        search: Optional[str] = None,
        author_id: Optional[str] = None,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> PostPage:
        """Return a page of posts, newest first (date, then created_at).

        published_only always wins over status: a public listing asking for
        drafts gets nothing rather than drafts.
        """
        conditions = []
        if published_only:
            conditions.append(posts.c.status == STATUS_PUBLISHED)
            if status is not None and status != STATUS_PUBLISHED:
                return PostPage(posts=[], total=0, limit=limit or 0, offset=offset)
        elif status is not None:
            conditions.append(posts.c.status == status)
        if author_id is not None:
            conditions.append(posts.c.author_id == author_id)
        if search:
            term = search.strip().lower()
            conditions.append(
                func.lower(posts.c.title).contains(term, autoescape=True)
                | func.lower(posts.c.slug).contains(term, autoescape=True)
            )

        query = _post_select().where(*conditions).order_by(posts.c.date.desc(), posts.c.created_at.desc())
        if limit is not None:
            query = query.limit(limit)
        if offset:
            query = query.offset(offset)
        count_query = select(func.count()).select_from(posts).where(*conditions)

        with self.engine.connect() as conn:
            rows = conn.execute(query).fetchall()
            total = conn.execute(count_query).scalar() or 0
        page_posts = [_row_to_post(r) for r in rows]
        return PostPage(posts=page_posts, total=total, limit=limit if limit is not None else total, offset=offset)

    def list_posts_by_author(self, author_id: str) -> list[Post]:
        return self.list_posts(author_id=author_id).posts

    def list_posts_by_month(self, year: int, month: int) -> list[Post]:
        """Published posts whose publication date falls in the given month."""
        prefix = f"{year:04d}-{month:02d}"
        query = (
            _post_select()
            .where(posts.c.status == STATUS_PUBLISHED, posts.c.date.startswith(prefix, autoescape=True))
            .order_by(posts.c.date.desc(), posts.c.created_at.desc())
        )
        with self.engine.connect() as conn:
            rows = conn.execute(query).fetchall()
        return [_row_to_post(r) for r in rows]

    def count_posts(self) -> int:
        with self.engine.connect() as conn:
            return conn.execute(select(func.count()).select_from(posts)).scalar() or 0

    def get_stats(self, now: Optional[datetime] = None) -> PostStats:
        """Counts for the dashboard. Time buckets use created_at, in UTC."""
        now = now or datetime.now(timezone.utc)
        start_of_day = now.replace(hour=0, minute=0, second=0, microsecond=0)
        week_ago = now - timedelta(days=7)
        start_of_month = start_of_day.replace(day=1)

        def _count(*conditions) -> int:
            return conn.execute(select(func.count()).select_from(posts).where(*conditions)).scalar() or 0

        with self.engine.connect() as conn:
            return PostStats(
                total=_count(),
                published=_count(posts.c.status == STATUS_PUBLISHED),
                drafts=_count(posts.c.status == STATUS_DRAFT),
                today=_count(posts.c.created_at >= start_of_day.isoformat()),
                this_week=_count(posts.c.created_at >= week_ago.isoformat()),
                this_month=_count(posts.c.created_at >= start_of_month.isoformat()),
            )

    def get_archive_months(self) -> list[ArchiveMonth]:
        """Published post counts per (year, month), newest month first."""
        year_col = func.substr(posts.c.date, 1, 4).label("year")
        month_col = func.substr(posts.c.date, 6, 2).label("month")
        query = (
            select(year_col, month_col, func.count().label("post_count"))
            .where(posts.c.status == STATUS_PUBLISHED)
            .group_by(year_col, month_col)
            .order_by(year_col.desc(), month_col.desc())
        )
        with self.engine.connect() as conn:
            rows = conn.execute(query).fetchall()
        months = []
        for r in rows:
            year, month = int(r.year), int(r.month)
            months.append(
                ArchiveMonth(
                    year=year,
                    month=month,
                    count=r.post_count,
                    month_name=MONTH_NAMES_EN[month],
                    month_name_he=MONTH_NAMES_HE[month],
                )
            )
        return months

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mapper (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_post(row) -> Post:
    tags: list[str] = json.loads(row.tags) if row.tags else []
    return Post(
        id=row.id,
        title=row.title,
        slug=row.slug,
        content=row.content,
        description=row.description or "",
        date=row.date,
        status=row.status,
        created_at=row.created_at,
        updated_at=row.updated_at,
        cover_image=row.cover_image,
        author=row.author,
        author_id=row.author_id,
        author_grade=row.author_grade,
        author_class=row.author_class,
        is_teacher_post=bool(row.is_teacher_post),
        tags=tags,
        category=row.category,
        author_deleted=bool(getattr(row, "author_deleted", False)),
    )
