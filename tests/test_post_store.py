"""
tests/test_post_store.py -- Unit tests for posts/store.py.

Covers:
  - create_post: author stamping, unique slugs (-2, -3), generated description
  - update_if_owned / delete_if_owned: UPDATED, DELETED, FORBIDDEN, NOT_FOUND
  - Title change regenerates the slug; content change regenerates the description
  - Listing filters: published_only, status, search (LIKE metacharacters literal)
  - author_deleted once the author account is gone
  - Stats and archive months
  - Every mutation invalidates the page cache
"""

from __future__ import annotations

import uuid

import pytest

from auth.models import Identity, legacy_admin_user
from posts.models import MutationOutcome, PostInput, PostPatch


def _unique(prefix: str) -> str:
    return f"{prefix} {uuid.uuid4().hex[:8]}"


@pytest.fixture
def author(stores, make_user):
    return Identity(user=make_user(stores[0], display_name="Reporter", grade="ט", class_number=3))


@pytest.fixture
def other(stores, make_user):
    return Identity(user=make_user(stores[0], display_name="Someone Else"))


class TestCreatePost:
    def test_author_fields_stamped_from_identity(self, stores, author) -> None:
        post = stores[1].create_post(PostInput(title=_unique("Stamp"), content="Body"), actor=author)
        assert post.author_id == author.user_id
        assert post.author == "Reporter"
        assert post.author_grade == "ט"
        assert post.author_class == 3
        assert post.is_teacher_post is False
        assert post.status == "draft"

    def test_teacher_post_flag(self, stores, make_user) -> None:
        teacher = Identity(user=make_user(stores[0], is_teacher=True))
        post = stores[1].create_post(PostInput(title=_unique("Teacher"), content="Body"), actor=teacher)
        assert post.is_teacher_post is True
        assert post.author_grade is None

    def test_duplicate_titles_get_suffixes(self, stores, author) -> None:
        title = _unique("Same Title")
        slugs = [stores[1].create_post(PostInput(title=title, content="x"), actor=author).slug for _ in range(3)]
        base = slugs[0]
        assert slugs == [base, f"{base}-2", f"{base}-3"]

    def test_untitled_slug_falls_back(self, stores, author) -> None:
        post = stores[1].create_post(PostInput(title="!!!", content="x"), actor=author)
        assert post.slug.startswith("post")

    def test_description_generated_from_content(self, stores, author) -> None:
        post = stores[1].create_post(PostInput(title=_unique("Desc"), content="## Heading\n\nSome **text**"), actor=author)
        assert post.description == "Heading Some text"

    def test_custom_description_kept(self, stores, author) -> None:
        post = stores[1].create_post(
            PostInput(title=_unique("Custom"), content="Body", description="  Hand written  "), actor=author
        )
        assert post.description == "Hand written"

    def test_blank_title_rejected(self, stores, author) -> None:
        with pytest.raises(ValueError):
            stores[1].create_post(PostInput(title="  ", content="Body"), actor=author)

    def test_tags_round_trip(self, stores, author) -> None:
        post = stores[1].create_post(
            PostInput(title=_unique("Tags"), content="Body", tags=["ספורט", "news"]), actor=author
        )
        assert stores[1].get_post(post.id).tags == ["ספורט", "news"]


class TestOwnedMutations:
    def test_owner_can_update(self, stores, author) -> None:
        post = stores[1].create_post(PostInput(title=_unique("Own"), content="x"), actor=author)
        result = stores[1].update_if_owned(post.id, author.user_id, False, PostPatch({"status": "published"}))
        assert result.outcome == MutationOutcome.UPDATED
        assert result.post is not None and result.post.status == "published"

    def test_non_owner_forbidden_and_row_unchanged(self, stores, author, other) -> None:
        post = stores[1].create_post(PostInput(title=_unique("Theirs"), content="x"), actor=author)
        result = stores[1].update_if_owned(post.id, other.user_id, False, PostPatch({"title": "Hijacked"}))
        assert result.outcome == MutationOutcome.FORBIDDEN
        assert stores[1].get_post(post.id).title == post.title

    def test_admin_can_update_any(self, stores, author) -> None:
        post = stores[1].create_post(PostInput(title=_unique("Any"), content="x"), actor=author)
        result = stores[1].update_if_owned(post.id, None, True, PostPatch({"category": "news"}))
        assert result.outcome == MutationOutcome.UPDATED
        assert result.post.category == "news"

    def test_missing_post_not_found(self, stores, author) -> None:
        result = stores[1].update_if_owned("missing", author.user_id, False, PostPatch({"status": "draft"}))
        assert result.outcome == MutationOutcome.NOT_FOUND

    def test_invalid_status_raises(self, stores, author) -> None:
        post = stores[1].create_post(PostInput(title=_unique("Status"), content="x"), actor=author)
        with pytest.raises(ValueError):
            stores[1].update_if_owned(post.id, author.user_id, False, PostPatch({"status": "archived"}))

    def test_status_only_keeps_slug_and_description(self, stores, author) -> None:
        post = stores[1].create_post(PostInput(title=_unique("Stable"), content="body text"), actor=author)
        result = stores[1].update_if_owned(post.id, author.user_id, False, PostPatch({"status": "published"}))
        assert result.post.slug == post.slug
        assert result.post.description == post.description

    def test_title_change_regenerates_slug(self, stores, author) -> None:
        post = stores[1].create_post(PostInput(title=_unique("Old Name"), content="x"), actor=author)
        new_title = _unique("New Name")
        result = stores[1].update_if_owned(post.id, author.user_id, False, PostPatch({"title": new_title}))
        assert result.post.slug == new_title.lower().replace(" ", "-")

    def test_title_change_retries_when_slug_is_taken_concurrently(self, stores, author, monkeypatch) -> None:
        """A slug claimed between the uniqueness check and the UPDATE moves on to the next suffix."""
        store = stores[1]
        title = _unique("Raced Title")
        winner = store.create_post(PostInput(title=title, content="x"), actor=author)
        post = store.create_post(PostInput(title=_unique("Loser"), content="x"), actor=author)
        real_unique_slug = store._unique_slug
        seen = []

        def stale_unique_slug(conn, title, exclude_id=None, start=2):
            seen.append(start)
            if len(seen) == 1:
                return winner.slug
            return real_unique_slug(conn, title, exclude_id=exclude_id, start=start)

        monkeypatch.setattr(store, "_unique_slug", stale_unique_slug)
        result = store.update_if_owned(post.id, author.user_id, False, PostPatch({"title": title}))
        assert result.outcome == MutationOutcome.UPDATED
        assert seen == [2, 3]
        assert result.post.slug == f"{winner.slug}-3"
        assert store.get_post(winner.id).slug == winner.slug

    def test_content_change_regenerates_description(self, stores, author) -> None:
        post = stores[1].create_post(PostInput(title=_unique("Body"), content="first body"), actor=author)
        result = stores[1].update_if_owned(post.id, author.user_id, False, PostPatch({"content": "second body"}))
        assert result.post.description == "second body"

    def test_content_with_custom_description(self, stores, author) -> None:
        post = stores[1].create_post(PostInput(title=_unique("Both"), content="first"), actor=author)
        result = stores[1].update_if_owned(
            post.id, author.user_id, False, PostPatch({"content": "second", "description": "mine"})
        )
        assert result.post.description == "mine"

    def test_owner_delete(self, stores, author) -> None:
        post = stores[1].create_post(PostInput(title=_unique("Delete"), content="x"), actor=author)
        result = stores[1].delete_if_owned(post.id, author.user_id, False)
        assert result.outcome == MutationOutcome.DELETED
        assert stores[1].get_post(post.id) is None

    def test_non_owner_delete_forbidden(self, stores, author, other) -> None:
        post = stores[1].create_post(PostInput(title=_unique("Keep"), content="x"), actor=author)
        result = stores[1].delete_if_owned(post.id, other.user_id, False)
        assert result.outcome == MutationOutcome.FORBIDDEN
        assert stores[1].get_post(post.id) is not None

    def test_delete_missing(self, stores, author) -> None:
        assert stores[1].delete_if_owned("missing", author.user_id, False).outcome == MutationOutcome.NOT_FOUND

    def test_unknown_patch_field(self) -> None:
        with pytest.raises(ValueError):
            PostPatch({"slug": "manual"})


class TestQueries:
    def test_published_only_hides_drafts(self, stores, author) -> None:
        draft = stores[1].create_post(PostInput(title=_unique("Hidden"), content="x"), actor=author)
        live = stores[1].create_post(
            PostInput(title=_unique("Visible"), content="x", status="published"), actor=author
        )
        ids = {p.id for p in stores[1].list_posts(published_only=True).posts}
        assert live.id in ids
        assert draft.id not in ids
        assert stores[1].get_post_by_slug(draft.slug) is None
        assert stores[1].get_post_by_slug(draft.slug, published_only=False) is not None

    def test_search_by_title(self, stores, author) -> None:
        marker = uuid.uuid4().hex[:10]
        post = stores[1].create_post(PostInput(title=f"Findme {marker}", content="x"), actor=author)
        page = stores[1].list_posts(search=marker.upper())
        assert [p.id for p in page.posts] == [post.id]

    def test_search_wildcards_are_literal(self, stores, author) -> None:
        stores[1].create_post(PostInput(title=_unique("Wild"), content="x"), actor=author)
        assert stores[1].list_posts(search="%").total == 0

    def test_author_filter(self, stores, make_user) -> None:
        solo = Identity(user=make_user(stores[0]))
        post = stores[1].create_post(PostInput(title=_unique("Solo"), content="x"), actor=solo)
        assert [p.id for p in stores[1].list_posts_by_author(solo.user_id)] == [post.id]

    def test_pagination(self, stores, make_user) -> None:
        writer = Identity(user=make_user(stores[0]))
        for i in range(3):
            stores[1].create_post(PostInput(title=_unique(f"Page {i}"), content="x"), actor=writer)
        page = stores[1].list_posts(author_id=writer.user_id, limit=2, offset=0)
        assert page.total == 3
        assert len(page.posts) == 2
        assert page.has_more is True
        last = stores[1].list_posts(author_id=writer.user_id, limit=2, offset=2)
        assert len(last.posts) == 1
        assert last.has_more is False

    def test_author_deleted_flag(self, stores, make_user) -> None:
        gone = make_user(stores[0])
        post = stores[1].create_post(PostInput(title=_unique("Orphan"), content="x"), actor=Identity(user=gone))
        assert stores[1].get_post(post.id).author_deleted is False
        stores[0].delete_user(gone.id)
        assert stores[1].get_post(post.id).author_deleted is True

    def test_legacy_admin_posts_are_not_orphans(self, stores) -> None:
        admin = Identity(user=legacy_admin_user(), is_admin=True)
        post = stores[1].create_post(PostInput(title=_unique("Admin"), content="x"), actor=admin)
        assert post.author_id == "legacy-admin"
        assert post.author_deleted is False

    def test_stats_count_new_posts(self, stores, author) -> None:
        before = stores[1].get_stats()
        stores[1].create_post(PostInput(title=_unique("Stat"), content="x"), actor=author)
        stores[1].create_post(PostInput(title=_unique("Stat"), content="x", status="published"), actor=author)
        after = stores[1].get_stats()
        assert after.total - before.total == 2
        assert after.drafts - before.drafts == 1
        assert after.published - before.published == 1
        assert after.today - before.today == 2
        assert after.this_week - before.this_week == 2

    def test_archive_months_and_month_listing(self, stores, author) -> None:
        post = stores[1].create_post(
            PostInput(title=_unique("Archive"), content="x", status="published"), actor=author
        )
        year, month = int(post.date[:4]), int(post.date[5:7])
        months = stores[1].get_archive_months()
        current = next(m for m in months if (m.year, m.month) == (year, month))
        assert current.count >= 1
        assert current.month_name
        assert current.month_name_he
        assert post.id in {p.id for p in stores[1].list_posts_by_month(year, month)}


class TestCacheInvalidation:
    def test_create_invalidates_listings(self, stores, author) -> None:
        cache = stores[2]
        cache.set("posts:12:0", {"posts": []}, tags=["posts"])
        cache.set("archives", [], tags=["archives"])
        stores[1].create_post(PostInput(title=_unique("Fresh"), content="x"), actor=author)
        assert cache.get("posts:12:0") is None
        assert cache.get("archives") is None

    def test_update_invalidates_old_slug(self, stores, author) -> None:
        cache = stores[2]
        post = stores[1].create_post(PostInput(title=_unique("Slugged"), content="x"), actor=author)
        cache.set(f"post:{post.slug}", {"id": post.id}, tags=[f"post:{post.slug}"])
        stores[1].update_if_owned(post.id, author.user_id, False, PostPatch({"title": _unique("Renamed")}))
        assert cache.get(f"post:{post.slug}") is None

    def test_delete_invalidates(self, stores, author) -> None:
        cache = stores[2]
        post = stores[1].create_post(PostInput(title=_unique("Doomed"), content="x"), actor=author)
        cache.set("posts:12:0", {"posts": []}, tags=["posts"])
        stores[1].delete_if_owned(post.id, author.user_id, False)
        assert cache.get("posts:12:0") is None

    def test_forbidden_update_keeps_cache(self, stores, author, other) -> None:
        cache = stores[2]
        post = stores[1].create_post(PostInput(title=_unique("Guarded"), content="x"), actor=author)
        cache.set("posts:12:0", {"posts": []}, tags=["posts"])
        stores[1].update_if_owned(post.id, other.user_id, False, PostPatch({"status": "published"}))
        assert cache.get("posts:12:0") == {"posts": []}
