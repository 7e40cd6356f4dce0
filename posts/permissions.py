"""
posts/permissions.py -- Read-only ownership checks.

Used by routes that need a yes/no answer without mutating anything (e.g.
whether to show an edit button, or GET on an admin post). Mutations do not
call these: they go through PostStore.update_if_owned() / delete_if_owned(),
which check ownership inside the write itself.

Rule: allowed iff is_admin, or the post exists and post.author_id == user_id.
Admins short-circuit without a database lookup.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from posts.store import PostStore


def is_owner(author_id: Optional[str], user_id: Optional[str]) -> bool:
    return author_id is not None and user_id is not None and author_id == user_id


def can_user_edit_post(store: PostStore, user_id: Optional[str], post_id: str, is_admin: bool) -> bool:
    if is_admin:
        return True
    post = store.get_post(post_id)
    return post is not None and is_owner(post.author_id, user_id)


def can_user_delete_post(store: PostStore, user_id: Optional[str], post_id: str, is_admin: bool) -> bool:
    # Same rule as editing; kept separate so the two can diverge later.
    return can_user_edit_post(store, user_id, post_id, is_admin)
