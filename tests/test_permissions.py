"""
tests/test_permissions.py -- Unit tests for posts/permissions.py.
"""

import uuid

from auth.models import Identity
from posts.models import PostInput
from posts.permissions import can_user_delete_post, can_user_edit_post, is_owner


def test_is_owner():
    assert is_owner("u1", "u1") is True
    assert is_owner("u1", "u2") is False
    assert is_owner(None, "u1") is False
    assert is_owner("u1", None) is False
    assert is_owner(None, None) is False


def test_owner_and_admin_rules(stores, make_user):
    user_store, post_store, _ = stores
    writer = make_user(user_store)
    stranger = make_user(user_store)
    post = post_store.create_post(PostInput(title=f"Perm {uuid.uuid4().hex[:8]}", content="x"), actor=Identity(user=writer))

    assert can_user_edit_post(post_store, writer.id, post.id, False) is True
    assert can_user_edit_post(post_store, stranger.id, post.id, False) is False
    assert can_user_edit_post(post_store, None, post.id, True) is True
    assert can_user_delete_post(post_store, writer.id, post.id, False) is True
    assert can_user_delete_post(post_store, stranger.id, post.id, False) is False


def test_missing_post(stores):
    assert can_user_edit_post(stores[1], "anyone", "missing", False) is False
    # Admins short-circuit without a lookup.
    assert can_user_edit_post(stores[1], None, "missing", True) is True
