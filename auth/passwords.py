"""
auth/passwords.py -- Password hashing and constant-time credential checks.

Security design decisions:
  bcrypt (direct usage, no passlib wrapper) with a fixed work factor of 12.
  Used for user passwords and, optionally, for ADMIN_PASSWORD.

  ADMIN_PASSWORD may still be configured in plain text by older deployments.
  In that case the comparison pads both byte strings to the same length and
  runs hmac.compare_digest, so the time taken does not depend on where the
  first differing byte sits. A warning is logged each time so operators are
  nudged towards a hash.

  _DUMMY_HASH lets authenticate_user() run bcrypt even when the username does
  not exist, so response time does not reveal which usernames are taken.

Layer rule: no imports from api/, posts/, cache/, or storage/.
"""

from __future__ import annotations

import hmac
import logging
import re
from typing import TYPE_CHECKING

import bcrypt

if TYPE_CHECKING:
    from auth.models import User
    from auth.store import UserStore

logger = logging.getLogger("schoolpaper.auth")

BCRYPT_ROUNDS = 12

# bcrypt only looks at the first 72 bytes. Older bcrypt releases truncated
# silently; current ones raise, so the cut is made here explicitly.
_BCRYPT_MAX_BYTES = 72

_BCRYPT_PREFIX = re.compile(r"^\$2[aby]\$")


def _bcrypt_input(plain: str) -> bytes:
    return plain.encode("utf-8")[:_BCRYPT_MAX_BYTES]


def is_bcrypt_hash(value: str) -> bool:
    return bool(_BCRYPT_PREFIX.match(value))


def hash_password(plain: str) -> str:
    """Return a bcrypt hash of the given plaintext password."""
    return bcrypt.hashpw(_bcrypt_input(plain), bcrypt.gensalt(rounds=BCRYPT_ROUNDS)).decode("utf-8")


def constant_time_equals(a: str, b: str) -> bool:
    """Compare two strings without an early exit on the first mismatch.

    Both operands are padded to a common length before compare_digest so the
    work done is the same whether they differ at byte 0 or byte 63. The
    length check comes last and is folded into the result.
    """
    left = a.encode("utf-8")
    right = b.encode("utf-8")
    width = max(len(left), len(right))
    same = hmac.compare_digest(left.ljust(width, b"\0"), right.ljust(width, b"\0"))
    return same and len(left) == len(right)


def verify_password(plain: str, stored: str) -> bool:
    """Return True if plain matches stored.

    stored is a bcrypt hash for every user account. For a legacy plain-text
    secret the comparison falls back to constant_time_equals(). Never raises.
    """
    if not stored:
        return False
    if is_bcrypt_hash(stored):
        try:
            return bcrypt.checkpw(_bcrypt_input(plain), stored.encode("utf-8"))
        except ValueError:
            # Malformed hash in the DB or env -- treat as a mismatch.
            logger.warning("Stored bcrypt hash is malformed; rejecting credential")
            return False
    logger.warning("Comparing against a plain-text secret. Store a bcrypt hash instead.")
    return constant_time_equals(plain, stored)


def verify_admin_password(plain: str, configured: str) -> bool:
    """Check a submitted password against ADMIN_PASSWORD.

    Returns False when ADMIN_PASSWORD is not configured at all, or when the
    submission is empty, without doing any comparison.
    """
    if not configured:
        logger.error("ADMIN_PASSWORD is not configured")
        return False
    if not plain:
        return False
    return verify_password(plain, configured)


# Computed once at module load so the first login attempt is not measurably
# slower than later ones.
_DUMMY_HASH: str = hash_password("schoolpaper_timing_dummy")


def authenticate_user(store: UserStore, username: str, password: str) -> User | None:
    """Authenticate a username/password login with timing equalization.

    Always runs bcrypt whether or not the user exists:
    - Unknown username: bcrypt runs against _DUMMY_HASH (same cost as real check)
    - Wrong password: bcrypt runs against the real hash (same cost)

    Returns the User on success, None on any failure.
    """
    user = store.get_by_username(username)
    if user is None or not user.hashed_password:
        verify_password(password, _DUMMY_HASH)
        return None
    if not verify_password(password, user.hashed_password):
        return None
    return user
