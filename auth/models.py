"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, almost no logic). Mirrors the
approach in posts/models.py -- dataclasses own domain shape; stores and
routes do the work.

Layer rule: no imports from api/, posts/, cache/, or storage/.
"""

from __future__ import annotations

from dataclasses import dataclass

VALID_GRADES = ("ז", "ח", "ט", "י")
MIN_CLASS_NUMBER = 1
MAX_CLASS_NUMBER = 4

LEGACY_ADMIN_ID = "legacy-admin"


@dataclass
class User:
    """A newspaper account: a student (grade + class) or a teacher.

    hashed_password is never serialized to clients -- api/models.py builds
    UserResponse from the public fields only.

    grade / class_number are None for teachers and for the legacy admin.
    """

    username: str
    display_name: str
    id: str | None = None
    hashed_password: str | None = None
    email: str | None = None
    is_teacher: bool = False
    grade: str | None = None
    class_number: int | None = None
    created_at: str | None = None
    updated_at: str | None = None
    last_login: str | None = None

    @property
    def role(self) -> str:
        if self.id == LEGACY_ADMIN_ID:
            return "admin"
        return "teacher" if self.is_teacher else "student"


def legacy_admin_user() -> User:
    """The synthetic account used when only ADMIN_PASSWORD is configured."""
    return User(
        id=LEGACY_ADMIN_ID,
        username="admin",
        display_name="Admin",
        is_teacher=True,
    )


@dataclass
class UserClaims:
    """The subset of a User embedded in a session token."""

    user_id: str
    username: str
    role: str
    grade: str | None = None
    class_number: int | None = None


@dataclass
class Identity:
    """Who is making the current request.

    user and is_admin are independent: a request may carry a user session,
    a valid admin cookie, both, or neither. The legacy admin user always
    has is_admin=True.
    """

    user: User | None = None
    is_admin: bool = False

    @property
    def is_authenticated(self) -> bool:
        return self.user is not None or self.is_admin

    @property
    def user_id(self) -> str | None:
        return self.user.id if self.user is not None else None

    @property
    def is_legacy_admin(self) -> bool:
        return self.user_id == LEGACY_ADMIN_ID
