"""
auth/store.py -- SQLAlchemy Core persistence layer for user accounts.

Pattern: Repository + Data Mapper (same as posts/store.py).
UserStore is the repository; _row_to_user is the mapper. Route and
dependency code never touches SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.
  Username uniqueness is a UNIQUE constraint, so two concurrent
  registrations for the same name cannot both succeed -- the loser gets
  sqlalchemy.exc.IntegrityError, which the route maps to 409.

The schema is owned by db/migrations.py; this store assumes it exists.

Layer rule: no imports from api/, posts/, cache/, or storage/.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy import func, select
from sqlalchemy.engine import Engine

from auth.models import User
from db.schema import create_db_engine, users

# Columns an update_user() call may touch. Anything else is a programming error.
_UPDATABLE = frozenset({"display_name", "email", "grade", "class_number", "is_teacher", "hashed_password"})


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class UserStore:
    """Repository for User entities.

    Usage:
        store = UserStore("sqlite:///paper.db")
        user = store.create_user(User(username="dana", display_name="Dana",
                                      hashed_password=hash_password("secret12"),
                                      grade="ח", class_number=2))
        store.get_by_username("dana")
        store.close()
    """

    def __init__(self, db_url: str) -> None:
        self.engine: Engine = create_db_engine(db_url)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def count_users(self) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(select(func.count()).select_from(users)).scalar()
        return result or 0

    def get_by_username(self, username: str) -> User | None:
        """Look up a user by exact username (case-sensitive). Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(users.select().where(users.c.username == username)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_id(self, user_id: str) -> User | None:
        with self.engine.connect() as conn:
            row = conn.execute(users.select().where(users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def username_exists(self, username: str) -> bool:
        with self.engine.connect() as conn:
            row = conn.execute(select(users.c.id).where(users.c.username == username)).fetchone()
        return row is not None

    def list_users(self) -> list[User]:
        """Return all users, newest account first. Admin-only operation."""
        with self.engine.connect() as conn:
            rows = conn.execute(users.select().order_by(users.c.created_at.desc())).fetchall()
        return [_row_to_user(r) for r in rows]

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def create_user(self, user: User) -> User:
        """Insert a new user and return it with id and timestamps filled in.

        Teachers are stored without grade/class even if the caller passed them.

        Raises sqlalchemy.exc.IntegrityError if the username already exists.
        """
        if not user.hashed_password:
            raise ValueError("create_user requires a hashed password")
        now = _now_iso()
        user_id = user.id or str(uuid.uuid4())
        grade = None if user.is_teacher else user.grade
        class_number = None if user.is_teacher else user.class_number
        with self.engine.connect() as conn:
            conn.execute(
                users.insert().values(
                    id=user_id,
                    username=user.username,
                    password_hash=user.hashed_password,
                    display_name=user.display_name,
                    email=user.email,
                    is_teacher=user.is_teacher,
                    grade=grade,
                    class_number=class_number,
                    created_at=now,
                    updated_at=now,
                )
            )
            conn.commit()
        return User(
            id=user_id,
            username=user.username,
            display_name=user.display_name,
            hashed_password=user.hashed_password,
            email=user.email,
            is_teacher=user.is_teacher,
            grade=grade,
            class_number=class_number,
            created_at=now,
            updated_at=now,
        )

    def update_user(self, user_id: str, **fields) -> User | None:
        """Update the given fields; fields not passed keep their stored value.

        Accepted fields: display_name, email, grade, class_number, is_teacher,
        hashed_password. Returns the updated User, or None if user_id was not
        found.
        """
        unknown = set(fields) - _UPDATABLE
        if unknown:
            raise ValueError(f"Unknown user fields: {sorted(unknown)!r}")
        values = dict(fields)
        if "hashed_password" in values:
            values["password_hash"] = values.pop("hashed_password")
        values["updated_at"] = _now_iso()
        with self.engine.connect() as conn:
            result = conn.execute(users.update().where(users.c.id == user_id).values(**values))
            conn.commit()
        if result.rowcount == 0:
            return None
        return self.get_by_id(user_id)

    def update_last_login(self, user_id: str) -> None:
        """Stamp the current UTC timestamp as last_login for the given user."""
        with self.engine.connect() as conn:
            conn.execute(users.update().where(users.c.id == user_id).values(last_login=_now_iso()))
            conn.commit()

    def delete_user(self, user_id: str) -> bool:
        """Permanently delete a user record. Returns True if deleted, False if not found.

        Posts written by the user stay in place; their author_id now dangles
        and the post store reports them with author_deleted=True.
        """
        with self.engine.connect() as conn:
            result = conn.execute(users.delete().where(users.c.id == user_id))
            conn.commit()
        return result.rowcount > 0

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mapper (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        username=row.username,
        display_name=row.display_name,
        hashed_password=row.password_hash,
        email=row.email,
        is_teacher=bool(row.is_teacher),
        grade=row.grade,
        class_number=row.class_number,
        created_at=row.created_at,
        updated_at=row.updated_at,
        last_login=row.last_login,
    )
