"""
db/migrations.py -- Ordered, idempotent schema migrations.

Each migration is a (name, function) pair. run_migrations() applies the ones
not yet recorded in the migrations table, in order, and records each one as
it succeeds. Running it twice is a no-op.

  001_initial_schema       -- users, posts, migrations tables and indexes.
  002_add_teacher_support  -- users.is_teacher, posts.is_teacher_post, and
                              nullable grade/class for databases created
                              before teacher accounts existed.

Fresh databases get every column from db.schema in 001, so 002 only has
work to do on older databases. Column checks use sqlalchemy.inspect() so the
same code runs on SQLite (tests, local dev) and PostgreSQL (production).

Called from the app lifespan when AUTO_MIGRATE is on, and from POST
/api/setup.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timezone

from sqlalchemy import inspect, select, text
from sqlalchemy.engine import Connection, Engine

from db.schema import metadata, migrations, posts, users

logger = logging.getLogger("schoolpaper.migrations")


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _columns(conn: Connection, table: str) -> set[str]:
    return {col["name"] for col in inspect(conn).get_columns(table)}


# ---------------------------------------------------------------------------
# Migrations
# ---------------------------------------------------------------------------


def _initial_schema(conn: Connection) -> list[str]:
    metadata.create_all(conn, tables=[users, posts, migrations])
    return ["Created tables: users, posts, migrations"]


def _add_teacher_support(conn: Connection) -> list[str]:
    logs: list[str] = []
    # Table and column names below come from this module, never from input.
    if "is_teacher" not in _columns(conn, "users"):
        conn.execute(text("ALTER TABLE users ADD COLUMN is_teacher BOOLEAN NOT NULL DEFAULT FALSE"))
        logs.append("Added users.is_teacher")
    if "is_teacher_post" not in _columns(conn, "posts"):
        conn.execute(text("ALTER TABLE posts ADD COLUMN is_teacher_post BOOLEAN NOT NULL DEFAULT FALSE"))
        logs.append("Added posts.is_teacher_post")
    if conn.dialect.name == "postgresql":
        # SQLite cannot drop NOT NULL in place; its tables from 001 are already nullable.
        conn.execute(text("ALTER TABLE users ALTER COLUMN grade DROP NOT NULL"))
        conn.execute(text("ALTER TABLE users ALTER COLUMN class_number DROP NOT NULL"))
        logs.append("Made users.grade and users.class_number nullable")
    if not logs:
        logs.append("Teacher columns already present")
    return logs


MIGRATIONS: list[tuple[str, Callable[[Connection], list[str]]]] = [
    ("001_initial_schema", _initial_schema),
    ("002_add_teacher_support", _add_teacher_support),
]


# ---------------------------------------------------------------------------
# Runner
# ---------------------------------------------------------------------------


def tables_exist(engine: Engine) -> bool:
    """True when both core tables are present (the database is initialized)."""
    names = set(inspect(engine).get_table_names())
    return {"users", "posts"} <= names


def applied_migrations(engine: Engine) -> list[str]:
    if "migrations" not in inspect(engine).get_table_names():
        return []
    with engine.connect() as conn:
        rows = conn.execute(select(migrations.c.name).order_by(migrations.c.id)).fetchall()
    return [r.name for r in rows]


def run_migrations(engine: Engine) -> list[str]:
    """Apply pending migrations in order. Returns human-readable log lines.

    Each migration runs in its own transaction together with its bookkeeping
    row, so a failure leaves earlier migrations recorded and later ones
    untouched. The exception propagates to the caller.
    """
    done = set(applied_migrations(engine))
    logs: list[str] = []
    for name, apply in MIGRATIONS:
        if name in done:
            logs.append(f"Skipping {name} (already applied)")
            continue
        logger.info("Applying migration %s", name)
        with engine.begin() as conn:
            # 001 creates the migrations table itself, so record after apply.
            step_logs = apply(conn)
            conn.execute(migrations.insert().values(name=name, executed_at=_now_iso()))
        logs.extend(f"{name}: {line}" for line in step_logs)
        logs.append(f"Applied {name}")
    return logs
