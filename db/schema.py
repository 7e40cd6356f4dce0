"""
db/schema.py -- SQLAlchemy Core table definitions.

Users and posts share one database so the post listing can LEFT JOIN users
to flag posts whose author account was deleted. posts.author_id is a plain
column, not a foreign key: deleting a user must never delete or block their
articles.

Timestamps are ISO 8601 UTC strings (datetime.isoformat()), which sort
correctly as text on both SQLite and PostgreSQL.
"""

from sqlalchemy import Boolean, Column, Index, Integer, MetaData, String, Table, Text, create_engine, event
from sqlalchemy.engine import Engine

metadata = MetaData()

users = Table(
    "users",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("username", String(50), nullable=False, unique=True),
    Column("password_hash", Text, nullable=False),
    Column("display_name", String(100), nullable=False),
    Column("email", String(255)),
    Column("is_teacher", Boolean, nullable=False, server_default="0"),
    Column("grade", String(4)),  # NULL for teachers
    Column("class_number", Integer),  # NULL for teachers
    Column("created_at", String(40), nullable=False),
    Column("updated_at", String(40), nullable=False),
    Column("last_login", String(40)),
)

posts = Table(
    "posts",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("title", String(200), nullable=False),
    Column("slug", String(255), nullable=False, unique=True),
    Column("content", Text, nullable=False),
    Column("cover_image", Text),
    Column("description", Text, nullable=False, server_default=""),
    Column("date", String(40), nullable=False),
    Column("author", String(100)),
    Column("author_id", String(36)),  # weak reference to users.id
    Column("author_grade", String(4)),
    Column("author_class", Integer),
    Column("is_teacher_post", Boolean, nullable=False, server_default="0"),
    Column("tags", Text, nullable=False, server_default="[]"),  # JSON array
    Column("category", String(50)),
    Column("status", String(20), nullable=False, server_default="draft"),
    Column("created_at", String(40), nullable=False),
    Column("updated_at", String(40), nullable=False),
)

Index("idx_posts_status", posts.c.status)
Index("idx_posts_date", posts.c.date)
Index("idx_posts_author_id", posts.c.author_id)

migrations = Table(
    "migrations",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(255), nullable=False, unique=True),
    Column("executed_at", String(40), nullable=False),
)


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def create_db_engine(db_url: str) -> Engine:
    """Build an Engine with the SQLite tweaks the stores rely on.

    check_same_thread=False: FastAPI runs sync handlers in a thread pool, so
    a pooled SQLite connection may be used from a thread other than the one
    that opened it.
    """
    connect_args: dict = {}
    if db_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
    engine = create_engine(db_url, connect_args=connect_args, pool_pre_ping=not db_url.startswith("sqlite"))
    if db_url.startswith("sqlite"):
        event.listen(engine, "connect", _set_wal_mode)
    return engine
