"""
cache/store.py -- SQLite-backed page cache with tag-based invalidation.

Public listings (published posts, archive months, single articles by slug)
are read far more often than they change. The public routes keep their JSON
payloads here with a short TTL, and every post mutation invalidates the tags
that could show stale data:

    "posts"        -- any listing of posts
    "archives"     -- the month/year archive index
    "post:<slug>"  -- one article page

Usage:
    cache = PageCache()
    cache.set("archives", payload, tags=["archives"])
    cache.get("archives")                 # dict/list or None
    cache.invalidate_tags(["archives"])   # returns number of entries dropped
    cache.purge_expired()                 # call periodically to trim old entries
"""

import json
import sqlite3
import threading
import time
from collections.abc import Iterable
from typing import Any, Optional

_DEFAULT_TTL = 60  # seconds

_DDL = """
CREATE TABLE IF NOT EXISTS page_cache (
    cache_key   TEXT PRIMARY KEY,
    data        TEXT NOT NULL,
    cached_at   REAL NOT NULL
);
CREATE TABLE IF NOT EXISTS page_cache_tags (
    cache_key   TEXT NOT NULL,
    tag         TEXT NOT NULL,
    PRIMARY KEY (cache_key, tag)
);
CREATE INDEX IF NOT EXISTS idx_page_cache_tags_tag ON page_cache_tags (tag);
"""


class PageCache:
    def __init__(self, db_path: str = ":memory:", ttl: int = _DEFAULT_TTL) -> None:
        self.ttl = ttl
        self._lock = threading.Lock()
        self._conn = sqlite3.connect(db_path, check_same_thread=False)
        if db_path != ":memory:":
            self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.executescript(_DDL)
        self._conn.commit()

    def get(self, key: str) -> Optional[Any]:
        """Return cached data for key if it exists and hasn't expired."""
        with self._lock:
            row = self._conn.execute(
                "SELECT data, cached_at FROM page_cache WHERE cache_key = ?",
                (key,),
            ).fetchone()
            if row is None:
                return None
            data, cached_at = row
            if time.time() - cached_at > self.ttl:
                self._delete_keys([key])
                return None
        return json.loads(data)

    def set(self, key: str, data: Any, tags: Iterable[str] = ()) -> None:
        """Store data for key under the given tags, replacing any existing entry."""
        with self._lock:
            self._conn.execute(
                "INSERT OR REPLACE INTO page_cache (cache_key, data, cached_at) VALUES (?, ?, ?)",
                (key, json.dumps(data, ensure_ascii=False), time.time()),
            )
            self._conn.execute("DELETE FROM page_cache_tags WHERE cache_key = ?", (key,))
            self._conn.executemany(
                "INSERT OR IGNORE INTO page_cache_tags (cache_key, tag) VALUES (?, ?)",
                [(key, tag) for tag in tags],
            )
            self._conn.commit()

    def invalidate_tags(self, tags: Iterable[str]) -> int:
        """Drop every entry carrying any of the tags. Returns entries removed."""
        tags = list(dict.fromkeys(tags))
        if not tags:
            return 0
        placeholders = ", ".join("?" for _ in tags)
        with self._lock:
            keys = [
                r[0]
                for r in self._conn.execute(
                    f"SELECT DISTINCT cache_key FROM page_cache_tags WHERE tag IN ({placeholders})",  # noqa: S608
                    tags,
                ).fetchall()
            ]
            return self._delete_keys(keys)

    def clear(self) -> None:
        with self._lock:
            self._conn.execute("DELETE FROM page_cache")
            self._conn.execute("DELETE FROM page_cache_tags")
            self._conn.commit()

    def purge_expired(self) -> int:
        """Delete all entries older than TTL. Returns number of rows removed."""
        cutoff = time.time() - self.ttl
        with self._lock:
            keys = [
                r[0] for r in self._conn.execute("SELECT cache_key FROM page_cache WHERE cached_at < ?", (cutoff,))
            ]
            return self._delete_keys(keys)

    def _delete_keys(self, keys: list[str]) -> int:
        # Caller holds self._lock.
        if not keys:
            return 0
        removed = 0
        for key in keys:
            cursor = self._conn.execute("DELETE FROM page_cache WHERE cache_key = ?", (key,))
            removed += cursor.rowcount
            self._conn.execute("DELETE FROM page_cache_tags WHERE cache_key = ?", (key,))
        self._conn.commit()
        return removed

    def close(self) -> None:
        self._conn.close()
