"""
tests/test_export.py -- CSV export and formula injection (CWE-1236).

Spreadsheet applications treat cells starting with =, +, - or @ as formulas.
Titles, categories, tags and author names are written by students, so a
title like =HYPERLINK(...) must reach the CSV as text. Dangerous cells are
prefixed with a tab; safe cells are left alone.
"""

import csv
import io
from datetime import date
from typing import Optional

from posts.export import CSV_HEADERS, export_filename, posts_to_csv
from posts.models import Post

# ---------------------------------------------------------------------------
# Test data helper
# ---------------------------------------------------------------------------


def _make_post(title: str = "Safe title", tags: Optional[list[str]] = None, author: Optional[str] = "Dana") -> Post:
    return Post(
        id="p-1",
        title=title,
        slug="safe-title",
        content="Body",
        description="Body",
        date="2024-03-05T10:00:00+00:00",
        status="published",
        created_at="2024-03-05T10:00:00+00:00",
        updated_at="2024-03-06T10:00:00+00:00",
        author=author,
        tags=tags or [],
        category="news",
    )


def _row(post: Post) -> dict[str, str]:
    """Call posts_to_csv() and return the single data row keyed by header."""
    rows = list(csv.reader(io.StringIO(posts_to_csv([post]))))
    assert len(rows) == 2, f"Expected header + 1 data row, got {len(rows)} rows"
    return dict(zip(rows[0], rows[1]))


# ---------------------------------------------------------------------------
# Layout
# ---------------------------------------------------------------------------


def test_header_row():
    rows = list(csv.reader(io.StringIO(posts_to_csv([]))))
    assert rows == [CSV_HEADERS]


def test_row_values():
    row = _row(_make_post(tags=["ספורט", "news"]))
    assert row["ID"] == "p-1"
    assert row["Status"] == "published"
    assert row["Tags"] == "ספורט; news"
    assert row["Published Date"] == "2024-03-05T10:00:00+00:00"


def test_title_with_comma_and_quote_is_quoted():
    row = _row(_make_post(title='Hello, "world"'))
    assert row["Title"] == 'Hello, "world"'


def test_export_filename():
    assert export_filename(date(2024, 3, 5)) == "posts-export-2024-03-05.csv"


# ---------------------------------------------------------------------------
# Dangerous prefixes
# ---------------------------------------------------------------------------


def test_formula_prefix_equals_sanitized():
    cell = _row(_make_post(title="=CMD|'/C calc'"))["Title"]
    assert not cell.startswith("="), f"CSV injection: Title cell starts with '=' -- got: {cell!r}"
    assert cell == "\t=CMD|'/C calc'"


def test_formula_prefix_plus_sanitized():
    cell = _row(_make_post(author="+1+1"))["Author"]
    assert not cell.startswith("+"), f"CSV injection: Author cell starts with '+' -- got: {cell!r}"


def test_formula_prefix_minus_sanitized():
    cell = _row(_make_post(tags=["-1+1"]))["Tags"]
    assert not cell.startswith("-"), f"CSV injection: Tags cell starts with '-' -- got: {cell!r}"


def test_formula_prefix_at_sanitized():
    cell = _row(_make_post(title="@SUM(A1)"))["Title"]
    assert not cell.startswith("@"), f"CSV injection: Title cell starts with '@' -- got: {cell!r}"


# ---------------------------------------------------------------------------
# Safe values -- no false-positive sanitization
# ---------------------------------------------------------------------------


def test_safe_text_unchanged():
    cell = _row(_make_post(title="School trip 2024"))["Title"]
    assert cell == "School trip 2024", f"Safe text was incorrectly modified. Got: {cell!r}"


def test_missing_author_is_empty():
    cell = _row(_make_post(author=None))["Author"]
    assert cell == "", f"Missing author should produce empty string cell. Got: {cell!r}"
