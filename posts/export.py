"""
posts/export.py -- CSV export of posts for the admin dashboard.

Cells that a spreadsheet would read as a formula (leading =, +, -, @) are
prefixed with a tab so they open as text (CWE-1236). Titles, tags and author
names are user-supplied, so every text cell goes through _sanitize_csv_cell().
"""

import csv
import io
from datetime import date
from typing import Optional

from posts.models import Post

CSV_HEADERS = [
    "ID",
    "Title",
    "Slug",
    "Status",
    "Category",
    "Tags",
    "Author",
    "Created At",
    "Updated At",
    "Published Date",
]

_FORMULA_PREFIXES = ("=", "+", "-", "@")


def _sanitize_csv_cell(value: Optional[str]) -> str:
    if not value:
        return ""
    if value.startswith(_FORMULA_PREFIXES):
        return "\t" + value
    return value


def posts_to_csv(posts: list[Post]) -> str:
    """Render posts as CSV text, one row per post, header row first."""
    buf = io.StringIO()
    writer = csv.writer(buf, lineterminator="\n")
    writer.writerow(CSV_HEADERS)
    for p in posts:
        writer.writerow(
            [
                p.id,
                _sanitize_csv_cell(p.title),
                p.slug,
                p.status,
                _sanitize_csv_cell(p.category),
                _sanitize_csv_cell("; ".join(p.tags)),
                _sanitize_csv_cell(p.author),
                p.created_at,
                p.updated_at,
                p.date,
            ]
        )
    return buf.getvalue()


def export_filename(today: Optional[date] = None) -> str:
    today = today or date.today()
    return f"posts-export-{today.isoformat()}.csv"
