"""
core/text.py -- Pure text helpers for post content.

Slugs keep Hebrew letters as-is (no transliteration) because the paper is
written in Hebrew and readers share links with the original title visible.
Everything here is deterministic and side-effect free so the repository and
the tests can call it directly.
"""

import re
from typing import Optional

MAX_DESCRIPTION_LENGTH = 160

WORDS_PER_MINUTE = 200

# Lower-case ASCII alphanumerics plus the Hebrew Unicode block (U+0590-U+05FF).
# Every run of anything else collapses into a single hyphen.
_SLUG_STRIP = re.compile(r"[^a-z0-9\u0590-\u05ff]+")

_CODE_BLOCK = re.compile(r"```[\s\S]*?```")
_INLINE_CODE = re.compile(r"`[^`]*`")
_MARKDOWN_CHARS = re.compile(r"[#*_~\[\]()]")
_WHITESPACE = re.compile(r"\s+")

MONTH_NAMES_EN = {
    1: "january",
    2: "february",
    3: "march",
    4: "april",
    5: "may",
    6: "june",
    7: "july",
    8: "august",
    9: "september",
    10: "october",
    11: "november",
    12: "december",
}

MONTH_NAMES_HE = {
    1: "ינואר",
    2: "פברואר",
    3: "מרץ",
    4: "אפריל",
    5: "מאי",
    6: "יוני",
    7: "יולי",
    8: "אוגוסט",
    9: "ספטמבר",
    10: "אוקטובר",
    11: "נובמבר",
    12: "דצמבר",
}

_MONTH_NUMBERS = {name: num for num, name in MONTH_NAMES_EN.items()}


def slugify(text: str) -> str:
    """Derive a URL slug from a title.

    slugify("Hello, World!")   -> "hello-world"
    slugify("כותרת בעברית")     -> "כותרת-בעברית"
    slugify(slugify(x)) == slugify(x) for every x.
    """
    return _SLUG_STRIP.sub("-", text.lower()).strip("-")


def strip_markdown(content: str) -> str:
    """Remove code, emphasis/heading/link punctuation and collapse whitespace."""
    plain = _CODE_BLOCK.sub("", content)
    plain = _INLINE_CODE.sub("", plain)
    plain = _MARKDOWN_CHARS.sub("", plain)
    return _WHITESPACE.sub(" ", plain).strip()


def generate_description(content: str, custom: Optional[str] = None) -> str:
    """Return the description to store for a post.

    A non-blank custom description wins (trimmed, otherwise untouched).
    Otherwise the content is reduced to plain text and cut at 160 chars,
    with "..." appended only when something was cut.
    """
    if custom is not None and custom.strip():
        return custom.strip()
    plain = strip_markdown(content)
    if len(plain) > MAX_DESCRIPTION_LENGTH:
        return plain[:MAX_DESCRIPTION_LENGTH] + "..."
    return plain


def word_count(content: str) -> int:
    plain = strip_markdown(content)
    return len(plain.split()) if plain else 0


def reading_time_minutes(content: str) -> int:
    """Estimated reading time, never less than one minute."""
    return max(1, -(-word_count(content) // WORDS_PER_MINUTE))


def month_number(value: str) -> Optional[int]:
    """Accept "3", "03" or "march" and return 3; None for anything else."""
    value = value.strip().lower()
    if value.isdigit():
        num = int(value)
        return num if 1 <= num <= 12 else None
    return _MONTH_NUMBERS.get(value)
