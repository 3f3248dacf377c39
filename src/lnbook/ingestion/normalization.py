"""Text normalization and clean-character counting."""

from __future__ import annotations

import re
import unicodedata

_TAG_RE = re.compile(r"<[^>]*>")
_WHITESPACE_RE = re.compile(r"\s+")


def normalize_whitespace(text: str) -> str:
    """Collapse repeated whitespace and trim boundaries."""

    return _WHITESPACE_RE.sub(" ", text).strip()


def strip_tags(html: str) -> str:
    """Drop every markup tag, keeping text between them."""

    return _TAG_RE.sub("", html)


def _is_clean_char(ch: str) -> bool:
    category = unicodedata.category(ch)
    return category[0] in ("L", "N")


def clean_text(text: str) -> str:
    """Keep only Unicode letters and numbers, whatever the script."""

    return "".join(ch for ch in text if _is_clean_char(ch))


def clean_character_count(text: str) -> int:
    """Count letters and numbers in ``text`` by code point."""

    if not text:
        return 0
    return sum(1 for ch in text if _is_clean_char(ch))


def html_character_count(html: str) -> int:
    """Clean character count of markup once its tags are stripped."""

    if not html:
        return 0
    return clean_character_count(strip_tags(html))
