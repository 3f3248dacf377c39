"""Runtime configuration for the EPUB ingestion pipeline."""

from __future__ import annotations

from dataclasses import dataclass
import os
from typing import Mapping


DEFAULT_IMAGE_BATCH_SIZE = 15
DEFAULT_COVER_WIDTH = 300
DEFAULT_COVER_QUALITY = 70
DEFAULT_MIN_CHAPTER_CHARS = 10
DEFAULT_IMAGE_ONLY_MAX_CHARS = 20


def _parse_bounded_int(*, name: str, raw_value: str, minimum: int, maximum: int | None = None) -> int:
    try:
        value = int(raw_value)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer") from exc
    if value < minimum:
        raise ValueError(f"{name} must be >= {minimum}")
    if maximum is not None and value > maximum:
        raise ValueError(f"{name} must be <= {maximum}")
    return value


@dataclass(frozen=True, slots=True)
class ParserSettings:
    """Validated tunables for image batching, covers and chapter filtering."""

    image_batch_size: int = DEFAULT_IMAGE_BATCH_SIZE
    cover_width: int = DEFAULT_COVER_WIDTH
    cover_quality: int = DEFAULT_COVER_QUALITY
    min_chapter_chars: int = DEFAULT_MIN_CHAPTER_CHARS
    image_only_max_chars: int = DEFAULT_IMAGE_ONLY_MAX_CHARS

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "ParserSettings":
        source: Mapping[str, str] = os.environ if environ is None else environ

        batch_raw = source.get("LNBOOK_IMAGE_BATCH_SIZE", str(DEFAULT_IMAGE_BATCH_SIZE)).strip()
        width_raw = source.get("LNBOOK_COVER_WIDTH", str(DEFAULT_COVER_WIDTH)).strip()
        quality_raw = source.get("LNBOOK_COVER_QUALITY", str(DEFAULT_COVER_QUALITY)).strip()
        min_chars_raw = source.get("LNBOOK_MIN_CHAPTER_CHARS", str(DEFAULT_MIN_CHAPTER_CHARS)).strip()
        image_only_raw = source.get("LNBOOK_IMAGE_ONLY_MAX_CHARS", str(DEFAULT_IMAGE_ONLY_MAX_CHARS)).strip()

        if not batch_raw:
            raise ValueError("LNBOOK_IMAGE_BATCH_SIZE cannot be empty")
        if not width_raw:
            raise ValueError("LNBOOK_COVER_WIDTH cannot be empty")
        if not quality_raw:
            raise ValueError("LNBOOK_COVER_QUALITY cannot be empty")
        if not min_chars_raw:
            raise ValueError("LNBOOK_MIN_CHAPTER_CHARS cannot be empty")
        if not image_only_raw:
            raise ValueError("LNBOOK_IMAGE_ONLY_MAX_CHARS cannot be empty")

        return cls(
            image_batch_size=_parse_bounded_int(name="LNBOOK_IMAGE_BATCH_SIZE", raw_value=batch_raw, minimum=1),
            cover_width=_parse_bounded_int(name="LNBOOK_COVER_WIDTH", raw_value=width_raw, minimum=16),
            cover_quality=_parse_bounded_int(name="LNBOOK_COVER_QUALITY", raw_value=quality_raw, minimum=1, maximum=95),
            min_chapter_chars=_parse_bounded_int(name="LNBOOK_MIN_CHAPTER_CHARS", raw_value=min_chars_raw, minimum=0),
            image_only_max_chars=_parse_bounded_int(
                name="LNBOOK_IMAGE_ONLY_MAX_CHARS",
                raw_value=image_only_raw,
                minimum=0,
            ),
        )
