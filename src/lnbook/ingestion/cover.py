"""Cover lookup heuristics and thumbnail encoding.

A missing or undecodable cover is not an error for the book: every step
returns ``None`` (or an empty string for the final data URI) and the parse
goes on without a cover.
"""

from __future__ import annotations

import base64
from io import BytesIO
import logging
from typing import Callable, Iterator

from PIL import Image

from lnbook.config import DEFAULT_COVER_QUALITY, DEFAULT_COVER_WIDTH
from lnbook.ingestion.archive import EpubArchive
from lnbook.ingestion.errors import CoverExtractionFailure
from lnbook.ingestion.models import ManifestEntry, PackageDocument

logger = logging.getLogger(__name__)


CoverStrategy = Callable[[PackageDocument], ManifestEntry | None]


def _by_cover_image_property(package: PackageDocument) -> ManifestEntry | None:
    for entry in package.manifest.values():
        if "cover-image" in entry.properties:
            return entry
    return None


def _by_cover_meta(package: PackageDocument) -> ManifestEntry | None:
    if not package.cover_id:
        return None
    return package.manifest.get(package.cover_id)


def _by_conventional_id(package: PackageDocument) -> ManifestEntry | None:
    # id "cover" is often the XHTML cover page rather than the image
    for item_id in ("cover", "cover-image"):
        entry = package.manifest.get(item_id)
        if entry is not None and entry.media_type.startswith("image/"):
            return entry
    return None


def _by_href_keyword(package: PackageDocument) -> ManifestEntry | None:
    for entry in package.manifest.values():
        if entry.media_type.startswith("image/") and "cover" in entry.href.lower():
            return entry
    return None


COVER_STRATEGIES: tuple[CoverStrategy, ...] = (
    _by_cover_image_property,
    _by_cover_meta,
    _by_conventional_id,
    _by_href_keyword,
)


def find_cover_entry(package: PackageDocument) -> ManifestEntry | None:
    """Return the manifest item picked by the first matching strategy."""

    return next(iter_cover_entries(package), None)


def iter_cover_entries(package: PackageDocument) -> Iterator[ManifestEntry]:
    """Yield each distinct strategy candidate, highest priority first."""

    seen: set[str] = set()
    for strategy in COVER_STRATEGIES:
        entry = strategy(package)
        if entry is not None and entry.id not in seen:
            seen.add(entry.id)
            yield entry


def read_cover_bytes(archive: EpubArchive, entry: ManifestEntry) -> bytes | None:
    """Read cover bytes by exact path, falling back to a case-insensitive match."""

    name = archive.find(entry.path, case_insensitive=True)
    if name is None:
        return None
    return archive.read_bytes(name)


def make_thumbnail(
    data: bytes,
    *,
    width: int = DEFAULT_COVER_WIDTH,
    quality: int = DEFAULT_COVER_QUALITY,
) -> str:
    """Scale an image to ``width`` keeping aspect ratio; return a JPEG data URI."""

    with Image.open(BytesIO(data)) as image:
        image.load()
        scale = width / image.width
        height = max(1, round(image.height * scale))
        resized = image.convert("RGB").resize((width, height), Image.Resampling.LANCZOS)

    buffer = BytesIO()
    resized.save(buffer, format="JPEG", quality=quality, optimize=True)
    encoded = base64.b64encode(buffer.getvalue()).decode("ascii")
    return f"data:image/jpeg;base64,{encoded}"


def extract_cover(
    archive: EpubArchive,
    package: PackageDocument,
    *,
    width: int = DEFAULT_COVER_WIDTH,
    quality: int = DEFAULT_COVER_QUALITY,
) -> str:
    """Return a cover thumbnail data URI, or an empty string when unavailable.

    Candidates are tried in strategy order; one that cannot be read or
    decoded is logged and the next one is tried.
    """

    for entry in iter_cover_entries(package):
        try:
            data = read_cover_bytes(archive, entry)
            if not data:
                raise CoverExtractionFailure("Cover image missing from archive", path=entry.path)
            return make_thumbnail(data, width=width, quality=quality)
        except CoverExtractionFailure as exc:
            logger.warning("%s", exc)
        except Exception as exc:
            logger.warning("%s", CoverExtractionFailure(f"Cover extraction failed: {exc}", path=entry.path))
    return ""
