"""Chapter normalization: parse, rewrite image references, sanitize, filter."""

from __future__ import annotations

from dataclasses import dataclass
import logging
import posixpath
import re
from typing import Callable
import warnings

from bs4 import BeautifulSoup, Tag, XMLParsedAsHTMLWarning
from lxml import etree

from lnbook.config import DEFAULT_IMAGE_ONLY_MAX_CHARS, DEFAULT_MIN_CHAPTER_CHARS
from lnbook.ingestion.archive import EpubArchive, resolve_path
from lnbook.ingestion.errors import ChapterParseFailure
from lnbook.ingestion.models import ManifestEntry, PackageDocument
from lnbook.ingestion.normalization import strip_tags
from lnbook.ingestion.package import parse_xml
from lnbook.ingestion.sanitize import sanitize_html

logger = logging.getLogger(__name__)

warnings.filterwarnings("ignore", category=XMLParsedAsHTMLWarning)

IMAGE_ONLY_CLASS = "image-only-chapter"
EPUB_SRC_ATTRIBUTE = "data-epub-src"

_BODY_RE = re.compile(r"<body[^>]*>([\s\S]*?)</body>", re.IGNORECASE)
_IMAGE_SOURCE_ATTRIBUTES = ("src", "xlink:href", "href")

HTML_VOID_ELEMENTS = frozenset(
    {"area", "base", "br", "col", "embed", "hr", "img", "input", "link", "meta", "source", "track", "wbr"}
)

ChapterCallback = Callable[[int, int], None]


@dataclass(slots=True)
class NormalizedChapter:
    """Sanitized chapter markup with its source file and spine position."""

    html: str
    filename: str
    spine_position: int
    is_image_only: bool = False


def _is_xhtml(entry: ManifestEntry) -> bool:
    return entry.path.endswith(".xhtml") or "xhtml" in entry.media_type


def parse_chapter_markup(raw: bytes, entry: ManifestEntry) -> BeautifulSoup:
    """Parse strictly as XML when declared XHTML, else (or on error) as HTML."""

    if _is_xhtml(entry):
        try:
            parse_xml(raw)
        except etree.XMLSyntaxError as exc:
            logger.debug("Chapter %s is not well-formed XML, reparsing as HTML: %s", entry.path, exc)
        else:
            return BeautifulSoup(raw, "xml")
    return BeautifulSoup(raw, "lxml")


def _is_external(source: str) -> bool:
    return source.startswith("http") or source.startswith("data:")


def rewrite_image_references(soup: BeautifulSoup, chapter_path: str) -> None:
    """Defer image resolution to render time through ``data-epub-src``."""

    for image in soup.find_all(["img", "image"]):
        source = next((image.get(name) for name in _IMAGE_SOURCE_ATTRIBUTES if image.get(name)), None)
        if source and not _is_external(source):
            image[EPUB_SRC_ATTRIBUTE] = resolve_path(chapter_path, source)
            for name in _IMAGE_SOURCE_ATTRIBUTES:
                if name in image.attrs:
                    del image[name]

        for name in ("width", "height"):
            if name in image.attrs:
                del image[name]


def _mark_void_elements(root: Tag) -> None:
    # XML trees render every empty element as <x/>; HTML only allows that for void ones
    for element in root.find_all(True):
        element.can_be_empty_element = element.name in HTML_VOID_ELEMENTS


def extract_body(soup: BeautifulSoup, raw_text: str) -> str:
    body = soup.find("body")
    if body is not None and soup.is_xml:
        _mark_void_elements(body)
    body_html = body.decode_contents() if body is not None else ""
    if body_html.strip():
        return body_html

    match = _BODY_RE.search(raw_text)
    return match.group(1) if match else raw_text


def _has_image_markup(html: str) -> bool:
    return "<img" in html or "<image" in html


def normalize_chapter(
    archive: EpubArchive,
    entry: ManifestEntry,
    spine_position: int,
    *,
    min_chars: int = DEFAULT_MIN_CHAPTER_CHARS,
    image_only_max_chars: int = DEFAULT_IMAGE_ONLY_MAX_CHARS,
) -> NormalizedChapter | None:
    """Normalize one spine item; ``None`` means the chapter is dropped."""

    if not archive.has(entry.path):
        raise ChapterParseFailure("Chapter file missing from archive", path=entry.path)

    raw = archive.read_bytes(entry.path)
    soup = parse_chapter_markup(raw, entry)
    rewrite_image_references(soup, entry.path)

    raw_text = raw.decode("utf-8", errors="replace")
    cleaned = sanitize_html(extract_body(soup, raw_text))

    text_length = len(strip_tags(cleaned).strip())
    if text_length <= min_chars and not _has_image_markup(cleaned):
        logger.debug("Dropping near-empty chapter %s (%d chars)", entry.path, text_length)
        return None

    is_image_only = text_length < image_only_max_chars and (_has_image_markup(cleaned) or "<svg" in cleaned)
    if is_image_only:
        cleaned = f'<div class="{IMAGE_ONLY_CLASS}">{cleaned}</div>'

    return NormalizedChapter(
        html=cleaned,
        filename=posixpath.basename(entry.path) or entry.path,
        spine_position=spine_position,
        is_image_only=is_image_only,
    )


def normalize_spine(
    archive: EpubArchive,
    package: PackageDocument,
    *,
    min_chars: int = DEFAULT_MIN_CHAPTER_CHARS,
    image_only_max_chars: int = DEFAULT_IMAGE_ONLY_MAX_CHARS,
    on_chapter: ChapterCallback | None = None,
) -> list[NormalizedChapter]:
    """Normalize every spine item in order, skipping missing or empty ones."""

    chapters: list[NormalizedChapter] = []
    entries = package.spine_entries()

    for position, entry in enumerate(entries):
        try:
            chapter = normalize_chapter(
                archive,
                entry,
                position,
                min_chars=min_chars,
                image_only_max_chars=image_only_max_chars,
            )
        except ChapterParseFailure as exc:
            logger.warning("%s", exc)
            chapter = None
        except Exception as exc:
            logger.warning("%s", ChapterParseFailure(f"Failed to parse chapter: {exc}", path=entry.path))
            chapter = None

        if chapter is not None:
            chapters.append(chapter)
        if on_chapter is not None:
            on_chapter(position + 1, len(entries))

    return chapters
