"""Table-of-contents resolvers for NCX (EPUB 2) and nav (EPUB 3) documents.

Both resolvers share one signature and are tried in a fixed order; the first
one returning entries wins and the two sources are never merged.
"""

from __future__ import annotations

import logging
import warnings
from typing import Callable

from bs4 import BeautifulSoup, XMLParsedAsHTMLWarning
from lxml import etree

from lnbook.ingestion.archive import EpubArchive, resolve_path, split_href_fragment
from lnbook.ingestion.models import ManifestEntry, PackageDocument, TocItem
from lnbook.ingestion.normalization import normalize_whitespace
from lnbook.ingestion.package import parse_xml

logger = logging.getLogger(__name__)

NCX_MEDIA_TYPE = "application/x-dtbncx+xml"
UNTITLED = "Untitled"

# Navigation documents are XHTML but are read with the lenient HTML parser
warnings.filterwarnings("ignore", category=XMLParsedAsHTMLWarning)

TocResolver = Callable[[EpubArchive, PackageDocument], list[TocItem]]


def _find_ncx_entry(package: PackageDocument) -> ManifestEntry | None:
    for entry in package.manifest.values():
        if entry.media_type == NCX_MEDIA_TYPE:
            return entry
    return None


def _find_nav_entry(package: PackageDocument) -> ManifestEntry | None:
    for entry in package.manifest.values():
        if "nav" in entry.properties:
            return entry
    return None


def _spine_index(package: PackageDocument, entry: ManifestEntry | None) -> int:
    if entry is None:
        return -1
    try:
        return package.spine.index(entry.id)
    except ValueError:
        return -1


def _match_by_path(package: PackageDocument, toc_path: str, target: str) -> ManifestEntry | None:
    resolved = resolve_path(toc_path, target)
    if not resolved:
        return None
    for entry in package.manifest.values():
        if entry.path == resolved:
            return entry
    return None


def _match_loose(package: PackageDocument, toc_path: str, target: str) -> ManifestEntry | None:
    """Exact href, then resolved path, then suffix match in either direction."""

    entries = list(package.manifest.values())
    for entry in entries:
        if split_href_fragment(entry.href)[0] == target:
            return entry

    by_path = _match_by_path(package, toc_path, target)
    if by_path is not None:
        return by_path

    for entry in entries:
        href = split_href_fragment(entry.href)[0]
        if href.endswith(target) or target.endswith(href):
            return entry
    return None


def _match_exact(package: PackageDocument, toc_path: str, target: str) -> ManifestEntry | None:
    for entry in package.manifest.values():
        if split_href_fragment(entry.href)[0] == target:
            return entry
    return _match_by_path(package, toc_path, target)


def _xpath_text(node: etree._Element, expression: str) -> str:
    for match in node.xpath(expression):
        text = normalize_whitespace("".join(match.itertext()))
        if text:
            return text
    return ""


def _nav_point_label(point: etree._Element) -> str:
    return (
        _xpath_text(point, "./*[local-name()='navLabel']/*[local-name()='text']")
        or _xpath_text(point, ".//*[local-name()='text']")
        or _xpath_text(point, ".//*[local-name()='navLabel']")
        or UNTITLED
    )


def _nav_point_src(point: etree._Element) -> str:
    for expression in ("./*[local-name()='content']", ".//*[local-name()='content']"):
        for content in point.xpath(expression):
            src = content.get("src")
            if src:
                return src
    return point.get("src") or ""


def resolve_ncx_toc(archive: EpubArchive, package: PackageDocument) -> list[TocItem]:
    """Resolve a TOC from the legacy NCX navigation map."""

    entry = _find_ncx_entry(package)
    if entry is None:
        return []

    payload = archive.read_optional(entry.path)
    if payload is None:
        logger.warning("NCX document declared but missing from archive: %s", entry.path)
        return []

    try:
        root = parse_xml(payload)
    except etree.XMLSyntaxError as exc:
        logger.warning("Failed to parse NCX document %s: %s", entry.path, exc)
        return []

    items: list[TocItem] = []
    for point in root.xpath("//*[local-name()='navPoint']"):
        src = _nav_point_src(point)
        target = split_href_fragment(src)[0]
        if not target:
            continue

        chapter_index = _spine_index(package, _match_loose(package, entry.path, target))
        if chapter_index != -1:
            items.append(TocItem(label=_nav_point_label(point), href=src, chapter_index=chapter_index))
    return items


def _is_toc_nav(nav: object) -> bool:
    attrs = getattr(nav, "attrs", {}) or {}
    if attrs.get("id") == "toc":
        return True
    for key, value in attrs.items():
        if key == "type" or key.endswith(":type"):
            tokens = value if isinstance(value, list) else str(value).split()
            if "toc" in tokens:
                return True
    return False


def resolve_nav_toc(archive: EpubArchive, package: PackageDocument) -> list[TocItem]:
    """Resolve a TOC from the EPUB 3 navigation document."""

    entry = _find_nav_entry(package)
    if entry is None:
        return []

    if not archive.has(entry.path):
        logger.warning("Navigation document declared but missing from archive: %s", entry.path)
        return []

    soup = BeautifulSoup(archive.read_text(entry.path), "lxml")
    items: list[TocItem] = []
    for nav in soup.find_all("nav"):
        if not _is_toc_nav(nav):
            continue
        for link in nav.find_all("a"):
            href = link.get("href") or ""
            target = split_href_fragment(href)[0]
            if not target:
                continue

            chapter_index = _spine_index(package, _match_exact(package, entry.path, target))
            if chapter_index != -1:
                label = normalize_whitespace(link.get_text()) or UNTITLED
                items.append(TocItem(label=label, href=href, chapter_index=chapter_index))
    return items


TOC_RESOLVERS: tuple[TocResolver, ...] = (resolve_ncx_toc, resolve_nav_toc)


def resolve_toc(archive: EpubArchive, package: PackageDocument) -> list[TocItem]:
    """Return entries from the first resolver that finds any."""

    for resolver in TOC_RESOLVERS:
        items = resolver(archive, package)
        if items:
            return items
    return []


def remap_toc(items: list[TocItem], kept_spine_positions: list[int]) -> list[TocItem]:
    """Move TOC entries from spine positions onto the kept-chapter index space.

    Entries pointing at a dropped spine item move to the next kept chapter;
    entries with no kept chapter at or after their position are dropped.
    """

    remapped: list[TocItem] = []
    for item in items:
        chapter_index = next(
            (index for index, position in enumerate(kept_spine_positions) if position >= item.chapter_index),
            None,
        )
        if chapter_index is None:
            continue
        remapped.append(TocItem(label=item.label, href=item.href, chapter_index=chapter_index))
    return remapped
