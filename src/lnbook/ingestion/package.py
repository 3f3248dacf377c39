"""Container pointer and package (OPF) document resolution."""

from __future__ import annotations

import logging

from lxml import etree

from lnbook.ingestion.archive import EpubArchive, resolve_path
from lnbook.ingestion.errors import EmptySpine, MalformedContainer, MissingPackageDocument
from lnbook.ingestion.models import ManifestEntry, PackageDocument
from lnbook.ingestion.normalization import normalize_whitespace

logger = logging.getLogger(__name__)

CONTAINER_PATH = "META-INF/container.xml"
DEFAULT_TITLE = "Unknown Title"
DEFAULT_AUTHOR = "Unknown Author"


def xml_parser() -> etree.XMLParser:
    return etree.XMLParser(
        resolve_entities=False,
        no_network=True,
        load_dtd=False,
        huge_tree=False,
        remove_blank_text=False,
    )


def parse_xml(payload: bytes) -> etree._Element:
    """Parse trusted-shape XML from the archive without touching the network."""

    return etree.fromstring(payload, parser=xml_parser())


def _first_text(nodes: list[object]) -> str | None:
    for node in nodes:
        if hasattr(node, "itertext"):
            text = normalize_whitespace("".join(node.itertext()))
        else:
            text = normalize_whitespace(str(node))
        if text:
            return text
    return None


def find_package_path(archive: EpubArchive) -> str:
    """Return the archive path of the package document named by the container."""

    payload = archive.read_optional(CONTAINER_PATH)
    if payload is None:
        raise MalformedContainer()

    try:
        root = parse_xml(payload)
    except etree.XMLSyntaxError as exc:
        raise MalformedContainer(f"Invalid EPUB: unreadable container.xml ({exc})") from exc

    for rootfile in root.xpath("//*[local-name()='rootfile']"):
        full_path = (rootfile.get("full-path") or "").strip()
        if full_path:
            return full_path
    raise MissingPackageDocument("Invalid EPUB: Missing rootfile")


def _build_manifest(root: etree._Element, opf_path: str) -> dict[str, ManifestEntry]:
    manifest: dict[str, ManifestEntry] = {}
    for item in root.xpath("//*[local-name()='manifest']/*[local-name()='item']"):
        item_id = item.get("id")
        href = item.get("href")
        if not item_id or not href:
            continue
        manifest[item_id] = ManifestEntry(
            id=item_id,
            href=href,
            media_type=(item.get("media-type") or "").strip(),
            path=resolve_path(opf_path, href),
            properties=frozenset((item.get("properties") or "").split()),
        )
    return manifest


def _build_spine(root: etree._Element, manifest: dict[str, ManifestEntry]) -> list[str]:
    spine: list[str] = []
    for itemref in root.xpath("//*[local-name()='spine']/*[local-name()='itemref']"):
        idref = itemref.get("idref")
        if idref and idref in manifest:
            spine.append(idref)
    return spine


def _cover_meta_id(root: etree._Element) -> str | None:
    for meta in root.xpath("//*[local-name()='metadata']/*[local-name()='meta'][@name='cover']"):
        content = (meta.get("content") or "").strip()
        if content:
            return content
    return None


def load_package(archive: EpubArchive) -> PackageDocument:
    """Resolve metadata, manifest and spine from the package document."""

    opf_path = find_package_path(archive)
    payload = archive.read_optional(opf_path)
    if payload is None:
        raise MissingPackageDocument(path=opf_path)

    try:
        root = parse_xml(payload)
    except etree.XMLSyntaxError as exc:
        raise MissingPackageDocument(f"Invalid EPUB: unreadable OPF ({exc})", path=opf_path) from exc

    title = _first_text(root.xpath("//*[local-name()='metadata']//*[local-name()='title']"))
    author = _first_text(root.xpath("//*[local-name()='metadata']//*[local-name()='creator']"))
    language = _first_text(root.xpath("//*[local-name()='metadata']//*[local-name()='language']"))

    manifest = _build_manifest(root, opf_path)
    spine = _build_spine(root, manifest)
    if not spine:
        raise EmptySpine()

    logger.debug("Package %s: %d manifest items, %d spine items", opf_path, len(manifest), len(spine))

    return PackageDocument(
        opf_path=opf_path,
        title=title or DEFAULT_TITLE,
        author=author or DEFAULT_AUTHOR,
        language=language,
        manifest=manifest,
        spine=spine,
        cover_id=_cover_meta_id(root),
    )
