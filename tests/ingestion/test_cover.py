from __future__ import annotations

import base64
from io import BytesIO
import struct
import zipfile
import zlib

from PIL import Image

from lnbook.ingestion.archive import EpubArchive
from lnbook.ingestion.cover import extract_cover, find_cover_entry, make_thumbnail
from lnbook.ingestion.models import ManifestEntry, PackageDocument


def _png_bytes(width: int, height: int, color: tuple[int, int, int, int] = (200, 30, 30, 255)) -> bytes:
    buffer = BytesIO()
    Image.new("RGBA", (width, height), color).save(buffer, format="PNG")
    return buffer.getvalue()


def _entry(item_id: str, href: str, media_type: str = "image/png", properties: set[str] | None = None) -> ManifestEntry:
    return ManifestEntry(
        id=item_id,
        href=href,
        media_type=media_type,
        path=f"OEBPS/{href}",
        properties=frozenset(properties or ()),
    )


def _package(*entries: ManifestEntry, cover_id: str | None = None) -> PackageDocument:
    return PackageDocument(
        opf_path="OEBPS/content.opf",
        title="Book",
        author="Author",
        manifest={entry.id: entry for entry in entries},
        spine=[],
        cover_id=cover_id,
    )


def _decode_data_uri(uri: str) -> Image.Image:
    prefix = "data:image/jpeg;base64,"
    assert uri.startswith(prefix)
    return Image.open(BytesIO(base64.b64decode(uri[len(prefix) :])))


def test_cover_strategies_run_in_priority_order() -> None:
    by_property = _entry("art", "Images/art.png", properties={"cover-image"})
    by_meta = _entry("front", "Images/front.png")
    by_id = _entry("cover", "Images/c.png")
    by_keyword = _entry("img9", "Images/Cover_large.png")

    assert find_cover_entry(_package(by_meta, by_id, by_keyword, by_property, cover_id="front")) is by_property
    assert find_cover_entry(_package(by_meta, by_id, by_keyword, cover_id="front")) is by_meta
    assert find_cover_entry(_package(by_id, by_keyword, cover_id="ghost")) is by_id
    assert find_cover_entry(_package(by_keyword)) is by_keyword
    assert find_cover_entry(_package(_entry("txt", "Text/cover.xhtml", "application/xhtml+xml"))) is None


def test_make_thumbnail_scales_to_width_keeping_aspect_ratio() -> None:
    thumbnail = _decode_data_uri(make_thumbnail(_png_bytes(600, 900), width=300, quality=70))

    assert thumbnail.format == "JPEG"
    assert thumbnail.size == (300, 450)


def test_extract_cover_reads_case_insensitive_path() -> None:
    buffer = BytesIO()
    with zipfile.ZipFile(buffer, "w") as archive:
        archive.writestr("OEBPS/images/COVER.png", _png_bytes(100, 150))

    entry = _entry("cover-img", "Images/cover.png", properties={"cover-image"})
    with EpubArchive.open(buffer.getvalue()) as archive:
        uri = extract_cover(archive, _package(entry), width=50)

    assert _decode_data_uri(uri).size == (50, 75)


def test_extract_cover_degrades_to_empty_string(caplog) -> None:
    buffer = BytesIO()
    with zipfile.ZipFile(buffer, "w") as archive:
        archive.writestr("OEBPS/Images/cover.png", b"not an image")

    broken = _entry("cover", "Images/cover.png")
    missing = _entry("cover", "Images/absent.png")
    with EpubArchive.open(buffer.getvalue()) as archive:
        with caplog.at_level("WARNING"):
            assert extract_cover(archive, _package(broken)) == ""
            assert extract_cover(archive, _package(missing)) == ""
        assert extract_cover(archive, _package()) == ""

    assert "Cover" in caplog.text


def _oversized_png_header(width: int, height: int) -> bytes:
    def _chunk(kind: bytes, payload: bytes) -> bytes:
        return struct.pack(">I", len(payload)) + kind + payload + struct.pack(">I", zlib.crc32(kind + payload))

    header = struct.pack(">IIBBBBB", width, height, 8, 2, 0, 0, 0)
    return (
        b"\x89PNG\r\n\x1a\n"
        + _chunk(b"IHDR", header)
        + _chunk(b"IDAT", zlib.compress(b"\x00" * 16))
        + _chunk(b"IEND", b"")
    )


def test_extract_cover_survives_decompression_bomb(caplog) -> None:
    buffer = BytesIO()
    with zipfile.ZipFile(buffer, "w") as archive:
        archive.writestr("OEBPS/Images/cover.png", _oversized_png_header(30000, 30000))

    with EpubArchive.open(buffer.getvalue()) as archive:
        with caplog.at_level("WARNING"):
            assert extract_cover(archive, _package(_entry("cover", "Images/cover.png"))) == ""

    assert "OEBPS/Images/cover.png" in caplog.text


def test_xhtml_cover_page_is_skipped_for_keyword_image() -> None:
    page = _entry("cover", "Text/cover.xhtml", "application/xhtml+xml")
    image = _entry("img1", "Images/cover.jpg", "image/jpeg")
    buffer = BytesIO()
    with zipfile.ZipFile(buffer, "w") as archive:
        archive.writestr("OEBPS/Text/cover.xhtml", b'<html><body><img src="../Images/cover.jpg"/></body></html>')
        archive.writestr("OEBPS/Images/cover.jpg", _png_bytes(60, 90))

    assert find_cover_entry(_package(page, image)) is image
    with EpubArchive.open(buffer.getvalue()) as archive:
        uri = extract_cover(archive, _package(page, image), width=40)

    assert _decode_data_uri(uri).size == (40, 60)


def test_unreadable_candidate_falls_through_to_next_strategy(caplog) -> None:
    declared = _entry("front", "Images/front.png")
    keyword = _entry("img2", "Images/cover-art.png")
    buffer = BytesIO()
    with zipfile.ZipFile(buffer, "w") as archive:
        archive.writestr("OEBPS/Images/front.png", b"truncated")
        archive.writestr("OEBPS/Images/cover-art.png", _png_bytes(80, 80))

    with EpubArchive.open(buffer.getvalue()) as archive:
        with caplog.at_level("WARNING"):
            uri = extract_cover(archive, _package(declared, keyword, cover_id="front"), width=20)

    assert _decode_data_uri(uri).size == (20, 20)
    assert "OEBPS/Images/front.png" in caplog.text
