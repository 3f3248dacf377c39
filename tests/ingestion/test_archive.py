from __future__ import annotations

from io import BytesIO
import zipfile

import pytest

from lnbook.ingestion.archive import EpubArchive, resolve_path, split_href_fragment
from lnbook.ingestion.errors import MalformedContainer


def _zip_bytes(files: dict[str, bytes]) -> bytes:
    buffer = BytesIO()
    with zipfile.ZipFile(buffer, "w") as archive:
        for name, payload in files.items():
            archive.writestr(name, payload)
    return buffer.getvalue()


def test_resolve_path_handles_relative_and_root_hrefs() -> None:
    assert resolve_path("OEBPS/Text/ch1.xhtml", "../Images/pic.jpg") == "OEBPS/Images/pic.jpg"
    assert resolve_path("OEBPS/content.opf", "Text/ch1.xhtml#start") == "OEBPS/Text/ch1.xhtml"
    assert resolve_path("OEBPS/Text/ch1.xhtml", "/images/cover.jpg") == "images/cover.jpg"
    assert resolve_path("content.opf", "chapter%201.xhtml") == "chapter 1.xhtml"
    assert resolve_path("OEBPS/Text/ch1.xhtml", "#note") == ""


def test_split_href_fragment() -> None:
    assert split_href_fragment("ch1.xhtml#p3") == ("ch1.xhtml", "p3")
    assert split_href_fragment("ch1.xhtml") == ("ch1.xhtml", None)


def test_open_accepts_bytes_and_streams() -> None:
    payload = _zip_bytes({"mimetype": b"application/epub+zip", "OEBPS/Images/Cover.JPG": b"jpeg"})

    with EpubArchive.open(payload) as archive:
        assert archive.has("mimetype")
        assert archive.find("oebps/images/cover.jpg") is None
        assert archive.find("oebps/images/cover.jpg", case_insensitive=True) == "OEBPS/Images/Cover.JPG"
        assert archive.read_optional("missing.xhtml") is None

    with EpubArchive.open(BytesIO(payload)) as archive:
        assert archive.read_bytes("OEBPS/Images/Cover.JPG") == b"jpeg"


def test_read_text_strips_byte_order_mark() -> None:
    payload = _zip_bytes({"nav.xhtml": "\ufeff<html/>".encode("utf-8")})

    with EpubArchive.open(payload) as archive:
        assert archive.read_text("nav.xhtml") == "<html/>"


@pytest.mark.parametrize("payload", [b"", b"definitely not a zip"])
def test_open_rejects_non_zip_input(payload: bytes) -> None:
    with pytest.raises(MalformedContainer, match="Invalid EPUB"):
        EpubArchive.open(payload)
