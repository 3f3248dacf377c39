"""In-memory EPUB archive access and archive-relative path helpers."""

from __future__ import annotations

from io import BytesIO
import posixpath
from typing import BinaryIO
from urllib.parse import unquote
from zipfile import BadZipFile, ZipFile

from lnbook.ingestion.errors import MalformedContainer

_ZIP_MAGIC = b"PK\x03\x04"


def split_href_fragment(href: str) -> tuple[str, str | None]:
    path, sep, fragment = href.partition("#")
    return path, (fragment if sep else None)


def resolve_path(base_file: str, href: str) -> str:
    """Resolve ``href`` against the directory of ``base_file`` inside the archive."""

    target = unquote(split_href_fragment(href)[0])
    if not target:
        return ""
    if target.startswith("/"):
        joined = target.lstrip("/")
    else:
        joined = posixpath.join(posixpath.dirname(base_file), target)
    normalized = posixpath.normpath(joined) if joined else ""
    if normalized in (".", ""):
        return ""
    return normalized.lstrip("/")


class EpubArchive:
    """Read-only view of an EPUB zip container held in memory."""

    def __init__(self, zip_file: ZipFile) -> None:
        self._zip = zip_file
        self._names = [info.filename for info in zip_file.infolist()]
        self._name_set = set(self._names)
        self._lower_names = {name.lower(): name for name in self._names}

    @classmethod
    def open(cls, data: bytes | BinaryIO) -> "EpubArchive":
        """Open raw EPUB bytes (or a binary stream) as an archive."""

        raw = data if isinstance(data, (bytes, bytearray)) else data.read()
        if not raw:
            raise MalformedContainer("Invalid EPUB: empty archive")
        try:
            zip_file = ZipFile(BytesIO(bytes(raw)), "r")
        except BadZipFile as exc:
            if bytes(raw[:4]) != _ZIP_MAGIC:
                raise MalformedContainer("Invalid EPUB: not a zip archive") from exc
            raise MalformedContainer(f"Invalid EPUB: corrupted zip archive ({exc})") from exc
        return cls(zip_file)

    def close(self) -> None:
        self._zip.close()

    def __enter__(self) -> "EpubArchive":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def namelist(self) -> list[str]:
        return list(self._names)

    def is_dir(self, name: str) -> bool:
        return name.endswith("/")

    def has(self, name: str) -> bool:
        return name in self._name_set

    def find(self, name: str, *, case_insensitive: bool = False) -> str | None:
        """Return the stored entry name for ``name``, optionally ignoring case."""

        if not name:
            return None
        if self.has(name):
            return name
        if case_insensitive:
            return self._lower_names.get(name.lower())
        return None

    def read_bytes(self, name: str) -> bytes:
        return self._zip.read(name)

    def read_text(self, name: str) -> str:
        raw = self._zip.read(name)
        try:
            return raw.decode("utf-8-sig")
        except UnicodeDecodeError:
            return raw.decode("utf-8", errors="replace")

    def read_optional(self, name: str) -> bytes | None:
        if not self.has(name):
            return None
        return self._zip.read(name)
