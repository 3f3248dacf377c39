"""Canonical data structures produced by the EPUB ingestion pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterator, Literal

ProgressStage = Literal["init", "images", "content", "blocks", "stats", "complete"]


@dataclass(frozen=True, slots=True)
class ManifestEntry:
    """One resource declared in the package manifest."""

    id: str
    href: str
    media_type: str
    path: str
    properties: frozenset[str] = frozenset()


@dataclass(slots=True)
class PackageDocument:
    """Resolved package (OPF) document: metadata, manifest and spine."""

    opf_path: str
    title: str
    author: str
    manifest: dict[str, ManifestEntry]
    spine: list[str]
    language: str | None = None
    cover_id: str | None = None

    def spine_entries(self) -> list[ManifestEntry]:
        return [self.manifest[item_id] for item_id in self.spine]


@dataclass(frozen=True, slots=True)
class TocItem:
    """Table-of-contents entry pointing at a chapter index."""

    label: str
    href: str
    chapter_index: int

    def to_dict(self) -> dict[str, object]:
        return {"label": self.label, "href": self.href, "chapterIndex": self.chapter_index}


@dataclass(frozen=True, slots=True)
class BlockIndex:
    """Flat block locator shared with progress trackers and sync payloads."""

    block_id: str
    start_offset: int
    end_offset: int

    @property
    def length(self) -> int:
        return self.end_offset - self.start_offset

    def to_dict(self) -> dict[str, object]:
        return {"blockId": self.block_id, "startOffset": self.start_offset, "endOffset": self.end_offset}


@dataclass(slots=True)
class Block:
    """Block detected while segmenting one chapter."""

    id: str
    type: str
    order: int
    clean_char_count: int
    clean_char_start: int
    is_significant: bool = False
    has_images: bool = False
    has_furigana: bool = False
    is_fallback: bool = False
    text_preview: str = ""

    def to_index(self) -> BlockIndex:
        return BlockIndex(
            block_id=self.id,
            start_offset=self.clean_char_start,
            end_offset=self.clean_char_start + self.clean_char_count,
        )


@dataclass(slots=True)
class ChapterBlockInfo:
    """All blocks of one chapter with the chapter's clean character total."""

    chapter_index: int
    blocks: list[Block] = field(default_factory=list)
    total_chars: int = 0


@dataclass(slots=True)
class BookStats:
    """Per-chapter lengths, their sum and the flat cross-chapter block index."""

    chapter_lengths: list[int] = field(default_factory=list)
    total_length: int = 0
    block_maps: list[BlockIndex] = field(default_factory=list)

    def to_dict(self) -> dict[str, object]:
        return {
            "chapterLengths": list(self.chapter_lengths),
            "totalLength": self.total_length,
            "blockMaps": [block.to_dict() for block in self.block_maps],
        }


@dataclass(frozen=True, slots=True)
class StoredImage:
    """Image bytes extracted from the archive."""

    path: str
    mime_type: str
    data: bytes


class ImageStore:
    """Images addressable by archive path, root-relative and slash-stripped keys.

    Every image is stored once; the key variants all point at the same
    ``StoredImage`` instance.
    """

    def __init__(self) -> None:
        self._images: dict[str, StoredImage] = {}
        self._count = 0

    @staticmethod
    def key_variants(path: str) -> tuple[str, str, str]:
        return (path, "/" + path, path.lstrip("/"))

    def add(self, image: StoredImage) -> None:
        if image.path not in self._images:
            self._count += 1
        for key in self.key_variants(image.path):
            self._images[key] = image

    def get(self, key: str) -> StoredImage | None:
        return self._images.get(key)

    def resolve(self, reference: str) -> StoredImage | None:
        """Look up an image reference written in any of the supported link styles."""

        for key in self.key_variants(reference):
            image = self._images.get(key)
            if image is not None:
                return image
        return None

    def keys(self) -> list[str]:
        return list(self._images)

    def images(self) -> list[StoredImage]:
        seen: dict[int, StoredImage] = {}
        for image in self._images.values():
            seen.setdefault(id(image), image)
        return list(seen.values())

    def __contains__(self, key: object) -> bool:
        return key in self._images

    def __iter__(self) -> Iterator[str]:
        return iter(self._images)

    def __len__(self) -> int:
        return self._count


@dataclass(slots=True)
class LNMetadata:
    """Identity and descriptive record for a parsed book."""

    id: str
    title: str
    author: str
    added_at: int
    stats: BookStats
    chapter_count: int
    toc: list[TocItem] = field(default_factory=list)
    cover: str = ""
    language: str | None = None
    is_processing: bool = False
    is_error: bool = False
    error_msg: str | None = None
    category_ids: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, object]:
        payload: dict[str, object] = {
            "id": self.id,
            "title": self.title,
            "author": self.author,
            "cover": self.cover,
            "addedAt": self.added_at,
            "isProcessing": self.is_processing,
            "stats": self.stats.to_dict(),
            "chapterCount": self.chapter_count,
            "toc": [item.to_dict() for item in self.toc],
            "categoryIds": list(self.category_ids),
        }
        if self.language:
            payload["language"] = self.language
        if self.is_error:
            payload["isError"] = True
            payload["errorMsg"] = self.error_msg
        return payload


@dataclass(slots=True)
class LNParsedBook:
    """Heavy payload: chapter HTML, source filenames and the image store."""

    chapters: list[str] = field(default_factory=list)
    chapter_filenames: list[str] = field(default_factory=list)
    images: ImageStore = field(default_factory=ImageStore)


@dataclass(frozen=True, slots=True)
class ParseProgress:
    stage: ProgressStage
    percent: int
    message: str


@dataclass(slots=True)
class ParseResult:
    """Either metadata and content for a parsed book or an error message."""

    metadata: LNMetadata | None = None
    content: LNParsedBook | None = None
    error: str | None = None
    error_kind: str | None = None

    @property
    def success(self) -> bool:
        return self.error is None and self.metadata is not None and self.content is not None

    @classmethod
    def ok(cls, metadata: LNMetadata, content: LNParsedBook) -> "ParseResult":
        return cls(metadata=metadata, content=content)

    @classmethod
    def failure(cls, message: str, *, kind: str | None = None) -> "ParseResult":
        return cls(error=message, error_kind=kind)
