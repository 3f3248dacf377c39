"""Error taxonomy for EPUB ingestion.

Fatal errors abort the whole parse and surface as a failed ``ParseResult``.
Per-item failures are recovered where they happen: they are built only to be
logged, and the offending image, cover, chapter or block set is omitted or
degraded.
"""

from __future__ import annotations


class EpubParseError(Exception):
    """Base class for ingestion errors carrying a human-readable message."""

    default_message = "EPUB parsing failed"

    def __init__(self, message: str | None = None, *, path: str | None = None) -> None:
        self.message = message or self.default_message
        self.path = path
        super().__init__(self.message)

    def __str__(self) -> str:
        if self.path:
            return f"{self.message} (path={self.path})"
        return self.message


class MalformedContainer(EpubParseError):
    default_message = "Invalid EPUB: Missing container.xml"


class MissingPackageDocument(EpubParseError):
    default_message = "Invalid EPUB: Missing OPF"


class EmptySpine(EpubParseError):
    default_message = "No readable content in spine"


class ImageExtractionFailure(EpubParseError):
    default_message = "Failed to extract image"


class CoverExtractionFailure(EpubParseError):
    default_message = "Cover extraction failed"


class ChapterParseFailure(EpubParseError):
    default_message = "Failed to parse chapter"


class BlockSegmentationFailure(EpubParseError):
    default_message = "Block processing failed"


FATAL_ERRORS = (MalformedContainer, MissingPackageDocument, EmptySpine)
