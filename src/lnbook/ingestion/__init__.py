"""EPUB ingestion package interfaces."""

from .block_lookup import BlockLookup
from .errors import (
    BlockSegmentationFailure,
    ChapterParseFailure,
    CoverExtractionFailure,
    EmptySpine,
    EpubParseError,
    ImageExtractionFailure,
    MalformedContainer,
    MissingPackageDocument,
)
from .models import BlockIndex, BookStats, ImageStore, LNMetadata, LNParsedBook, ParseProgress, ParseResult, TocItem
from .pipeline import EpubIngestor, parse_epub, parse_epub_sync

__all__ = [
    "BlockIndex",
    "BlockLookup",
    "BlockSegmentationFailure",
    "BookStats",
    "ChapterParseFailure",
    "CoverExtractionFailure",
    "EmptySpine",
    "EpubIngestor",
    "EpubParseError",
    "ImageExtractionFailure",
    "ImageStore",
    "LNMetadata",
    "LNParsedBook",
    "MalformedContainer",
    "MissingPackageDocument",
    "ParseProgress",
    "ParseResult",
    "TocItem",
    "parse_epub",
    "parse_epub_sync",
]
