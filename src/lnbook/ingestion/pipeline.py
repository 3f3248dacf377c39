"""EPUB ingestion entrypoint: archive bytes in, metadata and content out."""

from __future__ import annotations

import asyncio
import hashlib
import logging
from pathlib import Path
import time
from typing import BinaryIO, Callable

from lnbook.config import ParserSettings
from lnbook.ingestion.archive import EpubArchive
from lnbook.ingestion.blocks import log_block_stats, segment_chapter
from lnbook.ingestion.content import normalize_spine
from lnbook.ingestion.cover import extract_cover
from lnbook.ingestion.errors import FATAL_ERRORS, EmptySpine
from lnbook.ingestion.images import extract_images
from lnbook.ingestion.models import (
    BlockIndex,
    BookStats,
    LNMetadata,
    LNParsedBook,
    ParseProgress,
    ParseResult,
    ProgressStage,
)
from lnbook.ingestion.package import load_package
from lnbook.ingestion.toc import remap_toc, resolve_toc

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[ParseProgress], None]

BLOCK_PROGRESS_INTERVAL = 10


class _ProgressReporter:
    """Forward progress events, keeping percentages non-decreasing."""

    def __init__(self, sink: ProgressCallback | None) -> None:
        self._sink = sink
        self._percent = 0

    def report(self, stage: ProgressStage, percent: int, message: str) -> None:
        if self._sink is None:
            return
        self._percent = max(self._percent, min(100, max(0, percent)))
        try:
            self._sink(ParseProgress(stage=stage, percent=self._percent, message=message))
        except Exception:
            logger.warning("Progress callback raised; ignoring", exc_info=True)


def _book_stats(chapter_lengths: list[int], block_maps: list[BlockIndex]) -> BookStats:
    return BookStats(chapter_lengths=chapter_lengths, total_length=sum(chapter_lengths), block_maps=block_maps)


async def _parse(
    data: bytes | BinaryIO,
    book_id: str,
    settings: ParserSettings,
    reporter: _ProgressReporter,
) -> ParseResult:
    reporter.report("init", 0, "Reading EPUB...")

    with EpubArchive.open(data) as archive:
        package = load_package(archive)
        reporter.report("init", 5, "Extracting metadata...")

        cover = extract_cover(archive, package, width=settings.cover_width, quality=settings.cover_quality)

        reporter.report("init", 8, "Extracting Table of Contents...")
        toc = resolve_toc(archive, package)

        reporter.report("images", 15, "Processing images...")

        def _on_batch(done: int, total: int) -> None:
            reporter.report("images", 15 + round(done / max(total, 1) * 25), f"Processing images ({done}/{total})...")

        images = await extract_images(archive, batch_size=settings.image_batch_size, on_batch=_on_batch)

        reporter.report("content", 40, "Parsing chapters...")

        def _on_chapter(done: int, total: int) -> None:
            reporter.report("content", 40 + round(done / max(total, 1) * 30), f"Parsing chapters ({done}/{total})...")

        normalized = normalize_spine(
            archive,
            package,
            min_chars=settings.min_chapter_chars,
            image_only_max_chars=settings.image_only_max_chars,
            on_chapter=_on_chapter,
        )

    if not normalized:
        raise EmptySpine()

    reporter.report("blocks", 70, "Processing blocks for position tracking...")

    chapters: list[str] = []
    chapter_lengths: list[int] = []
    block_maps: list[BlockIndex] = []
    last_index = len(normalized) - 1

    for index, chapter in enumerate(normalized):
        segmentation = segment_chapter(chapter.html, index)
        chapters.append(segmentation.html)
        chapter_lengths.append(segmentation.total_chars)
        block_maps.extend(segmentation.block_maps)

        if index < 3 or index == last_index:
            log_block_stats(segmentation.info)
        if index % BLOCK_PROGRESS_INTERVAL == 0 or index == last_index:
            reporter.report(
                "blocks",
                70 + round(index / len(normalized) * 15),
                f"Processing blocks ({index + 1}/{len(normalized)})...",
            )
        await asyncio.sleep(0)

    reporter.report("stats", 85, "Calculating statistics...")
    stats = _book_stats(chapter_lengths, block_maps)

    logger.info(
        "Parsed '%s': %d chapters, %d chars, %d blocks, %d images",
        package.title,
        len(chapters),
        stats.total_length,
        len(block_maps),
        len(images),
    )
    reporter.report("complete", 100, "Complete!")

    metadata = LNMetadata(
        id=book_id,
        title=package.title,
        author=package.author,
        cover=cover,
        added_at=int(time.time() * 1000),
        stats=stats,
        chapter_count=len(chapters),
        toc=remap_toc(toc, [chapter.spine_position for chapter in normalized]),
        language=package.language,
    )
    content = LNParsedBook(
        chapters=chapters,
        chapter_filenames=[chapter.filename for chapter in normalized],
        images=images,
    )
    return ParseResult.ok(metadata, content)


async def parse_epub(
    data: bytes | BinaryIO,
    book_id: str,
    on_progress: ProgressCallback | None = None,
    *,
    settings: ParserSettings | None = None,
) -> ParseResult:
    """Parse an in-memory EPUB into metadata and content.

    Never raises: fatal problems come back as ``ParseResult.failure``.
    """

    reporter = _ProgressReporter(on_progress)
    try:
        return await _parse(data, book_id, settings or ParserSettings(), reporter)
    except FATAL_ERRORS as exc:
        logger.warning("EPUB parse failed for %s: %s", book_id, exc)
        return ParseResult.failure(str(exc), kind=type(exc).__name__)
    except Exception as exc:
        logger.exception("Unexpected error while parsing EPUB %s", book_id)
        return ParseResult.failure(str(exc) or "Unknown error", kind=type(exc).__name__)


def parse_epub_sync(
    data: bytes | BinaryIO,
    book_id: str,
    on_progress: ProgressCallback | None = None,
    *,
    settings: ParserSettings | None = None,
) -> ParseResult:
    """Blocking wrapper around ``parse_epub`` for callers without an event loop."""

    return asyncio.run(parse_epub(data, book_id, on_progress, settings=settings))


def default_book_id(raw_bytes: bytes) -> str:
    """Stable identifier derived from the archive bytes."""

    return hashlib.sha256(raw_bytes).hexdigest()[:16]


class EpubIngestor:
    """Parse EPUB files with a fixed set of settings."""

    def __init__(self, settings: ParserSettings | None = None) -> None:
        self._settings = settings or ParserSettings()

    async def parse(
        self,
        data: bytes | BinaryIO,
        book_id: str,
        on_progress: ProgressCallback | None = None,
    ) -> ParseResult:
        return await parse_epub(data, book_id, on_progress, settings=self._settings)

    def ingest(
        self,
        path: str | Path,
        book_id: str | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> ParseResult:
        """Read an EPUB file from disk and parse it."""

        source = Path(path)
        try:
            raw_bytes = source.read_bytes()
        except OSError as exc:
            return ParseResult.failure(f"Failed to read source file: {exc} (path={source})", kind="OSError")
        return parse_epub_sync(raw_bytes, book_id or default_book_id(raw_bytes), on_progress, settings=self._settings)
