"""CLI entrypoint for parsing a single EPUB into reader-ready content."""

from __future__ import annotations

import argparse
import json
import logging
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

from lnbook.config import ParserSettings
from lnbook.ingestion.models import LNMetadata, LNParsedBook, ParseProgress
from lnbook.ingestion.pipeline import EpubIngestor

logger = logging.getLogger(__name__)


def _print_progress(progress: ParseProgress) -> None:
    logger.info("[%3d%%] %s: %s", progress.percent, progress.stage, progress.message)


def _write_output(output_dir: Path, metadata: LNMetadata, content: LNParsedBook) -> int:
    chapters_dir = output_dir / "chapters"
    images_dir = output_dir / "images"
    chapters_dir.mkdir(parents=True, exist_ok=True)
    images_dir.mkdir(parents=True, exist_ok=True)

    (output_dir / "metadata.json").write_text(
        json.dumps(metadata.to_dict(), ensure_ascii=False, indent=2),
        encoding="utf-8",
    )
    for index, html in enumerate(content.chapters):
        (chapters_dir / f"{index:04d}.html").write_text(html, encoding="utf-8")

    written = 0
    root = images_dir.resolve()
    for image in content.images.images():
        target = (images_dir / image.path.lstrip("/")).resolve()
        if root not in target.parents:
            logger.warning("Skipping image outside output directory: %s", image.path)
            continue
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(image.data)
        written += 1
    return written


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Parse an EPUB and emit metadata, chapter and block statistics")
    parser.add_argument("--path", required=True, help="Source EPUB file")
    parser.add_argument("--book-id", default=None, help="Book identifier (defaults to a hash of the file)")
    parser.add_argument("--output-dir", default=None, help="Directory to write metadata, chapters and images into")
    parser.add_argument("--progress", action="store_true", help="Log parse progress events")
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(message)s")

    try:
        settings = ParserSettings.from_env()
    except ValueError as exc:
        print(json.dumps({"error": str(exc)}, ensure_ascii=True, indent=2))
        return 2

    source_path = Path(args.path)
    ingestor = EpubIngestor(settings)
    result = ingestor.ingest(source_path, book_id=args.book_id, on_progress=_print_progress if args.progress else None)

    if not result.success:
        payload = {"path": str(source_path), "error": result.error, "error_kind": result.error_kind}
        print(json.dumps(payload, ensure_ascii=True, indent=2))
        return 1

    metadata = result.metadata
    content = result.content
    images_written = None
    if args.output_dir:
        images_written = _write_output(Path(args.output_dir), metadata, content)

    payload = {
        "path": str(source_path),
        "id": metadata.id,
        "title": metadata.title,
        "author": metadata.author,
        "language": metadata.language,
        "chapter_count": metadata.chapter_count,
        "total_length": metadata.stats.total_length,
        "block_count": len(metadata.stats.block_maps),
        "image_count": len(content.images),
        "toc": [item.to_dict() for item in metadata.toc],
        "has_cover": bool(metadata.cover),
        "output_dir": args.output_dir,
        "images_written": images_written,
    }
    print(json.dumps(payload, ensure_ascii=True, indent=2))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
