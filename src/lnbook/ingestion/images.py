"""Batched extraction of archive images into an ``ImageStore``."""

from __future__ import annotations

import asyncio
import logging
import posixpath
import re
from typing import Callable

from lnbook.config import DEFAULT_IMAGE_BATCH_SIZE
from lnbook.ingestion.archive import EpubArchive
from lnbook.ingestion.errors import ImageExtractionFailure
from lnbook.ingestion.models import ImageStore, StoredImage

logger = logging.getLogger(__name__)

DEFAULT_MIME_TYPE = "image/png"

IMAGE_MIME_TYPES: dict[str, str] = {
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "png": "image/png",
    "gif": "image/gif",
    "webp": "image/webp",
    "svg": "image/svg+xml",
    "bmp": "image/bmp",
}

_IMAGE_NAME_RE = re.compile(r"\.(jpe?g|png|gif|webp|svg|bmp)$", re.IGNORECASE)

BatchCallback = Callable[[int, int], None]


def mime_type_for(path: str) -> str:
    extension = posixpath.splitext(path)[1].lstrip(".").lower()
    return IMAGE_MIME_TYPES.get(extension, DEFAULT_MIME_TYPE)


def list_image_entries(archive: EpubArchive) -> list[str]:
    return [name for name in archive.namelist() if not archive.is_dir(name) and _IMAGE_NAME_RE.search(name)]


async def _extract_one(archive: EpubArchive, path: str) -> StoredImage | None:
    try:
        data = await asyncio.to_thread(archive.read_bytes, path)
    except Exception as exc:
        logger.warning("%s", ImageExtractionFailure(f"Failed to process image: {exc}", path=path))
        return None
    return StoredImage(path=path, mime_type=mime_type_for(path), data=data)


async def extract_images(
    archive: EpubArchive,
    *,
    batch_size: int = DEFAULT_IMAGE_BATCH_SIZE,
    on_batch: BatchCallback | None = None,
) -> ImageStore:
    """Read every image entry, one batch at a time.

    Entries inside a batch are read concurrently; the next batch starts only
    after the current one has finished. ``on_batch`` receives the number of
    entries handled so far and the total.
    """

    if batch_size <= 0:
        raise ValueError("batch_size must be positive")

    store = ImageStore()
    paths = list_image_entries(archive)

    for start in range(0, len(paths), batch_size):
        batch = paths[start : start + batch_size]
        results = await asyncio.gather(*(_extract_one(archive, path) for path in batch))
        for image in results:
            if image is not None:
                store.add(image)
        if on_batch is not None:
            on_batch(min(start + batch_size, len(paths)), len(paths))

    return store
