"""Block segmentation: durable, offset-addressable spans of chapter text.

Each chapter is split into outermost block-level elements. Every block gets
``data-block-id="ch{chapter}-b{ordinal}"`` in the chapter markup and a
``BlockIndex`` whose offsets count clean characters from the start of the
chapter. Segmenting unchanged markup twice yields the same ids and offsets.
"""

from __future__ import annotations

from dataclasses import dataclass, field
import logging

from bs4 import BeautifulSoup, Comment, NavigableString, Tag

from lnbook.ingestion.errors import BlockSegmentationFailure
from lnbook.ingestion.models import Block, BlockIndex, ChapterBlockInfo
from lnbook.ingestion.normalization import clean_character_count, html_character_count

logger = logging.getLogger(__name__)

BLOCK_ID_ATTRIBUTE = "data-block-id"

PRIMARY_TAGS = ("p", "h1", "h2", "h3", "h4", "h5", "h6", "blockquote", "pre")
SECONDARY_TAGS = ("li", "figcaption", "caption", "th", "td")
IMAGE_TAGS = ("img", "svg", "image")
SKIP_TAGS = frozenset({"script", "style", "noscript", "rt", "rp", "ruby"})
ANNOTATION_TAGS = frozenset({"rt", "rp"})
ROOT_TAGS = frozenset({"html", "body", "[document]"})

SIGNIFICANT_BLOCK_THRESHOLD = 50
TEXT_PREVIEW_CHARS = 100


def block_id_for(chapter_index: int, ordinal: int) -> str:
    return f"ch{chapter_index}-b{ordinal}"


@dataclass(slots=True)
class ChapterSegmentation:
    """Block-annotated chapter markup with its block index."""

    html: str
    info: ChapterBlockInfo
    block_maps: list[BlockIndex] = field(default_factory=list)

    @property
    def total_chars(self) -> int:
        return self.info.total_chars


def _under_annotation(text: NavigableString, root: Tag) -> bool:
    for parent in text.parents:
        if parent is root:
            return False
        if parent.name in ANNOTATION_TAGS:
            return True
    return False


def clean_text_content(element: Tag) -> str:
    """Text of ``element`` without ruby annotations (``rt``/``rp``)."""

    if element.name in ANNOTATION_TAGS:
        return ""
    parts = [
        str(text)
        for text in element.find_all(string=True)
        if not isinstance(text, Comment) and not _under_annotation(text, element)
    ]
    return "".join(parts).strip()


def _inside_annotation(element: Tag) -> bool:
    if element.name in ANNOTATION_TAGS:
        return True
    return any(parent.name in ANNOTATION_TAGS for parent in element.parents)


def _class_contains(element: Tag, needle: str) -> bool:
    classes = element.get("class") or []
    if isinstance(classes, str):
        classes = [classes]
    return needle in " ".join(classes)


class _CandidateSet:
    def __init__(self) -> None:
        self.elements: list[Tag] = []
        self._ids: set[int] = set()

    def __contains__(self, element: Tag) -> bool:
        return id(element) in self._ids

    def add(self, element: Tag) -> None:
        if element in self or element.name in SKIP_TAGS or element.name in ROOT_TAGS:
            return
        if _inside_annotation(element):
            return
        self._ids.add(id(element))
        self.elements.append(element)

    def outermost(self) -> list[Tag]:
        return [
            element
            for element in self.elements
            if not any(id(parent) in self._ids for parent in element.parents)
        ]


def find_block_candidates(body: Tag) -> list[Tag]:
    """Collect outermost block elements of ``body`` in document order."""

    candidates = _CandidateSet()

    for element in body.find_all(PRIMARY_TAGS):
        candidates.add(element)
    for element in body.find_all(SECONDARY_TAGS):
        candidates.add(element)

    for div in body.find_all("div"):
        if div in candidates or div.find(PRIMARY_TAGS) is not None:
            continue
        if clean_text_content(div):
            candidates.add(div)

    for element in body.find_all(["figure", "div"]):
        if element.name == "figure" or _class_contains(element, "image") or _class_contains(element, "img"):
            candidates.add(element)

    for image in body.find_all(IMAGE_TAGS):
        parent = image.parent
        if isinstance(parent, Tag) and parent not in candidates:
            candidates.add(parent)

    document_order = {id(element): index for index, element in enumerate(body.find_all(True))}
    return sorted(candidates.outermost(), key=lambda element: document_order.get(id(element), 0))


def _has_images(element: Tag) -> bool:
    return element.name == "img" or element.find(IMAGE_TAGS) is not None


def _has_furigana(element: Tag) -> bool:
    return element.find(["ruby", "rt"]) is not None


def _block_type(element: Tag) -> str:
    if element.name in PRIMARY_TAGS or element.name in SECONDARY_TAGS:
        return element.name
    return "div"


def _parse_body(html: str) -> tuple[BeautifulSoup, Tag]:
    soup = BeautifulSoup(f"<body>{html}</body>", "lxml")
    body = soup.body
    if body is None:
        raise BlockSegmentationFailure("Chapter markup has no body")
    return soup, body


def process_chapter_html(html: str, chapter_index: int) -> ChapterSegmentation:
    """Annotate block boundaries in ``html`` and build the chapter's block index."""

    soup, body = _parse_body(html)
    blocks: list[Block] = []
    total_chars = 0

    for order, element in enumerate(find_block_candidates(body)):
        text = clean_text_content(element)
        count = clean_character_count(text)
        block_id = block_id_for(chapter_index, order)
        element[BLOCK_ID_ATTRIBUTE] = block_id

        blocks.append(
            Block(
                id=block_id,
                type=_block_type(element),
                order=order,
                clean_char_count=count,
                clean_char_start=total_chars,
                is_significant=count >= SIGNIFICANT_BLOCK_THRESHOLD,
                has_images=_has_images(element),
                has_furigana=_has_furigana(element),
                text_preview=text[:TEXT_PREVIEW_CHARS],
            )
        )
        total_chars += count

    if not blocks:
        text = clean_text_content(body)
        count = clean_character_count(text)
        block_id = block_id_for(chapter_index, 0)

        wrapper = soup.new_tag("div")
        wrapper[BLOCK_ID_ATTRIBUTE] = block_id
        for child in list(body.contents):
            wrapper.append(child.extract())
        body.append(wrapper)

        blocks.append(
            Block(
                id=block_id,
                type="div",
                order=0,
                clean_char_count=count,
                clean_char_start=0,
                is_significant=count >= SIGNIFICANT_BLOCK_THRESHOLD,
                has_images=_has_images(wrapper),
                has_furigana=_has_furigana(wrapper),
                is_fallback=True,
                text_preview=text[:TEXT_PREVIEW_CHARS] or "[No text content]",
            )
        )
        total_chars = count
        logger.debug(
            "Chapter %d: no blocks found, created fallback block (%d chars, has_images=%s)",
            chapter_index,
            count,
            blocks[0].has_images,
        )

    info = ChapterBlockInfo(chapter_index=chapter_index, blocks=blocks, total_chars=total_chars)
    return ChapterSegmentation(
        html=body.decode_contents(),
        info=info,
        block_maps=[block.to_index() for block in blocks],
    )


def segment_chapter(html: str, chapter_index: int) -> ChapterSegmentation:
    """Segment a chapter, degrading to a plain character count on failure.

    The degraded result keeps the markup unchanged and contributes no blocks;
    only the chapter length is preserved.
    """

    try:
        return process_chapter_html(html, chapter_index)
    except Exception as exc:
        failure = exc if isinstance(exc, BlockSegmentationFailure) else BlockSegmentationFailure(
            f"Block processing failed for chapter {chapter_index}: {exc}"
        )
        logger.warning("%s", failure)
        return ChapterSegmentation(
            html=html,
            info=ChapterBlockInfo(chapter_index=chapter_index, blocks=[], total_chars=html_character_count(html)),
        )


def log_block_stats(info: ChapterBlockInfo) -> None:
    logger.debug(
        "Block stats chapter %d: %d blocks, %d significant, %d with images, %d chars",
        info.chapter_index,
        len(info.blocks),
        sum(1 for block in info.blocks if block.is_significant),
        sum(1 for block in info.blocks if block.has_images),
        info.total_chars,
    )
