from __future__ import annotations

from bs4 import BeautifulSoup

from lnbook.ingestion.blocks import (
    clean_text_content,
    find_block_candidates,
    process_chapter_html,
    segment_chapter,
)
from lnbook.ingestion.normalization import clean_character_count

CHAPTER = (
    "<h1>Chapter 1</h1>"
    "<p>Lawrence counted the coins twice.</p>"
    "<blockquote><p>A quoted line.</p></blockquote>"
    "<ul><li>wheat</li><li>furs</li></ul>"
    "<div>Loose text in a div.</div>"
    '<div class="illus"><img data-epub-src="OEBPS/Images/a.png"/></div>'
    "<p>Holo <ruby>賢狼<rp>(</rp><rt>けんろう</rt><rp>)</rp></ruby> yawned.</p>"
)


def _soup_body(html: str):
    return BeautifulSoup(f"<body>{html}</body>", "lxml").body


def test_candidates_are_outermost_and_in_document_order() -> None:
    candidates = find_block_candidates(_soup_body(CHAPTER))

    assert [element.name for element in candidates] == ["h1", "p", "blockquote", "li", "li", "div", "div", "p"]


def test_clean_text_excludes_ruby_annotations() -> None:
    body = _soup_body("<p>Holo <ruby>賢狼<rp>(</rp><rt>けんろう</rt><rp>)</rp></ruby> yawned.</p>")

    assert clean_text_content(body.p) == "Holo 賢狼 yawned."


def test_blocks_tile_the_chapter_and_carry_ids() -> None:
    segmentation = process_chapter_html(CHAPTER, 4)
    blocks = segmentation.block_maps

    assert [block.block_id for block in blocks] == [f"ch4-b{index}" for index in range(8)]
    assert blocks[0].start_offset == 0
    for previous, current in zip(blocks, blocks[1:]):
        assert current.start_offset == previous.end_offset
    assert blocks[-1].end_offset == segmentation.total_chars
    assert segmentation.total_chars == sum(block.clean_char_count for block in segmentation.info.blocks)

    for block in blocks:
        assert f'data-block-id="{block.block_id}"' in segmentation.html


def test_block_details() -> None:
    info = process_chapter_html(CHAPTER, 0).info

    heading, paragraph, *_rest, image_div, ruby_paragraph = info.blocks
    assert heading.type == "h1"
    assert heading.clean_char_count == clean_character_count("Chapter 1")
    assert paragraph.text_preview == "Lawrence counted the coins twice."
    assert image_div.has_images is True
    assert image_div.clean_char_count == 0
    assert image_div.type == "div"
    assert ruby_paragraph.has_furigana is True
    assert ruby_paragraph.clean_char_count == clean_character_count("Holo賢狼yawned")
    assert not any(block.is_significant for block in info.blocks)


def test_long_block_is_significant() -> None:
    info = process_chapter_html(f"<p>{'word ' * 20}</p>", 0).info

    assert info.blocks[0].clean_char_count == 80
    assert info.blocks[0].is_significant is True


def test_segmentation_is_deterministic() -> None:
    first = process_chapter_html(CHAPTER, 2)
    second = process_chapter_html(CHAPTER, 2)

    assert first.html == second.html
    assert first.block_maps == second.block_maps


def test_chapter_without_candidates_gets_fallback_block() -> None:
    segmentation = process_chapter_html("Just some bare text <span>with a span</span>", 7)

    assert len(segmentation.info.blocks) == 1
    block = segmentation.info.blocks[0]
    assert block.id == "ch7-b0"
    assert block.is_fallback is True
    assert segmentation.html.startswith('<div data-block-id="ch7-b0">')
    assert segmentation.total_chars == clean_character_count("Just some bare text with a span")


def test_empty_chapter_fallback_has_placeholder_preview() -> None:
    info = process_chapter_html("", 0).info

    assert info.blocks[0].text_preview == "[No text content]"
    assert info.total_chars == 0


def test_segment_chapter_degrades_on_failure(monkeypatch, caplog) -> None:
    def _boom(html: str, chapter_index: int):
        raise RuntimeError("parser exploded")

    monkeypatch.setattr("lnbook.ingestion.blocks.process_chapter_html", _boom)
    with caplog.at_level("WARNING"):
        segmentation = segment_chapter("<p>Still counted</p>", 1)

    assert segmentation.html == "<p>Still counted</p>"
    assert segmentation.block_maps == []
    assert segmentation.total_chars == clean_character_count("Still counted")
    assert "parser exploded" in caplog.text
