"""Position lookups over a flat block index.

Reading-position records are ``(chapter_index, block_id, block_local_offset)``
tuples; these helpers translate them to and from chapter character offsets.
"""

from __future__ import annotations

from bisect import bisect_right
from dataclasses import dataclass, field
from typing import Iterable

from lnbook.ingestion.models import BlockIndex


@dataclass(slots=True)
class BlockLookup:
    """Blocks indexed by id and sorted by start offset."""

    by_id: dict[str, BlockIndex] = field(default_factory=dict)
    sorted_by_offset: list[BlockIndex] = field(default_factory=list)
    total_chars: int = 0

    @classmethod
    def from_block_maps(cls, block_maps: Iterable[BlockIndex] | None) -> "BlockLookup":
        blocks = sorted(block_maps or [], key=lambda block: block.start_offset)
        by_id = {block.block_id: block for block in blocks}
        total_chars = max((block.end_offset for block in blocks), default=0)
        return cls(by_id=by_id, sorted_by_offset=blocks, total_chars=total_chars)

    @classmethod
    def for_chapter(cls, block_maps: Iterable[BlockIndex] | None, chapter_index: int) -> "BlockLookup":
        prefix = f"ch{chapter_index}-"
        return cls.from_block_maps(block for block in block_maps or [] if block.block_id.startswith(prefix))

    def find_block_at_offset(self, char_offset: int) -> BlockIndex | None:
        """Return the block containing ``char_offset``, clamped to the ends."""

        blocks = self.sorted_by_offset
        if not blocks:
            return None
        if char_offset <= 0:
            return blocks[0]
        if char_offset >= self.total_chars:
            return blocks[-1]

        starts = [block.start_offset for block in blocks]
        position = bisect_right(starts, char_offset) - 1
        return blocks[max(position, 0)]

    def char_offset_from_block(self, block_id: str, local_offset: int) -> int:
        block = self.by_id.get(block_id)
        if block is None:
            return 0
        return block.start_offset + min(local_offset, block.length)

    def local_offset_from_char_offset(self, block_id: str, chapter_char_offset: int) -> int:
        block = self.by_id.get(block_id)
        if block is None:
            return 0
        return max(0, chapter_char_offset - block.start_offset)
